"""Logging configuration."""
import logging
import sys
from typing import Optional, Union

from app.core.config import settings

# Chatty client libraries used on every call turn
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "websockets")


def setup_logging(level: Optional[Union[int, str]] = None) -> None:
    """Configure application logging to stdout."""
    logging.basicConfig(
        level=level or settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
