"""Async engine and session factory for call records and appointments."""
import logging
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.core.config import settings
from app.db.models import Base

logger = logging.getLogger(__name__)

ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def to_async_url(url: str) -> str:
    """Point a plain database URL at its async driver."""
    for prefix, async_prefix in ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return async_prefix + url[len(prefix):]
    return url


database_url = to_async_url(settings.database_url)

engine = create_async_engine(
    database_url,
    echo=False,
    # SQLite connections are local; only pooled server connections go stale
    pool_pre_ping=not database_url.startswith("sqlite"),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db() -> None:
    """Create the calls and appointments tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"[DATABASE] Tables ready: {', '.join(sorted(Base.metadata.tables))}")


async def close_db() -> None:
    """Release pooled connections on shutdown."""
    await engine.dispose()
    logger.info("[DATABASE] Connection pool closed")
