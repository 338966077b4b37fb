"""Main FastAPI application."""
import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager

from app.core.config import settings
from app.core.dependencies import close_clients
from app.core.logging import setup_logging
from app.db.database import close_db, init_db
from app.api import health
from app.api.webhooks import voice

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    logger.info(f"[APP] Receptionist for {settings.office_name} ready")
    yield
    # Shutdown
    await close_clients()
    await close_db()


app = FastAPI(
    title="AI Dental Receptionist",
    description="Real-time voice receptionist for appointment scheduling over Twilio media streams",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(voice.router, prefix="/webhooks", tags=["webhooks"])


@app.get("/")
async def root():
    """Service banner."""
    return {
        "message": "AI Dental Receptionist API",
        "office": settings.office_name,
        "version": "0.1.0",
    }
