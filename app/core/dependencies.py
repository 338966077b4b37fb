"""FastAPI dependencies."""
import logging
from functools import lru_cache

import httpx
from fastapi import Depends
from openai import AsyncOpenAI

from app.core.config import settings
from app.db.database import AsyncSessionLocal
from app.services.agent.agent import ConversationAgent
from app.services.agent.state import ConversationRecord
from app.services.cache.ttl_cache import TTLCache
from app.services.call_session.manager import CallSessionRegistry, TranscriberFactory
from app.services.call_session.recorder import CallRecorder
from app.services.scheduling.base import AppointmentStore, OfficeHours
from app.services.scheduling.in_memory_store import InMemoryAppointmentStore
from app.services.scheduling.repository import SqlAppointmentStore
from app.services.speech.stt import LiveTranscriber
from app.services.speech.tts import TextToSpeechService

logger = logging.getLogger(__name__)


@lru_cache
def get_tts_cache() -> TTLCache[str, bytes]:
    """Synthesized audio shared by every call."""
    return TTLCache(max_size=settings.cache_max_size, ttl_seconds=settings.cache_ttl_seconds)


@lru_cache
def get_conversation_cache() -> TTLCache[str, ConversationRecord]:
    """Conversation histories shared by every call, keyed by stream SID."""
    return TTLCache(max_size=settings.cache_max_size, ttl_seconds=settings.cache_ttl_seconds)


@lru_cache
def get_session_registry() -> CallSessionRegistry:
    """Registry of live calls."""
    return CallSessionRegistry()


@lru_cache
def get_http_client() -> httpx.AsyncClient:
    """Connection pool for Deepgram speech requests, shared by every call."""
    return httpx.AsyncClient(timeout=httpx.Timeout(settings.tts_timeout_seconds, connect=5.0))


@lru_cache
def get_openai_client() -> AsyncOpenAI:
    """OpenAI client shared by every call."""
    return AsyncOpenAI(api_key=settings.openai_api_key)


async def close_clients() -> None:
    """Close the shared HTTP clients that have been created."""
    if get_http_client.cache_info().currsize:
        await get_http_client().aclose()
        get_http_client.cache_clear()
    if get_openai_client.cache_info().currsize:
        await get_openai_client().close()
        get_openai_client.cache_clear()
    logger.info("[DEPENDENCIES] Shared clients closed")


def get_office_hours() -> OfficeHours:
    return OfficeHours(
        open_hour=settings.office_open_hour,
        close_hour=settings.office_close_hour,
        slot_minutes=settings.appointment_slot_minutes,
        search_days=settings.appointment_search_days,
    )


@lru_cache
def get_in_memory_appointment_store() -> InMemoryAppointmentStore:
    """Process-local appointment book, kept for the life of the process."""
    return InMemoryAppointmentStore(hours=get_office_hours())


def get_appointment_store() -> AppointmentStore:
    """Get appointment store instance for the configured backend."""
    if settings.appointment_backend == "memory":
        return get_in_memory_appointment_store()
    return SqlAppointmentStore(AsyncSessionLocal, hours=get_office_hours())


def get_call_recorder() -> CallRecorder:
    return CallRecorder(AsyncSessionLocal)


def get_transcriber_factory() -> TranscriberFactory:
    return LiveTranscriber


def get_tts_service(
    cache: TTLCache[str, bytes] = Depends(get_tts_cache),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> TextToSpeechService:
    """Get a text-to-speech service backed by the shared audio cache."""
    return TextToSpeechService(cache=cache, client=client)


def get_conversation_agent(
    store: AppointmentStore = Depends(get_appointment_store),
    cache: TTLCache[str, ConversationRecord] = Depends(get_conversation_cache),
    client: AsyncOpenAI = Depends(get_openai_client),
) -> ConversationAgent:
    """Get a conversation agent backed by the shared history cache and client."""
    return ConversationAgent(appointment_store=store, history_cache=cache, client=client)
