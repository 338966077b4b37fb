"""Records call lifecycle and caller details without interrupting the call."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import utcnow
from app.services.call_session.models import CallSession
from app.services.persistence.calls import CallPersistenceService

logger = logging.getLogger(__name__)


class CallRecorder:
    """Writes call records through short-lived database sessions.

    Database failures are logged and swallowed: losing a call record must
    never take down the live call.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def call_started(self, session: CallSession) -> None:
        try:
            async with self.session_factory() as db:
                await CallPersistenceService(db).create_call(
                    session.call_sid,
                    stream_sid=session.stream_sid,
                    phone_number=session.phone_number,
                )
        except Exception as e:
            logger.error(
                f"[CALL RECORDER] Failed to record call start - CallSid: {session.call_sid}, "
                f"Error: {type(e).__name__}: {e}"
            )

    async def caller_named(self, session: CallSession) -> None:
        if not session.caller_name:
            return
        try:
            async with self.session_factory() as db:
                await CallPersistenceService(db).update_caller_name(
                    session.call_sid, session.caller_name
                )
        except Exception as e:
            logger.error(
                f"[CALL RECORDER] Failed to store caller name - CallSid: {session.call_sid}, "
                f"Error: {type(e).__name__}: {e}"
            )

    async def call_ended(self, session: CallSession, status: str, ended_at: Optional[datetime] = None) -> None:
        try:
            async with self.session_factory() as db:
                await CallPersistenceService(db).update_call_status(
                    session.call_sid, status, ended_at=ended_at or utcnow()
                )
        except Exception as e:
            logger.error(
                f"[CALL RECORDER] Failed to record call end - CallSid: {session.call_sid}, "
                f"Error: {type(e).__name__}: {e}"
            )
