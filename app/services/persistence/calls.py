"""Call persistence service."""
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.db.models import Call


class CallPersistenceService:
    """Service for persisting call data."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_call(
        self,
        call_sid: str,
        stream_sid: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> Call:
        """Create a new call record or return existing one."""
        existing_call = await self.get_call_by_sid(call_sid)
        if existing_call:
            return existing_call

        call = Call(
            call_sid=call_sid,
            stream_sid=stream_sid,
            phone_number=phone_number,
            status="in_progress",
        )
        self.db.add(call)
        await self.db.commit()
        await self.db.refresh(call)
        return call

    async def get_call_by_sid(self, call_sid: str) -> Optional[Call]:
        """Get call by Twilio call SID."""
        result = await self.db.execute(
            select(Call).where(Call.call_sid == call_sid)
        )
        return result.scalar_one_or_none()

    async def update_caller_name(self, call_sid: str, caller_name: str) -> Optional[Call]:
        """Store the caller's name, keeping the first one captured."""
        call = await self.get_call_by_sid(call_sid)
        if call and not call.caller_name:
            call.caller_name = caller_name
            await self.db.commit()
            await self.db.refresh(call)
        return call

    async def update_call_status(
        self, call_sid: str, status: str, ended_at: Optional[datetime] = None
    ) -> Optional[Call]:
        """Update call status."""
        call = await self.get_call_by_sid(call_sid)
        if call:
            call.status = status
            if ended_at:
                call.ended_at = ended_at
            await self.db.commit()
            await self.db.refresh(call)
        return call
