"""SQL-backed appointment store."""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import Appointment
from app.services.scheduling.base import AppointmentStore, OfficeHours

logger = logging.getLogger(__name__)


class SqlAppointmentStore(AppointmentStore):
    """Appointment store on the application database.

    The unique constraint on ``appointment_time`` is what settles two calls
    booking the same slot at once: the loser's insert fails and reports False.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hours: Optional[OfficeHours] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.hours = hours or OfficeHours()
        self.clock = clock

    async def check_availability(self, when: datetime) -> bool:
        """Check whether a slot can be booked."""
        if when <= self.clock() or not self.hours.is_bookable(when):
            return False
        async with self.session_factory() as db:
            result = await db.execute(
                select(Appointment.id).where(Appointment.appointment_time == when)
            )
            return result.first() is None

    async def next_available_time(self, after: datetime) -> Optional[datetime]:
        """Find the next bookable slot after a time."""
        start = max(after, self.clock())
        end = start + timedelta(days=self.hours.search_days)
        async with self.session_factory() as db:
            result = await db.execute(
                select(Appointment.appointment_time).where(
                    Appointment.appointment_time > start,
                    Appointment.appointment_time <= end,
                )
            )
            booked = set(result.scalars().all())

        for slot in self.hours.slots_after(start):
            if slot not in booked:
                return slot
        return None

    async def create_appointment(
        self, name: Optional[str], phone_number: Optional[str], when: datetime
    ) -> bool:
        """Book a slot. Returns False if it could not be created."""
        if not self.hours.is_bookable(when):
            return False
        async with self.session_factory() as db:
            db.add(
                Appointment(
                    caller_name=name,
                    phone_number=phone_number,
                    appointment_time=when,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning(f"[APPOINTMENTS] Slot {when.isoformat()} was booked concurrently")
                return False
        logger.info(f"[APPOINTMENTS] Booked {when.isoformat()} for {name or 'unknown caller'}")
        return True
