"""In-memory appointment store."""
import asyncio
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from app.services.scheduling.base import AppointmentStore, OfficeHours


class InMemoryAppointmentStore(AppointmentStore):
    """Appointment store kept in process memory, for local runs and tests."""

    def __init__(
        self,
        hours: Optional[OfficeHours] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.hours = hours or OfficeHours()
        self.clock = clock
        self.appointments: Dict[datetime, Tuple[Optional[str], Optional[str]]] = {}
        self._lock = asyncio.Lock()

    async def check_availability(self, when: datetime) -> bool:
        """Check whether a slot can be booked."""
        if when <= self.clock() or not self.hours.is_bookable(when):
            return False
        return when not in self.appointments

    async def next_available_time(self, after: datetime) -> Optional[datetime]:
        """Find the next bookable slot after a time."""
        start = max(after, self.clock())
        for slot in self.hours.slots_after(start):
            if slot not in self.appointments:
                return slot
        return None

    async def create_appointment(
        self, name: Optional[str], phone_number: Optional[str], when: datetime
    ) -> bool:
        """Book a slot. Returns False if it is already taken."""
        async with self._lock:
            if not await self.check_availability(when):
                return False
            self.appointments[when] = (name, phone_number)
            return True
