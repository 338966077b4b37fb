"""Appointment store interface and office-hours slot rules."""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Iterator, Optional


def parse_appointment_time(value: str) -> datetime:
    """Parse an ISO 8601 time from the model into a naive wall-clock datetime."""
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    return parsed.replace(tzinfo=None, microsecond=0)


def format_appointment_time(value: datetime) -> str:
    """Format a datetime the way it should be spoken to a caller."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    minutes = f":{value.minute:02d}" if value.minute else ""
    return f"{value.strftime('%A, %B')} {value.day} at {hour}{minutes} {suffix}"


class OfficeHours:
    """Bookable slot rules: weekdays, fixed opening hours, fixed slot length."""

    def __init__(
        self,
        open_hour: int = 9,
        close_hour: int = 17,
        slot_minutes: int = 30,
        search_days: int = 14,
    ):
        if not 0 <= open_hour < close_hour <= 24:
            raise ValueError("open_hour must be before close_hour")
        if slot_minutes < 1 or 60 % slot_minutes:
            raise ValueError("slot_minutes must divide an hour")
        self.open_hour = open_hour
        self.close_hour = close_hour
        self.slot = timedelta(minutes=slot_minutes)
        self.slot_minutes = slot_minutes
        self.search_days = search_days

    def is_bookable(self, when: datetime) -> bool:
        """Check that a time starts a slot inside opening hours on a weekday."""
        if when.weekday() >= 5:
            return False
        if when.second or when.microsecond or when.minute % self.slot_minutes:
            return False
        opens = when.replace(hour=self.open_hour, minute=0)
        closes = opens + timedelta(hours=self.close_hour - self.open_hour)
        return opens <= when and when + self.slot <= closes

    def slots_after(self, when: datetime) -> Iterator[datetime]:
        """Yield bookable slots strictly after ``when`` within the search window."""
        start = when.replace(second=0, microsecond=0)
        start -= timedelta(minutes=start.minute % self.slot_minutes)
        candidate = start + self.slot
        end = when + timedelta(days=self.search_days)
        while candidate <= end:
            if self.is_bookable(candidate):
                yield candidate
            candidate += self.slot


class AppointmentStore(ABC):
    """Abstract base class for appointment stores."""

    @abstractmethod
    async def check_availability(self, when: datetime) -> bool:
        """Check whether a slot can be booked."""
        pass

    @abstractmethod
    async def next_available_time(self, after: datetime) -> Optional[datetime]:
        """Find the next bookable slot after a time."""
        pass

    @abstractmethod
    async def create_appointment(
        self, name: Optional[str], phone_number: Optional[str], when: datetime
    ) -> bool:
        """Book a slot. Returns False if it could not be created."""
        pass
