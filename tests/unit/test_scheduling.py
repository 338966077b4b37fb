"""Unit tests for office-hours rules and the in-memory appointment store."""
import asyncio
from datetime import datetime

import pytest

from app.services.scheduling.base import (
    OfficeHours,
    format_appointment_time,
    parse_appointment_time,
)


class TestAppointmentTimeHelpers:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2030-01-07T14:30:00", datetime(2030, 1, 7, 14, 30)),
            ("2030-01-07T14:30:00Z", datetime(2030, 1, 7, 14, 30)),
            ("2030-01-07T14:30:00-05:00", datetime(2030, 1, 7, 14, 30)),
            (" 2030-01-07T09:00:00.250 ", datetime(2030, 1, 7, 9, 0)),
        ],
    )
    def test_parse_keeps_wall_clock_time(self, value, expected):
        assert parse_appointment_time(value) == expected

    def test_parse_rejects_free_text(self):
        with pytest.raises(ValueError):
            parse_appointment_time("next tuesday")

    @pytest.mark.parametrize(
        "value,expected",
        [
            (datetime(2030, 1, 7, 14, 30), "Monday, January 7 at 2:30 PM"),
            (datetime(2030, 1, 7, 14, 0), "Monday, January 7 at 2 PM"),
            (datetime(2030, 1, 8, 9, 0), "Tuesday, January 8 at 9 AM"),
            (datetime(2030, 1, 8, 12, 0), "Tuesday, January 8 at 12 PM"),
        ],
    )
    def test_format_for_speech(self, value, expected):
        assert format_appointment_time(value) == expected


class TestOfficeHours:
    def test_is_bookable(self, office_hours):
        assert office_hours.is_bookable(datetime(2030, 1, 7, 9, 0))
        assert office_hours.is_bookable(datetime(2030, 1, 7, 16, 30))
        assert not office_hours.is_bookable(datetime(2030, 1, 7, 8, 30))
        assert not office_hours.is_bookable(datetime(2030, 1, 7, 17, 0))
        assert not office_hours.is_bookable(datetime(2030, 1, 7, 10, 15))
        assert not office_hours.is_bookable(datetime(2030, 1, 5, 10, 0))  # Saturday
        assert not office_hours.is_bookable(datetime(2030, 1, 6, 10, 0))  # Sunday

    def test_slots_after_skips_weekend(self, office_hours):
        slots = office_hours.slots_after(datetime(2030, 1, 4, 16, 30))  # Friday

        assert next(slots) == datetime(2030, 1, 7, 9, 0)

    def test_slots_after_unaligned_time(self, office_hours):
        slots = office_hours.slots_after(datetime(2030, 1, 7, 10, 10))

        assert next(slots) == datetime(2030, 1, 7, 10, 30)

    def test_slots_stop_at_search_window(self):
        hours = OfficeHours(search_days=1)

        slots = list(hours.slots_after(datetime(2030, 1, 7, 16, 30)))

        assert slots[-1] == datetime(2030, 1, 8, 16, 30)
        assert all(slot.day == 8 for slot in slots)

    @pytest.mark.parametrize("kwargs", [{"open_hour": 17, "close_hour": 9}, {"slot_minutes": 7}])
    def test_rejects_invalid_hours(self, kwargs):
        with pytest.raises(ValueError):
            OfficeHours(**kwargs)


class TestInMemoryAppointmentStore:
    @pytest.mark.asyncio
    async def test_book_and_check(self, appointment_store):
        when = datetime(2030, 1, 7, 14, 30)

        assert await appointment_store.check_availability(when)
        assert await appointment_store.create_appointment("Alex", "+15551234567", when)
        assert not await appointment_store.check_availability(when)
        assert not await appointment_store.create_appointment("Sam", None, when)

    @pytest.mark.asyncio
    async def test_concurrent_bookings_only_one_wins(self, appointment_store):
        when = datetime(2030, 1, 7, 14, 30)

        results = await asyncio.gather(
            *(appointment_store.create_appointment(f"caller {i}", None, when) for i in range(5))
        )

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_past_slots_are_unavailable(self, appointment_store):
        assert not await appointment_store.check_availability(datetime(2029, 12, 31, 10, 0))

    @pytest.mark.asyncio
    async def test_next_available_starts_from_now(self, appointment_store):
        # The store clock reads Tuesday 2030-01-01 08:00
        next_time = await appointment_store.next_available_time(datetime(2029, 12, 1, 10, 0))

        assert next_time == datetime(2030, 1, 1, 9, 0)

    @pytest.mark.asyncio
    async def test_no_slot_in_window(self, appointment_store):
        appointment_store.hours = OfficeHours(search_days=0)

        assert await appointment_store.next_available_time(datetime(2030, 1, 7, 16, 30)) is None
