"""Slot conflict engine: overlap checks and free slot generation."""

from datetime import date, datetime, time
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationException
from app.models.bookings import INACTIVE_BOOKING_STATUSES, bookings

Interval = tuple[time, time]


def parse_time_of_day(value: str | time) -> time:
    """
    Parse an ``HH:MM`` (or ``HH:MM:SS``) string.

    Raises:
        ValidationException: If the value is not a valid time of day
    """
    if isinstance(value, time):
        return value
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(value, fmt).time()
        except (TypeError, ValueError):
            continue
    raise ValidationException(f"Invalid time of day: {value!r}")


def intervals_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open overlap test; touching intervals do not overlap."""
    return start_a < end_b and start_b < end_a


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _from_minutes(total: int) -> time:
    return time(total // 60, total % 60)


def generate_free_slots(
    booked: list[Interval],
    duration_minutes: int,
    work_start: str | time = "08:00",
    work_end: str | time = "18:00",
) -> list[str]:
    """
    Enumerate free slot start times within working hours.

    Candidates start at ``work_start`` and advance by ``duration_minutes``;
    a candidate is kept when it ends by ``work_end`` and overlaps none of
    the ``booked`` intervals.

    Args:
        booked: Intervals already taken
        duration_minutes: Slot length and step
        work_start: Start of the working day
        work_end: End of the working day

    Returns:
        Sorted ``HH:MM`` start times

    Raises:
        ValidationException: Non-positive duration or invalid working hours
    """
    if not isinstance(duration_minutes, int) or duration_minutes <= 0:
        raise ValidationException("Duration must be a positive number of minutes")

    start = parse_time_of_day(work_start)
    end = parse_time_of_day(work_end)
    if end <= start:
        raise ValidationException("Working hours must end after they start")

    slots = []
    cursor = _minutes(start)
    last = _minutes(end)
    while cursor + duration_minutes <= last:
        slot_start = _from_minutes(cursor)
        slot_end = _from_minutes(cursor + duration_minutes)
        if not any(
            intervals_overlap(slot_start, slot_end, taken_start, taken_end)
            for taken_start, taken_end in booked
        ):
            slots.append(slot_start.strftime("%H:%M"))
        cursor += duration_minutes
    return slots


class SlotService:
    """Service answering availability questions against stored bookings."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    def _active_for(self, provider_id: UUID, appointment_date: date) -> list:
        return [
            bookings.c.provider_id == provider_id,
            bookings.c.appointment_date == appointment_date,
            bookings.c.status.notin_(INACTIVE_BOOKING_STATUSES),
        ]

    async def is_slot_available(
        self,
        provider_id: UUID | None,
        appointment_date: date,
        start_time: time,
        end_time: time,
        exclude_booking_id: UUID | None = None,
    ) -> bool:
        """
        Check that no active booking of the provider overlaps the interval.

        Bookings without a provider hold no resource and never conflict.

        Args:
            provider_id: Provider, or None for an unassigned booking
            appointment_date: Day of the appointment
            start_time: Proposed start
            end_time: Proposed end
            exclude_booking_id: Booking to ignore (the one being updated)

        Returns:
            True if the interval is free
        """
        if provider_id is None:
            return True

        conditions = self._active_for(provider_id, appointment_date)
        conditions += [
            bookings.c.start_time < end_time,
            bookings.c.end_time > start_time,
        ]
        if exclude_booking_id is not None:
            conditions.append(bookings.c.id != exclude_booking_id)

        stmt = select(bookings.c.id).where(and_(*conditions)).limit(1)
        result = await self.db.execute(stmt)
        return result.first() is None

    async def booked_intervals(
        self,
        provider_id: UUID | None,
        appointment_date: date,
    ) -> list[Interval]:
        """Active booking intervals for a provider on a date, by start time."""
        if provider_id is None:
            return []

        stmt = (
            select(bookings.c.start_time, bookings.c.end_time)
            .where(and_(*self._active_for(provider_id, appointment_date)))
            .order_by(bookings.c.start_time)
        )
        result = await self.db.execute(stmt)
        return [(row.start_time, row.end_time) for row in result.fetchall()]

    async def available_slots(
        self,
        provider_id: UUID | None,
        appointment_date: date,
        duration_minutes: int,
        work_start: str | time = "08:00",
        work_end: str | time = "18:00",
    ) -> list[str]:
        """Free ``HH:MM`` slot starts for a provider on a date."""
        # Validate before touching the database
        generate_free_slots([], duration_minutes, work_start, work_end)

        booked = await self.booked_intervals(provider_id, appointment_date)
        return generate_free_slots(booked, duration_minutes, work_start, work_end)
