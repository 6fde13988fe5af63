"""Booking lifecycle: creation, rescheduling, status transitions, deletion."""

from datetime import UTC, date, datetime, time
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, delete, func, insert, or_, select, true, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    BOOKING_OVERLAP_CONSTRAINT,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
    integrity_constraint_name,
)
from app.models.bookings import bookings
from app.models.users import users
from app.schemas.bookings import (
    BOOKING_TRANSITIONS,
    BookingCreate,
    BookingFilters,
    BookingListResponse,
    BookingResponse,
    BookingStatus,
    BookingStatusUpdate,
    BookingUpdate,
)
from app.schemas.users import UserRole
from app.services.slot_service import SlotService

logger = structlog.get_logger(__name__)

SLOT_UNAVAILABLE = "This time slot is not available"

# Fields whose change requires a fresh availability check
TIMING_FIELDS = frozenset({"appointment_date", "start_time", "end_time", "provider_id"})


def duration_between(start_time: time, end_time: time) -> int:
    """Minutes from start to end on the same day."""
    return (end_time.hour * 60 + end_time.minute) - (start_time.hour * 60 + start_time.minute)


class BookingService:
    """Service for managing bookings."""

    def __init__(self, db: AsyncSession, slots: SlotService | None = None):
        """Initialize service with database session."""
        self.db = db
        self.slots = slots or SlotService(db)

    def _visibility(self, actor: dict | None):
        """Condition limiting bookings to those an actor may see."""
        if actor is None or actor["role"] == UserRole.ADMINISTRATOR.value:
            return true()
        if actor["role"] == UserRole.CUSTOMER_ADMIN.value:
            tenant_clients = select(users.c.id).where(users.c.owning_tenant_id == actor["id"])
            return or_(
                bookings.c.provider_id == actor["id"],
                bookings.c.customer_id.in_(tenant_clients),
            )
        return bookings.c.customer_id == actor["id"]

    async def _user(self, user_id: UUID) -> dict | None:
        result = await self.db.execute(select(users).where(users.c.id == user_id))
        row = result.mappings().first()
        return dict(row) if row else None

    async def _ensure_provider_allowed(self, user: dict, provider_id: UUID | None) -> None:
        """
        Check that a provider belongs to the tenant the user books under.

        The tenant is the user's own for a customer admin and the owning
        tenant for a client; a provider qualifies when it is the tenant's
        customer admin or one of its users. Administrators may pick any
        existing provider.

        Raises:
            ValidationException: Unknown provider or one outside the tenant
        """
        if provider_id is None:
            return

        provider = await self._user(provider_id)
        if provider is None:
            raise ValidationException("Provider not found")
        if user["role"] == UserRole.ADMINISTRATOR.value:
            return

        if user["role"] == UserRole.CUSTOMER_ADMIN.value:
            tenant_id = user["id"]
        else:
            tenant_id = user["owning_tenant_id"]
        if tenant_id is None or tenant_id not in (provider["id"], provider["owning_tenant_id"]):
            raise ValidationException("Provider does not belong to this tenant")

    async def _fetch(self, booking_id: UUID) -> dict:
        result = await self.db.execute(select(bookings).where(bookings.c.id == booking_id))
        row = result.mappings().first()
        if not row:
            raise NotFoundException("Booking not found")
        return dict(row)

    async def _ensure_access(self, booking_id: UUID, actor: dict | None) -> dict:
        booking = await self._fetch(booking_id)
        if actor is None:
            return booking

        stmt = select(bookings.c.id).where(
            and_(bookings.c.id == booking_id, self._visibility(actor))
        )
        result = await self.db.execute(stmt)
        if result.first() is None:
            raise ForbiddenException("Access denied to this booking")
        return booking

    async def _write(self, stmt) -> dict:
        """Execute an INSERT/UPDATE ... RETURNING, mapping overlap violations."""
        try:
            result = await self.db.execute(stmt)
            row = result.mappings().first()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if integrity_constraint_name(e) == BOOKING_OVERLAP_CONSTRAINT:
                raise ConflictException(SLOT_UNAVAILABLE) from e
            raise ValidationException("Booking references an unknown user") from e

        if not row:
            raise NotFoundException("Booking not found")
        return dict(row)

    async def create_booking(
        self,
        customer_id: UUID,
        data: BookingCreate,
    ) -> BookingResponse:
        """
        Create a new booking.

        Args:
            customer_id: ID of the user making the booking
            data: Booking creation data

        Returns:
            Created booking with status ``pending``

        Raises:
            ValidationException: If the date is in the past
            ValidationException: If the provider is outside the customer's tenant
            ForbiddenException: If the customer is not a client
            ConflictException: If the slot overlaps an active booking
        """
        customer = await self._user(customer_id)
        if customer is None:
            raise ValidationException("Customer not found")
        if customer["role"] != UserRole.CLIENT.value:
            raise ForbiddenException("Only clients can create bookings")

        if data.appointment_date < date.today():
            raise ValidationException("Appointment date cannot be in the past")

        await self._ensure_provider_allowed(customer, data.provider_id)

        available = await self.slots.is_slot_available(
            data.provider_id,
            data.appointment_date,
            data.start_time,
            data.end_time,
        )
        if not available:
            raise ConflictException(SLOT_UNAVAILABLE)

        values = {
            "customer_id": customer_id,
            "patient_name": data.patient_name,
            "patient_contact": data.patient_contact,
            "provider_id": data.provider_id,
            "title": data.title,
            "appointment_type": data.appointment_type.value,
            "appointment_date": data.appointment_date,
            "start_time": data.start_time,
            "end_time": data.end_time,
            "duration_minutes": data.duration_minutes
            or duration_between(data.start_time, data.end_time),
            "status": BookingStatus.PENDING.value,
        }

        # A concurrent insert of the same slot is rejected by the overlap guard
        booking = await self._write(insert(bookings).values(**values).returning(bookings))

        logger.info(
            "booking_created",
            booking_id=str(booking["id"]),
            customer_id=str(customer_id),
            provider_id=str(data.provider_id) if data.provider_id else None,
        )
        return BookingResponse.model_validate(booking)

    async def get_booking(self, booking_id: UUID, actor: dict | None = None) -> BookingResponse:
        """
        Get booking by ID.

        Raises:
            NotFoundException: If booking not found
            ForbiddenException: If the actor may not see it
        """
        booking = await self._ensure_access(booking_id, actor)
        return BookingResponse.model_validate(booking)

    async def list_bookings(
        self,
        filters: BookingFilters,
        actor: dict | None = None,
    ) -> BookingListResponse:
        """
        List bookings ordered by date then start time.

        Args:
            filters: Customer, provider, status and date range filters
            actor: Requesting user; limits results to what they may see

        Returns:
            Matching bookings
        """
        conditions: list[Any] = [self._visibility(actor)]

        if filters.customer_id:
            conditions.append(bookings.c.customer_id == filters.customer_id)

        if filters.provider_id:
            conditions.append(bookings.c.provider_id == filters.provider_id)

        if filters.status:
            conditions.append(bookings.c.status == filters.status.value)

        if filters.date_from:
            conditions.append(bookings.c.appointment_date >= filters.date_from)

        if filters.date_to:
            conditions.append(bookings.c.appointment_date <= filters.date_to)

        count_stmt = select(func.count()).select_from(bookings).where(and_(*conditions))
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        stmt = (
            select(bookings)
            .where(and_(*conditions))
            .order_by(bookings.c.appointment_date, bookings.c.start_time)
        )
        result = await self.db.execute(stmt)
        items = [BookingResponse.model_validate(dict(row)) for row in result.mappings().all()]

        return BookingListResponse(total=total, items=items)

    async def list_customer_bookings(self, customer_id: UUID) -> BookingListResponse:
        """Bookings made by one customer."""
        return await self.list_bookings(BookingFilters(customer_id=customer_id))

    async def update_booking(
        self,
        booking_id: UUID,
        data: BookingUpdate,
        actor: dict | None = None,
    ) -> BookingResponse:
        """
        Update booking details.

        When the date, times or provider change the slot is re-checked with
        this booking excluded; a conflict aborts the whole update.

        Raises:
            NotFoundException: If booking not found
            ValidationException: Past date or end not after start
            ValidationException: If the provider is outside the customer's tenant
            ConflictException: If the new slot is taken
        """
        current = await self._ensure_access(booking_id, actor)

        patch = data.model_dump(exclude_unset=True)
        # provider_id may be cleared explicitly; other fields are not nullable
        update_values: dict[str, Any] = {
            field: value
            for field, value in patch.items()
            if value is not None or field == "provider_id"
        }
        if "appointment_type" in update_values:
            update_values["appointment_type"] = update_values["appointment_type"].value

        if not update_values:
            return BookingResponse.model_validate(current)

        if TIMING_FIELDS & update_values.keys():
            merged = {**current, **update_values}
            if merged["end_time"] <= merged["start_time"]:
                raise ValidationException("End time must be after start time")
            if "appointment_date" in update_values and merged["appointment_date"] < date.today():
                raise ValidationException("Appointment date cannot be in the past")
            if update_values.get("provider_id") is not None:
                customer = await self._user(current["customer_id"])
                await self._ensure_provider_allowed(customer, update_values["provider_id"])

            available = await self.slots.is_slot_available(
                merged["provider_id"],
                merged["appointment_date"],
                merged["start_time"],
                merged["end_time"],
                exclude_booking_id=booking_id,
            )
            if not available:
                raise ConflictException(SLOT_UNAVAILABLE)

            times_changed = {"start_time", "end_time"} & update_values.keys()
            if times_changed and "duration_minutes" not in update_values:
                update_values["duration_minutes"] = duration_between(
                    merged["start_time"], merged["end_time"]
                )

        update_values["updated_at"] = datetime.now(UTC)

        stmt = (
            update(bookings)
            .where(bookings.c.id == booking_id)
            .values(**update_values)
            .returning(bookings)
        )
        booking = await self._write(stmt)

        logger.info("booking_updated", booking_id=str(booking_id), fields=sorted(patch))
        return BookingResponse.model_validate(booking)

    async def available_slots(
        self,
        actor: dict,
        provider_id: UUID | None,
        appointment_date: date,
        duration_minutes: int,
        work_start: str | time = "08:00",
        work_end: str | time = "18:00",
    ) -> list[str]:
        """Free slot starts for a provider within the actor's tenant."""
        await self._ensure_provider_allowed(actor, provider_id)
        return await self.slots.available_slots(
            provider_id,
            appointment_date,
            duration_minutes,
            work_start=work_start,
            work_end=work_end,
        )

    async def update_booking_status(
        self,
        booking_id: UUID,
        data: BookingStatusUpdate,
        acting_user_id: UUID,
        actor: dict | None = None,
    ) -> BookingResponse:
        """
        Move a booking to a new status.

        Args:
            booking_id: Booking ID
            data: Target status and optional cancellation reason
            acting_user_id: User performing the change
            actor: Requesting user for access checks

        Returns:
            Updated booking

        Raises:
            NotFoundException: If booking not found
            ValidationException: If the transition is not allowed
        """
        current = await self._ensure_access(booking_id, actor)
        old_status = BookingStatus(current["status"])

        if data.status not in BOOKING_TRANSITIONS[old_status]:
            raise ValidationException(
                f"Cannot change booking status from {old_status.value} to {data.status.value}"
            )

        now = datetime.now(UTC)
        update_values: dict[str, Any] = {"status": data.status.value, "updated_at": now}

        if data.status == BookingStatus.CANCELLED:
            update_values["cancelled_at"] = now
            update_values["cancelled_by"] = acting_user_id
            update_values["cancellation_reason"] = data.reason

        stmt = (
            update(bookings)
            .where(bookings.c.id == booking_id)
            .values(**update_values)
            .returning(bookings)
        )
        booking = await self._write(stmt)

        logger.info(
            "booking_status_changed",
            booking_id=str(booking_id),
            old_status=old_status.value,
            new_status=data.status.value,
            acting_user_id=str(acting_user_id),
        )
        return BookingResponse.model_validate(booking)

    async def delete_booking(self, booking_id: UUID, actor: dict | None = None) -> None:
        """
        Permanently delete a booking, whatever its status.

        Raises:
            NotFoundException: If booking not found
        """
        await self._ensure_access(booking_id, actor)

        await self.db.execute(delete(bookings).where(bookings.c.id == booking_id))
        await self.db.commit()

        logger.info("booking_deleted", booking_id=str(booking_id))
