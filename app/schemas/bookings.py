"""Booking schemas for request/response validation."""

from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class BookingStatus(str, Enum):
    """Booking status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class AppointmentType(str, Enum):
    """Appointment type enumeration."""

    CONSULTATION = "consultation"
    TREATMENT = "treatment"
    EMERGENCY = "emergency"


# Bookings in these states occupy their slot
ACTIVE_BOOKING_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED}
)

# Allowed status transitions; terminal states map to an empty set
BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}


class BookingBase(BaseModel):
    """Base booking schema with common fields."""

    patient_name: str = Field(..., min_length=1, max_length=255)
    patient_contact: str = Field(..., min_length=1, max_length=255)
    provider_id: UUID | None = None
    title: str = Field(..., min_length=1, max_length=255)
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    appointment_date: date
    start_time: time
    end_time: time


class BookingCreate(BookingBase):
    """Schema for creating a new booking."""

    duration_minutes: int | None = Field(None, ge=1, le=24 * 60)

    @model_validator(mode="after")
    def validate_time_range(self) -> "BookingCreate":
        """End time must be after start time."""
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class BookingUpdate(BaseModel):
    """Schema for updating booking details; omitted fields are left unchanged."""

    patient_name: str | None = Field(None, min_length=1, max_length=255)
    patient_contact: str | None = Field(None, min_length=1, max_length=255)
    provider_id: UUID | None = None
    title: str | None = Field(None, min_length=1, max_length=255)
    appointment_type: AppointmentType | None = None
    appointment_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    duration_minutes: int | None = Field(None, ge=1, le=24 * 60)


class BookingStatusUpdate(BaseModel):
    """Schema for updating booking status."""

    status: BookingStatus
    reason: str | None = Field(None, max_length=1000)


class BookingResponse(BookingBase):
    """Schema for booking response."""

    id: UUID
    customer_id: UUID
    duration_minutes: int
    status: BookingStatus
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookingListResponse(BaseModel):
    """Schema for booking list response."""

    total: int
    items: list[BookingResponse]


class BookingFilters(BaseModel):
    """Schema for booking filtering."""

    customer_id: UUID | None = None
    provider_id: UUID | None = None
    status: BookingStatus | None = None
    date_from: date | None = None
    date_to: date | None = None


class AvailableSlotsResponse(BaseModel):
    """Free slot start times for one provider and date."""

    appointment_date: date
    provider_id: UUID | None = None
    duration_minutes: int
    available_slots: list[str]
    count: int
