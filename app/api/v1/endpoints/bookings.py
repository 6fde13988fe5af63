"""Booking endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.config import settings
from app.dependencies import BookingServiceDep, CurrentUser
from app.schemas.bookings import (
    AvailableSlotsResponse,
    BookingCreate,
    BookingFilters,
    BookingListResponse,
    BookingResponse,
    BookingStatus,
    BookingStatusUpdate,
    BookingUpdate,
)

router = APIRouter()


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create new booking",
)
async def create_booking(
    data: BookingCreate,
    current_user: CurrentUser,
    service: BookingServiceDep,
) -> BookingResponse:
    """
    Book a slot for the authenticated client.

    Returns 409 when the slot overlaps an active booking of the provider,
    422 when the provider is outside the client's tenant and 403 for
    non-client callers.
    """
    return await service.create_booking(current_user["id"], data)


@router.get(
    "",
    response_model=BookingListResponse,
    status_code=status.HTTP_200_OK,
    summary="List bookings",
)
async def list_bookings(
    current_user: CurrentUser,
    service: BookingServiceDep,
    customer_id: UUID | None = Query(None),
    provider_id: UUID | None = Query(None),
    status_filter: BookingStatus | None = Query(None, alias="status"),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
) -> BookingListResponse:
    """
    List bookings visible to the authenticated user.

    Administrators see every booking, customer admins the bookings of their
    tenant's clients (or where they are the provider), clients their own.
    """
    filters = BookingFilters(
        customer_id=customer_id,
        provider_id=provider_id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
    )
    return await service.list_bookings(filters, actor=current_user)


@router.get(
    "/me",
    response_model=BookingListResponse,
    status_code=status.HTTP_200_OK,
    summary="List my bookings",
)
async def list_my_bookings(
    current_user: CurrentUser,
    service: BookingServiceDep,
) -> BookingListResponse:
    """Bookings made by the authenticated user."""
    return await service.list_customer_bookings(current_user["id"])


@router.get(
    "/available-slots",
    response_model=AvailableSlotsResponse,
    status_code=status.HTTP_200_OK,
    summary="Free slots for a provider and date",
)
async def get_available_slots(
    current_user: CurrentUser,
    service: BookingServiceDep,
    appointment_date: date = Query(...),
    provider_id: UUID | None = Query(None),
    duration_minutes: int = Query(settings.default_slot_minutes),
    working_hours_start: str = Query(settings.working_hours_start),
    working_hours_end: str = Query(settings.working_hours_end),
) -> AvailableSlotsResponse:
    """
    Enumerate free ``HH:MM`` start times within working hours.

    Returns 422 when the provider is outside the caller's tenant.

    Args:
        appointment_date: Day to inspect
        provider_id: Provider, omitted for bookings without one
        duration_minutes: Slot length
        working_hours_start: Start of working hours
        working_hours_end: End of working hours
    """
    slots = await service.available_slots(
        current_user,
        provider_id,
        appointment_date,
        duration_minutes,
        work_start=working_hours_start,
        work_end=working_hours_end,
    )
    return AvailableSlotsResponse(
        appointment_date=appointment_date,
        provider_id=provider_id,
        duration_minutes=duration_minutes,
        available_slots=slots,
        count=len(slots),
    )


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
    summary="Get booking by ID",
)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser,
    service: BookingServiceDep,
) -> BookingResponse:
    """Get a specific booking."""
    return await service.get_booking(booking_id, actor=current_user)


@router.put(
    "/{booking_id}",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
    summary="Update booking",
)
async def update_booking(
    booking_id: UUID,
    data: BookingUpdate,
    current_user: CurrentUser,
    service: BookingServiceDep,
) -> BookingResponse:
    """Update booking details; rescheduling re-checks the slot."""
    return await service.update_booking(booking_id, data, actor=current_user)


@router.patch(
    "/{booking_id}/status",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
    summary="Update booking status",
)
async def update_booking_status(
    booking_id: UUID,
    data: BookingStatusUpdate,
    current_user: CurrentUser,
    service: BookingServiceDep,
) -> BookingResponse:
    """Confirm, complete, cancel or mark a booking as no-show."""
    return await service.update_booking_status(
        booking_id, data, current_user["id"], actor=current_user
    )


@router.delete(
    "/{booking_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete booking",
)
async def delete_booking(
    booking_id: UUID,
    current_user: CurrentUser,
    service: BookingServiceDep,
) -> None:
    """Permanently delete a booking in any status."""
    await service.delete_booking(booking_id, actor=current_user)
