"""Tests for the booking lifecycle."""

import asyncio
from datetime import date, time, timedelta

import pytest
import pytest_asyncio
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from app.schemas.bookings import (
    BookingCreate,
    BookingFilters,
    BookingStatus,
    BookingStatusUpdate,
    BookingUpdate,
)
from app.database import get_db
from app.dependencies import get_booking_service
from app.main import app
from app.schemas.users import UserCreate, UserRole
from app.services.booking_service import BookingService, duration_between
from conftest import PASSWORD, auth_headers_for


def _booking(provider_id, day: date, start: time, end: time, **extra) -> BookingCreate:
    return BookingCreate(
        patient_name="Jane Client",
        patient_contact="+100200300",
        provider_id=provider_id,
        title="Check-up",
        appointment_date=day,
        start_time=start,
        end_time=end,
        **extra,
    )


def _payload(provider_id, day: date, start: str, end: str) -> dict:
    return {
        "patient_name": "Jane Client",
        "patient_contact": "+100200300",
        "provider_id": str(provider_id) if provider_id else None,
        "title": "Check-up",
        "appointment_date": day.isoformat(),
        "start_time": start,
        "end_time": end,
    }


class AlwaysFree:
    """Slot checker that never reports a conflict."""

    async def is_slot_available(self, *args, **kwargs) -> bool:
        return True


@pytest.fixture
def service(db_session) -> BookingService:
    return BookingService(db_session)


@pytest_asyncio.fixture
async def other_tenant_client(directory) -> dict:
    """Client of a second tenant, ``globex``."""
    await directory.create_user(
        UserCreate(
            full_name="Globex Owner",
            email="owner@globex.example.com",
            password=PASSWORD,
            role=UserRole.CUSTOMER_ADMIN,
            domain="globex",
        )
    )
    return await directory.create_user(
        UserCreate(full_name="Gus Client", email="gus@example.com", password=PASSWORD),
        tenant_header="globex",
    )


def test_duration_between():
    assert duration_between(time(9), time(9, 45)) == 45
    assert duration_between(time(8, 30), time(17)) == 510


class TestCreateBooking:
    """Creation and slot conflicts."""

    async def test_overlap_rejected_adjacent_accepted(
        self, service, acme, acme_client, future_date
    ):
        first = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(9, 30))
        )
        assert first.status == BookingStatus.PENDING
        assert first.duration_minutes == 30
        assert first.customer_id == acme_client["id"]

        with pytest.raises(ConflictException):
            await service.create_booking(
                acme_client["id"], _booking(acme["id"], future_date, time(9, 15), time(9, 45))
            )

        adjacent = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9, 30), time(10))
        )
        assert adjacent.start_time == time(9, 30)

    async def test_explicit_duration_kept(self, service, acme, acme_client, future_date):
        booking = await service.create_booking(
            acme_client["id"],
            _booking(acme["id"], future_date, time(9), time(10), duration_minutes=50),
        )

        assert booking.duration_minutes == 50

    async def test_past_date_rejected(self, service, acme, acme_client):
        yesterday = date.today() - timedelta(days=1)

        with pytest.raises(ValidationException):
            await service.create_booking(
                acme_client["id"], _booking(acme["id"], yesterday, time(9), time(10))
            )

    async def test_same_slot_different_providers(
        self, service, acme, acme_staff, acme_client, future_date
    ):
        await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )
        other = await service.create_booking(
            acme_client["id"], _booking(acme_staff["id"], future_date, time(9), time(10))
        )

        assert other.provider_id == acme_staff["id"]

    async def test_provider_from_other_tenant(
        self, service, acme, other_tenant_client, future_date
    ):
        with pytest.raises(ValidationException) as exc_info:
            await service.create_booking(
                other_tenant_client["id"], _booking(acme["id"], future_date, time(9), time(10))
            )

        assert exc_info.value.message == "Provider does not belong to this tenant"

    @pytest.mark.parametrize("creator", ["acme", "administrator"])
    async def test_only_clients_create(
        self, request, service, acme, administrator, future_date, creator
    ):
        user = request.getfixturevalue(creator)

        with pytest.raises(ForbiddenException):
            await service.create_booking(
                user["id"], _booking(acme["id"], future_date, time(9), time(10))
            )

    async def test_tenantless_client_books_unassigned(
        self, service, directory, acme, future_date
    ):
        solo = await directory.resolve_external_identity("ext-solo", "solo@example.com", "Solo")

        booking = await service.create_booking(
            solo["id"], _booking(None, future_date, time(9), time(10))
        )
        assert booking.provider_id is None

        with pytest.raises(ValidationException):
            await service.create_booking(
                solo["id"], _booking(acme["id"], future_date, time(11), time(12))
            )

    async def test_unknown_provider(self, service, acme_client, future_date):
        from uuid import uuid4

        with pytest.raises(ValidationException):
            await service.create_booking(
                acme_client["id"], _booking(uuid4(), future_date, time(9), time(10))
            )

    def test_end_before_start_invalid(self, future_date):
        with pytest.raises(ValueError):
            _booking(None, future_date, time(10), time(9))

    async def test_concurrent_requests_for_one_slot(
        self, database, acme, acme_client, future_date
    ):
        async def attempt(start: time, end: time):
            async with database.session_factory() as session:
                return await BookingService(session).create_booking(
                    acme_client["id"], _booking(acme["id"], future_date, start, end)
                )

        results = await asyncio.gather(
            attempt(time(9), time(9, 30)),
            attempt(time(9, 15), time(9, 45)),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], ConflictException)

        async with database.session_factory() as session:
            stored = await BookingService(session).list_bookings(
                BookingFilters(provider_id=acme["id"])
            )
        assert stored.total == 1


class TestUpdateBooking:
    """Rescheduling re-checks the slot."""

    async def test_shift_within_own_slot(self, service, acme, acme_client, future_date):
        booking = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(9, 30))
        )

        moved = await service.update_booking(
            booking.id, BookingUpdate(start_time=time(9, 15), end_time=time(10))
        )

        assert moved.start_time == time(9, 15)
        assert moved.duration_minutes == 45

    async def test_conflicting_reschedule_aborts(self, service, acme, acme_client, future_date):
        await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )
        later = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(11), time(12))
        )

        with pytest.raises(ConflictException):
            await service.update_booking(
                later.id,
                BookingUpdate(title="Moved", start_time=time(9, 30), end_time=time(10, 30)),
            )

        unchanged = await service.get_booking(later.id)
        assert unchanged.title == "Check-up"
        assert unchanged.start_time == time(11)

    async def test_non_timing_update_skips_check(self, service, acme, acme_client, future_date):
        booking = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )

        updated = await service.update_booking(booking.id, BookingUpdate(title="Follow-up"))

        assert updated.title == "Follow-up"
        assert updated.start_time == time(9)

    async def test_end_not_after_start(self, service, acme, acme_client, future_date):
        booking = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )

        with pytest.raises(ValidationException):
            await service.update_booking(booking.id, BookingUpdate(end_time=time(8)))

    async def test_move_to_past_date(self, service, acme, acme_client, future_date):
        booking = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )

        with pytest.raises(ValidationException):
            await service.update_booking(
                booking.id,
                BookingUpdate(appointment_date=date.today() - timedelta(days=2)),
            )

    async def test_move_to_provider_in_tenant_only(
        self, service, acme, acme_staff, acme_client, other_tenant_client, future_date
    ):
        booking = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )

        with pytest.raises(ValidationException):
            await service.update_booking(
                booking.id, BookingUpdate(provider_id=other_tenant_client["owning_tenant_id"])
            )
        moved = await service.update_booking(
            booking.id, BookingUpdate(provider_id=acme_staff["id"])
        )

        assert moved.provider_id == acme_staff["id"]

    async def test_clear_provider(self, service, acme, acme_client, future_date):
        booking = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )

        updated = await service.update_booking(booking.id, BookingUpdate(provider_id=None))

        assert updated.provider_id is None

    async def test_missing_booking(self, service):
        from uuid import uuid4

        with pytest.raises(NotFoundException):
            await service.update_booking(uuid4(), BookingUpdate(title="x"))


class TestStorageGuard:
    """The database rejects overlaps the slot check did not catch."""

    @pytest.fixture
    def unchecked(self, db_session) -> BookingService:
        return BookingService(db_session, slots=AlwaysFree())

    async def test_overlap_rejected_back_to_back_accepted(
        self, unchecked, service, acme, acme_client, future_date
    ):
        await unchecked.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(9, 30))
        )

        with pytest.raises(ConflictException):
            await unchecked.create_booking(
                acme_client["id"], _booking(acme["id"], future_date, time(9, 15), time(9, 45))
            )
        adjacent = await unchecked.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9, 30), time(10))
        )

        assert adjacent.start_time == time(9, 30)
        stored = await service.list_bookings(BookingFilters(provider_id=acme["id"]))
        assert stored.total == 2

    async def test_overlapping_reschedule_rejected(
        self, unchecked, service, acme, acme_client, future_date
    ):
        await unchecked.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )
        later = await unchecked.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(11), time(12))
        )

        with pytest.raises(ConflictException):
            await unchecked.update_booking(
                later.id, BookingUpdate(start_time=time(9, 30), end_time=time(10, 30))
            )

        assert (await service.get_booking(later.id)).start_time == time(11)

    async def test_cancelled_and_unassigned_do_not_block(
        self, unchecked, acme, acme_client, future_date
    ):
        first = await unchecked.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )
        await unchecked.update_booking_status(
            first.id, BookingStatusUpdate(status=BookingStatus.CANCELLED), acme_client["id"]
        )

        rebooked = await unchecked.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )
        unassigned = [
            await unchecked.create_booking(
                acme_client["id"], _booking(None, future_date, time(9), time(10))
            )
            for _ in range(2)
        ]

        assert rebooked.status == BookingStatus.PENDING
        assert len(unassigned) == 2


class TestBookingStatus:
    """Status transitions."""

    async def test_cancel_records_who_and_why(self, service, acme, acme_client, future_date):
        booking = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(9, 30))
        )

        cancelled = await service.update_booking_status(
            booking.id,
            BookingStatusUpdate(status=BookingStatus.CANCELLED, reason="Travelling"),
            acme_client["id"],
        )

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancelled_by == acme_client["id"]
        assert cancelled.cancellation_reason == "Travelling"
        assert cancelled.cancelled_at is not None

        # The freed slot can be booked again
        rebooked = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(9, 30))
        )
        assert rebooked.status == BookingStatus.PENDING

    async def test_confirm_then_complete(self, service, acme, acme_client, future_date):
        booking = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(9, 30))
        )

        confirmed = await service.update_booking_status(
            booking.id, BookingStatusUpdate(status=BookingStatus.CONFIRMED), acme["id"]
        )
        completed = await service.update_booking_status(
            booking.id, BookingStatusUpdate(status=BookingStatus.COMPLETED), acme["id"]
        )

        assert confirmed.status == BookingStatus.CONFIRMED
        assert completed.status == BookingStatus.COMPLETED
        assert completed.cancelled_at is None

    @pytest.mark.parametrize(
        ("path", "target"),
        [
            ([], BookingStatus.COMPLETED),
            ([], BookingStatus.PENDING),
            ([BookingStatus.CANCELLED], BookingStatus.CONFIRMED),
            ([BookingStatus.NO_SHOW], BookingStatus.CANCELLED),
            ([BookingStatus.CONFIRMED, BookingStatus.COMPLETED], BookingStatus.CANCELLED),
        ],
    )
    async def test_invalid_transition(
        self, service, acme, acme_client, future_date, path, target
    ):
        booking = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(9, 30))
        )
        for step in path:
            await service.update_booking_status(
                booking.id, BookingStatusUpdate(status=step), acme["id"]
            )

        with pytest.raises(ValidationException):
            await service.update_booking_status(
                booking.id, BookingStatusUpdate(status=target), acme["id"]
            )


class TestVisibility:
    """Who may see and change which bookings."""

    async def test_roles_see_their_scope(
        self, service, acme, acme_client, administrator, other_tenant_client, future_date
    ):
        mine = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )
        theirs = await service.create_booking(
            other_tenant_client["id"], _booking(None, future_date, time(9), time(10))
        )

        everything = await service.list_bookings(BookingFilters(), actor=administrator)
        tenant_view = await service.list_bookings(BookingFilters(), actor=acme)
        client_view = await service.list_bookings(BookingFilters(), actor=other_tenant_client)

        assert everything.total == 2
        assert [b.id for b in tenant_view.items] == [mine.id]
        assert [b.id for b in client_view.items] == [theirs.id]

    async def test_foreign_booking_forbidden(
        self, service, acme, acme_client, other_tenant_client, future_date
    ):
        booking = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )

        with pytest.raises(ForbiddenException):
            await service.get_booking(booking.id, actor=other_tenant_client)
        with pytest.raises(ForbiddenException):
            await service.delete_booking(booking.id, actor=other_tenant_client)

        assert (await service.get_booking(booking.id, actor=acme)).id == booking.id

    async def test_list_is_ordered_and_filtered(self, service, acme, acme_client, future_date):
        later = await service.create_booking(
            acme_client["id"],
            _booking(acme["id"], future_date + timedelta(days=1), time(8), time(9)),
        )
        afternoon = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(14), time(15))
        )
        morning = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )
        await service.update_booking_status(
            afternoon.id, BookingStatusUpdate(status=BookingStatus.CONFIRMED), acme["id"]
        )

        listed = await service.list_customer_bookings(acme_client["id"])
        confirmed = await service.list_bookings(BookingFilters(status=BookingStatus.CONFIRMED))
        first_day = await service.list_bookings(
            BookingFilters(date_from=future_date, date_to=future_date)
        )

        assert [b.id for b in listed.items] == [morning.id, afternoon.id, later.id]
        assert [b.id for b in confirmed.items] == [afternoon.id]
        assert first_day.total == 2


class TestDeleteBooking:
    async def test_delete_in_any_status(self, service, acme, acme_client, future_date):
        booking = await service.create_booking(
            acme_client["id"], _booking(acme["id"], future_date, time(9), time(10))
        )
        await service.update_booking_status(
            booking.id, BookingStatusUpdate(status=BookingStatus.CANCELLED), acme_client["id"]
        )

        await service.delete_booking(booking.id)

        with pytest.raises(NotFoundException):
            await service.get_booking(booking.id)


class TestBookingEndpoints:
    """HTTP surface of the booking lifecycle."""

    async def test_create_conflict_and_adjacent(self, client, acme, acme_client, future_date):
        headers = auth_headers_for(acme_client)

        created = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:00", "09:30"),
            headers=headers,
        )
        conflict = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:15", "09:45"),
            headers=headers,
        )
        adjacent = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:30", "10:00"),
            headers=headers,
        )

        assert created.status_code == 201
        assert created.json()["status"] == "pending"
        assert conflict.status_code == 409
        assert conflict.json()["error"] == "ConflictException"
        assert conflict.json()["path"] == "/api/v1/bookings"
        assert adjacent.status_code == 201

    async def test_requires_authentication(self, client, acme, future_date):
        response = await client.post(
            "/api/v1/bookings", json=_payload(acme["id"], future_date, "09:00", "09:30")
        )

        assert response.status_code in (401, 403)

    async def test_invalid_body(self, client, acme, acme_client, future_date):
        response = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "10:00", "09:00"),
            headers=auth_headers_for(acme_client),
        )

        assert response.status_code == 422

    async def test_available_slots(self, client, acme, acme_client, future_date):
        headers = auth_headers_for(acme_client)
        await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "08:00", "08:30"),
            headers=headers,
        )

        response = await client.get(
            "/api/v1/bookings/available-slots",
            params={
                "appointment_date": future_date.isoformat(),
                "provider_id": str(acme["id"]),
                "duration_minutes": 30,
                "working_hours_start": "08:00",
                "working_hours_end": "09:00",
            },
            headers=headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["available_slots"] == ["08:30"]
        assert body["count"] == 1

    async def test_available_slots_bad_duration(self, client, acme_client, future_date):
        response = await client.get(
            "/api/v1/bookings/available-slots",
            params={"appointment_date": future_date.isoformat(), "duration_minutes": 0},
            headers=auth_headers_for(acme_client),
        )

        assert response.status_code == 422

    async def test_available_slots_foreign_provider(
        self, client, acme, other_tenant_client, future_date
    ):
        response = await client.get(
            "/api/v1/bookings/available-slots",
            params={"appointment_date": future_date.isoformat(), "provider_id": str(acme["id"])},
            headers=auth_headers_for(other_tenant_client),
        )

        assert response.status_code == 422

    async def test_create_outside_tenant_or_role(
        self, client, acme, other_tenant_client, future_date
    ):
        foreign = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:00", "09:30"),
            headers=auth_headers_for(other_tenant_client),
        )
        by_tenant_admin = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:00", "09:30"),
            headers=auth_headers_for(acme),
        )

        assert foreign.status_code == 422
        assert foreign.json()["message"] == "Provider does not belong to this tenant"
        assert by_tenant_admin.status_code == 403

    async def test_overlap_caught_by_storage(self, client, acme, acme_client, future_date):
        def unchecked_service(db: AsyncSession = Depends(get_db)) -> BookingService:
            return BookingService(db, slots=AlwaysFree())

        app.dependency_overrides[get_booking_service] = unchecked_service
        headers = auth_headers_for(acme_client)

        created = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:00", "09:30"),
            headers=headers,
        )
        conflict = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:15", "09:45"),
            headers=headers,
        )
        adjacent = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:30", "10:00"),
            headers=headers,
        )

        assert created.status_code == 201
        assert conflict.status_code == 409
        assert conflict.json()["message"] == "This time slot is not available"
        assert adjacent.status_code == 201

    async def test_status_and_delete(self, client, acme, acme_client, future_date):
        headers = auth_headers_for(acme_client)
        created = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:00", "09:30"),
            headers=headers,
        )
        booking_id = created.json()["id"]

        invalid = await client.patch(
            f"/api/v1/bookings/{booking_id}/status",
            json={"status": "completed"},
            headers=headers,
        )
        cancelled = await client.patch(
            f"/api/v1/bookings/{booking_id}/status",
            json={"status": "cancelled", "reason": "Changed plans"},
            headers=headers,
        )
        deleted = await client.delete(f"/api/v1/bookings/{booking_id}", headers=headers)
        missing = await client.get(f"/api/v1/bookings/{booking_id}", headers=headers)

        assert invalid.status_code == 422
        assert cancelled.status_code == 200
        assert cancelled.json()["cancelled_by"] == str(acme_client["id"])
        assert deleted.status_code == 204
        assert missing.status_code == 404

    async def test_reschedule_endpoint(self, client, acme, acme_client, future_date):
        headers = auth_headers_for(acme_client)
        first = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:00", "10:00"),
            headers=headers,
        )
        second = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "10:00", "11:00"),
            headers=headers,
        )

        conflict = await client.put(
            f"/api/v1/bookings/{second.json()['id']}",
            json={"start_time": "09:30"},
            headers=headers,
        )
        moved = await client.put(
            f"/api/v1/bookings/{first.json()['id']}",
            json={"start_time": "08:30", "end_time": "09:30"},
            headers=headers,
        )

        assert conflict.status_code == 409
        assert moved.status_code == 200
        assert moved.json()["start_time"] == "08:30:00"

    async def test_foreign_booking_forbidden(
        self, client, acme, acme_client, other_tenant_client, future_date
    ):
        created = await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:00", "09:30"),
            headers=auth_headers_for(acme_client),
        )

        response = await client.get(
            f"/api/v1/bookings/{created.json()['id']}",
            headers=auth_headers_for(other_tenant_client),
        )

        assert response.status_code == 403

    async def test_my_bookings(self, client, acme, acme_client, other_tenant_client, future_date):
        await client.post(
            "/api/v1/bookings",
            json=_payload(acme["id"], future_date, "09:00", "09:30"),
            headers=auth_headers_for(acme_client),
        )

        mine = await client.get("/api/v1/bookings/me", headers=auth_headers_for(acme_client))
        theirs = await client.get(
            "/api/v1/bookings/me", headers=auth_headers_for(other_tenant_client)
        )

        assert mine.json()["total"] == 1
        assert theirs.json()["total"] == 0
