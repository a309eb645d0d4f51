"""
tests/test_bookings.py
Booking API: creation, slot conflicts, lifecycle transitions and listings.
Request → confirm → check-in → check-out, with reschedule, cancel and no-show.
"""

import re
import uuid
from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.booking import service
from services.booking.service import utcnow
from services.booking.state_machine import Actor
from shared.models.models import Booking, BookingStatus, Branch, Consultation, NotificationType, User
from shared.utils.exceptions import ValidationFailed
from shared.utils.schedule import weekday_name
from tests.conftest import auth_headers, make_booking, tomorrow


def booking_payload(consultation: Consultation, on=None, slots=None, location="Jubilee Hills") -> dict:
    return {
        "consultation_id": str(consultation.id),
        "full_name": "Priya Sharma",
        "mobile_number": "9876543210",
        "email": "priya.sharma@gmail.com",
        "preferred_location": location,
        "preferred_date": (on or tomorrow()).isoformat(),
        "preferred_time_slots": slots or ["10:00 AM"],
    }


# ── Creation ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_success(
    client: AsyncClient, user: User, consultation: Consultation, branch: Branch, notifier
):
    response = await client.post(
        "/bookings", headers=auth_headers(user), json=booking_payload(consultation)
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == BookingStatus.AWAITING_CONFIRMATION.value
    assert re.fullmatch(r"ZEN\d{12}", data["reference_number"])
    assert data["reference_number"][3:11] == service.clinic_today().strftime("%Y%m%d")
    assert data["preferred_time_slots"] == ["10:00 AM"]
    assert data["consultation_name"] == "Hydrafacial"
    assert data["branch_id"] == str(branch.id)
    assert data["confirmed_date"] is None

    assert notifier.types() == [NotificationType.BOOKING_CREATED]
    notice = notifier.events[0][1]
    assert notice.reference_number == data["reference_number"]
    assert "Jubilee Hills" in notice.branch_address


@pytest.mark.asyncio
async def test_create_booking_normalises_slot_labels(
    client: AsyncClient, user: User, consultation: Consultation, branch: Branch
):
    payload = booking_payload(consultation, slots=["02:00 pm"])
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 201
    assert response.json()["preferred_time_slots"] == ["2:00 PM"]


@pytest.mark.asyncio
async def test_create_booking_requires_auth(client: AsyncClient, consultation: Consultation, branch: Branch):
    response = await client.post("/bookings", json=booking_payload(consultation))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_booking_past_date_rejected(
    client: AsyncClient, user: User, consultation: Consultation, branch: Branch
):
    payload = booking_payload(consultation, on=service.clinic_today() - timedelta(days=1))
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_FAILED"


@pytest.mark.asyncio
async def test_create_booking_slot_already_started_today(
    client: AsyncClient, user: User, consultation: Consultation, branch: Branch, monkeypatch
):
    today = service.clinic_today()
    monkeypatch.setattr(
        service, "clinic_now",
        lambda: datetime(today.year, today.month, today.day, 14, 5, tzinfo=settings.clinic_tz),
    )

    started = await client.post(
        "/bookings", headers=auth_headers(user), json=booking_payload(consultation, on=today, slots=["2:00 PM"])
    )
    assert started.status_code == 400
    assert started.json()["invalid_slots"] == ["2:00 PM"]

    later = await client.post(
        "/bookings", headers=auth_headers(user), json=booking_payload(consultation, on=today, slots=["2:30 PM"])
    )
    assert later.status_code == 201


@pytest.mark.asyncio
async def test_create_booking_malformed_slot_label(
    client: AsyncClient, user: User, consultation: Consultation, branch: Branch
):
    payload = booking_payload(consultation, slots=["10am"])
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_booking_bad_mobile_number(
    client: AsyncClient, user: User, consultation: Consultation, branch: Branch
):
    payload = booking_payload(consultation)
    payload["mobile_number"] = "12345"
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_booking_slot_outside_operating_hours(
    client: AsyncClient, user: User, consultation: Consultation, branch: Branch
):
    payload = booking_payload(consultation, slots=["9:00 AM"])
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 400
    assert response.json()["invalid_slots"] == ["9:00 AM"]


@pytest.mark.asyncio
async def test_create_booking_on_closed_day(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch
):
    on = tomorrow()
    hours = dict(branch.operating_hours)
    hours[weekday_name(on)] = {"is_open": False, "open_time": "10:00", "close_time": "19:00"}
    branch.operating_hours = hours
    await db.commit()

    response = await client.post(
        "/bookings", headers=auth_headers(user), json=booking_payload(consultation, on=on)
    )
    assert response.status_code == 400
    assert "closed" in response.json()["detail"]


@pytest.mark.asyncio
async def test_create_booking_unknown_location(
    client: AsyncClient, user: User, consultation: Consultation, branch: Branch
):
    payload = booking_payload(consultation, location="Banjara Hills")
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_booking_inactive_branch(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch
):
    branch.is_active = False
    await db.commit()

    response = await client.post(
        "/bookings", headers=auth_headers(user), json=booking_payload(consultation)
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_booking_unknown_consultation(client: AsyncClient, user: User, branch: Branch):
    payload = {
        "consultation_id": str(uuid.uuid4()),
        "full_name": "Priya Sharma",
        "mobile_number": "9876543210",
        "email": "priya.sharma@gmail.com",
        "preferred_location": "Jubilee Hills",
        "preferred_date": tomorrow().isoformat(),
        "preferred_time_slots": ["10:00 AM"],
    }
    response = await client.post("/bookings", headers=auth_headers(user), json=payload)
    assert response.status_code == 404


# ── Slot conflicts & locking ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_taken_slot_rejected(
    client: AsyncClient,
    user: User,
    other_user: User,
    consultation: Consultation,
    branch: Branch,
):
    first = await client.post(
        "/bookings", headers=auth_headers(user), json=booking_payload(consultation)
    )
    assert first.status_code == 201

    second = await client.post(
        "/bookings",
        headers=auth_headers(other_user),
        json=booking_payload(consultation, slots=["10:00 AM", "10:30 AM"]),
    )
    assert second.status_code == 409
    body = second.json()
    assert body["code"] == "SLOT_UNAVAILABLE"
    assert body["slots"] == ["10:00 AM"]


@pytest.mark.asyncio
async def test_cancelled_booking_releases_slot(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    other_user: User,
    consultation: Consultation,
    branch: Branch,
):
    await make_booking(db, user, consultation, branch, status=BookingStatus.CANCELLED)

    response = await client.post(
        "/bookings", headers=auth_headers(other_user), json=booking_payload(consultation)
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_lock_released_after_create(
    client: AsyncClient, user: User, consultation: Consultation, branch: Branch, fake_redis
):
    response = await client.post(
        "/bookings", headers=auth_headers(user), json=booking_payload(consultation)
    )
    assert response.status_code == 201
    assert not [key for key in fake_redis.store if key.startswith("slot_lock:")]


@pytest.mark.asyncio
async def test_create_while_branch_day_locked(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    consultation: Consultation,
    branch: Branch,
    fake_redis,
    monkeypatch,
):
    monkeypatch.setattr(service, "LOCK_ATTEMPTS", 1)
    lock_key = f"slot_lock:{branch.id}:{tomorrow().isoformat()}"
    fake_redis.store[lock_key] = "another-request"

    response = await client.post(
        "/bookings", headers=auth_headers(user), json=booking_payload(consultation)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "SLOT_UNAVAILABLE"
    # Someone else's lock is left alone
    assert fake_redis.store[lock_key] == "another-request"
    assert await db.scalar(select(func.count(Booking.id))) == 0


@pytest.mark.asyncio
async def test_reference_number_regenerated_on_collision(
    db: AsyncSession, user: User, consultation: Consultation, branch: Branch, monkeypatch
):
    await make_booking(db, user, consultation, branch, reference_number="ZEN202510070001")
    candidates = iter(["ZEN202510070001", "ZEN202510070002"])
    monkeypatch.setattr(service, "make_reference_number", lambda on: next(candidates))

    assert await service.generate_reference_number(db) == "ZEN202510070002"


# ── Lookups ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_booking_owner_only(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    other_user: User,
    consultation: Consultation,
    branch: Branch,
):
    booking = await make_booking(db, user, consultation, branch)

    own = await client.get(f"/bookings/{booking.id}", headers=auth_headers(user))
    assert own.status_code == 200
    assert own.json()["consultation_name"] == "Hydrafacial"

    other = await client.get(f"/bookings/{booking.id}", headers=auth_headers(other_user))
    assert other.status_code == 404


@pytest.mark.asyncio
async def test_get_booking_by_reference_case_insensitive(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch
):
    booking = await make_booking(db, user, consultation, branch, reference_number="ZEN202510070042")

    response = await client.get("/bookings/reference/zen202510070042", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["id"] == str(booking.id)


@pytest.mark.asyncio
async def test_available_slots_endpoint(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch
):
    await make_booking(db, user, consultation, branch, slots=["10:00 AM", "10:30 AM"])
    await make_booking(
        db, user, consultation, branch, slots=["11:00 AM"], status=BookingStatus.CANCELLED
    )

    response = await client.get(
        "/bookings/available-slots",
        params={"date": tomorrow().isoformat(), "location": "Jubilee Hills"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["location"] == "Jubilee Hills"
    assert data["booked_slots"] == ["10:00 AM", "10:30 AM"]
    assert "11:00 AM" in data["available_slots"]
    assert len(data["available_slots"]) == 16


# ── Staff transitions ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_staff_confirm_booking(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    staff_user: User,
    consultation: Consultation,
    branch: Branch,
    notifier,
):
    booking = await make_booking(db, user, consultation, branch)

    response = await client.put(
        f"/bookings/admin/{booking.id}/confirm",
        headers=auth_headers(staff_user),
        json={"confirmed_date": tomorrow().isoformat(), "confirmed_time": "10:30 am"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == BookingStatus.CONFIRMED.value
    assert data["confirmed_date"] == tomorrow().isoformat()
    assert data["confirmed_time"] == "10:30 AM"
    assert notifier.types() == [NotificationType.BOOKING_CONFIRMED]


@pytest.mark.asyncio
async def test_patient_cannot_use_staff_endpoints(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch
):
    booking = await make_booking(db, user, consultation, branch)

    response = await client.put(
        f"/bookings/admin/{booking.id}/confirm",
        headers=auth_headers(user),
        json={"confirmed_date": tomorrow().isoformat(), "confirmed_time": "10:30 AM"},
    )
    assert response.status_code == 403

    listing = await client.get("/bookings/admin/all", headers=auth_headers(user))
    assert listing.status_code == 403


@pytest.mark.asyncio
async def test_confirm_completed_booking_conflict(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    staff_user: User,
    consultation: Consultation,
    branch: Branch,
    notifier,
):
    booking = await make_booking(db, user, consultation, branch, status=BookingStatus.COMPLETED)

    response = await client.put(
        f"/bookings/admin/{booking.id}/confirm",
        headers=auth_headers(staff_user),
        json={"confirmed_date": tomorrow().isoformat(), "confirmed_time": "10:30 AM"},
    )
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "INVALID_TRANSITION"
    assert body["current_status"] == "Completed"
    assert body["allowed_statuses"] == ["Awaiting Confirmation", "Rescheduled"]
    assert notifier.events == []


@pytest.mark.asyncio
async def test_staff_cannot_cancel_unconfirmed_request(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    staff_user: User,
    consultation: Consultation,
    branch: Branch,
):
    booking = await make_booking(db, user, consultation, branch)

    response = await client.put(
        f"/bookings/admin/{booking.id}/cancel", headers=auth_headers(staff_user)
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_staff_cancel_confirmed_booking(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    staff_user: User,
    consultation: Consultation,
    branch: Branch,
):
    booking = await make_booking(db, user, consultation, branch, status=BookingStatus.CONFIRMED)

    response = await client.put(
        f"/bookings/admin/{booking.id}/cancel",
        headers=auth_headers(staff_user),
        json={"reason": "Doctor unavailable"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == BookingStatus.CANCELLED.value
    assert data["cancellation_reason"] == "Doctor unavailable"
    assert data["cancelled_by"] == "STAFF"


@pytest.mark.asyncio
async def test_staff_mark_no_show(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    staff_user: User,
    consultation: Consultation,
    branch: Branch,
    notifier,
):
    booking = await make_booking(db, user, consultation, branch, status=BookingStatus.CONFIRMED)

    response = await client.put(
        f"/bookings/admin/{booking.id}/no-show", headers=auth_headers(staff_user)
    )
    assert response.status_code == 200
    assert response.json()["status"] == BookingStatus.NO_SHOW.value
    assert notifier.types() == [NotificationType.BOOKING_NO_SHOW]


# ── Patient transitions ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_patient_cancel_awaiting_booking(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch, notifier
):
    booking = await make_booking(db, user, consultation, branch)

    response = await client.put(f"/bookings/{booking.id}/cancel", headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == BookingStatus.CANCELLED.value
    assert data["cancellation_reason"] == "Cancelled by user"
    assert data["cancelled_by"] == "USER"
    assert data["cancelled_at"] is not None
    assert notifier.types() == [NotificationType.BOOKING_CANCELLED]

    again = await client.put(f"/bookings/{booking.id}/cancel", headers=auth_headers(user))
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_check_in_requires_confirmation(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch
):
    booking = await make_booking(db, user, consultation, branch)

    response = await client.put(f"/bookings/{booking.id}/checkin", headers=auth_headers(user))
    assert response.status_code == 409
    assert response.json()["allowed_statuses"] == ["Confirmed", "Rescheduled"]


@pytest.mark.asyncio
async def test_check_out_requires_check_in(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch
):
    booking = await make_booking(db, user, consultation, branch, status=BookingStatus.CONFIRMED)

    response = await client.put(f"/bookings/{booking.id}/checkout", headers=auth_headers(user))
    assert response.status_code == 409
    assert response.json()["allowed_statuses"] == ["In Progress"]


@pytest.mark.asyncio
async def test_check_out_before_check_in_time_rejected(
    db: AsyncSession, user: User, consultation: Consultation, branch: Branch
):
    checked_in = utcnow()
    booking = await make_booking(
        db, user, consultation, branch,
        status=BookingStatus.IN_PROGRESS,
        check_in_time=checked_in,
    )

    with pytest.raises(ValidationFailed):
        await service.check_out_booking(
            db, booking, Actor.STAFF, now=checked_in - timedelta(minutes=1)
        )
    assert booking.status == BookingStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_patient_reschedule_confirmed_booking(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch, notifier
):
    booking = await make_booking(
        db, user, consultation, branch,
        status=BookingStatus.CONFIRMED,
        confirmed_date=tomorrow(),
        confirmed_time="10:30 AM",
        slots=["10:30 AM"],
    )
    new_date = tomorrow() + timedelta(days=1)

    response = await client.put(
        f"/bookings/{booking.id}/reschedule",
        headers=auth_headers(user),
        json={"new_date": new_date.isoformat(), "new_time_slots": ["11:00 AM"]},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == BookingStatus.RESCHEDULED.value
    assert data["rescheduled_from"] == {"date": tomorrow().isoformat(), "time": "10:30 AM"}
    assert data["preferred_date"] == new_date.isoformat()
    assert data["preferred_time_slots"] == ["11:00 AM"]
    assert data["confirmed_date"] == new_date.isoformat()
    assert data["confirmed_time"] == "11:00 AM"
    assert data["rescheduled_at"] is not None
    assert notifier.types() == [NotificationType.BOOKING_RESCHEDULED]


@pytest.mark.asyncio
async def test_reschedule_into_taken_slot_leaves_booking_unchanged(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    other_user: User,
    consultation: Consultation,
    branch: Branch,
):
    await make_booking(db, other_user, consultation, branch, slots=["11:00 AM"])
    booking = await make_booking(
        db, user, consultation, branch, status=BookingStatus.CONFIRMED, slots=["10:00 AM"]
    )

    response = await client.put(
        f"/bookings/{booking.id}/reschedule",
        headers=auth_headers(user),
        json={"new_date": tomorrow().isoformat(), "new_time_slots": ["11:00 AM"]},
    )
    assert response.status_code == 409
    assert response.json()["slots"] == ["11:00 AM"]

    await db.refresh(booking)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.preferred_time_slots == ["10:00 AM"]
    assert booking.rescheduled_from is None


@pytest.mark.asyncio
async def test_reschedule_into_own_slot_allowed(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch
):
    booking = await make_booking(
        db, user, consultation, branch, status=BookingStatus.CONFIRMED, slots=["10:00 AM"]
    )

    response = await client.put(
        f"/bookings/{booking.id}/reschedule",
        headers=auth_headers(user),
        json={"new_date": tomorrow().isoformat(), "new_time_slots": ["10:00 AM", "10:30 AM"]},
    )
    assert response.status_code == 200
    assert response.json()["confirmed_time"] == "10:00 AM"


@pytest.mark.asyncio
async def test_no_show_reschedule_is_patient_only(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    staff_user: User,
    consultation: Consultation,
    branch: Branch,
):
    booking = await make_booking(db, user, consultation, branch, status=BookingStatus.NO_SHOW)
    body = {"new_date": tomorrow().isoformat(), "new_time_slots": ["12:00 PM"]}

    staff = await client.put(
        f"/bookings/admin/{booking.id}/reschedule", headers=auth_headers(staff_user), json=body
    )
    assert staff.status_code == 409

    patient = await client.put(
        f"/bookings/{booking.id}/reschedule", headers=auth_headers(user), json=body
    )
    assert patient.status_code == 200
    assert patient.json()["status"] == BookingStatus.RESCHEDULED.value


@pytest.mark.asyncio
async def test_rate_completed_booking(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch
):
    booking = await make_booking(db, user, consultation, branch, status=BookingStatus.COMPLETED)

    response = await client.put(
        f"/bookings/{booking.id}/rate",
        headers=auth_headers(user),
        json={"rating": 5, "feedback": "Very professional staff"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == BookingStatus.COMPLETED.value
    assert data["rating"] == 5
    assert data["feedback"] == "Very professional staff"


@pytest.mark.asyncio
async def test_rate_validation(
    client: AsyncClient, db: AsyncSession, user: User, consultation: Consultation, branch: Branch
):
    confirmed = await make_booking(db, user, consultation, branch, status=BookingStatus.CONFIRMED)
    response = await client.put(
        f"/bookings/{confirmed.id}/rate", headers=auth_headers(user), json={"rating": 4}
    )
    assert response.status_code == 409

    completed = await make_booking(
        db, user, consultation, branch, slots=["1:00 PM"], status=BookingStatus.COMPLETED
    )
    response = await client.put(
        f"/bookings/{completed.id}/rate", headers=auth_headers(user), json={"rating": 6}
    )
    assert response.status_code == 422


# ── End to end ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_full_visit_lifecycle(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    staff_user: User,
    consultation: Consultation,
    branch: Branch,
    notifier,
):
    created = await client.post(
        "/bookings", headers=auth_headers(user), json=booking_payload(consultation)
    )
    assert created.status_code == 201
    booking_id = created.json()["id"]

    confirmed = await client.put(
        f"/bookings/admin/{booking_id}/confirm",
        headers=auth_headers(staff_user),
        json={"confirmed_date": tomorrow().isoformat(), "confirmed_time": "10:30 AM"},
    )
    assert confirmed.json()["status"] == BookingStatus.CONFIRMED.value

    checked_in = await client.put(
        f"/bookings/admin/{booking_id}/checkin", headers=auth_headers(staff_user)
    )
    assert checked_in.status_code == 200
    assert checked_in.json()["status"] == BookingStatus.IN_PROGRESS.value
    assert checked_in.json()["check_in_time"] is not None

    booking = await db.get(Booking, uuid.UUID(booking_id))
    booking.check_in_time = utcnow() - timedelta(minutes=45)
    await db.commit()

    checked_out = await client.put(
        f"/bookings/admin/{booking_id}/checkout", headers=auth_headers(staff_user)
    )
    assert checked_out.status_code == 200
    data = checked_out.json()
    assert data["status"] == BookingStatus.COMPLETED.value
    assert data["session_duration"] == 45

    assert notifier.types() == [
        NotificationType.BOOKING_CREATED,
        NotificationType.BOOKING_CONFIRMED,
        NotificationType.BOOKING_CHECKED_IN,
        NotificationType.BOOKING_COMPLETED,
    ]


# ── Listings ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_my_bookings_filters(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    other_user: User,
    consultation: Consultation,
    branch: Branch,
):
    await make_booking(db, user, consultation, branch, slots=["10:00 AM"])
    await make_booking(db, user, consultation, branch, slots=["11:00 AM"], status=BookingStatus.CONFIRMED)
    await make_booking(db, user, consultation, branch, slots=["12:00 PM"], status=BookingStatus.COMPLETED)
    await make_booking(db, other_user, consultation, branch, slots=["1:00 PM"])

    everything = await client.get("/bookings", headers=auth_headers(user))
    assert everything.status_code == 200
    assert everything.json()["total"] == 3

    confirmed = await client.get(
        "/bookings", headers=auth_headers(user), params={"status": "Confirmed"}
    )
    assert [b["status"] for b in confirmed.json()["items"]] == ["Confirmed"]

    upcoming = await client.get("/bookings", headers=auth_headers(user), params={"upcoming": "true"})
    assert upcoming.json()["total"] == 2

    past = await client.get("/bookings", headers=auth_headers(user), params={"upcoming": "false"})
    assert [b["status"] for b in past.json()["items"]] == ["Completed"]

    all_alias = await client.get("/bookings", headers=auth_headers(user), params={"status": "all"})
    assert all_alias.json()["total"] == 3


@pytest.mark.asyncio
async def test_list_unknown_status_rejected(client: AsyncClient, user: User):
    response = await client.get("/bookings", headers=auth_headers(user), params={"status": "Pending"})
    assert response.status_code == 400
    assert "Awaiting Confirmation" in response.json()["allowed_statuses"]


@pytest.mark.asyncio
async def test_admin_list_filters_and_search(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    other_user: User,
    staff_user: User,
    consultation: Consultation,
    branch: Branch,
):
    await make_booking(db, user, consultation, branch, slots=["10:00 AM"])
    await make_booking(db, other_user, consultation, branch, slots=["11:00 AM"], status=BookingStatus.CONFIRMED)

    everything = await client.get(
        "/bookings/admin/all", headers=auth_headers(staff_user), params={"location": "all"}
    )
    assert everything.status_code == 200
    assert everything.json()["total"] == 2
    assert everything.json()["items"][0]["consultation_name"] == "Hydrafacial"

    by_name = await client.get(
        "/bookings/admin/all", headers=auth_headers(staff_user), params={"search": "rahul"}
    )
    assert [b["full_name"] for b in by_name.json()["items"]] == ["Rahul Verma"]

    by_status = await client.get(
        "/bookings/admin/all",
        headers=auth_headers(staff_user),
        params={"status": "Awaiting Confirmation", "date": tomorrow().isoformat()},
    )
    assert by_status.json()["total"] == 1

    elsewhere = await client.get(
        "/bookings/admin/all", headers=auth_headers(staff_user), params={"location": "Kokapet"}
    )
    assert elsewhere.json()["total"] == 0


@pytest.mark.asyncio
async def test_admin_get_any_booking(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    staff_user: User,
    consultation: Consultation,
    branch: Branch,
):
    booking = await make_booking(db, user, consultation, branch)

    response = await client.get(f"/bookings/admin/{booking.id}", headers=auth_headers(staff_user))
    assert response.status_code == 200
    assert response.json()["reference_number"] == booking.reference_number

    missing = await client.get(f"/bookings/admin/{uuid.uuid4()}", headers=auth_headers(staff_user))
    assert missing.status_code == 404
