"""
services/booking/service.py
Booking lifecycle operations: creation under a per-branch/date lock and the
staff/patient transitions. Routers call these and then fire notifications.

Each operation validates every guard before touching the row, then commits
once; a rejected request never leaves a half-updated booking behind.
"""

import logging
import random
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from config.redis_client import RedisCache
from config.settings import settings
from services.booking.availability import get_availability
from services.booking.state_machine import Actor, BookingEvent, next_status
from shared.models.models import (
    Booking,
    BookingStatus,
    Branch,
    Consultation,
    TERMINAL_STATUSES,
    User,
)
from shared.schemas.schemas import BookingCreateRequest
from shared.utils.exceptions import NotFound, SlotUnavailable, ValidationFailed
from shared.utils.schedule import parse_slot_label

logger = logging.getLogger(__name__)

LOCK_ATTEMPTS = 5
REFERENCE_ATTEMPTS = 5

UPCOMING_STATUSES = (
    BookingStatus.AWAITING_CONFIRMATION,
    BookingStatus.CONFIRMED,
    BookingStatus.RESCHEDULED,
    BookingStatus.IN_PROGRESS,
)


class ReferenceCollision(Exception):
    pass


class SlotLockBusy(Exception):
    pass


# ── Clock helpers ─────────────────────────────────────────────

def clinic_now() -> datetime:
    return datetime.now(settings.clinic_tz)


def clinic_today() -> date:
    return clinic_now().date()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def session_duration_minutes(check_in: datetime, check_out: datetime) -> int:
    """Whole minutes between check-in and check-out, rounded to nearest."""
    seconds = (_as_utc(check_out) - _as_utc(check_in)).total_seconds()
    return round(seconds / 60)


# ── Reference numbers ─────────────────────────────────────────

def make_reference_number(on: date) -> str:
    """ZEN + YYYYMMDD + 4 random digits, e.g. ZEN202510070042."""
    return f"{settings.BOOKING_REFERENCE_PREFIX}{on:%Y%m%d}{random.randint(0, 9999):04d}"


@retry(
    stop=stop_after_attempt(REFERENCE_ATTEMPTS),
    retry=retry_if_exception_type(ReferenceCollision),
    reraise=True,
)
async def generate_reference_number(db: AsyncSession) -> str:
    candidate = make_reference_number(clinic_today())
    exists = await db.scalar(select(Booking.id).where(Booking.reference_number == candidate))
    if exists:
        logger.info(f"Reference {candidate} already taken, regenerating")
        raise ReferenceCollision(candidate)
    return candidate


# ── Locking ───────────────────────────────────────────────────

@asynccontextmanager
async def branch_day_lock(cache: RedisCache, branch_id: uuid.UUID, on: date, slots: List[str]):
    """
    Serialise slot-reserving writes for one branch/date.
    Raises SlotUnavailable if the lock is still held after a few short waits.
    """
    owner = str(uuid.uuid4())
    key_branch, key_date = str(branch_id), on.isoformat()
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(LOCK_ATTEMPTS),
            wait=wait_random(min=0.05, max=0.3),
            retry=retry_if_exception_type(SlotLockBusy),
            reraise=True,
        ):
            with attempt:
                if not await cache.lock_slot(key_branch, key_date, owner):
                    raise SlotLockBusy()
    except SlotLockBusy:
        logger.warning(f"Slot lock busy for branch {key_branch} on {key_date}")
        raise SlotUnavailable(
            slots, "Another booking for this branch and date is in progress. Please retry."
        )

    try:
        yield
    finally:
        await cache.release_slot(key_branch, key_date, owner)


# ── Lookups ───────────────────────────────────────────────────

async def get_booking(db: AsyncSession, booking_id: uuid.UUID, user: Optional[User] = None) -> Booking:
    """Load a booking; when `user` is given it must own it."""
    booking = await db.get(Booking, booking_id)
    if not booking or (user is not None and booking.user_id != user.id):
        raise NotFound("Booking not found")
    return booking


async def get_booking_by_reference(db: AsyncSession, reference: str, user: User) -> Booking:
    booking = await db.scalar(
        select(Booking).where(
            Booking.reference_number == reference.strip().upper(),
            Booking.user_id == user.id,
        )
    )
    if not booking:
        raise NotFound("Booking not found")
    return booking


async def get_active_branch_by_name(db: AsyncSession, name: str) -> Branch:
    branch = await db.scalar(
        select(Branch).where(Branch.name == name.strip(), Branch.is_active.is_(True))
    )
    if not branch:
        raise NotFound("Branch not found or inactive")
    return branch


async def consultation_name(db: AsyncSession, consultation_id: uuid.UUID) -> Optional[str]:
    consultation = await db.get(Consultation, consultation_id)
    return consultation.name if consultation else None


def _check_bookable_slots(branch: Branch, on: date, slots: List[str]) -> None:
    generated = branch.generate_slots(on)
    if not generated:
        raise ValidationFailed(f"{branch.name} is closed on {on:%A, %d %b %Y}")
    invalid = [slot for slot in slots if slot not in generated]
    if invalid:
        raise ValidationFailed(
            f"Not a bookable time at {branch.name}: {', '.join(invalid)}",
            invalid_slots=invalid,
        )


def _check_not_started(on: date, slots: List[str]) -> None:
    """Today's slots must still be ahead of the clinic clock."""
    now = clinic_now()
    if on != now.date():
        return
    started = [slot for slot in slots if parse_slot_label(slot) < now.time()]
    if started:
        raise ValidationFailed(
            f"Already started today: {', '.join(started)}",
            invalid_slots=started,
        )


# ── Create ────────────────────────────────────────────────────

async def create_booking(
    db: AsyncSession,
    cache: RedisCache,
    user: User,
    payload: BookingCreateRequest,
) -> Booking:
    """
    Validate, then reserve under the branch/date lock:
    re-check availability, assign a reference, insert and commit while
    still holding the lock.
    """
    if payload.preferred_date < clinic_today():
        raise ValidationFailed("Preferred date cannot be in the past")

    consultation = await db.get(Consultation, payload.consultation_id)
    if not consultation or not consultation.is_active:
        raise NotFound("Consultation not found")

    branch = await get_active_branch_by_name(db, payload.preferred_location)
    _check_bookable_slots(branch, payload.preferred_date, payload.preferred_time_slots)
    _check_not_started(payload.preferred_date, payload.preferred_time_slots)

    async with branch_day_lock(cache, branch.id, payload.preferred_date, payload.preferred_time_slots):
        availability = await get_availability(db, branch, payload.preferred_date)
        taken = availability.unavailable(payload.preferred_time_slots)
        if taken:
            logger.info(f"Slots {taken} at {branch.name} on {payload.preferred_date} already held")
            raise SlotUnavailable(taken)

        booking = Booking(
            reference_number=await generate_reference_number(db),
            user_id=user.id,
            consultation_id=consultation.id,
            branch_id=branch.id,
            full_name=payload.full_name,
            mobile_number=payload.mobile_number,
            email=payload.email,
            preferred_location=branch.name,
            preferred_date=payload.preferred_date,
            preferred_time_slots=list(payload.preferred_time_slots),
            status=BookingStatus.AWAITING_CONFIRMATION,
            notes=payload.notes,
        )
        db.add(booking)
        await db.commit()

    await db.refresh(booking)
    logger.info(
        f"Booking {booking.reference_number} created for {branch.name} "
        f"{booking.preferred_date} {booking.preferred_time_slots}"
    )
    return booking


# ── Transitions ───────────────────────────────────────────────

async def _commit(db: AsyncSession, booking: Booking, event: BookingEvent, previous: BookingStatus) -> Booking:
    await db.commit()
    await db.refresh(booking)
    logger.info(
        f"Booking {booking.reference_number}: {event.value} "
        f"{BookingStatus(previous).value} -> {booking.status.value}"
    )
    return booking


async def confirm_booking(
    db: AsyncSession,
    booking: Booking,
    confirmed_date: date,
    confirmed_time: str,
    admin_notes: Optional[str] = None,
) -> Booking:
    previous = booking.status
    booking.status = next_status(previous, BookingEvent.CONFIRM, Actor.STAFF)
    booking.confirmed_date = confirmed_date
    booking.confirmed_time = confirmed_time
    if admin_notes:
        booking.admin_notes = admin_notes
    return await _commit(db, booking, BookingEvent.CONFIRM, previous)


async def cancel_booking(
    db: AsyncSession,
    booking: Booking,
    actor: Actor,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Booking:
    previous = booking.status
    booking.status = next_status(previous, BookingEvent.CANCEL, actor)
    booking.cancellation_reason = reason or (
        "Cancelled by user" if actor == Actor.USER else "Cancelled by clinic"
    )
    booking.cancelled_at = now or utcnow()
    booking.cancelled_by = actor.value
    return await _commit(db, booking, BookingEvent.CANCEL, previous)


async def reschedule_booking(
    db: AsyncSession,
    cache: RedisCache,
    booking: Booking,
    actor: Actor,
    new_date: date,
    new_slots: List[str],
    now: Optional[datetime] = None,
) -> Booking:
    """
    Move a booking to new slots. The old slot is recorded in rescheduled_from;
    preferred and confirmed date/time are both overwritten.
    """
    previous = booking.status
    target = next_status(previous, BookingEvent.RESCHEDULE, actor)

    if new_date < clinic_today():
        raise ValidationFailed("New date cannot be in the past")

    branch = await db.get(Branch, booking.branch_id)
    if not branch:
        raise NotFound("Branch not found")
    _check_bookable_slots(branch, new_date, new_slots)
    _check_not_started(new_date, new_slots)

    async with branch_day_lock(cache, branch.id, new_date, new_slots):
        availability = await get_availability(db, branch, new_date, exclude_booking_id=booking.id)
        taken = availability.unavailable(new_slots)
        if taken:
            raise SlotUnavailable(taken)

        booking.rescheduled_from = {
            "date": booking.appointment_date.isoformat(),
            "time": booking.appointment_time,
        }
        booking.preferred_date = new_date
        booking.preferred_time_slots = list(new_slots)
        booking.confirmed_date = new_date
        booking.confirmed_time = new_slots[0]
        booking.rescheduled_at = now or utcnow()
        booking.status = target
        return await _commit(db, booking, BookingEvent.RESCHEDULE, previous)


async def check_in_booking(
    db: AsyncSession, booking: Booking, actor: Actor, now: Optional[datetime] = None
) -> Booking:
    previous = booking.status
    booking.status = next_status(previous, BookingEvent.CHECK_IN, actor)
    booking.check_in_time = now or utcnow()
    return await _commit(db, booking, BookingEvent.CHECK_IN, previous)


async def check_out_booking(
    db: AsyncSession, booking: Booking, actor: Actor, now: Optional[datetime] = None
) -> Booking:
    previous = booking.status
    target = next_status(previous, BookingEvent.CHECK_OUT, actor)
    now = now or utcnow()
    if booking.check_in_time is None:
        raise ValidationFailed("Booking has no check-in time")
    if _as_utc(now) <= _as_utc(booking.check_in_time):
        raise ValidationFailed("Check-out must be after check-in")

    booking.status = target
    booking.check_out_time = now
    booking.session_duration = session_duration_minutes(booking.check_in_time, now)
    return await _commit(db, booking, BookingEvent.CHECK_OUT, previous)


async def mark_no_show(
    db: AsyncSession, booking: Booking, admin_notes: Optional[str] = None
) -> Booking:
    previous = booking.status
    booking.status = next_status(previous, BookingEvent.NO_SHOW, Actor.STAFF)
    if admin_notes:
        booking.admin_notes = admin_notes
    return await _commit(db, booking, BookingEvent.NO_SHOW, previous)


async def rate_booking(
    db: AsyncSession,
    booking: Booking,
    rating: int,
    feedback: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Booking:
    previous = booking.status
    booking.status = next_status(previous, BookingEvent.RATE, Actor.USER)
    booking.rating = rating
    booking.feedback = feedback
    booking.rated_at = now or utcnow()
    return await _commit(db, booking, BookingEvent.RATE, previous)


# ── Listing ───────────────────────────────────────────────────

async def list_user_bookings(
    db: AsyncSession,
    user: User,
    status: Optional[BookingStatus] = None,
    upcoming: Optional[bool] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[List[Booking], int]:
    query = select(Booking).where(Booking.user_id == user.id)
    if status:
        query = query.where(Booking.status == status)
    if upcoming is True:
        query = query.where(Booking.status.in_(UPCOMING_STATUSES))
    elif upcoming is False:
        query = query.where(Booking.status.in_(TERMINAL_STATUSES))
    return await _paginate(db, query, page, page_size)


async def list_all_bookings(
    db: AsyncSession,
    status: Optional[BookingStatus] = None,
    location: Optional[str] = None,
    on: Optional[date] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[List[Booking], int]:
    query = select(Booking)
    if status:
        query = query.where(Booking.status == status)
    if location:
        query = query.where(Booking.preferred_location == location)
    if on:
        query = query.where(Booking.preferred_date == on)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(
            Booking.full_name.ilike(pattern),
            Booking.email.ilike(pattern),
            Booking.mobile_number.ilike(pattern),
            Booking.reference_number.ilike(pattern),
        ))
    return await _paginate(db, query, page, page_size)


async def _paginate(db: AsyncSession, query, page: int, page_size: int) -> Tuple[List[Booking], int]:
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Booking.created_at.desc(), Booking.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total or 0
