"""
services/booking/router.py
Booking endpoints for patients and front-desk staff.

Status flow: Awaiting Confirmation → Confirmed → In Progress → Completed,
with Rescheduled, Cancelled and No Show branches (services/booking/state_machine.py).
Every successful transition is committed first, then notifications are
queued as a background task.
"""

import math
from datetime import date
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from services.booking import service
from services.booking.availability import get_availability
from services.booking.scheduler import sweep_expired_bookings
from services.booking.state_machine import Actor
from services.notification.dispatcher import BookingNotifier, get_notifier
from shared.middleware.auth import require_staff, require_user
from shared.models.models import Booking, BookingStatus, Branch, Consultation, NotificationType, User
from shared.schemas.schemas import (
    AvailableSlotsResponse,
    BookingCancelRequest,
    BookingConfirmRequest,
    BookingCreateRequest,
    BookingNoShowRequest,
    BookingNotice,
    BookingRateRequest,
    BookingRescheduleRequest,
    BookingResponse,
    CleanupResponse,
    PaginatedResponse,
)
from shared.utils.exceptions import ValidationFailed

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Helpers ───────────────────────────────────────────────────

def _parse_status(value: Optional[str]) -> Optional[BookingStatus]:
    if not value or value == "all":
        return None
    try:
        return BookingStatus(value)
    except ValueError:
        raise ValidationFailed(
            f"Unknown status '{value}'",
            allowed_statuses=[s.value for s in BookingStatus],
        )


async def _consultation_names(db: AsyncSession, bookings: List[Booking]) -> Dict[UUID, str]:
    ids = {b.consultation_id for b in bookings}
    if not ids:
        return {}
    result = await db.execute(
        select(Consultation.id, Consultation.name).where(Consultation.id.in_(ids))
    )
    return {row.id: row.name for row in result.all()}


async def _enrich_booking(db: AsyncSession, booking: Booking) -> BookingResponse:
    response = BookingResponse.model_validate(booking)
    response.consultation_name = await service.consultation_name(db, booking.consultation_id)
    return response


async def _paginated(db: AsyncSession, bookings: List[Booking], total: int, page: int, page_size: int):
    names = await _consultation_names(db, bookings)
    items = []
    for booking in bookings:
        item = BookingResponse.model_validate(booking)
        item.consultation_name = names.get(booking.consultation_id)
        items.append(item)
    return PaginatedResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total else 0,
    )


def _format_address(address: Optional[dict]) -> Optional[str]:
    if not address:
        return None
    parts = [address.get(k) for k in ("line1", "line2", "city")]
    return ", ".join(p for p in parts if p)


def _notify(
    background_tasks: BackgroundTasks,
    notifier: BookingNotifier,
    event: NotificationType,
    response: BookingResponse,
    branch_address: Optional[str] = None,
) -> None:
    notice = BookingNotice.model_validate(response.model_dump())
    notice.branch_address = branch_address
    background_tasks.add_task(notifier.dispatch, event, notice)


async def _respond(
    db: AsyncSession,
    booking: Booking,
    background_tasks: BackgroundTasks,
    notifier: BookingNotifier,
    event: Optional[NotificationType],
) -> BookingResponse:
    response = await _enrich_booking(db, booking)
    if event is not None:
        _notify(background_tasks, notifier, event, response)
    return response


# ── Public ────────────────────────────────────────────────────

@router.get("/available-slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    on: date = Query(..., alias="date", description="YYYY-MM-DD"),
    location: str = Query(..., min_length=1, description="Branch name"),
    db: AsyncSession = Depends(get_db),
):
    """Availability for a branch looked up by name (the value patients pick in the app)."""
    branch = await service.get_active_branch_by_name(db, location)
    availability = await get_availability(db, branch, on)
    return AvailableSlotsResponse(
        date=on,
        location=branch.name,
        available_slots=availability.available_slots,
        booked_slots=availability.booked_slots,
    )


# ── Staff ─────────────────────────────────────────────────────

@router.get("/admin/all", response_model=PaginatedResponse)
async def list_all_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    location: Optional[str] = Query(None),
    on: Optional[date] = Query(None, alias="date"),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    bookings, total = await service.list_all_bookings(
        db,
        status=_parse_status(status_filter),
        location=None if location in (None, "", "all") else location,
        on=on,
        search=search,
        page=page,
        page_size=page_size,
    )
    return await _paginated(db, bookings, total, page, page_size)


@router.post("/admin/cleanup-expired", response_model=CleanupResponse)
async def cleanup_expired_bookings(
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
):
    """Run the expiry sweep now instead of waiting for the next scheduled run."""
    result = await sweep_expired_bookings(db, notifier)
    return CleanupResponse(
        deleted_count=result.deleted_count,
        reference_numbers=result.reference_numbers,
        notified=result.notified,
        failures=result.failures,
    )


@router.get("/admin/{booking_id}", response_model=BookingResponse)
async def get_booking_admin(
    booking_id: UUID,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    booking = await service.get_booking(db, booking_id)
    return await _enrich_booking(db, booking)


@router.put("/admin/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    data: BookingConfirmRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
):
    booking = await service.get_booking(db, booking_id)
    booking = await service.confirm_booking(
        db, booking, data.confirmed_date, data.confirmed_time, data.admin_notes
    )
    return await _respond(db, booking, background_tasks, notifier, NotificationType.BOOKING_CONFIRMED)


@router.put("/admin/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking_admin(
    booking_id: UUID,
    data: BookingRescheduleRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    notifier: BookingNotifier = Depends(get_notifier),
):
    booking = await service.get_booking(db, booking_id)
    booking = await service.reschedule_booking(
        db, RedisCache(redis), booking, Actor.STAFF, data.new_date, data.new_time_slots
    )
    return await _respond(db, booking, background_tasks, notifier, NotificationType.BOOKING_RESCHEDULED)


@router.put("/admin/{booking_id}/checkin", response_model=BookingResponse)
async def check_in_booking_admin(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
):
    booking = await service.get_booking(db, booking_id)
    booking = await service.check_in_booking(db, booking, Actor.STAFF)
    return await _respond(db, booking, background_tasks, notifier, NotificationType.BOOKING_CHECKED_IN)


@router.put("/admin/{booking_id}/checkout", response_model=BookingResponse)
async def check_out_booking_admin(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
):
    booking = await service.get_booking(db, booking_id)
    booking = await service.check_out_booking(db, booking, Actor.STAFF)
    return await _respond(db, booking, background_tasks, notifier, NotificationType.BOOKING_COMPLETED)


@router.put("/admin/{booking_id}/no-show", response_model=BookingResponse)
async def mark_no_show(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    data: Optional[BookingNoShowRequest] = None,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
):
    booking = await service.get_booking(db, booking_id)
    booking = await service.mark_no_show(db, booking, data.admin_notes if data else None)
    return await _respond(db, booking, background_tasks, notifier, NotificationType.BOOKING_NO_SHOW)


@router.put("/admin/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking_admin(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    data: Optional[BookingCancelRequest] = None,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
):
    booking = await service.get_booking(db, booking_id)
    booking = await service.cancel_booking(db, booking, Actor.STAFF, data.reason if data else None)
    return await _respond(db, booking, background_tasks, notifier, NotificationType.BOOKING_CANCELLED)


# ── Patient ───────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    notifier: BookingNotifier = Depends(get_notifier),
):
    """
    Request an appointment. The booking starts as "Awaiting Confirmation";
    staff confirm a final date and time later.
    """
    booking = await service.create_booking(db, RedisCache(redis), current_user, data)
    response = await _enrich_booking(db, booking)

    branch = await db.get(Branch, booking.branch_id)
    _notify(
        background_tasks,
        notifier,
        NotificationType.BOOKING_CREATED,
        response,
        branch_address=_format_address(branch.address) if branch else None,
    )
    return response


@router.get("", response_model=PaginatedResponse)
async def list_my_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    upcoming: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    bookings, total = await service.list_user_bookings(
        db,
        current_user,
        status=_parse_status(status_filter),
        upcoming=upcoming,
        page=page,
        page_size=page_size,
    )
    return await _paginated(db, bookings, total, page, page_size)


@router.get("/reference/{reference_number}", response_model=BookingResponse)
async def get_booking_by_reference(
    reference_number: str,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await service.get_booking_by_reference(db, reference_number, current_user)
    return await _enrich_booking(db, booking)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await service.get_booking(db, booking_id, current_user)
    return await _enrich_booking(db, booking)


@router.put("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    data: Optional[BookingCancelRequest] = None,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
):
    booking = await service.get_booking(db, booking_id, current_user)
    booking = await service.cancel_booking(db, booking, Actor.USER, data.reason if data else None)
    return await _respond(db, booking, background_tasks, notifier, NotificationType.BOOKING_CANCELLED)


@router.put("/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: UUID,
    data: BookingRescheduleRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    notifier: BookingNotifier = Depends(get_notifier),
):
    booking = await service.get_booking(db, booking_id, current_user)
    booking = await service.reschedule_booking(
        db, RedisCache(redis), booking, Actor.USER, data.new_date, data.new_time_slots
    )
    return await _respond(db, booking, background_tasks, notifier, NotificationType.BOOKING_RESCHEDULED)


@router.put("/{booking_id}/checkin", response_model=BookingResponse)
async def check_in_booking(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
):
    booking = await service.get_booking(db, booking_id, current_user)
    booking = await service.check_in_booking(db, booking, Actor.USER)
    return await _respond(db, booking, background_tasks, notifier, NotificationType.BOOKING_CHECKED_IN)


@router.put("/{booking_id}/checkout", response_model=BookingResponse)
async def check_out_booking(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
):
    booking = await service.get_booking(db, booking_id, current_user)
    booking = await service.check_out_booking(db, booking, Actor.USER)
    return await _respond(db, booking, background_tasks, notifier, NotificationType.BOOKING_COMPLETED)


@router.put("/{booking_id}/rate", response_model=BookingResponse)
async def rate_booking(
    booking_id: UUID,
    data: BookingRateRequest,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await service.get_booking(db, booking_id, current_user)
    booking = await service.rate_booking(db, booking, data.rating, data.feedback)
    return await _enrich_booking(db, booking)
