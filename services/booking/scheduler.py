"""
services/booking/scheduler.py
Expiry sweep for bookings that were never confirmed.

A booking still "Awaiting Confirmation" whose preferred date has passed, or
whose first preferred slot today has already started, is deleted and the
patient is emailed. The sweep runs once as the API starts up, then from
Celery beat at the top of every hour in clinic time (tasks/booking_tasks.py).

Order of a sweep:
  1. scan candidates and snapshot them,
  2. delete in one batch, re-checking status so a booking confirmed in
     the meantime survives,
  3. commit,
  4. notify each deleted booking; one failure doesn't stop the rest.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.database import AsyncSessionLocal
from config.settings import settings
from services.notification.dispatcher import BookingNotifier
from shared.models.models import Booking, BookingStatus, Consultation, NotificationType
from shared.schemas.schemas import BookingNotice
from shared.utils.schedule import parse_slot_label

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    deleted_count: int = 0
    reference_numbers: List[str] = field(default_factory=list)
    notified: int = 0
    failures: int = 0


def is_expired(preferred_date: date, slots: List[str], now: datetime) -> bool:
    """
    `now` is clinic-local. Past dates are always expired; today is expired
    once the first preferred slot is strictly in the past.
    """
    today = now.date()
    if preferred_date < today:
        return True
    if preferred_date > today or not slots:
        return False
    try:
        first_slot = parse_slot_label(slots[0])
    except ValueError:
        logger.warning(f"Unparseable slot {slots[0]!r}, leaving booking alone")
        return False
    return first_slot < now.time()

async def sweep_expired_bookings(
    db: AsyncSession,
    notifier: BookingNotifier,
    now: Optional[datetime] = None,
) -> SweepResult:
    now = now or datetime.now(settings.clinic_tz)
    result = SweepResult()

    # 1. Scan + snapshot
    rows = await db.execute(
        select(Booking, Consultation.name)
        .outerjoin(Consultation, Consultation.id == Booking.consultation_id)
        .where(
            Booking.status == BookingStatus.AWAITING_CONFIRMATION,
            Booking.preferred_date <= now.date(),
        )
    )
    snapshots = {}
    for booking, treatment in rows.all():
        if is_expired(booking.preferred_date, booking.preferred_time_slots, now):
            notice = BookingNotice.model_validate(booking)
            notice.consultation_name = treatment
            snapshots[booking.id] = notice

    if not snapshots:
        logger.info("🧹 Expiry sweep: nothing to clean up")
        return result

    # 2. Delete, restricted to rows still awaiting confirmation
    deleted = await db.execute(
        delete(Booking)
        .where(
            Booking.id.in_(list(snapshots)),
            Booking.status == BookingStatus.AWAITING_CONFIRMATION,
        )
        .returning(Booking.id)
    )
    deleted_ids = list(deleted.scalars().all())

    # 3. Commit
    await db.commit()

    result.deleted_count = len(deleted_ids)
    result.reference_numbers = sorted(snapshots[i].reference_number for i in deleted_ids)
    logger.info(
        f"🗑️ Expiry sweep deleted {result.deleted_count} booking(s): "
        f"{', '.join(result.reference_numbers)}"
    )

    # 4. Notify
    for booking_id in deleted_ids:
        notice = snapshots[booking_id]
        try:
            if await notifier.dispatch(NotificationType.BOOKING_EXPIRED, notice):
                result.notified += 1
            else:
                result.failures += 1
        except Exception as e:
            result.failures += 1
            logger.error(f"Expiry notice for {notice.reference_number} failed: {e}")

    return result


class BookingExpiryScheduler:
    """
    Runs sweeps against an injected session factory and notifier.
    The API lifespan calls run_at_startup(); the beat task and tests call run_once().
    """

    def __init__(
        self,
        notifier: BookingNotifier,
        session_factory: async_sessionmaker = AsyncSessionLocal,
    ):
        self.notifier = notifier
        self.session_factory = session_factory

    async def run_once(self, now: Optional[datetime] = None) -> SweepResult:
        async with self.session_factory() as db:
            try:
                return await sweep_expired_bookings(db, self.notifier, now)
            except Exception:
                await db.rollback()
                raise

    async def run_at_startup(self) -> Optional[SweepResult]:
        """Sweep once before serving; a failure is logged and startup carries on."""
        try:
            result = await self.run_once()
        except Exception as e:
            logger.exception(f"❌ Startup expiry sweep failed: {e}")
            return None
        logger.info(f"⏰ Startup expiry sweep removed {result.deleted_count} booking(s)")
        return result
