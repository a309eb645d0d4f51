"""
services/notification/dispatcher.py
Fire-and-forget notification fan-out after booking state transitions.

For each event the notifier
  1. writes an internal Notification row in its own session, and
  2. enqueues one Celery task per delivery channel behind a circuit breaker,
     publishing from a worker thread so a slow broker never stalls the event loop.

dispatch() runs after the transition is committed and never raises into the caller.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional, Tuple

from pybreaker import CircuitBreakerError
from sqlalchemy.ext.asyncio import async_sessionmaker

from config.database import AsyncSessionLocal, get_db_context
from services.notification.templates import RenderedNotification, render
from shared.models.models import Notification, NotificationType
from shared.schemas.schemas import BookingNotice
from shared.utils.exceptions import ExternalDependencyFailure
from shared.utils.resilience import CircuitBreakerManager, circuit_breaker_manager
from tasks.notification_tasks import place_voice_call, send_email, send_whatsapp

logger = logging.getLogger(__name__)

EMAIL = "email"
WHATSAPP = "whatsapp"
VOICE = "voice"

CHANNELS: Dict[NotificationType, Tuple[str, ...]] = {
    NotificationType.BOOKING_CREATED: (EMAIL, WHATSAPP, VOICE),
    NotificationType.BOOKING_CONFIRMED: (EMAIL, WHATSAPP),
    NotificationType.BOOKING_RESCHEDULED: (EMAIL, WHATSAPP),
    NotificationType.BOOKING_CHECKED_IN: (EMAIL, WHATSAPP),
    NotificationType.BOOKING_COMPLETED: (EMAIL, WHATSAPP),
    NotificationType.BOOKING_CANCELLED: (EMAIL, WHATSAPP),
    NotificationType.BOOKING_NO_SHOW: (EMAIL, WHATSAPP),
    NotificationType.BOOKING_EXPIRED: (EMAIL,),
}


def _channel_call(channel: str, notice: BookingNotice, content: RenderedNotification) -> Optional[Tuple[Callable, tuple]]:
    """(task.delay, args) for a channel, or None when there is no recipient."""
    if channel == EMAIL and notice.email:
        return send_email.delay, (notice.email, content.email_subject, content.email_html)
    if channel == WHATSAPP and notice.mobile_number:
        return send_whatsapp.delay, (notice.mobile_number, content.whatsapp)
    if channel == VOICE and notice.mobile_number and content.voice_lines:
        return place_voice_call.delay, (notice.mobile_number, content.voice_lines)
    return None


class BookingNotifier:
    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        breakers: Optional[CircuitBreakerManager] = None,
    ):
        self.session_factory = session_factory
        self.breakers = breakers or circuit_breaker_manager

    async def dispatch(self, event: NotificationType, notice: BookingNotice) -> bool:
        """
        Record and enqueue every channel for `event`.
        Returns True when everything went through; failures are logged, never raised.
        """
        ok = True
        content = render(event, notice)

        try:
            await self._record(event, notice, content)
        except Exception as e:
            ok = False
            logger.warning(
                f"Notification record for {notice.reference_number} ({event.value}) failed: {e}"
            )

        for channel in CHANNELS[event]:
            try:
                await asyncio.to_thread(self._enqueue, channel, notice, content)
            except ExternalDependencyFailure as e:
                ok = False
                logger.warning(f"{notice.reference_number}: {e.detail}")

        return ok

    async def _record(
        self, event: NotificationType, notice: BookingNotice, content: RenderedNotification
    ) -> None:
        # Expired bookings are already deleted; keep the reference in data instead
        booking_id = None if event == NotificationType.BOOKING_EXPIRED else notice.id
        async with get_db_context(self.session_factory) as db:
            db.add(Notification(
                user_id=notice.user_id,
                booking_id=booking_id,
                type=event,
                title=content.title,
                body=content.body,
                data={
                    "reference_number": notice.reference_number,
                    "status": notice.status,
                    "booking_id": str(notice.id),
                },
            ))

    def _enqueue(self, channel: str, notice: BookingNotice, content: RenderedNotification) -> None:
        call = _channel_call(channel, notice, content)
        if call is None:
            return
        delay, args = call
        try:
            self.breakers.get_breaker(f"notify.{channel}").call(delay, *args)
        except CircuitBreakerError as e:
            raise ExternalDependencyFailure(
                f"{channel} notification skipped, circuit open", channel=channel
            ) from e
        except Exception as e:
            raise ExternalDependencyFailure(
                f"{channel} notification enqueue failed: {e}", channel=channel
            ) from e


notifier = BookingNotifier()


def get_notifier() -> BookingNotifier:
    """FastAPI dependency returning the process-wide notifier."""
    return notifier
