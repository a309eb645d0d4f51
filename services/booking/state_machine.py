"""
services/booking/state_machine.py
Booking lifecycle transitions.

    Awaiting Confirmation → Confirmed → In Progress → Completed (→ rated)
    Confirmed → Rescheduled → Confirmed
    Confirmed / Rescheduled → No Show → Rescheduled (patient only)
    Awaiting / Confirmed / Rescheduled → Cancelled

Every event is checked against the table below; anything not listed is rejected
with InvalidTransition. Nothing is silently ignored.
"""

from enum import Enum
from typing import Dict, FrozenSet, Tuple

from shared.models.models import BookingStatus, UserRole
from shared.utils.exceptions import InvalidTransition


class BookingEvent(str, Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"
    NO_SHOW = "mark no-show"
    RATE = "rate"


class Actor(str, Enum):
    USER = "USER"
    STAFF = "STAFF"


S = BookingStatus

# (event, actor) -> (allowed source statuses, target status)
TRANSITIONS: Dict[Tuple[BookingEvent, Actor], Tuple[FrozenSet[BookingStatus], BookingStatus]] = {
    (BookingEvent.CONFIRM, Actor.STAFF): (
        frozenset({S.AWAITING_CONFIRMATION, S.RESCHEDULED}), S.CONFIRMED,
    ),
    (BookingEvent.CANCEL, Actor.USER): (
        frozenset({S.AWAITING_CONFIRMATION, S.CONFIRMED, S.RESCHEDULED}), S.CANCELLED,
    ),
    (BookingEvent.CANCEL, Actor.STAFF): (
        frozenset({S.CONFIRMED, S.RESCHEDULED}), S.CANCELLED,
    ),
    (BookingEvent.RESCHEDULE, Actor.USER): (
        frozenset({S.CONFIRMED, S.NO_SHOW}), S.RESCHEDULED,
    ),
    (BookingEvent.RESCHEDULE, Actor.STAFF): (
        frozenset({S.CONFIRMED}), S.RESCHEDULED,
    ),
    (BookingEvent.CHECK_IN, Actor.USER): (
        frozenset({S.CONFIRMED, S.RESCHEDULED}), S.IN_PROGRESS,
    ),
    (BookingEvent.CHECK_IN, Actor.STAFF): (
        frozenset({S.CONFIRMED, S.RESCHEDULED}), S.IN_PROGRESS,
    ),
    (BookingEvent.CHECK_OUT, Actor.USER): (
        frozenset({S.IN_PROGRESS}), S.COMPLETED,
    ),
    (BookingEvent.CHECK_OUT, Actor.STAFF): (
        frozenset({S.IN_PROGRESS}), S.COMPLETED,
    ),
    (BookingEvent.NO_SHOW, Actor.STAFF): (
        frozenset({S.CONFIRMED, S.RESCHEDULED}), S.NO_SHOW,
    ),
    (BookingEvent.RATE, Actor.USER): (
        frozenset({S.COMPLETED}), S.COMPLETED,
    ),
}

# Display order for error messages
_STATUS_ORDER = list(BookingStatus)


def allowed_sources(event: BookingEvent, actor: Actor) -> FrozenSet[BookingStatus]:
    entry = TRANSITIONS.get((event, actor))
    return entry[0] if entry else frozenset()


def next_status(current: BookingStatus, event: BookingEvent, actor: Actor) -> BookingStatus:
    """Return the target status for `event`, or raise InvalidTransition."""
    current = BookingStatus(current)
    entry = TRANSITIONS.get((event, actor))
    if entry is None or current not in entry[0]:
        sources = allowed_sources(event, actor)
        raise InvalidTransition(
            event=event.value,
            current_status=current.value,
            allowed_statuses=[s.value for s in _STATUS_ORDER if s in sources],
        )
    return entry[1]


def actor_for(role: UserRole) -> Actor:
    return Actor.STAFF if role in (UserRole.STAFF, UserRole.ADMIN) else Actor.USER
