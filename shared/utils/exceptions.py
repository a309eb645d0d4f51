"""
shared/utils/exceptions.py
Domain exceptions raised by the booking and branch services.
Rendered to JSON by the handler registered in main.py.
"""

from typing import Any, Dict, Iterable, List, Optional

from fastapi import status


class BookingPlatformError(Exception):
    """Base for all domain errors. `extra` is merged into the JSON body."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "BOOKING_ERROR"

    def __init__(self, detail: str, **extra: Any):
        super().__init__(detail)
        self.detail = detail
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "code": self.code, **self.extra}


class ValidationFailed(BookingPlatformError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_FAILED"


class NotFound(BookingPlatformError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class InvalidTransition(BookingPlatformError):
    """A lifecycle event was attempted from a status that does not allow it."""

    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"

    def __init__(self, event: str, current_status: str, allowed_statuses: Iterable[str]):
        allowed: List[str] = list(allowed_statuses)
        super().__init__(
            f"Cannot {event} a booking that is '{current_status}'. "
            f"Allowed from: {', '.join(allowed) or 'none'}",
            event=event,
            current_status=current_status,
            allowed_statuses=allowed,
        )
        self.current_status = current_status
        self.allowed_statuses = allowed


class SlotUnavailable(BookingPlatformError):
    status_code = status.HTTP_409_CONFLICT
    code = "SLOT_UNAVAILABLE"

    def __init__(self, slots: Iterable[str], detail: Optional[str] = None):
        taken = list(slots)
        super().__init__(
            detail or f"Time slot(s) no longer available: {', '.join(taken)}",
            slots=taken,
        )
        self.slots = taken


class ExternalDependencyFailure(BookingPlatformError):
    """Outbound collaborator (notification channel, broker) failed. Never reaches the client."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "EXTERNAL_DEPENDENCY_FAILURE"
