"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the booking service.
"""

import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from shared.utils.schedule import WEEKDAYS, format_slot_label, parse_slot_label


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


def _check_slot_labels(slots: List[str]) -> List[str]:
    cleaned = []
    for slot in slots:
        try:
            cleaned.append(format_slot_label(parse_slot_label(slot)))
        except ValueError:
            raise ValueError(f"Invalid time slot '{slot}', expected e.g. '10:30 AM'")
    if len(set(cleaned)) != len(cleaned):
        raise ValueError("Duplicate time slots")
    return cleaned


# ── Branch ────────────────────────────────────────────────────

class BranchAddress(BaseSchema):
    line1: str = Field(..., min_length=1, max_length=255)
    line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    pincode: str = Field(..., pattern=r"^\d{6}$")


class BranchContact(BaseSchema):
    phone: List[str] = Field(..., min_length=1)
    email: EmailStr


class DaySchedule(BaseSchema):
    is_open: bool = True
    open_time: str = Field(default="10:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    close_time: str = Field(default="19:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")

    @model_validator(mode="after")
    def validate_window(self) -> "DaySchedule":
        if self.is_open and self.open_time >= self.close_time:
            raise ValueError("open_time must be before close_time on an open day")
        return self


class OperatingHours(BaseSchema):
    monday: DaySchedule = Field(default_factory=DaySchedule)
    tuesday: DaySchedule = Field(default_factory=DaySchedule)
    wednesday: DaySchedule = Field(default_factory=DaySchedule)
    thursday: DaySchedule = Field(default_factory=DaySchedule)
    friday: DaySchedule = Field(default_factory=DaySchedule)
    saturday: DaySchedule = Field(default_factory=DaySchedule)
    sunday: DaySchedule = Field(default_factory=DaySchedule)

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        return {day: getattr(self, day).model_dump() for day in WEEKDAYS}


class BranchCreateRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=120)
    address: BranchAddress
    contact: BranchContact
    operating_hours: OperatingHours = Field(default_factory=OperatingHours)
    slot_duration: int = Field(default=30, ge=15, le=120)
    description: Optional[str] = Field(None, max_length=2000)
    amenities: List[str] = Field(default_factory=list)
    is_active: bool = True
    display_order: int = 0


class BranchUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=120)
    address: Optional[BranchAddress] = None
    contact: Optional[BranchContact] = None
    operating_hours: Optional[OperatingHours] = None
    slot_duration: Optional[int] = Field(None, ge=15, le=120)
    description: Optional[str] = Field(None, max_length=2000)
    amenities: Optional[List[str]] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None


class BranchOrderItem(BaseSchema):
    id: uuid.UUID
    display_order: int


class BranchReorderRequest(BaseSchema):
    branches: List[BranchOrderItem] = Field(..., min_length=1)


class BranchResponse(BaseSchema):
    id: uuid.UUID
    name: str
    address: Dict[str, Any]
    contact: Dict[str, Any]
    operating_hours: Dict[str, Any]
    slot_duration: int
    description: Optional[str]
    amenities: List[str]
    is_active: bool
    display_order: int
    created_at: datetime


class BranchSlotsResponse(BaseSchema):
    branch_id: uuid.UUID
    branch_name: str
    date: date
    day: str
    is_open: bool
    slot_duration: int
    slots: List[str]
    available_slots: List[str]
    booked_slots: List[str]


class AvailableSlotsResponse(BaseSchema):
    date: date
    location: str
    available_slots: List[str]
    booked_slots: List[str]


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    consultation_id: uuid.UUID
    full_name: str = Field(..., min_length=2, max_length=255)
    mobile_number: str = Field(..., pattern=r"^\+?\d{10,15}$")
    email: EmailStr
    preferred_location: str = Field(..., min_length=1, max_length=120)
    preferred_date: date
    preferred_time_slots: List[str] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("full_name", "preferred_location")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field cannot be blank")
        return v

    @field_validator("preferred_time_slots")
    @classmethod
    def validate_slots(cls, v: List[str]) -> List[str]:
        return _check_slot_labels(v)


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class BookingRescheduleRequest(BaseSchema):
    new_date: date
    new_time_slots: List[str] = Field(..., min_length=1)

    @field_validator("new_time_slots")
    @classmethod
    def validate_slots(cls, v: List[str]) -> List[str]:
        return _check_slot_labels(v)


class BookingConfirmRequest(BaseSchema):
    confirmed_date: date
    confirmed_time: str
    admin_notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("confirmed_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return _check_slot_labels([v])[0]


class BookingNoShowRequest(BaseSchema):
    admin_notes: Optional[str] = Field(None, max_length=1000)


class BookingRateRequest(BaseSchema):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(None, max_length=2000)


class RescheduledFrom(BaseSchema):
    date: Optional[str] = None  # YYYY-MM-DD
    time: Optional[str] = None


class BookingResponse(BaseSchema):
    id: uuid.UUID
    reference_number: str
    user_id: uuid.UUID
    consultation_id: uuid.UUID
    branch_id: uuid.UUID
    full_name: str
    mobile_number: str
    email: str
    preferred_location: str
    preferred_date: date
    preferred_time_slots: List[str]
    confirmed_date: Optional[date]
    confirmed_time: Optional[str]
    status: str
    check_in_time: Optional[datetime]
    check_out_time: Optional[datetime]
    session_duration: Optional[int]
    cancellation_reason: Optional[str]
    cancelled_at: Optional[datetime]
    cancelled_by: Optional[str]
    rescheduled_from: Optional[RescheduledFrom]
    rescheduled_at: Optional[datetime]
    rating: Optional[int]
    feedback: Optional[str]
    rated_at: Optional[datetime]
    notes: Optional[str]
    admin_notes: Optional[str] = None
    created_at: datetime
    # Joined
    consultation_name: Optional[str] = None


class CleanupResponse(BaseSchema):
    deleted_count: int
    reference_numbers: List[str]
    notified: int
    failures: int


# ── Notification ──────────────────────────────────────────────

class BookingNotice(BaseSchema):
    """
    Detached snapshot of a booking handed to the notifier.
    Survives the row being deleted (expiry sweep) or the session closing.
    """
    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    reference_number: str
    full_name: str
    email: str
    mobile_number: str
    preferred_location: str
    preferred_date: date
    preferred_time_slots: List[str]
    confirmed_date: Optional[date] = None
    confirmed_time: Optional[str] = None
    status: str
    cancellation_reason: Optional[str] = None
    session_duration: Optional[int] = None
    rescheduled_from: Optional[RescheduledFrom] = None
    consultation_name: Optional[str] = None
    branch_address: Optional[str] = None

    @property
    def appointment_date(self) -> date:
        return self.confirmed_date or self.preferred_date

    @property
    def appointment_time(self) -> str:
        if self.confirmed_time:
            return self.confirmed_time
        return ", ".join(self.preferred_time_slots)


class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    title: str
    body: str
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime
    booking_id: Optional[uuid.UUID]


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True
