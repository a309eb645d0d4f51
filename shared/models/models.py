"""
shared/models/models.py
All SQLAlchemy ORM models for the clinic booking service.
UUID primary keys throughout; JSON columns map to JSONB on PostgreSQL.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base
from shared.utils.schedule import default_operating_hours, generate_slots

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    USER = "USER"
    STAFF = "STAFF"
    ADMIN = "ADMIN"


class BookingStatus(str, PyEnum):
    AWAITING_CONFIRMATION = "Awaiting Confirmation"
    CONFIRMED = "Confirmed"
    RESCHEDULED = "Rescheduled"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No Show"


# Statuses that still hold their slot against new bookings
ACTIVE_HOLDING_STATUSES = (
    BookingStatus.AWAITING_CONFIRMATION,
    BookingStatus.CONFIRMED,
    BookingStatus.RESCHEDULED,
)

TERMINAL_STATUSES = (
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.NO_SHOW,
)


class NotificationType(str, PyEnum):
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_RESCHEDULED = "BOOKING_RESCHEDULED"
    BOOKING_CHECKED_IN = "BOOKING_CHECKED_IN"
    BOOKING_COMPLETED = "BOOKING_COMPLETED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    BOOKING_NO_SHOW = "BOOKING_NO_SHOW"
    BOOKING_EXPIRED = "BOOKING_EXPIRED"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """
    Patient or staff account. Issued and maintained by the auth service;
    this service only reads it to resolve the bearer token.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, default=UserRole.USER
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="user")

    __table_args__ = (Index("ix_users_role", "role"),)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Consultation(TimestampMixin, Base):
    """Bookable treatment/consultation. Owned by the catalog service."""
    __tablename__ = "consultations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_consultations_name", "name"),)


class Branch(TimestampMixin, Base):
    """
    Clinic branch with per-weekday operating hours and a slot duration.
    Soft-deleted via is_active; never cascade-deleted because bookings
    reference it.
    """
    __tablename__ = "branches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    address: Mapped[dict] = mapped_column(JSONType, nullable=False)
    # e.g. {"line1": "...", "line2": "...", "city": "Hyderabad", "state": "Telangana", "pincode": "500033"}
    contact: Mapped[dict] = mapped_column(JSONType, nullable=False)
    # e.g. {"phone": ["7070701099"], "email": "info@zennara.in"}
    operating_hours: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=default_operating_hours
    )
    slot_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amenities: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="branch")

    __table_args__ = (
        CheckConstraint(
            "slot_duration >= 15 AND slot_duration <= 120",
            name="ck_branch_slot_duration_range",
        ),
        Index("ix_branches_active_order", "is_active", "display_order"),
    )

    def generate_slots(self, on: date) -> List[str]:
        return generate_slots(self.operating_hours, self.slot_duration, on)

    def __repr__(self) -> str:
        return f"<Branch {self.name}>"


class Booking(TimestampMixin, Base):
    """
    Appointment reservation.
    Status transitions (see services/booking/state_machine.py):
    Awaiting Confirmation → Confirmed → In Progress → Completed,
    with side branches Rescheduled, Cancelled and No Show.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reference_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    consultation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("consultations.id"), nullable=False
    )
    branch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False
    )

    # Denormalized at creation for record-keeping
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mobile_number: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    preferred_location: Mapped[str] = mapped_column(String(120), nullable=False)

    # Schedule
    preferred_date: Mapped[date] = mapped_column(Date, nullable=False)
    preferred_time_slots: Mapped[List[str]] = mapped_column(JSONType, nullable=False)
    confirmed_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    confirmed_time: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus),
        nullable=False,
        default=BookingStatus.AWAITING_CONFIRMATION,
    )

    # Session
    check_in_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    check_out_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    session_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minutes

    # Cancellation & reschedule
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    rescheduled_from: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    # e.g. {"date": "2025-10-07", "time": "10:00 AM"}
    rescheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Rating
    rating: Mapped[Optional[int]] = mapped_column(SmallInteger, nullable=True)
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="bookings")
    consultation: Mapped["Consultation"] = relationship()
    branch: Mapped["Branch"] = relationship(back_populates="bookings")

    __table_args__ = (
        CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)",
            name="ck_booking_rating_range",
        ),
        Index("ix_bookings_user_status", "user_id", "status"),
        Index("ix_bookings_branch_date", "branch_id", "preferred_date"),
        Index("ix_bookings_status", "status"),
        Index("ix_bookings_created_at", "created_at"),
    )

    @property
    def appointment_date(self) -> date:
        return self.confirmed_date or self.preferred_date

    @property
    def appointment_time(self) -> Optional[str]:
        if self.confirmed_time:
            return self.confirmed_time
        return self.preferred_time_slots[0] if self.preferred_time_slots else None

    def __repr__(self) -> str:
        return f"<Booking {self.reference_number} ({self.status.value})>"


class Notification(TimestampMixin, Base):
    """Internal notification record written after every booking transition."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_notifications_user_id_read", "user_id", "is_read"),
        Index("ix_notifications_booking_id", "booking_id"),
    )
