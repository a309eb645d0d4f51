"""
services/booking/availability.py
Availability = a branch's generated slots for a date minus the slots
held by bookings in an active-holding status.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import ACTIVE_HOLDING_STATUSES, Booking, Branch


@dataclass
class SlotAvailability:
    slots: List[str]
    booked_slots: List[str] = field(default_factory=list)
    available_slots: List[str] = field(default_factory=list)

    def unavailable(self, requested: Iterable[str]) -> List[str]:
        """Requested slots that are either not generated for the day or already held."""
        free = set(self.available_slots)
        return [slot for slot in requested if slot not in free]


def compute_availability(slots: List[str], held: Set[str]) -> SlotAvailability:
    booked = [slot for slot in slots if slot in held]
    available = [slot for slot in slots if slot not in held]
    return SlotAvailability(slots=slots, booked_slots=booked, available_slots=available)


async def held_slots(
    db: AsyncSession,
    branch_id: uuid.UUID,
    on: date,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> Set[str]:
    query = select(Booking.preferred_time_slots).where(
        Booking.branch_id == branch_id,
        Booking.preferred_date == on,
        Booking.status.in_(ACTIVE_HOLDING_STATUSES),
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)

    result = await db.execute(query)
    held: Set[str] = set()
    for slots in result.scalars().all():
        held.update(slots or [])
    return held


async def get_availability(
    db: AsyncSession,
    branch: Branch,
    on: date,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> SlotAvailability:
    slots = branch.generate_slots(on)
    if not slots:
        return SlotAvailability(slots=[])
    held = await held_slots(db, branch.id, on, exclude_booking_id)
    return compute_availability(slots, held)
