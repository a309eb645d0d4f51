"""
services/branch/router.py
Clinic branches: public listing and slot lookup, staff administration.
Branches are soft-deleted (is_active=False) because bookings reference them.
"""

import logging
from datetime import date
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.availability import get_availability
from shared.middleware.auth import require_staff
from shared.models.models import Branch, User
from shared.schemas.schemas import (
    BranchCreateRequest,
    BranchReorderRequest,
    BranchResponse,
    BranchSlotsResponse,
    BranchUpdateRequest,
    MessageResponse,
)
from shared.utils.exceptions import NotFound, ValidationFailed
from shared.utils.schedule import day_schedule, weekday_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/branches", tags=["Branches"])


async def _get_branch_or_404(branch_id: UUID, db: AsyncSession) -> Branch:
    branch = await db.get(Branch, branch_id)
    if not branch:
        raise NotFound("Branch not found")
    return branch


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: UUID = None) -> None:
    query = select(Branch.id).where(Branch.name == name)
    if exclude_id is not None:
        query = query.where(Branch.id != exclude_id)
    if await db.scalar(query):
        raise ValidationFailed(f"A branch named '{name}' already exists")


# ── Public ────────────────────────────────────────────────────

@router.get("", response_model=List[BranchResponse])
async def list_branches(
    active_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    query = select(Branch)
    if active_only:
        query = query.where(Branch.is_active.is_(True))
    result = await db.execute(query.order_by(Branch.display_order, Branch.name))
    return result.scalars().all()


@router.patch("/reorder", response_model=MessageResponse)
async def reorder_branches(
    data: BranchReorderRequest,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Bulk update display_order."""
    for item in data.branches:
        branch = await _get_branch_or_404(item.id, db)
        branch.display_order = item.display_order
    await db.commit()
    logger.info(f"{current_user.email} reordered {len(data.branches)} branches")
    return MessageResponse(message="Branch order updated")


@router.get("/{branch_id}", response_model=BranchResponse)
async def get_branch(branch_id: UUID, db: AsyncSession = Depends(get_db)):
    return await _get_branch_or_404(branch_id, db)


@router.get("/{branch_id}/slots", response_model=BranchSlotsResponse)
async def get_branch_slots(
    branch_id: UUID,
    on: date = Query(..., alias="date", description="YYYY-MM-DD"),
    db: AsyncSession = Depends(get_db),
):
    """Generated slots for the date, split into available and booked."""
    branch = await _get_branch_or_404(branch_id, db)
    if not branch.is_active:
        raise ValidationFailed(f"{branch.name} is currently inactive")
    availability = await get_availability(db, branch, on)
    return BranchSlotsResponse(
        branch_id=branch.id,
        branch_name=branch.name,
        date=on,
        day=weekday_name(on),
        is_open=day_schedule(branch.operating_hours, on) is not None,
        slot_duration=branch.slot_duration,
        slots=availability.slots,
        available_slots=availability.available_slots,
        booked_slots=availability.booked_slots,
    )


# ── Staff ─────────────────────────────────────────────────────

@router.post("", response_model=BranchResponse, status_code=status.HTTP_201_CREATED)
async def create_branch(
    data: BranchCreateRequest,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_name_free(db, data.name)

    branch = Branch(
        name=data.name,
        address=data.address.model_dump(),
        contact=data.contact.model_dump(),
        operating_hours=data.operating_hours.as_dict(),
        slot_duration=data.slot_duration,
        description=data.description,
        amenities=data.amenities,
        is_active=data.is_active,
        display_order=data.display_order,
    )
    db.add(branch)
    await db.commit()
    await db.refresh(branch)
    logger.info(f"Branch '{branch.name}' created by {current_user.email}")
    return branch


@router.put("/{branch_id}", response_model=BranchResponse)
async def update_branch(
    branch_id: UUID,
    data: BranchUpdateRequest,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    branch = await _get_branch_or_404(branch_id, db)
    updates = data.model_dump(exclude_unset=True)

    if updates.get("name") and updates["name"] != branch.name:
        await _ensure_name_free(db, updates["name"], exclude_id=branch.id)
    if data.operating_hours is not None:
        updates["operating_hours"] = data.operating_hours.as_dict()

    for field, value in updates.items():
        if value is None and field in ("name", "address", "contact", "operating_hours", "slot_duration"):
            continue
        setattr(branch, field, value)

    await db.commit()
    await db.refresh(branch)
    logger.info(f"Branch '{branch.name}' updated by {current_user.email}: {sorted(updates)}")
    return branch


@router.patch("/{branch_id}/toggle-status", response_model=BranchResponse)
async def toggle_branch_status(
    branch_id: UUID,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    branch = await _get_branch_or_404(branch_id, db)
    branch.is_active = not branch.is_active
    await db.commit()
    await db.refresh(branch)
    logger.info(f"Branch '{branch.name}' is_active={branch.is_active} ({current_user.email})")
    return branch


@router.delete("/{branch_id}", response_model=MessageResponse)
async def delete_branch(
    branch_id: UUID,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete: the branch disappears from listings, bookings keep their reference."""
    branch = await _get_branch_or_404(branch_id, db)
    branch.is_active = False
    await db.commit()
    logger.info(f"Branch '{branch.name}' deactivated by {current_user.email}")
    return MessageResponse(message="Branch deactivated")
