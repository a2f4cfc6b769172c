"""
Branch management.

Weekly hours are stored as {"Monday": {"open": "09:00", "close": "17:00",
"closed": false}, ...}; the availability engine reads them directly.
"""

import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .audit import AUDIT_BRANCH_CREATED, AUDIT_BRANCH_DELETED, AUDIT_BRANCH_UPDATED, log_audit
from .availability import WEEKDAYS, parse_time_label
from .core.config import get_settings
from .core.db import get_session
from .core.errors import PlanLimitError
from .core.request_context import RequestContext, get_request_context, require_roles, require_tenant
from .models import ADMIN_ROLES, Booking, Branch, SubscriptionPlan, User, UserRole
from .tenancy import count_branches, get_tenant_staff, require_owned, scoped_select

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/branches", tags=["branches"])

BRANCH_MANAGER_ROLES = (UserRole.SALON_OWNER, UserRole.SALON_ADMIN, UserRole.SUPER_ADMIN)


# === Request/Response Models ===

class DayHours(BaseModel):
    open: Optional[str] = None
    close: Optional[str] = None
    closed: bool = False

    @model_validator(mode="after")
    def check_times(self):
        if self.closed:
            return self
        start, end = parse_time_label(self.open), parse_time_label(self.close)
        if start is None or end is None:
            raise ValueError("open and close must be HH:MM unless the day is closed")
        if start >= end:
            raise ValueError("open must be before close")
        return self


def _validate_hours(v: Optional[dict[str, DayHours]]) -> Optional[dict[str, DayHours]]:
    if v is None:
        return v
    unknown = set(v) - set(WEEKDAYS)
    if unknown:
        raise ValueError(f"unknown weekday(s): {', '.join(sorted(unknown))}")
    return v


def _validate_timezone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"unknown IANA timezone: {v}")
    return v


class BranchFields(BaseModel):
    address: Optional[str] = Field(None, max_length=512)
    phone: Optional[str] = Field(None, max_length=32)
    email: Optional[str] = Field(None, max_length=255)
    timezone: Optional[str] = None
    hours: Optional[dict[str, DayHours]] = None
    capacity: Optional[int] = Field(None, ge=0)
    status: Optional[str] = Field(None, max_length=32)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    allowed_check_in_radius: Optional[int] = Field(None, gt=0)

    @field_validator("hours")
    @classmethod
    def validate_hours(cls, v):
        return _validate_hours(v)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        return _validate_timezone(v)


class CreateBranchRequest(BranchFields):
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Branch name cannot be empty or whitespace")
        return v.strip()


class UpdateBranchRequest(BranchFields):
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class AssignAdminRequest(BaseModel):
    admin_staff_id: str = Field(..., min_length=1)


class BranchOut(BaseModel):
    id: int
    owner_uid: str
    name: str
    address: str
    phone: Optional[str]
    email: Optional[str]
    timezone: str
    hours: Optional[dict]
    capacity: Optional[int]
    status: str
    admin_staff_id: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    allowed_check_in_radius: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# === Helpers ===

async def _check_branch_limit(session: AsyncSession, owner_uid: str) -> None:
    owner = await session.get(User, owner_uid)
    if owner is None or owner.plan_id is None:
        return
    plan = await session.get(SubscriptionPlan, owner.plan_id)
    if plan is None:
        return
    current = await count_branches(session, owner_uid)
    if current >= plan.branches:
        raise PlanLimitError(
            f"Your {plan.name} plan allows {plan.branches} branch(es). Upgrade to add more.",
            details={"limit": plan.branches, "current": current},
        )


async def _load_branch(session: AsyncSession, branch_id: int, ctx: RequestContext, owner_uid: Optional[str] = None) -> Branch:
    branch = await require_owned(session, Branch, branch_id, require_tenant(ctx, owner_uid))
    if branch is None:
        raise HTTPException(status_code=404, detail="Branch not found")
    return branch


def _hours_json(hours: Optional[dict[str, DayHours]]) -> Optional[dict]:
    if hours is None:
        return None
    return {day: value.model_dump() for day, value in hours.items()}


# === Endpoints ===

@router.get("")
async def list_branches(
    owner_uid: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    tenant = require_tenant(ctx, owner_uid)
    result = await session.execute(scoped_select(Branch, tenant).order_by(Branch.name))
    return [BranchOut.model_validate(b) for b in result.scalars().all()]


@router.get("/{branch_id}")
async def get_branch(
    branch_id: int,
    owner_uid: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    return BranchOut.model_validate(await _load_branch(session, branch_id, ctx, owner_uid))


@router.post("", status_code=201)
async def create_branch(
    payload: CreateBranchRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Create a branch.

    Error Codes:
    - 403 PLAN_LIMIT_REACHED: the salon's plan branch limit is used up
    - 409: a branch with this name already exists in the salon
    """
    require_roles(ctx, BRANCH_MANAGER_ROLES)
    owner_uid = require_tenant(ctx)
    settings = get_settings()

    await _check_branch_limit(session, owner_uid)

    existing = await session.execute(
        scoped_select(Branch, owner_uid).where(Branch.name == payload.name)
    )
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=409, detail=f"Branch '{payload.name}' already exists")

    branch = Branch(
        owner_uid=owner_uid,
        name=payload.name,
        address=payload.address or "",
        phone=payload.phone,
        email=payload.email,
        timezone=payload.timezone or settings.default_timezone,
        hours=_hours_json(payload.hours),
        capacity=payload.capacity,
        status=payload.status or "Active",
        latitude=payload.latitude,
        longitude=payload.longitude,
        allowed_check_in_radius=payload.allowed_check_in_radius or 100,
    )
    session.add(branch)
    await session.flush()
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_BRANCH_CREATED,
        target_type="branch",
        target_id=str(branch.id),
        metadata={"name": branch.name},
    )
    await session.commit()
    await session.refresh(branch)

    logger.info(f"Branch {branch.id} ({branch.name}) created for salon {owner_uid}")
    return BranchOut.model_validate(branch)


@router.put("/{branch_id}")
async def update_branch(
    branch_id: int,
    payload: UpdateBranchRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """Partial update. Branch admins may only edit their own branch."""
    require_roles(ctx, ADMIN_ROLES)
    branch = await _load_branch(session, branch_id, ctx)
    if ctx.role == UserRole.SALON_BRANCH_ADMIN.value and ctx.branch_id != branch.id:
        raise HTTPException(status_code=403, detail="Branch admins can only edit their own branch")

    changes = payload.model_dump(exclude_unset=True)
    if "hours" in changes:
        changes["hours"] = _hours_json(payload.hours)
    if "name" in changes:
        if not changes["name"] or not changes["name"].strip():
            raise HTTPException(status_code=400, detail="Branch name cannot be empty")
        changes["name"] = changes["name"].strip()
    for field in ("timezone", "status", "address", "allowed_check_in_radius"):
        if field in changes and changes[field] is None:
            del changes[field]

    for field, value in changes.items():
        setattr(branch, field, value)

    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_BRANCH_UPDATED,
        owner_uid=branch.owner_uid,
        target_type="branch",
        target_id=str(branch.id),
        metadata={"fields": sorted(changes)},
    )
    await session.commit()
    await session.refresh(branch)
    return BranchOut.model_validate(branch)


@router.post("/{branch_id}/assign-admin")
async def assign_branch_admin(
    branch_id: int,
    payload: AssignAdminRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """Promote a staff member to branch admin of this branch."""
    require_roles(ctx, (UserRole.SALON_OWNER, UserRole.SUPER_ADMIN))
    branch = await _load_branch(session, branch_id, ctx)

    staff = await get_tenant_staff(session, branch.owner_uid, payload.admin_staff_id)
    if staff is None:
        raise HTTPException(status_code=404, detail="Staff member not found")
    if not staff.email:
        raise HTTPException(status_code=400, detail="Staff member does not have an email address")

    staff.role = UserRole.SALON_BRANCH_ADMIN.value
    staff.branch_id = branch.id
    branch.admin_staff_id = staff.uid
    branch.email = branch.email or staff.email

    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_BRANCH_UPDATED,
        owner_uid=branch.owner_uid,
        target_type="branch",
        target_id=str(branch.id),
        metadata={"admin_staff_id": staff.uid},
    )
    await session.commit()

    logger.info(f"Staff {staff.uid} assigned as admin of branch {branch.id}")
    return {"success": True, "message": "Branch admin assigned"}


@router.delete("/{branch_id}")
async def delete_branch(
    branch_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """Delete a branch with no bookings on record."""
    require_roles(ctx, BRANCH_MANAGER_ROLES)
    branch = await _load_branch(session, branch_id, ctx)

    result = await session.execute(select(Booking.id).where(Booking.branch_id == branch.id).limit(1))
    if result.first() is not None:
        raise HTTPException(status_code=409, detail="Branch has bookings and cannot be deleted")

    await session.delete(branch)
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_BRANCH_DELETED,
        owner_uid=branch.owner_uid,
        target_type="branch",
        target_id=str(branch_id),
        metadata={"name": branch.name},
    )
    await session.commit()

    logger.info(f"Branch {branch_id} deleted by {ctx.uid}")
    return {"success": True}
