"""
Staff management.

Auth provisioning (create/suspend/delete the Firebase Auth user) plus the
staff profile rows in `users`. Provisioning endpoints share the
`staff_auth` rate limit.
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from . import identity
from .audit import (
    AUDIT_STAFF_AUTH_CREATED,
    AUDIT_STAFF_AUTH_DELETED,
    AUDIT_STAFF_SUSPENDED,
    AUDIT_STAFF_UNSUSPENDED,
    AUDIT_STAFF_UPDATED,
    assert_tenant_row,
    log_audit,
)
from .core.db import get_session
from .core.errors import PlanLimitError
from .core.request_context import RequestContext, get_request_context, require_roles, require_tenant
from .models import (
    STAFF_MANAGEMENT_ROLES,
    STAFF_ROLES,
    AccountStatus,
    Branch,
    SubscriptionPlan,
    User,
    UserRole,
)
from .rate_limiter import rate_limit
from .tenancy import count_tenant_staff, list_tenant_staff, require_owned

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/staff", tags=["staff"])

StaffRoleValue = Literal["salon_staff", "salon_branch_admin"]


# === Request/Response Models ===

class CreateStaffAuthRequest(BaseModel):
    email: EmailStr
    display_name: Optional[str] = Field(None, max_length=255)
    password: Optional[str] = None
    role: StaffRoleValue = "salon_staff"
    branch_id: Optional[int] = None
    staff_role: Optional[str] = Field(None, max_length=128)
    phone: Optional[str] = Field(None, max_length=32)


class SuspendStaffRequest(BaseModel):
    uid: str = Field(..., min_length=1)
    disabled: bool = True


class DeleteStaffAuthRequest(BaseModel):
    uid: Optional[str] = None
    email: Optional[EmailStr] = None


class UpdateStaffRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=32)
    branch_id: Optional[int] = None
    staff_role: Optional[str] = Field(None, max_length=128)
    role: Optional[StaffRoleValue] = None


class StaffOut(BaseModel):
    uid: str
    email: Optional[str]
    name: Optional[str]
    role: str
    owner_uid: Optional[str]
    branch_id: Optional[int]
    staff_role: Optional[str]
    phone: Optional[str]
    status: str
    suspended: bool

    model_config = {"from_attributes": True}


# === Helpers ===

async def _check_branch(session: AsyncSession, owner_uid: str, branch_id: Optional[int]) -> None:
    if branch_id is None:
        return
    if await require_owned(session, Branch, branch_id, owner_uid) is None:
        raise HTTPException(status_code=404, detail="Branch not found")


async def _check_staff_limit(session: AsyncSession, owner_uid: str) -> None:
    owner = await session.get(User, owner_uid)
    if owner is None or owner.plan_id is None:
        return
    plan = await session.get(SubscriptionPlan, owner.plan_id)
    if plan is None:
        return
    current = await count_tenant_staff(session, owner_uid)
    if current >= plan.staff:
        raise PlanLimitError(
            f"Your {plan.name} plan allows {plan.staff} staff member(s). Upgrade to add more.",
            details={"limit": plan.staff, "current": current},
        )


async def _load_tenant_staff(session: AsyncSession, uid: str, ctx: RequestContext) -> User:
    staff = await session.get(User, uid)
    if staff is None:
        raise HTTPException(status_code=404, detail="Staff member not found")
    assert_tenant_row(staff.owner_uid, ctx)
    if staff.role not in [r.value for r in STAFF_ROLES]:
        raise HTTPException(status_code=403, detail="You can only manage staff accounts")
    return staff


def _check_provisionable(existing: User, owner_uid: str) -> None:
    """An existing account may only be (re)provisioned as staff of the same salon."""
    if existing.tenant_uid not in (None, owner_uid):
        logger.warning(f"Staff auth create: {existing.uid} already belongs to salon {existing.tenant_uid}")
        raise HTTPException(status_code=403, detail="This account belongs to a different salon")
    if existing.role not in [r.value for r in STAFF_ROLES] + [UserRole.PENDING.value]:
        logger.warning(f"Staff auth create: refusing to re-provision {existing.role} account {existing.uid}")
        raise HTTPException(status_code=403, detail="You can only manage staff accounts")


# === Endpoints ===

@router.get("")
async def list_staff(
    branch_id: Optional[int] = None,
    owner_uid: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    tenant = require_tenant(ctx, owner_uid)
    return [StaffOut.model_validate(s) for s in await list_tenant_staff(session, tenant, branch_id)]


@router.post("/auth/create", dependencies=[Depends(rate_limit("staff_auth"))])
async def create_staff_auth(
    payload: CreateStaffAuthRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Create (or re-enable) the staff member's Firebase Auth user and upsert
    their profile row in the caller's salon.

    Errors:
    - 403: caller cannot manage staff, or the email belongs to another salon
      or to a non-staff account (checked before Firebase is touched)
    - 403 PLAN_LIMIT_REACHED: plan staff limit reached (new staff only)
    - 400/404 IDENTITY_PROVIDER_ERROR: Firebase rejected the request
    """
    require_roles(ctx, STAFF_MANAGEMENT_ROLES)
    owner_uid = require_tenant(ctx)
    await _check_branch(session, owner_uid, payload.branch_id)

    # Nothing is written to the provider until the existing account is cleared
    existing_uid = await run_in_threadpool(identity.get_uid_by_email, str(payload.email))
    staff = await session.get(User, existing_uid) if existing_uid else None
    if staff is not None:
        _check_provisionable(staff, owner_uid)
    if staff is None or staff.owner_uid != owner_uid:
        await _check_staff_limit(session, owner_uid)

    uid = await run_in_threadpool(
        identity.create_or_update_staff_user,
        str(payload.email),
        payload.display_name,
        payload.password,
    )

    if staff is None:
        staff = User(uid=uid, email=str(payload.email).lower())
        session.add(staff)

    staff.role = payload.role
    staff.owner_uid = owner_uid
    staff.name = payload.display_name or staff.name
    staff.branch_id = payload.branch_id if payload.branch_id is not None else staff.branch_id
    staff.staff_role = payload.staff_role or staff.staff_role
    staff.phone = payload.phone or staff.phone
    staff.status = AccountStatus.ACTIVE.value
    staff.suspended = False
    await session.flush()

    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_STAFF_AUTH_CREATED,
        target_type="user",
        target_id=uid,
        metadata={"role": payload.role, "branch_id": payload.branch_id},
    )
    await session.commit()

    logger.info(f"Staff auth provisioned for {uid} in salon {owner_uid} by {ctx.uid}")
    return {"uid": uid}


@router.post("/auth/suspend", dependencies=[Depends(rate_limit("staff_auth"))])
async def suspend_staff_auth(
    payload: SuspendStaffRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Disable or re-enable a staff member's sign-in and mirror it on the row.

    Errors:
    - 403: staff from another salon
    - 400: suspending your own account
    """
    require_roles(ctx, STAFF_MANAGEMENT_ROLES)
    staff = await _load_tenant_staff(session, payload.uid, ctx)
    if payload.uid == ctx.uid:
        raise HTTPException(status_code=400, detail="You cannot suspend your own account")

    await run_in_threadpool(identity.set_user_disabled, payload.uid, payload.disabled)

    staff.suspended = payload.disabled
    staff.status = AccountStatus.SUSPENDED.value if payload.disabled else AccountStatus.ACTIVE.value
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_STAFF_SUSPENDED if payload.disabled else AUDIT_STAFF_UNSUSPENDED,
        owner_uid=staff.owner_uid,
        target_type="user",
        target_id=staff.uid,
        metadata={"staff_name": staff.name, "disabled": payload.disabled},
    )
    await session.commit()

    logger.info(f"Staff {staff.uid} {'suspended' if payload.disabled else 'reactivated'} by {ctx.uid}")
    return {
        "success": True,
        "uid": staff.uid,
        "disabled": payload.disabled,
        "message": "User account suspended" if payload.disabled else "User account reactivated",
    }


@router.post("/auth/delete", dependencies=[Depends(rate_limit("staff_auth"))])
async def delete_staff_auth(
    payload: DeleteStaffAuthRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Delete the auth user (by uid, else email) and the salon's staff row.

    The target is resolved and checked before anything is deleted at the
    provider; an auth user with no profile row can only be removed by a
    super admin.
    """
    require_roles(ctx, STAFF_MANAGEMENT_ROLES)
    if not payload.uid and not payload.email:
        raise HTTPException(status_code=400, detail="uid or email is required")

    uid = payload.uid or await run_in_threadpool(identity.get_uid_by_email, str(payload.email))
    if uid is None:
        return {"ok": False, "message": "No user found"}

    staff = await session.get(User, uid)
    if staff is None:
        if not ctx.is_super_admin:
            raise HTTPException(status_code=404, detail="Staff member not found")
    else:
        assert_tenant_row(staff.owner_uid, ctx)
        if staff.uid == ctx.uid:
            raise HTTPException(status_code=400, detail="You cannot delete your own account")
        if staff.role not in [r.value for r in STAFF_ROLES]:
            raise HTTPException(status_code=403, detail="You can only manage staff accounts")

    await run_in_threadpool(identity.delete_user, uid)
    if staff is not None:
        await session.delete(staff)

    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_STAFF_AUTH_DELETED,
        owner_uid=staff.owner_uid if staff is not None else None,
        target_type="user",
        target_id=uid,
    )
    await session.commit()

    logger.info(f"Staff auth user {uid} deleted by {ctx.uid}")
    return {"ok": True, "uid": uid}


@router.patch("/{uid}")
async def update_staff(
    uid: str,
    payload: UpdateStaffRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    require_roles(ctx, STAFF_MANAGEMENT_ROLES)
    staff = await _load_tenant_staff(session, uid, ctx)

    changes = payload.model_dump(exclude_unset=True)
    if "branch_id" in changes:
        await _check_branch(session, staff.owner_uid, changes["branch_id"])
    if "role" in changes and changes["role"] is None:
        del changes["role"]
    for field, value in changes.items():
        setattr(staff, field, value)

    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_STAFF_UPDATED,
        owner_uid=staff.owner_uid,
        target_type="user",
        target_id=staff.uid,
        metadata={"fields": sorted(changes)},
    )
    await session.commit()
    await session.refresh(staff)
    return StaffOut.model_validate(staff)
