"""Super admin provisioning of salon owners (tenants)."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import identity
from .audit import AUDIT_TENANT_CREATED, AUDIT_TENANT_PLAN_CHANGED, log_audit
from .core.db import get_session
from .core.request_context import RequestContext, get_request_context, require_roles
from .identity import MIN_PASSWORD_LENGTH
from .models import AccountStatus, Branch, SubscriptionPlan, User, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenants", tags=["tenants"])


class CreateTenantRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    display_name: Optional[str] = Field(None, max_length=255)
    salon_name: str = Field(..., min_length=1, max_length=255)
    plan_id: Optional[int] = None
    phone: Optional[str] = Field(None, max_length=32)


class ChangePlanRequest(BaseModel):
    plan_id: int


class TenantOut(BaseModel):
    uid: str
    email: Optional[str]
    name: Optional[str]
    salon_name: Optional[str]
    phone: Optional[str]
    status: str
    suspended: bool
    plan_id: Optional[int]
    plan_name: Optional[str]
    branch_count: int


async def _require_plan(session: AsyncSession, plan_id: Optional[int]) -> Optional[SubscriptionPlan]:
    if plan_id is None:
        return None
    plan = await session.get(SubscriptionPlan, plan_id)
    if plan is None:
        raise HTTPException(status_code=404, detail="Package not found")
    return plan


@router.get("")
async def list_tenants(
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    require_roles(ctx, [UserRole.SUPER_ADMIN])

    branch_counts = (
        select(Branch.owner_uid, func.count(Branch.id).label("branch_count"))
        .group_by(Branch.owner_uid)
        .subquery()
    )
    result = await session.execute(
        select(User, SubscriptionPlan.name, func.coalesce(branch_counts.c.branch_count, 0))
        .outerjoin(SubscriptionPlan, SubscriptionPlan.id == User.plan_id)
        .outerjoin(branch_counts, branch_counts.c.owner_uid == User.uid)
        .where(User.role == UserRole.SALON_OWNER.value)
        .order_by(User.salon_name, User.uid)
    )
    return [
        TenantOut(
            uid=user.uid,
            email=user.email,
            name=user.name,
            salon_name=user.salon_name,
            phone=user.phone,
            status=user.status,
            suspended=user.suspended,
            plan_id=user.plan_id,
            plan_name=plan_name,
            branch_count=branch_count,
        )
        for user, plan_name, branch_count in result.all()
    ]


@router.post("", status_code=201)
async def create_tenant(
    payload: CreateTenantRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Create the owner's Firebase Auth user and their `users` row.

    Errors:
    - 404: plan_id does not exist
    - 409: the email is already registered here
    - 400 IDENTITY_PROVIDER_ERROR: Firebase rejected the account
    """
    require_roles(ctx, [UserRole.SUPER_ADMIN])
    email = str(payload.email).lower()
    plan = await _require_plan(session, payload.plan_id)

    existing = await session.execute(select(User).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=409, detail="A user with this email already exists")

    uid = await run_in_threadpool(
        identity.create_owner_user, email, payload.password, payload.display_name or payload.salon_name
    )

    owner = User(
        uid=uid,
        email=email,
        name=payload.display_name,
        role=UserRole.SALON_OWNER.value,
        owner_uid=uid,
        salon_name=payload.salon_name.strip(),
        phone=payload.phone,
        plan_id=plan.id if plan else None,
        status=AccountStatus.ACTIVE.value,
        suspended=False,
    )
    session.add(owner)
    await session.flush()
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_TENANT_CREATED,
        owner_uid=uid,
        target_type="user",
        target_id=uid,
        metadata={"salon_name": owner.salon_name, "plan_id": owner.plan_id},
    )
    await session.commit()

    logger.info(f"Tenant {uid} ({owner.salon_name}) created by {ctx.uid}")
    return {"success": True, "uid": uid}


@router.put("/{owner_uid}/plan")
async def change_tenant_plan(
    owner_uid: str,
    payload: ChangePlanRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    require_roles(ctx, [UserRole.SUPER_ADMIN])
    owner = await session.get(User, owner_uid)
    if owner is None or owner.role != UserRole.SALON_OWNER.value:
        raise HTTPException(status_code=404, detail="Tenant not found")
    plan = await _require_plan(session, payload.plan_id)

    previous = owner.plan_id
    owner.plan_id = plan.id
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_TENANT_PLAN_CHANGED,
        owner_uid=owner.uid,
        target_type="user",
        target_id=owner.uid,
        metadata={"from": previous, "to": plan.id},
    )
    await session.commit()

    logger.info(f"Tenant {owner.uid} moved from plan {previous} to {plan.id}")
    return {"success": True, "plan_id": plan.id, "plan_name": plan.name}
