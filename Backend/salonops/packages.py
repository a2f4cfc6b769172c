"""
Subscription package (plan) management.

GET is open to any signed-in user; create/update/delete are super admin
only. `/api/packages/public` feeds the signup page and needs no auth.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .audit import AUDIT_PACKAGE_CREATED, AUDIT_PACKAGE_DELETED, AUDIT_PACKAGE_UPDATED, log_audit
from .core.db import get_session
from .core.request_context import RequestContext, get_request_context, require_roles
from .models import SubscriptionPlan, User, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/packages", tags=["packages"])

# Non-null columns with no fallback; an explicit null in an update is rejected
REQUIRED_PLAN_FIELDS = ("name", "price", "price_label", "branches", "staff", "color")


# === Request/Response Models ===

def _strip_or_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    return v.strip() or None


class PackageFields(BaseModel):
    branches: Optional[int] = Field(None, ge=0)
    staff: Optional[int] = Field(None, ge=0)
    features: Optional[list[str]] = None
    popular: Optional[bool] = None
    color: Optional[str] = None
    image: Optional[str] = None
    icon: Optional[str] = None
    active: Optional[bool] = None
    hidden: Optional[bool] = None
    trial_days: Optional[int] = Field(None, ge=0)
    stripe_price_id: Optional[str] = None
    plan_key: Optional[str] = None

    @field_validator("stripe_price_id", "plan_key")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)


class CreatePackageRequest(PackageFields):
    name: str = Field(..., min_length=1, max_length=255)
    price: float = Field(..., ge=0)
    price_label: str = Field(..., min_length=1, max_length=64)

    @field_validator("name", "price_label")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("cannot be empty or whitespace")
        return v.strip()


class UpdatePackageRequest(PackageFields):
    id: int
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    price: Optional[float] = Field(None, ge=0)
    price_label: Optional[str] = Field(None, min_length=1, max_length=64)

    @field_validator("name", "price_label")
    @classmethod
    def strip(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else v


class PackageOut(BaseModel):
    id: int
    name: str
    price: float
    price_label: str
    branches: int
    staff: int
    features: list
    popular: bool
    color: str
    image: Optional[str]
    icon: Optional[str]
    active: bool
    hidden: bool
    trial_days: int
    stripe_price_id: Optional[str]
    plan_key: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PublicPackageOut(BaseModel):
    id: int
    name: str
    price: float
    price_label: str
    branches: int
    staff: int
    features: list
    popular: bool
    color: str
    image: Optional[str]
    trial_days: int
    plan_key: Optional[str]
    active: bool

    model_config = {"from_attributes": True}


# === Endpoints ===

@router.get("")
async def list_packages(
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    result = await session.execute(select(SubscriptionPlan).order_by(SubscriptionPlan.price, SubscriptionPlan.id))
    return {"success": True, "plans": [PackageOut.model_validate(p) for p in result.scalars().all()]}


@router.get("/public")
async def list_public_packages(session: AsyncSession = Depends(get_session)):
    """Active, non-hidden packages for the signup page. No auth."""
    result = await session.execute(
        select(SubscriptionPlan)
        .where(SubscriptionPlan.active.is_(True), SubscriptionPlan.hidden.is_(False))
        .order_by(SubscriptionPlan.price, SubscriptionPlan.id)
    )
    return {"success": True, "plans": [PublicPackageOut.model_validate(p) for p in result.scalars().all()]}


@router.post("", status_code=201)
async def create_package(
    payload: CreatePackageRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Create a package.

    branches/staff default to 1, trial_days to 0. An image replaces the
    legacy icon.
    """
    require_roles(ctx, [UserRole.SUPER_ADMIN])

    plan = SubscriptionPlan(
        name=payload.name,
        price=payload.price,
        price_label=payload.price_label,
        branches=payload.branches if payload.branches is not None else 1,
        staff=payload.staff if payload.staff is not None else 1,
        features=payload.features or [],
        popular=bool(payload.popular),
        color=payload.color or "blue",
        active=payload.active is not False,
        hidden=bool(payload.hidden),
        trial_days=payload.trial_days or 0,
        stripe_price_id=payload.stripe_price_id,
        plan_key=payload.plan_key,
        image=payload.image or None,
        icon=None if payload.image else payload.icon,
    )
    session.add(plan)
    await session.flush()
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_PACKAGE_CREATED,
        target_type="subscription_plan",
        target_id=str(plan.id),
        metadata={"name": plan.name, "price": plan.price},
    )
    await session.commit()
    await session.refresh(plan)

    logger.info(f"Package {plan.id} ({plan.name}) created by {ctx.uid}")
    return {"success": True, "message": "Package created successfully", "id": plan.id, "plan": PackageOut.model_validate(plan)}


@router.put("")
async def update_package(
    payload: UpdatePackageRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """Partial update; only fields present in the body change."""
    require_roles(ctx, [UserRole.SUPER_ADMIN])

    plan = await session.get(SubscriptionPlan, payload.id)
    if plan is None:
        raise HTTPException(status_code=404, detail="Package not found")

    changes = payload.model_dump(exclude_unset=True, exclude={"id"})
    for field in REQUIRED_PLAN_FIELDS:
        if field in changes and changes[field] in (None, ""):
            raise HTTPException(status_code=400, detail=f"{field} cannot be empty")

    image_set = "image" in changes
    for field, value in changes.items():
        if field == "icon" and image_set:
            continue
        if field == "features":
            value = value or []
        if field == "trial_days" and value is None:
            value = 0
        if field in ("popular", "hidden") and value is None:
            value = False
        if field == "active" and value is None:
            value = True
        setattr(plan, field, value)
    if image_set and changes["image"]:
        plan.icon = None

    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_PACKAGE_UPDATED,
        target_type="subscription_plan",
        target_id=str(plan.id),
        metadata={"fields": sorted(changes)},
    )
    await session.commit()
    await session.refresh(plan)

    logger.info(f"Package {plan.id} updated by {ctx.uid}: {sorted(changes)}")
    return {"success": True, "message": "Package updated successfully", "plan": PackageOut.model_validate(plan)}


@router.delete("")
async def delete_package(
    id: Optional[int] = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """Delete a package that no salon is subscribed to."""
    require_roles(ctx, [UserRole.SUPER_ADMIN])
    if id is None:
        raise HTTPException(status_code=400, detail="Missing package ID")

    plan = await session.get(SubscriptionPlan, id)
    if plan is None:
        raise HTTPException(status_code=404, detail="Package not found")

    result = await session.execute(select(func.count()).select_from(User).where(User.plan_id == id))
    subscribers = result.scalar_one()
    if subscribers:
        raise HTTPException(
            status_code=409,
            detail=f"Package is assigned to {subscribers} salon(s); move them to another package first",
        )

    await session.delete(plan)
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_PACKAGE_DELETED,
        target_type="subscription_plan",
        target_id=str(id),
        metadata={"name": plan.name},
    )
    await session.commit()

    logger.info(f"Package {id} deleted by {ctx.uid}")
    return {"success": True, "message": "Package deleted successfully"}
