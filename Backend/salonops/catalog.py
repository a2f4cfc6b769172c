"""
Service catalog endpoints.

Each service can be limited to some branches and to the staff qualified
to perform it. With no branch links a service is offered everywhere.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .audit import AUDIT_SERVICE_CREATED, AUDIT_SERVICE_DELETED, AUDIT_SERVICE_UPDATED, log_audit
from .core.db import get_session
from .core.request_context import RequestContext, get_request_context, require_roles, require_tenant
from .models import ADMIN_ROLES, Branch, Service, ServiceBranch, ServiceStaff
from .tenancy import get_tenant_staff, require_owned, scoped_select

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/services", tags=["services"])


class ServiceFields(BaseModel):
    price: Optional[float] = Field(None, ge=0)
    duration_minutes: Optional[int] = Field(None, gt=0)
    icon: Optional[str] = Field(None, max_length=128)
    image_url: Optional[str] = Field(None, max_length=1024)
    branch_ids: Optional[list[int]] = None
    staff_uids: Optional[list[str]] = None


class CreateServiceRequest(ServiceFields):
    name: str = Field(..., min_length=1, max_length=255)
    duration_minutes: int = Field(..., gt=0)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Service name cannot be empty or whitespace")
        return v.strip()


class UpdateServiceRequest(ServiceFields):
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class ServiceOut(BaseModel):
    id: int
    owner_uid: str
    name: str
    price: float
    duration_minutes: int
    icon: Optional[str]
    image_url: Optional[str]
    branch_ids: list[int]
    staff_uids: list[str]
    created_at: datetime
    updated_at: datetime


async def _service_out(session: AsyncSession, service: Service) -> ServiceOut:
    branches = await session.execute(
        select(ServiceBranch.branch_id).where(ServiceBranch.service_id == service.id).order_by(ServiceBranch.branch_id)
    )
    staff = await session.execute(
        select(ServiceStaff.staff_uid).where(ServiceStaff.service_id == service.id).order_by(ServiceStaff.staff_uid)
    )
    return ServiceOut(
        id=service.id,
        owner_uid=service.owner_uid,
        name=service.name,
        price=service.price,
        duration_minutes=service.duration_minutes,
        icon=service.icon,
        image_url=service.image_url,
        branch_ids=list(branches.scalars().all()),
        staff_uids=list(staff.scalars().all()),
        created_at=service.created_at,
        updated_at=service.updated_at,
    )


async def _set_links(
    session: AsyncSession,
    service: Service,
    branch_ids: Optional[list[int]],
    staff_uids: Optional[list[str]],
) -> None:
    """Replace branch/staff links. None leaves a link set untouched."""
    if branch_ids is not None:
        for branch_id in set(branch_ids):
            if await require_owned(session, Branch, branch_id, service.owner_uid) is None:
                raise HTTPException(status_code=404, detail=f"Branch {branch_id} not found")
        await session.execute(delete(ServiceBranch).where(ServiceBranch.service_id == service.id))
        session.add_all(ServiceBranch(service_id=service.id, branch_id=b) for b in sorted(set(branch_ids)))

    if staff_uids is not None:
        for uid in set(staff_uids):
            if await get_tenant_staff(session, service.owner_uid, uid) is None:
                raise HTTPException(status_code=404, detail=f"Staff member {uid} not found")
        await session.execute(delete(ServiceStaff).where(ServiceStaff.service_id == service.id))
        session.add_all(ServiceStaff(service_id=service.id, staff_uid=u) for u in sorted(set(staff_uids)))


async def _load_service(session: AsyncSession, service_id: int, ctx: RequestContext, owner_uid: Optional[str] = None) -> Service:
    service = await require_owned(session, Service, service_id, require_tenant(ctx, owner_uid))
    if service is None:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


@router.get("")
async def list_services(
    branch_id: Optional[int] = None,
    owner_uid: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    tenant = require_tenant(ctx, owner_uid)
    query = scoped_select(Service, tenant)
    if branch_id is not None:
        linked = select(ServiceBranch.service_id).where(ServiceBranch.branch_id == branch_id)
        any_link = select(ServiceBranch.service_id).where(ServiceBranch.service_id == Service.id)
        query = query.where(Service.id.in_(linked) | ~any_link.exists())
    result = await session.execute(query.order_by(Service.name))
    return [await _service_out(session, s) for s in result.scalars().all()]


@router.get("/{service_id}")
async def get_service(
    service_id: int,
    owner_uid: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    return await _service_out(session, await _load_service(session, service_id, ctx, owner_uid))


@router.post("", status_code=201)
async def create_service(
    payload: CreateServiceRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    require_roles(ctx, ADMIN_ROLES)
    owner_uid = require_tenant(ctx)

    existing = await session.execute(scoped_select(Service, owner_uid).where(Service.name == payload.name))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=409, detail=f"Service '{payload.name}' already exists")

    service = Service(
        owner_uid=owner_uid,
        name=payload.name,
        price=payload.price or 0,
        duration_minutes=payload.duration_minutes,
        icon=payload.icon,
        image_url=payload.image_url,
    )
    session.add(service)
    await session.flush()
    await _set_links(session, service, payload.branch_ids, payload.staff_uids)
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_SERVICE_CREATED,
        target_type="service",
        target_id=str(service.id),
        metadata={"name": service.name},
    )
    await session.commit()
    await session.refresh(service)

    logger.info(f"Service {service.id} ({service.name}) created for salon {owner_uid}")
    return await _service_out(session, service)


@router.put("/{service_id}")
async def update_service(
    service_id: int,
    payload: UpdateServiceRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    require_roles(ctx, ADMIN_ROLES)
    service = await _load_service(session, service_id, ctx)

    changes = payload.model_dump(exclude_unset=True, exclude={"branch_ids", "staff_uids"})
    if "name" in changes:
        if not changes["name"] or not changes["name"].strip():
            raise HTTPException(status_code=400, detail="Service name cannot be empty")
        changes["name"] = changes["name"].strip()
    for field in ("price", "duration_minutes"):
        if field in changes and changes[field] is None:
            del changes[field]
    for field, value in changes.items():
        setattr(service, field, value)

    await _set_links(session, service, payload.branch_ids, payload.staff_uids)
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_SERVICE_UPDATED,
        owner_uid=service.owner_uid,
        target_type="service",
        target_id=str(service.id),
        metadata={"fields": sorted(payload.model_dump(exclude_unset=True))},
    )
    await session.commit()
    await session.refresh(service)
    return await _service_out(session, service)


@router.delete("/{service_id}")
async def delete_service(
    service_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """Existing bookings keep their copied service name and price."""
    require_roles(ctx, ADMIN_ROLES)
    service = await _load_service(session, service_id, ctx)

    await session.execute(delete(ServiceBranch).where(ServiceBranch.service_id == service.id))
    await session.execute(delete(ServiceStaff).where(ServiceStaff.service_id == service.id))
    await session.delete(service)
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_SERVICE_DELETED,
        owner_uid=service.owner_uid,
        target_type="service",
        target_id=str(service_id),
        metadata={"name": service.name},
    )
    await session.commit()

    logger.info(f"Service {service_id} deleted by {ctx.uid}")
    return {"success": True}
