"""
Customer booking requests.

The public booking page posts here without signing in; the salon is
derived from the branch. Requests hold their slot (they block staff like a
Pending booking) until an admin converts or cancels them.
"""

import logging
import uuid
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from .activities import ACTIVITY_BOOKING_CREATED, record_activity
from .audit import assert_tenant_row
from .booking_status import BookingStatus
from .bookings import BookingOut, BookingServiceIn, validate_time_label
from .core.db import get_session
from .core.request_context import RequestContext, get_request_context, require_roles, require_tenant
from .models import ADMIN_ROLES, BookingRequest, Branch
from .rate_limiter import rate_limit
from .scheduling import build_booking, ensure_no_conflicts, resolve_appointment
from .tenancy import scoped_select

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/booking-requests", tags=["booking-requests"])

REQUEST_PENDING = "Pending"
REQUEST_CONVERTED = "Converted"
REQUEST_CANCELED = "Canceled"


class CreateBookingRequestPayload(BaseModel):
    branch_id: int
    client: str = Field(..., min_length=1, max_length=255)
    client_email: Optional[str] = Field(None, max_length=255)
    client_phone: Optional[str] = Field(None, max_length=32)
    notes: Optional[str] = Field(None, max_length=2000)
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    staff_id: Optional[str] = None
    date: date
    time: str
    duration: Optional[int] = Field(None, gt=0)
    price: Optional[float] = Field(None, ge=0)
    services: list[BookingServiceIn] = Field(default_factory=list)

    @field_validator("client")
    @classmethod
    def validate_client(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("client cannot be empty or whitespace")
        return v.strip()

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return validate_time_label(v)

    @model_validator(mode="after")
    def require_contact_and_service(self):
        if not self.client_email and not self.client_phone:
            raise ValueError("client_email or client_phone is required")
        if not self.service_id and not self.services:
            raise ValueError("service_id or services is required")
        return self


class BookingRequestOut(BaseModel):
    id: uuid.UUID
    owner_uid: str
    branch_id: int
    client: str
    client_email: Optional[str]
    client_phone: Optional[str]
    notes: Optional[str]
    service_id: Optional[str]
    service_name: Optional[str]
    staff_id: Optional[str]
    date: date
    time: str
    duration: int
    price: float
    services: Optional[list]
    status: str
    booking_id: Optional[uuid.UUID]
    created_at: datetime

    model_config = {"from_attributes": True}


async def _load_request(session: AsyncSession, request_id: uuid.UUID, ctx: RequestContext) -> BookingRequest:
    booking_request = await session.get(BookingRequest, request_id)
    if booking_request is None:
        raise HTTPException(status_code=404, detail="Booking request not found")
    assert_tenant_row(booking_request.owner_uid, ctx)
    return booking_request


def _require_open(booking_request: BookingRequest) -> None:
    if booking_request.status != REQUEST_PENDING:
        raise HTTPException(
            status_code=400,
            detail=f"Booking request is already {booking_request.status.lower()}",
        )


@router.post("", status_code=201, dependencies=[Depends(rate_limit("booking"))])
async def create_booking_request(
    payload: CreateBookingRequestPayload,
    session: AsyncSession = Depends(get_session),
):
    """
    Submit a booking request from the public booking page. No auth.

    Errors:
    - 404: branch not found
    - 409 BOOKING_CONFLICT: the chosen staff member is busy at that time
    - 429: too many requests from this IP
    """
    branch = await session.get(Branch, payload.branch_id)
    if branch is None:
        raise HTTPException(status_code=404, detail="Branch not found")
    owner_uid = branch.owner_uid

    scheduled = await resolve_appointment(
        session,
        owner_uid,
        branch_id=branch.id,
        day=payload.date,
        time=payload.time,
        service_id=payload.service_id,
        service_name=payload.service_name,
        staff_id=payload.staff_id,
        duration=payload.duration,
        price=payload.price,
        services=payload.services,
    )
    await ensure_no_conflicts(session, owner_uid, branch.id, scheduled.as_appointment(REQUEST_PENDING))

    booking_request = BookingRequest(
        id=uuid.uuid4(),
        owner_uid=owner_uid,
        branch_id=branch.id,
        client=payload.client,
        client_email=payload.client_email,
        client_phone=payload.client_phone,
        notes=payload.notes,
        service_id=scheduled.service_id,
        service_name=scheduled.service_name,
        staff_id=scheduled.staff_id,
        date=scheduled.date,
        time=scheduled.time,
        duration=scheduled.duration,
        price=scheduled.price,
        services=[line.as_dict() for line in scheduled.lines] or None,
        status=REQUEST_PENDING,
    )
    session.add(booking_request)
    await session.commit()
    await session.refresh(booking_request)

    logger.info(f"Booking request {booking_request.id} received for branch {branch.id}")
    return BookingRequestOut.model_validate(booking_request)


@router.get("")
async def list_booking_requests(
    status: Optional[str] = None,
    branch_id: Optional[int] = None,
    owner_uid: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    require_roles(ctx, ADMIN_ROLES)
    query = scoped_select(BookingRequest, require_tenant(ctx, owner_uid))
    if status:
        query = query.where(BookingRequest.status == status)
    if branch_id is not None:
        query = query.where(BookingRequest.branch_id == branch_id)
    result = await session.execute(query.order_by(BookingRequest.date, BookingRequest.time))
    return [BookingRequestOut.model_validate(r) for r in result.scalars().all()]


@router.post("/{request_id}/convert", status_code=201)
async def convert_booking_request(
    request_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Turn a pending request into a booking.

    The request's own slot is ignored by the conflict check; anything
    booked over it since is not.
    """
    require_roles(ctx, ADMIN_ROLES)
    booking_request = await _load_request(session, request_id, ctx)
    _require_open(booking_request)
    owner_uid = booking_request.owner_uid

    scheduled = await resolve_appointment(
        session,
        owner_uid,
        branch_id=booking_request.branch_id,
        day=booking_request.date,
        time=booking_request.time,
        service_id=booking_request.service_id,
        service_name=booking_request.service_name,
        staff_id=booking_request.staff_id,
        duration=booking_request.duration,
        price=booking_request.price,
        services=[BookingServiceIn.model_validate(s) for s in booking_request.services or []],
    )
    status: BookingStatus = scheduled.derived_status()
    await ensure_no_conflicts(
        session,
        owner_uid,
        booking_request.branch_id,
        scheduled.as_appointment(status.value),
        exclude_ids=[str(booking_request.id)],
    )

    booking = build_booking(
        owner_uid,
        scheduled,
        status,
        client=booking_request.client,
        client_email=booking_request.client_email,
        client_phone=booking_request.client_phone,
        notes=booking_request.notes,
    )
    session.add(booking)
    booking_request.booking_id = booking.id
    booking_request.status = REQUEST_CONVERTED
    await session.flush()
    await record_activity(
        session,
        booking,
        ACTIVITY_BOOKING_CREATED,
        staff_uid=ctx.uid,
        staff_name=ctx.name,
        details={"booking_request_id": str(booking_request.id)},
    )
    await session.commit()
    await session.refresh(booking)

    logger.info(f"Booking request {booking_request.id} converted to booking {booking.id}")
    return {"ok": True, "booking": BookingOut.model_validate(booking)}


@router.post("/{request_id}/cancel")
async def cancel_booking_request(
    request_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    require_roles(ctx, ADMIN_ROLES)
    booking_request = await _load_request(session, request_id, ctx)
    _require_open(booking_request)

    booking_request.status = REQUEST_CANCELED
    await session.commit()

    logger.info(f"Booking request {booking_request.id} canceled by {ctx.uid}")
    return {"ok": True, "status": REQUEST_CANCELED}
