"""
Booking endpoints.

Admin dashboard and staff app share these routes:
- Admins create, list, re-status and reassign bookings
- Assigned staff accept/reject their work and mark services completed
- The booking wizard asks for advisory slot availability

Every write that puts staff on the calendar goes through the conflict gate
in `scheduling.ensure_no_conflicts`.
"""

import logging
import uuid
from datetime import date, datetime
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession

from .activities import (
    ACTIVITY_BOOKING_COMPLETED,
    ACTIVITY_BOOKING_CREATED,
    ACTIVITY_REASSIGNED,
    ACTIVITY_SERVICE_COMPLETED,
    ACTIVITY_STAFF_ACCEPTED,
    ACTIVITY_STAFF_REJECTED,
    ACTIVITY_STATUS_CHANGED,
    record_activity,
)
from .audit import assert_tenant_row
from .availability import (
    Appointment,
    AppointmentService,
    get_available_slots,
    parse_time_label,
)
from .booking_status import (
    BookingStatus,
    ServiceApprovalStatus,
    ServiceCompletionStatus,
    are_all_services_completed,
    calculate_booking_status_from_services,
    can_transition,
    normalize_booking_status,
    parse_booking_status,
    service_completion_progress,
    should_block_slots,
)
from .core.config import get_settings
from .core.db import get_session
from .core.errors import InvalidTransitionError
from .core.request_context import RequestContext, get_request_context, require_roles, require_tenant
from .models import ADMIN_ROLES, Booking, BookingService, Branch, UserRole
from .rate_limiter import rate_limit
from .scheduling import build_booking, ensure_no_conflicts, resolve_appointment
from .tenancy import get_tenant_staff, list_day_appointments, require_owned, scoped_select

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"])


# === Request/Response Models ===

def validate_time_label(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    minutes = parse_time_label(v)
    if minutes is None or minutes >= 24 * 60:
        raise ValueError("time must be HH:MM")
    return v


class BookingServiceIn(BaseModel):
    service_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    duration: Optional[int] = Field(None, gt=0)
    time: Optional[str] = None
    staff_id: Optional[str] = None

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        return validate_time_label(v)


class CreateBookingRequest(BaseModel):
    branch_id: int
    client: str = Field(..., min_length=1, max_length=255)
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    notes: Optional[str] = None
    booking_code: Optional[str] = Field(None, max_length=32)
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    staff_id: Optional[str] = None
    date: date
    time: str
    duration: Optional[int] = Field(None, gt=0)
    price: Optional[float] = Field(None, ge=0)
    status: Optional[str] = None
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
    def require_service(self):
        if not self.service_id and not self.services:
            raise ValueError("service_id or services is required")
        return self


class BookingServiceOut(BaseModel):
    id: int
    service_id: str
    name: Optional[str]
    price: float
    duration: int
    time: Optional[str]
    staff_id: Optional[str]
    staff_name: Optional[str]
    approval_status: str
    rejection_reason: Optional[str]
    completion_status: str
    completed_at: Optional[datetime]

    model_config = {"from_attributes": True}


class BookingOut(BaseModel):
    id: uuid.UUID
    owner_uid: str
    booking_code: Optional[str]
    branch_id: int
    branch_name: Optional[str]
    client: str
    client_email: Optional[str]
    client_phone: Optional[str]
    notes: Optional[str]
    service_id: Optional[str]
    service_name: Optional[str]
    staff_id: Optional[str]
    staff_name: Optional[str]
    date: date
    time: str
    duration: int
    price: float
    status: str
    rejection_reason: Optional[str]
    accepted_by_staff_name: Optional[str]
    rejected_by_staff_name: Optional[str]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    services: list[BookingServiceOut]

    model_config = {"from_attributes": True}


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., min_length=1)


class StaffResponseRequest(BaseModel):
    action: Literal["accept", "reject"]
    rejection_reason: Optional[str] = None


class ServiceAssignment(BaseModel):
    service_id: Optional[str] = None
    line_id: Optional[int] = None
    staff_id: str = Field(..., min_length=1)


class ReassignRequest(BaseModel):
    staff_id: Optional[str] = None
    services: list[ServiceAssignment] = Field(default_factory=list)

    @model_validator(mode="after")
    def require_target(self):
        if not self.staff_id and not self.services:
            raise ValueError("staff_id or services is required")
        return self


class ServiceCompleteRequest(BaseModel):
    line_id: Optional[int] = None


class SelectionIn(BaseModel):
    time: str
    duration: int = Field(..., gt=0)
    staff_id: Optional[str] = None


class AvailabilityRequest(BaseModel):
    branch_id: int
    date: date
    staff_id: Optional[str] = None
    duration: int = Field(..., gt=0)
    selections: list[SelectionIn] = Field(default_factory=list)
    exclude_booking_id: Optional[uuid.UUID] = None


# === Helpers ===

def _booking_payload(booking: Booking, message: Optional[str] = None) -> dict:
    payload = {
        "ok": True,
        "status": booking.status,
        "booking": BookingOut.model_validate(booking).model_dump(mode="json"),
    }
    if message:
        payload["message"] = message
    return payload


async def _load_booking(session: AsyncSession, booking_id: uuid.UUID, ctx: RequestContext) -> Booking:
    """Fetch by id, then enforce the tenant boundary (404 before 403)."""
    booking = await session.get(Booking, booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    assert_tenant_row(booking.owner_uid, ctx)
    return booking


def _require_assigned(booking: Booking, ctx: RequestContext) -> None:
    if not booking.is_assigned_to(ctx.uid):
        logger.warning(f"User {ctx.uid} is not assigned to booking {booking.id}")
        raise HTTPException(status_code=403, detail="You are not assigned to this booking")


def _is_staff(ctx: RequestContext) -> bool:
    return ctx.role == UserRole.SALON_STAFF.value


async def _commit_and_reload(session: AsyncSession, booking: Booking) -> Booking:
    await session.commit()
    await session.refresh(booking)
    return booking


# === Endpoints ===

@router.post("", status_code=201)
async def create_booking(
    payload: CreateBookingRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Create a single- or multi-service booking.

    Status is taken from the payload when given, otherwise derived from
    staff assignment. 409 when any assigned staff member is already busy.
    """
    owner_uid = require_tenant(ctx)

    scheduled = await resolve_appointment(
        session,
        owner_uid,
        branch_id=payload.branch_id,
        day=payload.date,
        time=payload.time,
        service_id=payload.service_id,
        service_name=payload.service_name,
        staff_id=payload.staff_id,
        duration=payload.duration,
        price=payload.price,
        services=payload.services,
    )
    status = normalize_booking_status(payload.status) if payload.status else scheduled.derived_status()

    await ensure_no_conflicts(session, owner_uid, payload.branch_id, scheduled.as_appointment(status.value))

    booking = build_booking(
        owner_uid,
        scheduled,
        status,
        client=payload.client,
        client_email=payload.client_email,
        client_phone=payload.client_phone,
        notes=payload.notes,
        booking_code=payload.booking_code,
    )
    session.add(booking)
    await session.flush()
    await record_activity(session, booking, ACTIVITY_BOOKING_CREATED, staff_uid=ctx.uid, staff_name=ctx.name)
    await _commit_and_reload(session, booking)

    logger.info(f"Booking {booking.id} created for tenant {owner_uid} with status {booking.status}")
    return BookingOut.model_validate(booking)


@router.get("")
async def list_bookings(
    status: Optional[str] = None,
    branch_id: Optional[int] = None,
    date: Optional[date] = None,
    staff_id: Optional[str] = None,
    owner_uid: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """List the tenant's bookings. Salon staff only see bookings assigned to them."""
    tenant = require_tenant(ctx, owner_uid)
    query = scoped_select(Booking, tenant)

    if status:
        status_filter = parse_booking_status(status)
        if status_filter is None:
            raise HTTPException(status_code=400, detail=f"Unknown booking status: {status}")
        query = query.where(Booking.status == status_filter.value)
    if branch_id is not None:
        query = query.where(Booking.branch_id == branch_id)
    if date is not None:
        query = query.where(Booking.date == date)

    assignee = ctx.uid if _is_staff(ctx) else staff_id
    if assignee:
        query = query.where(
            or_(
                Booking.staff_id == assignee,
                Booking.services.any(BookingService.staff_id == assignee),
            )
        )

    result = await session.execute(query.order_by(Booking.date, Booking.time))
    return [BookingOut.model_validate(b) for b in result.scalars().all()]


@router.post("/availability")
async def booking_availability(
    payload: AvailabilityRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Advisory free slots for the booking wizard.

    `selections` are services already picked in the same wizard session;
    they block their staff just like saved bookings.
    """
    owner_uid = require_tenant(ctx)
    settings = get_settings()

    branch = await require_owned(session, Branch, payload.branch_id, owner_uid)
    if branch is None:
        raise HTTPException(status_code=404, detail="Branch not found")

    appointments = await list_day_appointments(session, owner_uid, branch.id, payload.date)
    if payload.exclude_booking_id:
        appointments = [a for a in appointments if a.id != str(payload.exclude_booking_id)]

    try:
        tz = ZoneInfo(branch.timezone or settings.default_timezone)
    except ZoneInfoNotFoundError:
        logger.warning(f"Branch {branch.id} has invalid timezone {branch.timezone}; using default")
        tz = ZoneInfo(settings.default_timezone)

    slots = get_available_slots(
        payload.date,
        payload.staff_id,
        payload.duration,
        appointments,
        hours=branch.hours,
        selections=[
            AppointmentService(duration=s.duration, time=s.time, staff_id=s.staff_id)
            for s in payload.selections
        ],
        interval=settings.slot_interval_minutes,
        now=datetime.now(tz),
        default_open=settings.default_open_time,
        default_close=settings.default_close_time,
    )
    return {
        "branch_id": branch.id,
        "date": payload.date.isoformat(),
        "staff_id": payload.staff_id,
        "duration": payload.duration,
        "slots": slots,
    }


@router.get("/{booking_id}")
async def get_booking(
    booking_id: uuid.UUID,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    booking = await _load_booking(session, booking_id, ctx)
    if _is_staff(ctx):
        _require_assigned(booking, ctx)
    return BookingOut.model_validate(booking)


@router.patch("/{booking_id}/status", dependencies=[Depends(rate_limit("status_update"))])
async def update_booking_status(
    booking_id: uuid.UUID,
    payload: StatusUpdateRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Move a booking along its lifecycle.

    Errors:
    - 404: booking not found
    - 403: booking belongs to another salon (or staff not assigned)
    - 400: transition not allowed from the current status
    - 409: re-activating the booking would double-book its staff
    """
    booking = await _load_booking(session, booking_id, ctx)
    if _is_staff(ctx):
        _require_assigned(booking, ctx)

    current = normalize_booking_status(booking.status)
    requested = normalize_booking_status(payload.status)
    if not can_transition(current, requested):
        raise InvalidTransitionError(current.value, requested.value)

    if not should_block_slots(current.value) and should_block_slots(requested.value):
        reactivated = Appointment.from_record(booking)
        reactivated.status = requested.value
        await ensure_no_conflicts(
            session,
            booking.owner_uid,
            booking.branch_id,
            reactivated,
            exclude_ids=[str(booking.id)],
        )

    booking.status = requested.value
    if requested == BookingStatus.COMPLETED:
        now = Booking.now_utc()
        booking.completed_at = now
        for svc in booking.services:
            if svc.completion_status != ServiceCompletionStatus.COMPLETED.value:
                svc.completion_status = ServiceCompletionStatus.COMPLETED.value
                svc.completed_at = now

    await record_activity(
        session, booking, ACTIVITY_STATUS_CHANGED, previous_status=current.value, staff_uid=ctx.uid, staff_name=ctx.name
    )
    await _commit_and_reload(session, booking)

    logger.info(f"Booking {booking.id} status {current.value} -> {requested.value} by {ctx.uid}")
    return _booking_payload(booking)


@router.post("/{booking_id}/staff-response")
async def staff_response(
    booking_id: uuid.UUID,
    payload: StaffResponseRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Assigned staff accept or reject their part of a booking.

    Multi-service bookings only update the caller's services; the booking
    status is then derived from every service's approval.
    """
    reason = (payload.rejection_reason or "").strip()
    if payload.action == "reject" and not reason:
        raise HTTPException(status_code=400, detail="Rejection reason is required")

    booking = await _load_booking(session, booking_id, ctx)
    current = normalize_booking_status(booking.status)
    if current not in (BookingStatus.AWAITING_STAFF_APPROVAL, BookingStatus.PARTIALLY_APPROVED):
        raise HTTPException(
            status_code=400,
            detail=(
                f"Cannot {payload.action} booking. Current status is {current.value}. "
                "Only bookings awaiting staff approval can be accepted or rejected."
            ),
        )
    _require_assigned(booking, ctx)

    now = Booking.now_utc()
    staff_name = ctx.name or "Staff"

    if booking.is_multi_service:
        mine = [
            svc for svc in booking.services
            if svc.staff_id == ctx.uid and svc.approval_status == ServiceApprovalStatus.PENDING.value
        ]
        if not mine:
            raise HTTPException(status_code=400, detail="You have no services awaiting your response")
        for svc in mine:
            svc.approval_status = (
                ServiceApprovalStatus.ACCEPTED.value if payload.action == "accept" else ServiceApprovalStatus.REJECTED.value
            )
            svc.responded_by_staff_uid = ctx.uid
            svc.responded_by_staff_name = staff_name
            svc.responded_at = now
            svc.rejection_reason = reason or None
        new_status = calculate_booking_status_from_services(booking.services)
    else:
        new_status = BookingStatus.CONFIRMED if payload.action == "accept" else BookingStatus.STAFF_REJECTED

    if new_status != current and not can_transition(current, new_status):
        raise InvalidTransitionError(current.value, new_status.value)

    if payload.action == "accept":
        booking.accepted_by_staff_uid = ctx.uid
        booking.accepted_by_staff_name = staff_name
        booking.accepted_at = now
        activity, message = ACTIVITY_STAFF_ACCEPTED, "Booking accepted."
    else:
        booking.rejected_by_staff_uid = ctx.uid
        booking.rejected_by_staff_name = staff_name
        booking.rejection_reason = reason
        booking.rejected_at = now
        activity, message = ACTIVITY_STAFF_REJECTED, "Booking rejected. Admin has been notified for reassignment."

    booking.status = new_status.value
    await record_activity(
        session,
        booking,
        activity,
        previous_status=current.value,
        staff_uid=ctx.uid,
        staff_name=staff_name,
        details={"rejection_reason": reason} if reason else None,
    )
    await _commit_and_reload(session, booking)

    logger.info(f"Booking {booking.id}: staff {ctx.uid} {payload.action}ed; status now {booking.status}")
    return _booking_payload(booking, message)


@router.post("/{booking_id}/reassign")
async def reassign_booking(
    booking_id: uuid.UUID,
    payload: ReassignRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Assign staff to a Pending or StaffRejected booking.

    Reassigned services go back to pending approval and the new staff is
    conflict-checked against the rest of the day.
    """
    require_roles(ctx, ADMIN_ROLES)
    booking = await _load_booking(session, booking_id, ctx)

    current = normalize_booking_status(booking.status)
    if current not in (BookingStatus.PENDING, BookingStatus.STAFF_REJECTED):
        raise HTTPException(
            status_code=400,
            detail=f"Only Pending or StaffRejected bookings can be reassigned (current: {current.value})",
        )

    staff_names: dict[str, str] = {}

    async def staff_name_for(staff_uid: str) -> str:
        if staff_uid not in staff_names:
            staff = await get_tenant_staff(session, booking.owner_uid, staff_uid)
            if staff is None:
                raise HTTPException(status_code=400, detail=f"Staff member {staff_uid} not found")
            staff_names[staff_uid] = staff.name or staff.email or staff_uid
        return staff_names[staff_uid]

    def reset_approval(svc: BookingService, staff_uid: str, name: str) -> None:
        svc.staff_id = staff_uid
        svc.staff_name = name
        svc.approval_status = ServiceApprovalStatus.PENDING.value
        svc.responded_by_staff_uid = None
        svc.responded_by_staff_name = None
        svc.responded_at = None
        svc.rejection_reason = None

    if booking.is_multi_service:
        if payload.services:
            for assignment in payload.services:
                matches = [
                    svc for svc in booking.services
                    if (assignment.line_id is not None and svc.id == assignment.line_id)
                    or (assignment.line_id is None and svc.service_id == assignment.service_id)
                ]
                if not matches:
                    raise HTTPException(status_code=404, detail="Service not found in this booking")
                name = await staff_name_for(assignment.staff_id)
                for svc in matches:
                    reset_approval(svc, assignment.staff_id, name)
        else:
            name = await staff_name_for(payload.staff_id)
            targets = [
                svc for svc in booking.services
                if svc.approval_status in (ServiceApprovalStatus.REJECTED.value, ServiceApprovalStatus.NEEDS_ASSIGNMENT.value)
            ]
            for svc in targets:
                reset_approval(svc, payload.staff_id, name)

        staff_ids = {svc.staff_id for svc in booking.services}
        if len(staff_ids) == 1:
            booking.staff_id = booking.services[0].staff_id
            booking.staff_name = booking.services[0].staff_name

        new_status = calculate_booking_status_from_services(booking.services)
        if new_status != current and not can_transition(current, new_status):
            new_status = BookingStatus.AWAITING_STAFF_APPROVAL
    else:
        if not payload.staff_id:
            raise HTTPException(status_code=400, detail="staff_id is required")
        booking.staff_id = payload.staff_id
        booking.staff_name = await staff_name_for(payload.staff_id)
        new_status = BookingStatus.AWAITING_STAFF_APPROVAL

    booking.status = new_status.value
    booking.rejection_reason = None
    booking.rejected_by_staff_uid = None
    booking.rejected_by_staff_name = None
    booking.rejected_at = None
    booking.reassigned_by_uid = ctx.uid
    booking.reassigned_at = Booking.now_utc()

    await ensure_no_conflicts(
        session,
        booking.owner_uid,
        booking.branch_id,
        Appointment.from_record(booking),
        exclude_ids=[str(booking.id)],
    )

    await record_activity(
        session, booking, ACTIVITY_REASSIGNED, previous_status=current.value, staff_uid=ctx.uid, staff_name=ctx.name
    )
    await _commit_and_reload(session, booking)

    logger.info(f"Booking {booking.id} reassigned by {ctx.uid}; status {current.value} -> {booking.status}")
    return _booking_payload(booking, "Booking reassigned.")


@router.post("/{booking_id}/service-complete")
async def complete_service(
    booking_id: uuid.UUID,
    payload: Optional[ServiceCompleteRequest] = None,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Assigned staff mark their services completed.

    Only Confirmed bookings qualify. The booking itself becomes Completed
    once every service is.
    """
    booking = await _load_booking(session, booking_id, ctx)
    current = normalize_booking_status(booking.status)
    if current != BookingStatus.CONFIRMED:
        raise HTTPException(
            status_code=400,
            detail=(
                f'Cannot complete service. Booking status is "{current.value}". '
                "Only confirmed bookings can be marked as completed."
            ),
        )

    now = Booking.now_utc()
    staff_name = ctx.name or "Staff"
    line_id = payload.line_id if payload else None

    if booking.is_multi_service:
        mine = [svc for svc in booking.services if svc.staff_id == ctx.uid]
        if not mine:
            raise HTTPException(status_code=403, detail="You are not assigned to any services in this booking")

        if line_id is not None:
            target = next((svc for svc in mine if svc.id == line_id), None)
            if target is None:
                if any(svc.id == line_id for svc in booking.services):
                    raise HTTPException(status_code=403, detail="You are not assigned to this service")
                raise HTTPException(status_code=404, detail="Service not found in this booking")
            if target.completion_status == ServiceCompletionStatus.COMPLETED.value:
                raise HTTPException(status_code=400, detail="This service is already marked as completed")
            to_complete = [target]
        else:
            to_complete = [svc for svc in mine if svc.completion_status != ServiceCompletionStatus.COMPLETED.value]
            if not to_complete:
                raise HTTPException(status_code=400, detail="All your assigned services are already completed")

        for svc in to_complete:
            svc.completion_status = ServiceCompletionStatus.COMPLETED.value
            svc.completed_at = now
            svc.completed_by_staff_uid = ctx.uid
            svc.completed_by_staff_name = staff_name
        all_done = are_all_services_completed(booking.services)
    else:
        _require_assigned(booking, ctx)
        all_done = True

    if all_done:
        booking.status = BookingStatus.COMPLETED.value
        booking.completed_at = now

    await record_activity(
        session,
        booking,
        ACTIVITY_BOOKING_COMPLETED if all_done else ACTIVITY_SERVICE_COMPLETED,
        previous_status=current.value,
        staff_uid=ctx.uid,
        staff_name=staff_name,
    )
    await _commit_and_reload(session, booking)

    response = _booking_payload(
        booking, "All services completed. Booking marked as completed." if all_done else "Service marked as completed."
    )
    response["progress"] = service_completion_progress(booking.services) if booking.is_multi_service else {
        "completed": 1,
        "total": 1,
        "percentage": 100,
    }
    return response
