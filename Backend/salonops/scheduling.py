"""
Shared write-path helpers for bookings and booking requests.

Routes hand in validated payloads; these helpers fill catalog names and
prices, lay out multi-service timing, and run the conflict gate before
anything is written.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .availability import (
    Appointment,
    AppointmentService,
    appointment_segments,
    find_conflicts,
    format_minutes,
    is_any_staff,
    parse_time_label,
)
from .booking_status import (
    BookingStatus,
    ServiceApprovalStatus,
    calculate_booking_status_from_services,
    should_block_slots,
)
from .core.errors import BookingConflictError
from .models import Booking, BookingService, Branch, Service
from .tenancy import get_tenant_staff, list_day_appointments, require_owned

logger = logging.getLogger(__name__)


@dataclass
class ServiceLine:
    service_id: str
    name: Optional[str]
    price: float
    duration: int
    time: str
    staff_id: Optional[str] = None
    staff_name: Optional[str] = None
    approval_status: str = ServiceApprovalStatus.NEEDS_ASSIGNMENT.value

    def as_dict(self) -> dict:
        return {
            "service_id": self.service_id,
            "name": self.name,
            "price": self.price,
            "duration": self.duration,
            "time": self.time,
            "staff_id": self.staff_id,
            "staff_name": self.staff_name,
            "approval_status": self.approval_status,
        }


@dataclass
class ScheduledAppointment:
    """A fully resolved booking payload, ready to persist."""

    branch: Branch
    date: date
    time: str
    duration: int
    price: float
    service_id: Optional[str]
    service_name: Optional[str]
    staff_id: Optional[str]
    staff_name: Optional[str]
    lines: list[ServiceLine] = field(default_factory=list)

    def as_appointment(self, status: Optional[str] = None) -> Appointment:
        return Appointment(
            id=None,
            date=self.date,
            time=self.time,
            duration=self.duration,
            staff_id=self.staff_id,
            status=status,
            services=[
                AppointmentService(duration=l.duration, time=l.time, staff_id=l.staff_id, service_id=l.service_id)
                for l in self.lines
            ],
        )

    def derived_status(self) -> BookingStatus:
        if self.lines:
            return calculate_booking_status_from_services([l.as_dict() for l in self.lines])
        if self.staff_id:
            return BookingStatus.AWAITING_STAFF_APPROVAL
        return BookingStatus.PENDING


async def _catalog_service(session: AsyncSession, owner_uid: str, service_id: Optional[str]) -> Optional[Service]:
    if not service_id or not str(service_id).isdigit():
        return None
    result = await session.execute(
        select(Service).where(Service.id == int(service_id), Service.owner_uid == owner_uid)
    )
    return result.scalar_one_or_none()


async def _staff_name(session: AsyncSession, owner_uid: str, staff_id: Optional[str]) -> Optional[str]:
    if is_any_staff(staff_id):
        return None
    staff = await get_tenant_staff(session, owner_uid, staff_id)
    if staff is None:
        raise HTTPException(status_code=400, detail=f"Staff member {staff_id} not found")
    return staff.name or staff.email


async def resolve_appointment(
    session: AsyncSession,
    owner_uid: str,
    *,
    branch_id: int,
    day: date,
    time: str,
    service_id: Optional[str] = None,
    service_name: Optional[str] = None,
    staff_id: Optional[str] = None,
    duration: Optional[int] = None,
    price: Optional[float] = None,
    services: Sequence = (),
) -> ScheduledAppointment:
    """
    Validate and enrich a booking payload against the tenant's catalog.

    `services` items need `service_id` and may carry name, price, duration,
    time and staff_id. Missing values come from the catalog; missing times
    run back to back from `time`.

    Raises:
        HTTPException 404: branch not found for this tenant
        HTTPException 400: unknown staff, or a service without a usable duration
    """
    branch = await require_owned(session, Branch, branch_id, owner_uid)
    if branch is None:
        raise HTTPException(status_code=404, detail="Branch not found")

    start = parse_time_label(time)
    if start is None:
        raise HTTPException(status_code=400, detail=f"Invalid time: {time}")

    staff_id = None if is_any_staff(staff_id) else staff_id
    staff_name = await _staff_name(session, owner_uid, staff_id)

    if not services:
        catalog = await _catalog_service(session, owner_uid, service_id)
        duration = duration or (catalog.duration_minutes if catalog else None)
        if not duration or duration <= 0:
            raise HTTPException(status_code=400, detail="Service duration is required")
        return ScheduledAppointment(
            branch=branch,
            date=day,
            time=format_minutes(start),
            duration=duration,
            price=price if price is not None else (catalog.price if catalog else 0),
            service_id=service_id,
            service_name=service_name or (catalog.name if catalog else None),
            staff_id=staff_id,
            staff_name=staff_name,
        )

    lines = []
    cursor = start
    for item in services:
        catalog = await _catalog_service(session, owner_uid, item.service_id)
        line_duration = item.duration or (catalog.duration_minutes if catalog else None)
        if not line_duration or line_duration <= 0:
            raise HTTPException(status_code=400, detail=f"Service {item.service_id} has no duration")

        line_start = parse_time_label(item.time) if item.time else cursor
        if line_start is None:
            raise HTTPException(status_code=400, detail=f"Invalid time: {item.time}")
        cursor = line_start + line_duration

        line_staff = None if is_any_staff(item.staff_id) else item.staff_id
        if line_staff is None:
            line_staff = staff_id
        line_staff_name = staff_name if line_staff == staff_id else await _staff_name(session, owner_uid, line_staff)

        lines.append(
            ServiceLine(
                service_id=str(item.service_id),
                name=item.name or (catalog.name if catalog else None),
                price=item.price if item.price is not None else (catalog.price if catalog else 0),
                duration=line_duration,
                time=format_minutes(line_start),
                staff_id=line_staff,
                staff_name=line_staff_name,
                approval_status=(
                    ServiceApprovalStatus.PENDING.value if line_staff else ServiceApprovalStatus.NEEDS_ASSIGNMENT.value
                ),
            )
        )

    line_staff_ids = {l.staff_id for l in lines}
    if staff_id is None and len(line_staff_ids) == 1:
        staff_id = lines[0].staff_id
        staff_name = lines[0].staff_name

    return ScheduledAppointment(
        branch=branch,
        date=day,
        time=lines[0].time,
        duration=sum(l.duration for l in lines),
        price=sum(l.price for l in lines),
        service_id=lines[0].service_id,
        service_name=", ".join(l.name for l in lines if l.name) or service_name,
        staff_id=staff_id,
        staff_name=staff_name,
        lines=lines,
    )


async def ensure_no_conflicts(
    session: AsyncSession,
    owner_uid: str,
    branch_id: int,
    appointment: Appointment,
    exclude_ids: Sequence = (),
) -> None:
    """
    Server-side conflict gate.

    Raises:
        BookingConflictError: a requested segment overlaps a blocking
            appointment for the same staff member
    """
    if not should_block_slots(appointment.status):
        return

    existing = await list_day_appointments(session, owner_uid, branch_id, appointment.date)
    conflicts = find_conflicts(existing, appointment.date, appointment_segments(appointment), exclude_ids)
    if conflicts:
        logger.info(
            f"Booking conflict for tenant {owner_uid} branch {branch_id} on {appointment.date}: "
            f"{len(conflicts)} overlapping segment(s)"
        )
        raise BookingConflictError(
            "Selected time conflicts with an existing booking",
            details={"conflicts": [c.to_dict() for c in conflicts]},
        )


def build_booking(
    owner_uid: str,
    scheduled: ScheduledAppointment,
    status: BookingStatus,
    *,
    client: str,
    client_email: Optional[str] = None,
    client_phone: Optional[str] = None,
    notes: Optional[str] = None,
    booking_code: Optional[str] = None,
) -> Booking:
    booking = Booking(
        id=uuid.uuid4(),
        owner_uid=owner_uid,
        booking_code=booking_code,
        branch_id=scheduled.branch.id,
        branch_name=scheduled.branch.name,
        client=client,
        client_email=client_email,
        client_phone=client_phone,
        notes=notes,
        service_id=scheduled.service_id,
        service_name=scheduled.service_name,
        staff_id=scheduled.staff_id,
        staff_name=scheduled.staff_name,
        date=scheduled.date,
        time=scheduled.time,
        duration=scheduled.duration,
        price=scheduled.price,
        status=status.value,
    )
    for position, line in enumerate(scheduled.lines):
        booking.services.append(
            BookingService(
                position=position,
                service_id=line.service_id,
                name=line.name,
                price=line.price,
                duration=line.duration,
                time=line.time,
                staff_id=line.staff_id,
                staff_name=line.staff_name,
                approval_status=line.approval_status,
            )
        )
    return booking
