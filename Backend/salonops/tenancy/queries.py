"""
Tenant-scoped query helpers.

Every tenant table carries `owner_uid` (the salon owner's Firebase uid).
ALL queries for tenant data MUST use these helpers or filter on
`owner_uid == ctx.owner_uid` explicitly.

Usage:
    from salonops.tenancy.queries import scoped_select, require_owned

    branch = await require_owned(session, Branch, branch_id, ctx.owner_uid)
    stmt = scoped_select(Service, ctx.owner_uid).where(Service.name.ilike("%cut%"))
"""

from datetime import date
from typing import Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..availability import Appointment
from ..models import Booking, BookingRequest, Branch, User, UserRole

T = TypeVar("T")


# ────────────────────────────────────────────────────────────────
# Composable Query Helpers
# ────────────────────────────────────────────────────────────────

def scoped_select(model: Type[T], owner_uid: str) -> Select:
    """SELECT pre-filtered to one tenant."""
    return select(model).where(model.owner_uid == owner_uid)


def tenant_filter(model: Type[T], owner_uid: str):
    return model.owner_uid == owner_uid


async def require_owned(
    session: AsyncSession,
    model: Type[T],
    entity_id,
    owner_uid: Optional[str],
) -> Optional[T]:
    """
    Fetch an entity by primary key, validating tenant ownership.
    Returns None if not found or owned by another tenant.
    """
    if owner_uid is None:
        return None
    result = await session.execute(
        select(model).where(model.id == entity_id, model.owner_uid == owner_uid)
    )
    return result.scalar_one_or_none()


# ────────────────────────────────────────────────────────────────
# Staff Queries
# ────────────────────────────────────────────────────────────────

async def get_tenant_staff(
    session: AsyncSession,
    owner_uid: str,
    staff_uid: str,
) -> Optional[User]:
    """A staff account (salon_staff or branch admin) belonging to the tenant."""
    result = await session.execute(
        select(User).where(
            User.uid == staff_uid,
            User.owner_uid == owner_uid,
            User.role.in_([r.value for r in (UserRole.SALON_STAFF, UserRole.SALON_BRANCH_ADMIN)]),
        )
    )
    return result.scalar_one_or_none()


async def list_tenant_staff(
    session: AsyncSession,
    owner_uid: str,
    branch_id: Optional[int] = None,
) -> Sequence[User]:
    query = select(User).where(
        User.owner_uid == owner_uid,
        User.role.in_([r.value for r in (UserRole.SALON_STAFF, UserRole.SALON_BRANCH_ADMIN)]),
    )
    if branch_id is not None:
        query = query.where(User.branch_id == branch_id)
    result = await session.execute(query.order_by(User.name))
    return result.scalars().all()


async def count_tenant_staff(session: AsyncSession, owner_uid: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(User).where(
            User.owner_uid == owner_uid,
            User.role.in_([r.value for r in (UserRole.SALON_STAFF, UserRole.SALON_BRANCH_ADMIN)]),
        )
    )
    return result.scalar_one()


async def count_branches(session: AsyncSession, owner_uid: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(Branch).where(Branch.owner_uid == owner_uid)
    )
    return result.scalar_one()


# ────────────────────────────────────────────────────────────────
# Scheduling Queries
# ────────────────────────────────────────────────────────────────

async def list_day_appointments(
    session: AsyncSession,
    owner_uid: str,
    branch_id: int,
    day: date,
) -> list[Appointment]:
    """
    Bookings and open booking requests for one branch and day.

    Status filtering is left to the availability engine so every caller
    applies the same blocking rule. Converted requests are skipped because
    their booking is already in the list.
    """
    bookings = await session.execute(
        scoped_select(Booking, owner_uid).where(Booking.branch_id == branch_id, Booking.date == day)
    )
    requests = await session.execute(
        scoped_select(BookingRequest, owner_uid).where(
            BookingRequest.branch_id == branch_id,
            BookingRequest.date == day,
            BookingRequest.booking_id.is_(None),
        )
    )
    appointments = [Appointment.from_record(b) for b in bookings.scalars().all()]
    appointments.extend(Appointment.from_record(r) for r in requests.scalars().all())
    return appointments
