"""Booking activity feed."""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Booking, BookingActivity

logger = logging.getLogger(__name__)

ACTIVITY_BOOKING_CREATED = "booking_created"
ACTIVITY_STATUS_CHANGED = "booking_status_changed"
ACTIVITY_STAFF_ACCEPTED = "booking_staff_accepted"
ACTIVITY_STAFF_REJECTED = "booking_staff_rejected"
ACTIVITY_REASSIGNED = "booking_reassigned"
ACTIVITY_SERVICE_COMPLETED = "service_completed"
ACTIVITY_BOOKING_COMPLETED = "booking_completed"


async def record_activity(
    session: AsyncSession,
    booking: Booking,
    activity_type: str,
    *,
    previous_status: Optional[str] = None,
    staff_uid: Optional[str] = None,
    staff_name: Optional[str] = None,
    details: Optional[dict] = None,
) -> Optional[BookingActivity]:
    """
    Append an activity row for `booking`.

    Feed writes never fail the request: the row is inserted inside a
    savepoint, and a failed insert is rolled back to it, logged, and None
    is returned. The caller's pending changes are flushed first so their
    errors still propagate.
    """
    await session.flush()

    activity = BookingActivity(
        owner_uid=booking.owner_uid,
        booking_id=booking.id,
        booking_code=booking.booking_code,
        activity_type=activity_type,
        client_name=booking.client,
        service_name=booking.service_name,
        branch_name=booking.branch_name,
        staff_name=staff_name or booking.staff_name,
        staff_uid=staff_uid or booking.staff_id,
        price=booking.price,
        date=booking.date.isoformat() if booking.date else None,
        time=booking.time,
        previous_status=previous_status,
        new_status=booking.status,
        details=details,
    )
    try:
        async with session.begin_nested():
            session.add(activity)
            await session.flush()
    except SQLAlchemyError as e:
        logger.error(f"Failed to record {activity_type} activity for booking {booking.id}: {e}")
        return None

    logger.debug(f"Activity {activity_type} recorded for booking {booking.id}")
    return activity
