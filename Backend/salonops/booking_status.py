"""
Booking status lifecycle.

Pure helpers shared by the booking routes and the availability engine:
status normalization, the allowed-transition table, deriving a booking's
status from its per-service approvals, and the completion rules for
multi-service bookings.
"""

from enum import Enum
from typing import Iterable, Optional


class BookingStatus(str, Enum):
    PENDING = "Pending"
    AWAITING_STAFF_APPROVAL = "AwaitingStaffApproval"
    PARTIALLY_APPROVED = "PartiallyApproved"
    STAFF_REJECTED = "StaffRejected"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELED = "Canceled"


class ServiceApprovalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    NEEDS_ASSIGNMENT = "needs_assignment"


class ServiceCompletionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


VALID_TRANSITIONS: dict[BookingStatus, tuple[BookingStatus, ...]] = {
    BookingStatus.PENDING: (
        BookingStatus.AWAITING_STAFF_APPROVAL,
        BookingStatus.CANCELED,
    ),
    BookingStatus.AWAITING_STAFF_APPROVAL: (
        BookingStatus.PARTIALLY_APPROVED,
        BookingStatus.CONFIRMED,
        BookingStatus.STAFF_REJECTED,
        BookingStatus.CANCELED,
    ),
    BookingStatus.PARTIALLY_APPROVED: (
        BookingStatus.CONFIRMED,
        BookingStatus.STAFF_REJECTED,
        BookingStatus.CANCELED,
    ),
    BookingStatus.STAFF_REJECTED: (
        BookingStatus.AWAITING_STAFF_APPROVAL,
        BookingStatus.PARTIALLY_APPROVED,
        BookingStatus.CANCELED,
    ),
    BookingStatus.CONFIRMED: (
        BookingStatus.COMPLETED,
        BookingStatus.CANCELED,
    ),
    BookingStatus.COMPLETED: (),
    BookingStatus.CANCELED: (),
}

NON_BLOCKING_STATUSES = frozenset(
    {BookingStatus.CANCELED, BookingStatus.COMPLETED, BookingStatus.STAFF_REJECTED}
)

STATUS_LABELS = {
    BookingStatus.PENDING: "Pending",
    BookingStatus.AWAITING_STAFF_APPROVAL: "Awaiting Staff Approval",
    BookingStatus.PARTIALLY_APPROVED: "Partially Approved",
    BookingStatus.STAFF_REJECTED: "Staff Rejected",
    BookingStatus.CONFIRMED: "Confirmed",
    BookingStatus.COMPLETED: "Completed",
    BookingStatus.CANCELED: "Canceled",
}

# Lowercase, separator-free spelling -> status
_LOOKUP = {status.value.lower(): status for status in BookingStatus}
_LOOKUP["cancelled"] = BookingStatus.CANCELED


def parse_booking_status(value: Optional[str]) -> Optional[BookingStatus]:
    """Strict variant of normalize_booking_status: None for unknown or empty values."""
    if isinstance(value, BookingStatus):
        return value
    if not value:
        return None
    key = "".join(ch for ch in str(value).strip().lower() if ch not in "_- ")
    return _LOOKUP.get(key)


def normalize_booking_status(value: Optional[str]) -> BookingStatus:
    """
    Map any casing/separator variant to a BookingStatus.

    "awaiting_staff_approval", "Awaiting Staff Approval" and
    "AWAITING-STAFF-APPROVAL" all normalize the same way. Unknown or empty
    values fall back to Pending.
    """
    return parse_booking_status(value) or BookingStatus.PENDING


def can_transition(current: Optional[str], requested: Optional[str]) -> bool:
    return normalize_booking_status(requested) in VALID_TRANSITIONS[normalize_booking_status(current)]


def _approval(service) -> str:
    if isinstance(service, dict):
        value = service.get("approval_status")
    else:
        value = getattr(service, "approval_status", None)
    return (value or ServiceApprovalStatus.PENDING.value).lower()


def _completion(service) -> str:
    if isinstance(service, dict):
        value = service.get("completion_status")
    else:
        value = getattr(service, "completion_status", None)
    return (value or ServiceCompletionStatus.PENDING.value).lower()


def calculate_booking_status_from_services(services: Iterable) -> BookingStatus:
    """Derive the booking status from per-service approval states."""
    approvals = [_approval(svc) for svc in services]
    if not approvals:
        return BookingStatus.AWAITING_STAFF_APPROVAL

    if all(a == ServiceApprovalStatus.NEEDS_ASSIGNMENT.value for a in approvals):
        return BookingStatus.PENDING
    if all(a == ServiceApprovalStatus.ACCEPTED.value for a in approvals):
        return BookingStatus.CONFIRMED
    if any(a == ServiceApprovalStatus.REJECTED.value for a in approvals):
        return BookingStatus.STAFF_REJECTED
    if any(a == ServiceApprovalStatus.ACCEPTED.value for a in approvals):
        return BookingStatus.PARTIALLY_APPROVED
    return BookingStatus.AWAITING_STAFF_APPROVAL


def should_block_slots(status: Optional[str]) -> bool:
    """True when an appointment in `status` occupies its time slots."""
    if not status:
        return True
    return normalize_booking_status(status) not in NON_BLOCKING_STATUSES


def are_all_services_completed(services: Iterable) -> bool:
    completions = [_completion(svc) for svc in services]
    return bool(completions) and all(c == ServiceCompletionStatus.COMPLETED.value for c in completions)


def service_completion_progress(services: Iterable) -> dict:
    completions = [_completion(svc) for svc in services]
    completed = sum(1 for c in completions if c == ServiceCompletionStatus.COMPLETED.value)
    total = len(completions)
    return {
        "completed": completed,
        "total": total,
        "percentage": round(completed / total * 100) if total else 0,
    }


def status_label(status: Optional[str]) -> str:
    return STATUS_LABELS[normalize_booking_status(status)]
