"""
Slot availability and conflict detection.

Everything here is pure: callers load the day's bookings and booking
requests, turn them into `Appointment` values and pass them in. The same
interval rules back both the advisory slot listing shown in the booking
wizard and the conflict gate run before a booking is written.

Times are minutes from midnight in the branch's local time. Intervals are
half-open, so a 10:00-10:30 booking does not collide with one at 10:30.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence

from .booking_status import should_block_slots

DEFAULT_OPEN_TIME = "09:00"
DEFAULT_CLOSE_TIME = "17:00"
SLOT_INTERVAL_MINUTES = 15
MINUTES_PER_DAY = 24 * 60

ANY_STAFF_VALUES = frozenset({"", "any", "null", "none"})

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass(frozen=True)
class OperatingHours:
    open_minutes: int
    close_minutes: int


@dataclass(frozen=True)
class Segment:
    """One staff member's occupied interval."""

    start: int
    end: int
    staff_id: Optional[str] = None


@dataclass(frozen=True)
class Conflict:
    staff_id: str
    start: str
    end: str
    appointment_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "staff_id": self.staff_id,
            "start": self.start,
            "end": self.end,
            "appointment_id": self.appointment_id,
        }


@dataclass
class AppointmentService:
    duration: int
    time: Optional[str] = None
    staff_id: Optional[str] = None
    service_id: Optional[str] = None


@dataclass
class Appointment:
    """A booking or booking request reduced to what scheduling needs."""

    id: Optional[str]
    date: Optional[date]
    time: Optional[str]
    duration: int = 0
    staff_id: Optional[str] = None
    status: Optional[str] = None
    services: list[AppointmentService] = field(default_factory=list)

    @classmethod
    def from_record(cls, record: Any) -> "Appointment":
        """Build from an ORM row or a plain dict with the booking field names."""
        services = [
            AppointmentService(
                duration=int(_field(svc, "duration") or 0),
                time=_field(svc, "time"),
                staff_id=_field(svc, "staff_id"),
                service_id=_field(svc, "service_id"),
            )
            for svc in (_field(record, "services") or [])
        ]
        record_id = _field(record, "id")
        return cls(
            id=str(record_id) if record_id is not None else None,
            date=parse_date(_field(record, "date")),
            time=_field(record, "time"),
            duration=int(_field(record, "duration") or 0),
            staff_id=_field(record, "staff_id"),
            status=_field(record, "status"),
            services=services,
        )


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def is_any_staff(staff_id: Optional[str]) -> bool:
    return staff_id is None or str(staff_id).strip().lower() in ANY_STAFF_VALUES


def parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def parse_time_label(label: Optional[str]) -> Optional[int]:
    """'HH:MM' -> minutes from midnight; '24:00' is accepted as end of day."""
    if not label or not isinstance(label, str):
        return None
    parts = label.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        return None
    hours, minutes = int(parts[0]), int(parts[1])
    if hours == 24 and minutes == 0:
        return MINUTES_PER_DAY
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    minutes %= MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def calculate_end_time(start: str, duration: int) -> Optional[str]:
    start_minutes = parse_time_label(start)
    if start_minutes is None:
        return None
    return format_minutes(start_minutes + duration)


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and b_start < a_end


def resolve_operating_hours(
    hours: Any,
    day: date,
    default_open: str = DEFAULT_OPEN_TIME,
    default_close: str = DEFAULT_CLOSE_TIME,
) -> Optional[OperatingHours]:
    """
    Opening hours for `day`, or None when the branch is closed.

    `hours` is the branch's weekly dict ({"Monday": {"open", "close",
    "closed"}}). Branches with no hours, or the legacy free-text string
    form, use the configured default day.
    """
    if not hours or isinstance(hours, str):
        open_minutes = parse_time_label(default_open)
        close_minutes = parse_time_label(default_close)
    else:
        weekday = WEEKDAYS[day.weekday()]
        entry = hours.get(weekday) or hours.get(weekday.lower())
        if not isinstance(entry, dict) or entry.get("closed"):
            return None
        open_minutes = parse_time_label(entry.get("open"))
        close_minutes = parse_time_label(entry.get("close"))

    if open_minutes is None or close_minutes is None or open_minutes >= close_minutes:
        return None
    return OperatingHours(open_minutes, close_minutes)


def appointment_segments(appointment: Appointment) -> list[Segment]:
    """
    Expand an appointment into per-staff intervals.

    Services without their own time run back to back from the booking time;
    services without staff inherit the booking's staff.
    """
    start = parse_time_label(appointment.time)

    if not appointment.services:
        if start is None or appointment.duration <= 0:
            return []
        return [Segment(start, start + appointment.duration, appointment.staff_id)]

    segments = []
    cursor = start
    for svc in appointment.services:
        svc_start = parse_time_label(svc.time)
        if svc_start is None:
            svc_start = cursor
        if svc_start is None:
            continue
        svc_end = svc_start + max(svc.duration, 0)
        cursor = svc_end
        if svc.duration <= 0:
            continue
        staff_id = svc.staff_id if not is_any_staff(svc.staff_id) else appointment.staff_id
        segments.append(Segment(svc_start, svc_end, staff_id))
    return segments


def _blocking_on(appointments: Iterable[Appointment], day: date, exclude_ids=()) -> list[Appointment]:
    excluded = {str(i) for i in exclude_ids}
    return [
        appt
        for appt in appointments
        if appt.date == day and should_block_slots(appt.status) and appt.id not in excluded
    ]


def staff_busy_intervals(
    appointments: Iterable[Appointment],
    day: date,
    staff_id: str,
    exclude_ids: Sequence = (),
) -> list[Segment]:
    busy = []
    for appt in _blocking_on(appointments, day, exclude_ids):
        busy.extend(seg for seg in appointment_segments(appt) if seg.staff_id == staff_id)
    return busy


def selection_segments(selections: Iterable[AppointmentService]) -> list[Segment]:
    """Segments for services already picked earlier in the same booking wizard."""
    segments = []
    for selection in selections:
        start = parse_time_label(selection.time)
        if start is None or selection.duration <= 0:
            continue
        segments.append(Segment(start, start + selection.duration, selection.staff_id))
    return segments


def get_available_slots(
    day: Any,
    staff_id: Optional[str],
    duration: int,
    appointments: Iterable[Appointment],
    hours: Any = None,
    selections: Iterable[AppointmentService] = (),
    interval: int = SLOT_INTERVAL_MINUTES,
    now: Optional[datetime] = None,
    default_open: str = DEFAULT_OPEN_TIME,
    default_close: str = DEFAULT_CLOSE_TIME,
) -> list[str]:
    """
    Free start times ("HH:MM") for a service of `duration` minutes.

    With "any" staff every slot inside opening hours is returned; the
    conflict gate at write time decides. `now` must be branch-local.
    """
    target = parse_date(day)
    if target is None or duration <= 0 or interval <= 0:
        return []

    opening = resolve_operating_hours(hours, target, default_open, default_close)
    if opening is None:
        return []

    first = -(-opening.open_minutes // interval) * interval
    candidates = list(range(first, opening.close_minutes - duration + 1, interval))

    if now is not None and now.date() == target:
        now_minutes = now.hour * 60 + now.minute
        candidates = [start for start in candidates if start > now_minutes]

    if is_any_staff(staff_id):
        return [format_minutes(start) for start in candidates]

    busy = staff_busy_intervals(appointments, target, staff_id)
    busy.extend(seg for seg in selection_segments(selections) if seg.staff_id == staff_id)

    return [
        format_minutes(start)
        for start in candidates
        if not any(intervals_overlap(start, start + duration, seg.start, seg.end) for seg in busy)
    ]


def find_conflicts(
    appointments: Iterable[Appointment],
    day: Any,
    segments: Sequence[Segment],
    exclude_ids: Sequence = (),
) -> list[Conflict]:
    """
    Overlaps between requested `segments` and existing blocking appointments.

    Requested segments are also checked against each other, so one booking
    cannot double-book the same staff member. Segments without a specific
    staff member never conflict.
    """
    target = parse_date(day)
    if target is None:
        return []

    existing = [
        (appt.id, seg)
        for appt in _blocking_on(appointments, target, exclude_ids)
        for seg in appointment_segments(appt)
        if not is_any_staff(seg.staff_id)
    ]

    conflicts = []
    for index, requested in enumerate(segments):
        if is_any_staff(requested.staff_id):
            continue
        for appointment_id, seg in existing:
            if seg.staff_id == requested.staff_id and intervals_overlap(
                requested.start, requested.end, seg.start, seg.end
            ):
                conflicts.append(
                    Conflict(requested.staff_id, format_minutes(seg.start), format_minutes(seg.end), appointment_id)
                )
        for other in segments[index + 1:]:
            if other.staff_id == requested.staff_id and intervals_overlap(
                requested.start, requested.end, other.start, other.end
            ):
                conflicts.append(
                    Conflict(requested.staff_id, format_minutes(other.start), format_minutes(other.end))
                )
    return conflicts
