"""
Tests for slot availability and conflict detection.

Pure functions only; no database.
"""
from datetime import date, datetime

import pytest

from salonops.availability import (
    Appointment,
    AppointmentService,
    Segment,
    appointment_segments,
    calculate_end_time,
    find_conflicts,
    get_available_slots,
    intervals_overlap,
    is_any_staff,
    parse_time_label,
    resolve_operating_hours,
)

MONDAY = date(2031, 3, 3)
HOURS = {
    "Monday": {"open": "09:00", "close": "12:00", "closed": False},
    "Sunday": {"closed": True},
}


def booking(id, time, duration, staff_id="s1", status="Confirmed", services=None, day=MONDAY):
    return Appointment(
        id=id,
        date=day,
        time=time,
        duration=duration,
        staff_id=staff_id,
        status=status,
        services=services or [],
    )


# ─── Time helpers ───────────────────────────────────────────────

class TestTimeHelpers:
    def test_parse_time_label(self):
        assert parse_time_label("09:30") == 570
        assert parse_time_label("00:00") == 0
        assert parse_time_label("24:00") == 1440

    @pytest.mark.parametrize("label", ["", None, "9", "25:00", "10:60", "ab:cd", "10:00:00"])
    def test_parse_time_label_rejects_garbage(self, label):
        assert parse_time_label(label) is None

    def test_calculate_end_time(self):
        assert calculate_end_time("10:45", 30) == "11:15"
        assert calculate_end_time("bad", 30) is None

    def test_intervals_are_half_open(self):
        """Back-to-back intervals do not overlap."""
        assert not intervals_overlap(600, 630, 630, 660)
        assert intervals_overlap(600, 631, 630, 660)

    @pytest.mark.parametrize("value", [None, "", "any", "ANY", " null ", "none"])
    def test_any_staff_values(self, value):
        assert is_any_staff(value)

    def test_named_staff_is_not_any(self):
        assert not is_any_staff("staff-1")


# ─── Operating hours ────────────────────────────────────────────

class TestOperatingHours:
    def test_weekday_hours(self):
        hours = resolve_operating_hours(HOURS, MONDAY)
        assert (hours.open_minutes, hours.close_minutes) == (540, 720)

    def test_closed_day(self):
        assert resolve_operating_hours(HOURS, date(2031, 3, 9)) is None

    def test_missing_day_is_closed(self):
        """A weekly dict without the weekday means closed that day."""
        assert resolve_operating_hours(HOURS, date(2031, 3, 4)) is None

    def test_no_hours_uses_defaults(self):
        hours = resolve_operating_hours(None, MONDAY, "08:00", "10:00")
        assert (hours.open_minutes, hours.close_minutes) == (480, 600)

    def test_lowercase_weekday_keys(self):
        hours = resolve_operating_hours({"monday": {"open": "10:00", "close": "11:00"}}, MONDAY)
        assert hours.open_minutes == 600


# ─── Slot listing ───────────────────────────────────────────────

class TestAvailableSlots:
    def test_empty_day(self):
        slots = get_available_slots(MONDAY, "s1", 60, [], hours=HOURS)
        assert slots[0] == "09:00"
        assert slots[-1] == "11:00"
        assert len(slots) == 9

    def test_booking_blocks_its_staff(self):
        appointments = [booking("b1", "10:00", 30)]
        slots = get_available_slots(MONDAY, "s1", 30, appointments, hours=HOURS)
        assert "09:30" in slots
        assert "09:45" not in slots
        assert "10:00" not in slots
        assert "10:15" not in slots
        assert "10:30" in slots

    def test_other_staff_unaffected(self):
        appointments = [booking("b1", "10:00", 30, staff_id="s2")]
        slots = get_available_slots(MONDAY, "s1", 30, appointments, hours=HOURS)
        assert "10:00" in slots

    def test_non_blocking_statuses_ignored(self):
        appointments = [
            booking("b1", "10:00", 30, status="Canceled"),
            booking("b2", "10:30", 30, status="StaffRejected"),
            booking("b3", "11:00", 30, status="Completed"),
        ]
        slots = get_available_slots(MONDAY, "s1", 30, appointments, hours=HOURS)
        assert {"10:00", "10:30", "11:00"} <= set(slots)

    def test_missing_status_blocks(self):
        appointments = [booking("b1", "10:00", 30, status=None)]
        assert "10:00" not in get_available_slots(MONDAY, "s1", 30, appointments, hours=HOURS)

    def test_any_staff_returns_all_slots(self):
        appointments = [booking("b1", "10:00", 30)]
        slots = get_available_slots(MONDAY, "any", 30, appointments, hours=HOURS)
        assert "10:00" in slots
        assert len(slots) == 11

    def test_multi_service_segments_block_each_staff(self):
        appointments = [
            booking(
                "b1",
                "09:00",
                90,
                staff_id=None,
                services=[
                    AppointmentService(duration=30, staff_id="s1"),
                    AppointmentService(duration=60, staff_id="s2"),
                ],
            )
        ]
        s1 = get_available_slots(MONDAY, "s1", 30, appointments, hours=HOURS)
        s2 = get_available_slots(MONDAY, "s2", 30, appointments, hours=HOURS)
        assert "09:00" not in s1 and "09:30" in s1
        assert "09:30" not in s2 and "10:15" not in s2 and "10:30" in s2

    def test_selections_block_like_bookings(self):
        selections = [AppointmentService(duration=60, time="09:00", staff_id="s1")]
        slots = get_available_slots(MONDAY, "s1", 30, [], hours=HOURS, selections=selections)
        assert slots[0] == "10:00"

    def test_past_slots_dropped_today(self):
        now = datetime(2031, 3, 3, 10, 5)
        slots = get_available_slots(MONDAY, "s1", 30, [], hours=HOURS, now=now)
        assert slots[0] == "10:15"

    def test_now_on_other_day_ignored(self):
        now = datetime(2031, 3, 2, 23, 0)
        assert get_available_slots(MONDAY, "s1", 30, [], hours=HOURS, now=now)[0] == "09:00"

    def test_first_slot_aligned_to_interval(self):
        hours = {"Monday": {"open": "09:10", "close": "10:00"}}
        assert get_available_slots(MONDAY, "s1", 15, [], hours=hours) == ["09:15", "09:30", "09:45"]

    def test_closed_day_has_no_slots(self):
        assert get_available_slots(date(2031, 3, 9), "s1", 30, [], hours=HOURS) == []

    def test_duration_longer_than_day(self):
        assert get_available_slots(MONDAY, "s1", 240, [], hours=HOURS) == []

    def test_string_date_accepted(self):
        assert get_available_slots("2031-03-03", "s1", 60, [], hours=HOURS)[0] == "09:00"


# ─── Conflict detection ────────────────────────────────────────

class TestFindConflicts:
    def test_overlap_reported(self):
        conflicts = find_conflicts([booking("b1", "10:00", 60)], MONDAY, [Segment(630, 660, "s1")])
        assert len(conflicts) == 1
        assert conflicts[0].to_dict() == {
            "staff_id": "s1",
            "start": "10:00",
            "end": "11:00",
            "appointment_id": "b1",
        }

    def test_adjacent_is_not_conflict(self):
        assert find_conflicts([booking("b1", "10:00", 60)], MONDAY, [Segment(660, 690, "s1")]) == []

    def test_excluded_appointment_ignored(self):
        conflicts = find_conflicts(
            [booking("b1", "10:00", 60)], MONDAY, [Segment(600, 660, "s1")], exclude_ids=["b1"]
        )
        assert conflicts == []

    def test_other_day_ignored(self):
        other = booking("b1", "10:00", 60, day=date(2031, 3, 4))
        assert find_conflicts([other], MONDAY, [Segment(600, 660, "s1")]) == []

    def test_any_staff_never_conflicts(self):
        assert find_conflicts([booking("b1", "10:00", 60)], MONDAY, [Segment(600, 660, None)]) == []

    def test_requested_segments_checked_against_each_other(self):
        conflicts = find_conflicts([], MONDAY, [Segment(600, 660, "s1"), Segment(630, 690, "s1")])
        assert len(conflicts) == 1
        assert conflicts[0].appointment_id is None

    def test_sequential_services_expand_back_to_back(self):
        appt = booking(
            None,
            "10:00",
            90,
            staff_id="s1",
            services=[AppointmentService(duration=30), AppointmentService(duration=60, staff_id="s2")],
        )
        segments = appointment_segments(appt)
        assert segments == [Segment(600, 630, "s1"), Segment(630, 690, "s2")]
