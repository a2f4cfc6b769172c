"""Tests for the booking status lifecycle helpers."""
from types import SimpleNamespace

import pytest

from salonops.booking_status import (
    BookingStatus,
    are_all_services_completed,
    calculate_booking_status_from_services,
    can_transition,
    normalize_booking_status,
    parse_booking_status,
    service_completion_progress,
    should_block_slots,
    status_label,
)


class TestNormalize:
    @pytest.mark.parametrize(
        "raw",
        ["AwaitingStaffApproval", "awaiting_staff_approval", "Awaiting Staff Approval", "AWAITING-STAFF-APPROVAL"],
    )
    def test_variants(self, raw):
        assert normalize_booking_status(raw) == BookingStatus.AWAITING_STAFF_APPROVAL

    def test_british_spelling(self):
        assert normalize_booking_status("Cancelled") == BookingStatus.CANCELED

    @pytest.mark.parametrize("raw", [None, "", "bogus"])
    def test_unknown_falls_back_to_pending(self, raw):
        assert normalize_booking_status(raw) == BookingStatus.PENDING

    @pytest.mark.parametrize("raw", ["bogus", "", None, "pending-ish"])
    def test_strict_parse_rejects_unknown(self, raw):
        assert parse_booking_status(raw) is None

    def test_strict_parse_accepts_variants(self):
        assert parse_booking_status("partially approved") == BookingStatus.PARTIALLY_APPROVED
        assert parse_booking_status("cancelled") == BookingStatus.CANCELED

    def test_label(self):
        assert status_label("partially_approved") == "Partially Approved"


class TestTransitions:
    def test_allowed(self):
        assert can_transition("Pending", "AwaitingStaffApproval")
        assert can_transition("Confirmed", "Completed")
        assert can_transition("StaffRejected", "AwaitingStaffApproval")

    def test_rejected(self):
        assert not can_transition("Pending", "Confirmed")
        assert not can_transition("Pending", "Completed")

    @pytest.mark.parametrize("terminal", ["Completed", "Canceled"])
    def test_terminal_states(self, terminal):
        for status in BookingStatus:
            assert not can_transition(terminal, status.value)


class TestDerivedStatus:
    """Status derived from per-service approvals."""

    def test_all_need_assignment(self):
        services = [{"approval_status": "needs_assignment"}, {"approval_status": "needs_assignment"}]
        assert calculate_booking_status_from_services(services) == BookingStatus.PENDING

    def test_all_accepted(self):
        services = [{"approval_status": "accepted"}, {"approval_status": "accepted"}]
        assert calculate_booking_status_from_services(services) == BookingStatus.CONFIRMED

    def test_any_rejected_wins_over_accepted(self):
        services = [{"approval_status": "accepted"}, {"approval_status": "rejected"}]
        assert calculate_booking_status_from_services(services) == BookingStatus.STAFF_REJECTED

    def test_some_accepted(self):
        services = [{"approval_status": "accepted"}, {"approval_status": "pending"}]
        assert calculate_booking_status_from_services(services) == BookingStatus.PARTIALLY_APPROVED

    def test_all_pending(self):
        services = [SimpleNamespace(approval_status="pending"), SimpleNamespace(approval_status=None)]
        assert calculate_booking_status_from_services(services) == BookingStatus.AWAITING_STAFF_APPROVAL

    def test_mixed_pending_and_unassigned(self):
        services = [{"approval_status": "pending"}, {"approval_status": "needs_assignment"}]
        assert calculate_booking_status_from_services(services) == BookingStatus.AWAITING_STAFF_APPROVAL


class TestBlockingAndCompletion:
    @pytest.mark.parametrize("status", ["Canceled", "cancelled", "Completed", "StaffRejected"])
    def test_non_blocking(self, status):
        assert not should_block_slots(status)

    @pytest.mark.parametrize("status", [None, "Pending", "AwaitingStaffApproval", "PartiallyApproved", "Confirmed"])
    def test_blocking(self, status):
        assert should_block_slots(status)

    def test_completion(self):
        services = [{"completion_status": "completed"}, {"completion_status": "pending"}]
        assert not are_all_services_completed(services)
        assert service_completion_progress(services) == {"completed": 1, "total": 2, "percentage": 50}

        services[1]["completion_status"] = "completed"
        assert are_all_services_completed(services)

    def test_no_services_is_not_completed(self):
        assert not are_all_services_completed([])
        assert service_completion_progress([]) == {"completed": 0, "total": 0, "percentage": 0}
