"""
Booking API tests: creation, conflict gate, status lifecycle, staff
responses, reassignment and service completion.
"""
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import event, select
from sqlalchemy.exc import SQLAlchemyError

from salonops.models import AuditLog, Booking, BookingActivity

from conftest import auth

DAY = "2031-03-03"


async def create_booking(client: AsyncClient, branch_id: int, as_uid: str = "owner-a", **overrides):
    payload = {
        "branch_id": branch_id,
        "client": "Jane Client",
        "client_phone": "+61400000000",
        "date": DAY,
        "time": "10:00",
    }
    payload.update(overrides)
    return await client.post("/api/bookings", json=payload, headers=auth(as_uid))


@pytest.fixture
def failing_activity_insert():
    """Make every activity-feed insert fail at flush time."""
    def fail(mapper, connection, target):
        raise SQLAlchemyError("activity table unavailable")

    event.listen(BookingActivity, "before_insert", fail)
    yield
    event.remove(BookingActivity, "before_insert", fail)


# ============================================================================
# CREATE
# ============================================================================

class TestCreateBooking:
    async def test_single_service_with_staff(self, client, branch, staff, haircut):
        """Catalog fills name, price and duration; assigned staff must approve."""
        response = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "AwaitingStaffApproval"
        assert body["service_name"] == "Haircut"
        assert body["duration"] == 30
        assert body["price"] == 45.0
        assert body["staff_name"] == "Sam Stylist"
        assert body["branch_name"] == "Main Street"

    async def test_any_staff_is_pending(self, client, branch, haircut):
        response = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id="any")

        assert response.status_code == 201
        assert response.json()["status"] == "Pending"
        assert response.json()["staff_id"] is None

    async def test_multi_service_lines_run_back_to_back(self, client, branch, staff, staff2, haircut, colour):
        response = await create_booking(
            client,
            branch.id,
            services=[
                {"service_id": str(haircut.id), "staff_id": staff.uid},
                {"service_id": str(colour.id), "staff_id": staff2.uid},
            ],
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "AwaitingStaffApproval"
        assert body["duration"] == 90
        assert body["price"] == 165.0
        assert [(s["time"], s["staff_id"]) for s in body["services"]] == [
            ("10:00", staff.uid),
            ("10:30", staff2.uid),
        ]
        assert all(s["approval_status"] == "pending" for s in body["services"])

    async def test_explicit_status_is_kept(self, client, branch, staff, haircut):
        response = await create_booking(
            client, branch.id, service_id=str(haircut.id), staff_id=staff.uid, status="confirmed"
        )
        assert response.json()["status"] == "Confirmed"

    async def test_records_activity(self, client, async_session, branch, staff, haircut):
        response = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)

        result = await async_session.execute(select(BookingActivity))
        activity = result.scalar_one()
        assert str(activity.booking_id) == response.json()["id"]
        assert activity.activity_type == "booking_created"
        assert activity.new_status == "AwaitingStaffApproval"

    async def test_activity_failure_keeps_booking(
        self, client, async_session, branch, staff, haircut, failing_activity_insert
    ):
        response = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)

        assert response.status_code == 201
        booking = await async_session.get(Booking, uuid.UUID(response.json()["id"]))
        assert booking.client == "Jane Client"
        assert (await async_session.execute(select(BookingActivity))).scalars().all() == []

    async def test_requires_service(self, client, branch):
        response = await create_booking(client, branch.id)
        assert response.status_code == 422

    async def test_rejects_bad_time(self, client, branch, haircut):
        response = await create_booking(client, branch.id, service_id=str(haircut.id), time="25:00")
        assert response.status_code == 422

    async def test_unknown_staff(self, client, branch, haircut):
        response = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id="ghost")
        assert response.status_code == 400

    async def test_other_tenants_branch(self, client, branch, other_branch, haircut):
        response = await create_booking(client, other_branch.id, service_id=str(haircut.id))
        assert response.status_code == 404

    async def test_requires_authentication(self, client, branch, haircut):
        response = await client.post(
            "/api/bookings",
            json={"branch_id": branch.id, "client": "X", "date": DAY, "time": "10:00", "service_id": "1"},
        )
        assert response.status_code == 401


# ============================================================================
# CONFLICT GATE
# ============================================================================

class TestConflicts:
    async def test_overlap_for_same_staff_is_409(self, client, branch, staff, haircut):
        first = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        second = await create_booking(
            client, branch.id, service_id=str(haircut.id), staff_id=staff.uid, time="10:15"
        )

        assert second.status_code == 409
        error = second.json()["error"]
        assert error["code"] == "BOOKING_CONFLICT"
        assert error["details"]["conflicts"][0]["appointment_id"] == first.json()["id"]
        assert error["details"]["conflicts"][0]["start"] == "10:00"

    async def test_back_to_back_allowed(self, client, branch, staff, haircut):
        await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        response = await create_booking(
            client, branch.id, service_id=str(haircut.id), staff_id=staff.uid, time="10:30"
        )
        assert response.status_code == 201

    async def test_different_staff_allowed(self, client, branch, staff, staff2, haircut):
        await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        response = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff2.uid)
        assert response.status_code == 201

    async def test_canceled_booking_frees_slot(self, client, branch, staff, haircut):
        first = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        await client.patch(
            f"/api/bookings/{first.json()['id']}/status", json={"status": "Canceled"}, headers=auth("owner-a")
        )
        response = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        assert response.status_code == 201

    async def test_multi_service_conflict_on_second_line(self, client, branch, staff, staff2, haircut, colour):
        await create_booking(
            client, branch.id, service_id=str(haircut.id), staff_id=staff2.uid, time="10:45"
        )
        response = await create_booking(
            client,
            branch.id,
            services=[
                {"service_id": str(haircut.id), "staff_id": staff.uid},
                {"service_id": str(colour.id), "staff_id": staff2.uid},
            ],
        )
        assert response.status_code == 409

    async def test_same_staff_overlapping_lines_in_one_booking(self, client, branch, staff, haircut, colour):
        response = await create_booking(
            client,
            branch.id,
            services=[
                {"service_id": str(haircut.id), "staff_id": staff.uid, "time": "10:00"},
                {"service_id": str(colour.id), "staff_id": staff.uid, "time": "10:15"},
            ],
        )
        assert response.status_code == 409


# ============================================================================
# LIST / GET
# ============================================================================

class TestListBookings:
    async def test_staff_only_see_their_bookings(self, client, branch, staff, staff2, haircut):
        await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff2.uid)

        owner_view = await client.get("/api/bookings", headers=auth("owner-a"))
        staff_view = await client.get("/api/bookings", headers=auth(staff.uid))

        assert len(owner_view.json()) == 2
        assert [b["staff_id"] for b in staff_view.json()] == [staff.uid]

    async def test_status_filter_is_normalized(self, client, branch, staff, haircut):
        await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        response = await client.get(
            "/api/bookings", params={"status": "awaiting_staff_approval"}, headers=auth("owner-a")
        )
        assert len(response.json()) == 1

    async def test_unknown_status_filter(self, client, branch, staff, haircut):
        await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        response = await client.get("/api/bookings", params={"status": "bogus"}, headers=auth("owner-a"))
        assert response.status_code == 400

    async def test_staff_cannot_read_unassigned_booking(self, client, branch, staff, staff2, haircut):
        created = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff2.uid)
        response = await client.get(f"/api/bookings/{created.json()['id']}", headers=auth(staff.uid))
        assert response.status_code == 403

    async def test_missing_booking(self, client, owner):
        response = await client.get(
            "/api/bookings/00000000-0000-0000-0000-000000000000", headers=auth("owner-a")
        )
        assert response.status_code == 404


# ============================================================================
# STATUS
# ============================================================================

class TestStatusUpdate:
    async def test_invalid_transition(self, client, branch, haircut):
        created = await create_booking(client, branch.id, service_id=str(haircut.id))
        response = await client.patch(
            f"/api/bookings/{created.json()['id']}/status", json={"status": "Completed"}, headers=auth("owner-a")
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TRANSITION"
        assert response.json()["error"]["details"] == {"current": "Pending", "requested": "Completed"}

    async def test_completed_marks_services(self, client, branch, staff, staff2, haircut, colour):
        created = await create_booking(
            client,
            branch.id,
            status="Confirmed",
            services=[
                {"service_id": str(haircut.id), "staff_id": staff.uid},
                {"service_id": str(colour.id), "staff_id": staff2.uid},
            ],
        )
        response = await client.patch(
            f"/api/bookings/{created.json()['id']}/status", json={"status": "Completed"}, headers=auth("owner-a")
        )

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["status"] == "Completed"
        assert all(s["completion_status"] == "completed" for s in body["booking"]["services"])

    async def test_reactivating_into_conflict(self, client, branch, staff, haircut):
        first = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        booking_id = first.json()["id"]
        await client.patch(f"/api/bookings/{booking_id}/status", json={"status": "StaffRejected"}, headers=auth("owner-a"))
        await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)

        response = await client.patch(
            f"/api/bookings/{booking_id}/status", json={"status": "AwaitingStaffApproval"}, headers=auth("owner-a")
        )
        assert response.status_code == 409

    async def test_other_tenant_forbidden(self, client, branch, other_owner, haircut):
        created = await create_booking(client, branch.id, service_id=str(haircut.id))
        response = await client.patch(
            f"/api/bookings/{created.json()['id']}/status", json={"status": "Canceled"}, headers=auth("owner-b")
        )
        assert response.status_code == 403


# ============================================================================
# STAFF RESPONSE
# ============================================================================

class TestStaffResponse:
    async def test_accept_single_service(self, client, branch, staff, haircut):
        created = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        response = await client.post(
            f"/api/bookings/{created.json()['id']}/staff-response",
            json={"action": "accept"},
            headers=auth(staff.uid),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "Confirmed"
        assert response.json()["booking"]["accepted_by_staff_name"] == "Sam Stylist"

    async def test_reject_requires_reason(self, client, branch, staff, haircut):
        created = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        response = await client.post(
            f"/api/bookings/{created.json()['id']}/staff-response",
            json={"action": "reject", "rejection_reason": "   "},
            headers=auth(staff.uid),
        )
        assert response.status_code == 400

    async def test_unassigned_staff_forbidden(self, client, branch, staff, staff2, haircut):
        created = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        response = await client.post(
            f"/api/bookings/{created.json()['id']}/staff-response",
            json={"action": "accept"},
            headers=auth(staff2.uid),
        )
        assert response.status_code == 403

    async def test_multi_service_partial_then_full(self, client, branch, staff, staff2, haircut, colour):
        created = await create_booking(
            client,
            branch.id,
            services=[
                {"service_id": str(haircut.id), "staff_id": staff.uid},
                {"service_id": str(colour.id), "staff_id": staff2.uid},
            ],
        )
        booking_id = created.json()["id"]

        first = await client.post(
            f"/api/bookings/{booking_id}/staff-response", json={"action": "accept"}, headers=auth(staff.uid)
        )
        assert first.json()["status"] == "PartiallyApproved"

        second = await client.post(
            f"/api/bookings/{booking_id}/staff-response", json={"action": "accept"}, headers=auth(staff2.uid)
        )
        assert second.json()["status"] == "Confirmed"

    async def test_multi_service_reject(self, client, branch, staff, staff2, haircut, colour):
        created = await create_booking(
            client,
            branch.id,
            services=[
                {"service_id": str(haircut.id), "staff_id": staff.uid},
                {"service_id": str(colour.id), "staff_id": staff2.uid},
            ],
        )
        response = await client.post(
            f"/api/bookings/{created.json()['id']}/staff-response",
            json={"action": "reject", "rejection_reason": "Off sick"},
            headers=auth(staff2.uid),
        )

        body = response.json()
        assert body["status"] == "StaffRejected"
        rejected = [s for s in body["booking"]["services"] if s["approval_status"] == "rejected"]
        assert [s["staff_id"] for s in rejected] == [staff2.uid]
        assert rejected[0]["rejection_reason"] == "Off sick"

    async def test_not_awaiting_approval(self, client, branch, staff, haircut):
        created = await create_booking(
            client, branch.id, service_id=str(haircut.id), staff_id=staff.uid, status="Confirmed"
        )
        response = await client.post(
            f"/api/bookings/{created.json()['id']}/staff-response",
            json={"action": "accept"},
            headers=auth(staff.uid),
        )
        assert response.status_code == 400


# ============================================================================
# REASSIGN
# ============================================================================

class TestReassign:
    async def test_assign_pending_booking(self, client, branch, staff, haircut):
        created = await create_booking(client, branch.id, service_id=str(haircut.id))
        response = await client.post(
            f"/api/bookings/{created.json()['id']}/reassign",
            json={"staff_id": staff.uid},
            headers=auth("owner-a"),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "AwaitingStaffApproval"
        assert response.json()["booking"]["staff_id"] == staff.uid

    async def test_rejected_line_goes_back_to_pending(self, client, branch, staff, staff2, haircut, colour):
        created = await create_booking(
            client,
            branch.id,
            services=[
                {"service_id": str(haircut.id), "staff_id": staff.uid},
                {"service_id": str(colour.id), "staff_id": staff.uid},
            ],
        )
        booking_id = created.json()["id"]
        await client.post(
            f"/api/bookings/{booking_id}/staff-response",
            json={"action": "reject", "rejection_reason": "Double shift"},
            headers=auth(staff.uid),
        )

        response = await client.post(
            f"/api/bookings/{booking_id}/reassign", json={"staff_id": staff2.uid}, headers=auth("owner-a")
        )

        body = response.json()
        assert body["status"] == "AwaitingStaffApproval"
        assert body["booking"]["rejection_reason"] is None
        assert all(s["staff_id"] == staff2.uid for s in body["booking"]["services"])
        assert all(s["approval_status"] == "pending" for s in body["booking"]["services"])

    async def test_new_staff_conflict(self, client, branch, staff, staff2, haircut):
        await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff2.uid)
        created = await create_booking(client, branch.id, service_id=str(haircut.id))
        response = await client.post(
            f"/api/bookings/{created.json()['id']}/reassign",
            json={"staff_id": staff2.uid},
            headers=auth("owner-a"),
        )
        assert response.status_code == 409

    async def test_confirmed_booking_cannot_be_reassigned(self, client, branch, staff, haircut):
        created = await create_booking(
            client, branch.id, service_id=str(haircut.id), staff_id=staff.uid, status="Confirmed"
        )
        response = await client.post(
            f"/api/bookings/{created.json()['id']}/reassign", json={"staff_id": staff.uid}, headers=auth("owner-a")
        )
        assert response.status_code == 400

    async def test_staff_cannot_reassign(self, client, branch, staff, haircut):
        created = await create_booking(client, branch.id, service_id=str(haircut.id))
        response = await client.post(
            f"/api/bookings/{created.json()['id']}/reassign", json={"staff_id": staff.uid}, headers=auth(staff.uid)
        )
        assert response.status_code == 403


# ============================================================================
# SERVICE COMPLETION
# ============================================================================

class TestServiceComplete:
    async def test_progress_then_completed(self, client, branch, staff, staff2, haircut, colour):
        created = await create_booking(
            client,
            branch.id,
            status="Confirmed",
            services=[
                {"service_id": str(haircut.id), "staff_id": staff.uid},
                {"service_id": str(colour.id), "staff_id": staff2.uid},
            ],
        )
        booking_id = created.json()["id"]

        first = await client.post(f"/api/bookings/{booking_id}/service-complete", json={}, headers=auth(staff.uid))
        assert first.json()["status"] == "Confirmed"
        assert first.json()["progress"] == {"completed": 1, "total": 2, "percentage": 50}

        again = await client.post(f"/api/bookings/{booking_id}/service-complete", json={}, headers=auth(staff.uid))
        assert again.status_code == 400

        second = await client.post(f"/api/bookings/{booking_id}/service-complete", json={}, headers=auth(staff2.uid))
        assert second.json()["status"] == "Completed"
        assert second.json()["progress"]["percentage"] == 100

    async def test_only_confirmed(self, client, branch, staff, haircut):
        created = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        response = await client.post(
            f"/api/bookings/{created.json()['id']}/service-complete", json={}, headers=auth(staff.uid)
        )
        assert response.status_code == 400

    async def test_other_staffs_line(self, client, branch, staff, staff2, haircut, colour):
        created = await create_booking(
            client,
            branch.id,
            status="Confirmed",
            services=[
                {"service_id": str(haircut.id), "staff_id": staff.uid},
                {"service_id": str(colour.id), "staff_id": staff2.uid},
            ],
        )
        other_line = created.json()["services"][1]["id"]
        response = await client.post(
            f"/api/bookings/{created.json()['id']}/service-complete",
            json={"line_id": other_line},
            headers=auth(staff.uid),
        )
        assert response.status_code == 403


# ============================================================================
# AVAILABILITY
# ============================================================================

class TestAvailabilityEndpoint:
    async def test_booked_slots_are_hidden(self, client, branch, staff, haircut):
        await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        response = await client.post(
            "/api/bookings/availability",
            json={"branch_id": branch.id, "date": DAY, "staff_id": staff.uid, "duration": 30},
            headers=auth("owner-a"),
        )

        slots = response.json()["slots"]
        assert slots[0] == "09:00"
        assert slots[-1] == "16:30"
        assert "10:00" not in slots and "10:15" not in slots
        assert "10:30" in slots

    async def test_exclude_booking_being_edited(self, client, branch, staff, haircut):
        created = await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
        response = await client.post(
            "/api/bookings/availability",
            json={
                "branch_id": branch.id,
                "date": DAY,
                "staff_id": staff.uid,
                "duration": 30,
                "exclude_booking_id": created.json()["id"],
            },
            headers=auth("owner-a"),
        )
        assert "10:00" in response.json()["slots"]

    async def test_wizard_selections(self, client, branch, staff):
        response = await client.post(
            "/api/bookings/availability",
            json={
                "branch_id": branch.id,
                "date": DAY,
                "staff_id": staff.uid,
                "duration": 30,
                "selections": [{"time": "09:00", "duration": 60, "staff_id": staff.uid}],
            },
            headers=auth("owner-a"),
        )
        assert response.json()["slots"][0] == "10:00"


async def test_booking_writes_no_audit_rows(client, async_session, branch, staff, haircut):
    """Bookings go to the activity feed, not the admin audit trail."""
    await create_booking(client, branch.id, service_id=str(haircut.id), staff_id=staff.uid)
    result = await async_session.execute(select(AuditLog))
    assert result.scalars().all() == []
