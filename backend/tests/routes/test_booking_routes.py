"""
API tests for /api/v1/bookings.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from app.api.dependencies import get_booking_service, get_clock
from app.core.exceptions import TransientFailureException
from app.core.ulid_helper import generate_ulid
from app.main import app
from app.services.credit_service import CreditService

BOOKINGS = "/api/v1/bookings"


@pytest.fixture
def booking_payload(course, monday_rule, target_monday):
    return {
        "course_id": course.id,
        "booking_date": target_monday.isoformat(),
        "start_time": "14:00",
    }


@pytest.fixture
def created_booking(client, auth_headers, booking_payload, funded_student):
    response = client.post(BOOKINGS, json=booking_payload, headers=auth_headers(funded_student))
    assert response.status_code == 201
    return response.json()


class TestIdentity:
    def test_missing_header_is_401_problem(self, client):
        response = client.get(BOOKINGS)

        assert response.status_code == 401
        assert response.headers["content-type"].startswith("application/problem+json")
        body = response.json()
        assert body["code"] == "MISSING_IDENTITY"
        assert body["status"] == 401
        assert body["instance"] == BOOKINGS

    def test_malformed_header_is_401(self, client):
        response = client.get(BOOKINGS, headers={"X-User-Id": "not-a-ulid"})
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_IDENTITY"


class TestCreateBooking:
    def test_create_returns_booking(self, client, auth_headers, created_booking, funded_student):
        assert created_booking["student_id"] == funded_student
        assert created_booking["status"] == "scheduled"
        assert created_booking["credits_charged"] == 1.0
        assert created_booking["start_time"].startswith("14:00")

        balance = client.get("/api/v1/credits/balance", headers=auth_headers(funded_student))
        assert balance.json()["balance"] == 9.0

    def test_slot_taken_by_other_student_is_conflict(
        self, db, client, auth_headers, created_booking, booking_payload, other_student_id
    ):
        CreditService(db).grant_credits(user_id=other_student_id, amount=5)
        response = client.post(
            BOOKINGS, json=booking_payload, headers=auth_headers(other_student_id)
        )

        assert response.status_code == 409
        assert response.json()["code"] == "SLOT_NO_LONGER_AVAILABLE"

    def test_insufficient_credits_is_422(self, client, auth_headers, booking_payload, student_id):
        response = client.post(BOOKINGS, json=booking_payload, headers=auth_headers(student_id))

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "INSUFFICIENT_CREDITS"
        assert body["errors"]["required"] == "1.00"

    def test_invalid_body_is_validation_problem(self, client, auth_headers, funded_student):
        response = client.post(
            BOOKINGS,
            json={"booking_date": "2024-12-23", "start_time": "14:00", "extra": 1},
            headers=auth_headers(funded_student),
        )

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "validation_error"
        assert isinstance(body["errors"], list)

    def test_transient_failure_is_503_with_retry_after(
        self, client, auth_headers, booking_payload, funded_student
    ):
        failing = MagicMock()
        failing.reserve_slot.side_effect = TransientFailureException()
        app.dependency_overrides[get_booking_service] = lambda: failing

        response = client.post(BOOKINGS, json=booking_payload, headers=auth_headers(funded_student))

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "2"
        assert response.json()["code"] == "TRANSIENT_FAILURE"


class TestBookingReads:
    def test_list_paginates(self, client, auth_headers, created_booking, funded_student):
        body = client.get(BOOKINGS, headers=auth_headers(funded_student)).json()

        assert body["total"] == 1
        assert body["page"] == 1
        assert body["items"][0]["id"] == created_booking["id"]

    def test_list_filters_by_status(self, client, auth_headers, created_booking, funded_student):
        body = client.get(
            BOOKINGS, params={"status": "cancelled"}, headers=auth_headers(funded_student)
        ).json()
        assert body["total"] == 0

    def test_get_booking_as_outsider_is_403(
        self, client, auth_headers, created_booking, other_student_id
    ):
        response = client.get(
            f"{BOOKINGS}/{created_booking['id']}", headers=auth_headers(other_student_id)
        )
        assert response.status_code == 403

    def test_unknown_booking_is_404(self, client, auth_headers, student_id):
        response = client.get(f"{BOOKINGS}/{generate_ulid()}", headers=auth_headers(student_id))
        assert response.status_code == 404
        assert response.json()["title"] == "Not Found"

    def test_upcoming_and_history(self, client, auth_headers, created_booking, funded_student):
        upcoming = client.get(f"{BOOKINGS}/upcoming", headers=auth_headers(funded_student))
        history = client.get(f"{BOOKINGS}/history", headers=auth_headers(funded_student))

        assert [b["id"] for b in upcoming.json()["items"]] == [created_booking["id"]]
        assert history.json()["total"] == 0

    def test_access_for_participant(self, client, auth_headers, created_booking, instructor_id):
        response = client.get(
            f"{BOOKINGS}/{created_booking['id']}/access", headers=auth_headers(instructor_id)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["booking_id"] == created_booking["id"]
        assert body["is_instructor"] is True
        assert body["room_link"].endswith(body["room_name"])


class TestBookingStatusChanges:
    def test_cancel_refunds_student(self, client, auth_headers, created_booking, funded_student):
        response = client.request(
            "DELETE",
            f"{BOOKINGS}/{created_booking['id']}",
            json={"reason": "Travelling"},
            headers=auth_headers(funded_student),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["refunded"] is True
        assert body["credits_refunded"] == 1.0
        assert body["booking"]["status"] == "cancelled"
        assert body["booking"]["cancellation_reason"] == "Travelling"

    def test_cancel_without_body(self, client, auth_headers, created_booking, instructor_id):
        response = client.delete(
            f"{BOOKINGS}/{created_booking['id']}", headers=auth_headers(instructor_id)
        )
        assert response.status_code == 200
        assert response.json()["refunded"] is True

    def test_second_cancel_is_404(self, client, auth_headers, created_booking, funded_student):
        url = f"{BOOKINGS}/{created_booking['id']}"
        client.delete(url, headers=auth_headers(funded_student))
        assert client.delete(url, headers=auth_headers(funded_student)).status_code == 404

    def test_instructor_completes(self, client, auth_headers, created_booking, instructor_id):
        response = client.put(
            f"{BOOKINGS}/{created_booking['id']}/complete", headers=auth_headers(instructor_id)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    def test_student_cannot_complete(self, client, auth_headers, created_booking, funded_student):
        response = client.put(
            f"{BOOKINGS}/{created_booking['id']}/complete", headers=auth_headers(funded_student)
        )
        assert response.status_code == 403
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_malformed_booking_id_is_422(self, client, auth_headers, funded_student):
        response = client.get(f"{BOOKINGS}/not-a-ulid", headers=auth_headers(funded_student))
        assert response.status_code == 422


class TestCalendarAndAttendance:
    def test_user_calendar(self, client, auth_headers, created_booking, funded_student):
        response = client.get(
            f"{BOOKINGS}/calendar",
            params={"year": 2024, "month": 12},
            headers=auth_headers(funded_student),
        )

        assert response.status_code == 200
        body = response.json()
        assert [e["id"] for e in body["events"]] == [created_booking["id"]]
        assert body["summary"]["total"] == 1
        assert body["summary"]["scheduled"] == 1

    def test_calendar_month_out_of_range_is_422(self, client, auth_headers, funded_student):
        response = client.get(
            f"{BOOKINGS}/calendar",
            params={"year": 2024, "month": 13},
            headers=auth_headers(funded_student),
        )
        assert response.status_code == 422

    def test_attendance_before_window_is_400(
        self, client, auth_headers, created_booking, funded_student
    ):
        response = client.post(
            f"{BOOKINGS}/{created_booking['id']}/attendance",
            headers=auth_headers(funded_student),
        )
        assert response.status_code == 400

    def test_attendance_inside_window(
        self, client, auth_headers, created_booking, funded_student
    ):
        during_class = datetime(2024, 12, 23, 17, 5, tzinfo=timezone.utc)
        app.dependency_overrides[get_clock] = lambda: (lambda: during_class)

        response = client.post(
            f"{BOOKINGS}/{created_booking['id']}/attendance",
            headers=auth_headers(funded_student),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["attendance_marked_by_id"] == funded_student
        assert body["attended_at"] is not None
