"""
API tests for /api/v1/availability.
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.ulid_helper import generate_ulid

AVAILABILITY = "/api/v1/availability"


@pytest.fixture
def slot_params(course, target_monday):
    day = target_monday.isoformat()
    return {"course_id": course.id, "start_date": day, "end_date": day}


class TestSlotQuery:
    def test_slots_are_public(self, client, monday_rule, slot_params):
        response = client.get(f"{AVAILABILITY}/slots", params=slot_params)

        assert response.status_code == 200
        body = response.json()
        assert body["timezone"] == "America/Sao_Paulo"
        assert len(body["slots"]) == 9
        assert body["slots"][0] == {
            "date": "2024-12-23",
            "start_time": "09:00",
            "end_time": "10:00",
        }
        assert body["slots_by_date"]["2024-12-23"][-1] == "17:00"

    def test_reversed_range_is_400(self, client, course):
        response = client.get(
            f"{AVAILABILITY}/slots",
            params={"course_id": course.id, "start_date": "2024-12-31", "end_date": "2024-12-01"},
        )
        assert response.status_code == 400

    def test_unknown_course_is_404(self, client):
        response = client.get(
            f"{AVAILABILITY}/slots",
            params={
                "course_id": generate_ulid(),
                "start_date": "2024-12-23",
                "end_date": "2024-12-23",
            },
        )
        assert response.status_code == 404

    def test_missing_dates_are_422(self, client, course):
        response = client.get(f"{AVAILABILITY}/slots", params={"course_id": course.id})
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_neither_course_nor_instructor_is_400(self, client, target_monday):
        day = target_monday.isoformat()
        response = client.get(
            f"{AVAILABILITY}/slots", params={"start_date": day, "end_date": day}
        )
        assert response.status_code == 400
        assert response.json()["code"] == "ValidationException"

    def test_instructor_only_query_spans_their_courses(
        self, client, course, monday_rule, instructor_id, target_monday
    ):
        day = target_monday.isoformat()
        response = client.get(
            f"{AVAILABILITY}/slots",
            params={"instructor_id": instructor_id, "start_date": day, "end_date": day},
        )

        assert response.status_code == 200
        body = response.json()
        assert "course_id" not in body
        assert body["instructor_id"] == instructor_id
        assert body["timezone"] == "America/Sao_Paulo"
        assert len(body["slots"]) == 9
        assert body["slots"][0] == {
            "date": "2024-12-23",
            "start_time": "09:00",
            "end_time": "10:00",
            "course_id": course.id,
            "timezone": "America/Sao_Paulo",
        }

    def test_instructor_without_courses_is_404(self, client, target_monday):
        day = target_monday.isoformat()
        response = client.get(
            f"{AVAILABILITY}/slots",
            params={"instructor_id": generate_ulid(), "start_date": day, "end_date": day},
        )
        assert response.status_code == 404

    def test_locked_database_is_503_with_retry_after(self, client, slot_params, monkeypatch):
        def locked(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(Session, "query", locked)

        response = client.get(f"{AVAILABILITY}/slots", params=slot_params)

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "2"
        assert response.json()["code"] == "TRANSIENT_FAILURE"


class TestInstructorManagement:
    def test_add_rule_then_read_configuration(self, client, auth_headers, course, instructor_id):
        created = client.post(
            f"{AVAILABILITY}/recurring",
            json={
                "course_id": course.id,
                "day_of_week": 2,
                "start_time": "08:00",
                "end_time": "00:00",
            },
            headers=auth_headers(instructor_id),
        )
        assert created.status_code == 201

        config = client.get(
            f"{AVAILABILITY}/instructor",
            params={"course_id": course.id},
            headers=auth_headers(instructor_id),
        ).json()
        assert [r["id"] for r in config["recurring_rules"]] == [created.json()["id"]]
        assert config["policy"]["slot_duration_hours"] == 1

    def test_student_cannot_manage_availability(self, client, auth_headers, course, student_id):
        response = client.post(
            f"{AVAILABILITY}/block",
            json={"course_id": course.id, "date": "2024-12-25"},
            headers=auth_headers(student_id),
        )
        assert response.status_code == 403

    def test_weekday_out_of_range_is_422(self, client, auth_headers, course, instructor_id):
        response = client.post(
            f"{AVAILABILITY}/recurring",
            json={
                "course_id": course.id,
                "day_of_week": 9,
                "start_time": "08:00",
                "end_time": "10:00",
            },
            headers=auth_headers(instructor_id),
        )
        assert response.status_code == 422

    def test_deactivate_rule(self, client, auth_headers, course, monday_rule, instructor_id):
        response = client.delete(
            f"{AVAILABILITY}/recurring/{monday_rule.id}",
            params={"course_id": course.id},
            headers=auth_headers(instructor_id),
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False

    def test_specific_removal_hides_slots(
        self, client, auth_headers, course, monday_rule, instructor_id, slot_params
    ):
        response = client.post(
            f"{AVAILABILITY}/specific",
            json={
                "course_id": course.id,
                "date": slot_params["start_date"],
                "start_time": "09:00",
                "end_time": "12:00",
                "is_available": False,
                "reason": "Dentist",
            },
            headers=auth_headers(instructor_id),
        )
        assert response.status_code == 201

        slots = client.get(f"{AVAILABILITY}/slots", params=slot_params).json()["slots"]
        assert slots[0]["start_time"] == "12:00"

    def test_block_date_clears_slots(
        self, client, auth_headers, course, monday_rule, instructor_id, slot_params
    ):
        assert client.get(f"{AVAILABILITY}/slots", params=slot_params).json()["slots"]

        response = client.post(
            f"{AVAILABILITY}/block",
            json={"course_id": course.id, "date": slot_params["start_date"]},
            headers=auth_headers(instructor_id),
        )
        assert response.status_code == 201

        assert client.get(f"{AVAILABILITY}/slots", params=slot_params).json()["slots"] == []

    def test_partial_policy_update(self, client, auth_headers, course, policy, instructor_id):
        response = client.put(
            f"{AVAILABILITY}/settings",
            json={"course_id": course.id, "buffer_time_minutes": 15},
            headers=auth_headers(instructor_id),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["buffer_time_minutes"] == 15
        assert body["timezone"] == "America/Sao_Paulo"

    def test_invalid_policy_is_400(self, client, auth_headers, course, instructor_id):
        response = client.put(
            f"{AVAILABILITY}/settings",
            json={"course_id": course.id, "slot_duration_hours": 0},
            headers=auth_headers(instructor_id),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INVALID_POLICY"
        assert body["errors"]["field"] == "slot_duration_hours"


class TestInstructorCalendar:
    def test_calendar_is_public(self, client, course, monday_rule, instructor_id):
        response = client.get(
            f"{AVAILABILITY}/instructor/{instructor_id}/calendar",
            params={"year": 2024, "month": 12},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["instructor_id"] == instructor_id
        assert len(body["days"]) == 31
        by_date = {day["date"]: day["slots"] for day in body["days"]}
        assert by_date["2024-12-24"] == []
        assert by_date["2024-12-23"][0] == {
            "date": "2024-12-23",
            "start_time": "09:00",
            "end_time": "10:00",
            "course_id": course.id,
            "timezone": "America/Sao_Paulo",
        }

    def test_unknown_instructor_is_404(self, client):
        response = client.get(
            f"{AVAILABILITY}/instructor/{generate_ulid()}/calendar",
            params={"year": 2024, "month": 12},
        )
        assert response.status_code == 404
