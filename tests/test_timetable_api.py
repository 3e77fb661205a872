from __future__ import annotations

import time
from dataclasses import replace

from fastapi.testclient import TestClient

from app import create_app
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        booking_reject_past_dates=False,
        seed_demo_catalog=True,
        job_max_workers=1,
    )


def _client(tmp_path) -> TestClient:
    return TestClient(create_app(_build_test_settings(tmp_path, "api.db")))


INLINE_CATALOG = {
    "courses": [
        {"course_id": "C1", "code": "CS101", "student_group": "G1"},
        {"course_id": "C2", "code": "CS102", "student_group": "G2"},
    ],
    "teachers": [{"teacher_id": "T1", "qualifications": ["CS101", "CS102"]}],
    "rooms": [{"room_id": "R1", "capacity": 40}, {"room_id": "R2", "capacity": 40}],
}


def test_generate_uses_seeded_catalogue(tmp_path) -> None:
    with _client(tmp_path) as client:
        response = client.post("/timetable/generate", json={"algorithm": "greedy"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["algorithm"] == "greedy"
    assert body["metrics"]["total_sessions"] == len(body["schedule"]) + len(body["unscheduled"])
    assert body["conflicts"]["summary"]["critical"] == 0


def test_generate_with_inline_catalog(tmp_path) -> None:
    with _client(tmp_path) as client:
        response = client.post(
            "/timetable/generate",
            json={"algorithm": "constraint_satisfaction", "working_days": ["monday", "tuesday"], **INLINE_CATALOG},
        )

    assert response.status_code == 200
    body = response.json()
    assert len(body["schedule"]) == 6
    assert {item["day_of_week"] for item in body["schedule"]} <= {"Monday", "Tuesday"}


def test_generate_rejects_unknown_algorithm(tmp_path) -> None:
    with _client(tmp_path) as client:
        response = client.post("/timetable/generate", json={"algorithm": "annealing"})

    assert response.status_code == 400
    assert "algorithm" in response.json()["detail"]


def test_generate_rejects_empty_inline_courses(tmp_path) -> None:
    with _client(tmp_path) as client:
        response = client.post("/timetable/generate", json={**INLINE_CATALOG, "courses": []})

    assert response.status_code == 400


def test_validate_reports_teacher_double_booking(tmp_path) -> None:
    payload = {
        **INLINE_CATALOG,
        "schedule": [
            {
                "session_id": "S1",
                "course_id": "C1",
                "teacher_id": "T1",
                "room_id": "R1",
                "day_of_week": "Monday",
                "start_time": "09:00",
                "end_time": "10:00",
            },
            {
                "session_id": "S2",
                "course_id": "C2",
                "teacher_id": "T1",
                "room_id": "R2",
                "day_of_week": "Monday",
                "start_time": "09:30",
                "end_time": "10:30",
            },
        ],
    }
    with _client(tmp_path) as client:
        response = client.post("/timetable/validate", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert [item["type"] for item in body["conflicts"]] == ["teacher_double_booking"]
    assert body["can_proceed"] is False
    assert body["summary"]["critical"] == 1


def test_validate_rejects_duplicate_session_ids(tmp_path) -> None:
    session = {
        "session_id": "S1",
        "course_id": "C1",
        "teacher_id": "T1",
        "room_id": "R1",
        "day_of_week": "Monday",
        "start_time": "09:00",
        "end_time": "10:00",
    }
    with _client(tmp_path) as client:
        response = client.post("/timetable/validate", json={**INLINE_CATALOG, "schedule": [session, session]})

    assert response.status_code == 422


def test_optimize_moves_clashing_session(tmp_path) -> None:
    payload = {
        "courses": [
            {"course_id": "C1", "code": "CS101", "student_group": "G1"},
            {"course_id": "C2", "code": "CS102", "student_group": "G2"},
        ],
        "teachers": [
            {"teacher_id": "T1", "qualifications": ["CS101"]},
            {"teacher_id": "T2", "qualifications": ["CS102"]},
        ],
        "rooms": [{"room_id": "R1", "capacity": 40}],
        "schedule": [
            {
                "session_id": "S1",
                "course_id": "C1",
                "teacher_id": "T1",
                "room_id": "R1",
                "day_of_week": "Monday",
                "start_time": "09:00",
                "end_time": "10:00",
            },
            {
                "session_id": "S2",
                "course_id": "C2",
                "teacher_id": "T2",
                "room_id": "R1",
                "day_of_week": "Monday",
                "start_time": "09:00",
                "end_time": "10:00",
            },
        ],
    }
    with _client(tmp_path) as client:
        response = client.post("/timetable/optimize", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert body["original_summary"]["critical"] == 1
    assert body["conflicts"]["summary"]["critical"] == 0
    assert body["moved_session_ids"] == ["S1"]


def test_async_generation_completes(tmp_path) -> None:
    with _client(tmp_path) as client:
        submitted = client.post("/timetable/generate-async", json={"algorithm": "greedy"})
        assert submitted.status_code == 202
        ticket = submitted.json()
        assert ticket["status"] == "pending"

        body = {}
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            body = client.get(ticket["status_url"]).json()
            if body["status"] in {"completed", "failed", "cancelled"}:
                break
            time.sleep(0.02)

        cancel = client.delete(f"/timetable/jobs/{ticket['job_id']}")

    assert body["status"] == "completed"
    assert body["result"]["success"] is True
    assert cancel.status_code == 200
    assert cancel.json()["success"] is False


def test_unknown_job_returns_404(tmp_path) -> None:
    with _client(tmp_path) as client:
        assert client.get("/timetable/status/nope").status_code == 404
        assert client.delete("/timetable/jobs/nope").status_code == 404


def test_algorithms_are_listed(tmp_path) -> None:
    with _client(tmp_path) as client:
        response = client.get("/timetable/algorithms")

    assert response.status_code == 200
    ids = [item["id"] for item in response.json()["algorithms"]]
    assert ids == ["greedy", "constraint_satisfaction", "genetic"]


def test_timetable_status_lifecycle(tmp_path) -> None:
    with _client(tmp_path) as client:
        generated = client.post("/timetable/generate", json={"save": True, "name": "Term 1"}).json()
        timetable_id = generated["timetable_id"]

        activated = client.patch(f"/timetables/{timetable_id}/status", json={"status": "active"})
        back_to_draft = client.patch(f"/timetables/{timetable_id}/status", json={"status": "draft"})
        unknown = client.patch("/timetables/missing/status", json={"status": "active"})

    assert activated.status_code == 200
    assert activated.json()["status"] == "active"
    assert back_to_draft.status_code == 400
    assert unknown.status_code == 404


def test_booking_endpoints(tmp_path) -> None:
    booking = {
        "room_id": "R101",
        "booked_by": "alice",
        "date": "2025-06-02",
        "start_time": "09:30",
        "end_time": "10:30",
    }
    with _client(tmp_path) as client:
        created = client.post("/bookings", json=booking)
        clash = client.post("/bookings", json={**booking, "start_time": "09:00", "end_time": "10:00"})
        malformed = client.post("/bookings", json={**booking, "start_time": "9:00"})
        missing_room = client.post("/bookings", json={**booking, "room_id": "NOPE"})
        cancelled = client.post(f"/bookings/{created.json()['booking_id']}/cancel")
        listed = client.get("/bookings", params={"room_id": "R101", "status": "cancelled"})

    assert created.status_code == 201
    assert created.json()["status"] == "approved"
    assert clash.status_code == 409
    assert malformed.status_code == 422
    assert missing_room.status_code == 404
    assert cancelled.json()["status"] == "cancelled"
    assert listed.json()["count"] == 1


def test_availability_and_meeting_endpoints(tmp_path) -> None:
    window = {
        "resource_kind": "teacher",
        "resource_id": "T-ADA",
        "day_of_week": "Monday",
        "start_time": "09:00",
        "end_time": "17:00",
    }
    with _client(tmp_path) as client:
        created = client.post("/availability", json=window)
        duplicate = client.post("/availability", json=window)
        block = client.post(
            "/blocks",
            json={
                "resource_kind": "teacher",
                "resource_id": "T-ADA",
                "date": "2025-06-02",
                "start_time": "12:00",
                "end_time": "13:00",
            },
        )
        resolved = client.get("/availability/teacher/T-ADA", params={"date": "2025-06-02"})
        meeting = client.post(
            "/meetings",
            json={
                "title": "Syllabus",
                "date": "2025-06-02",
                "start_time": "12:30",
                "end_time": "13:30",
                "participants": ["T-ADA"],
                "created_by": "dean",
            },
        )
        deactivated = client.patch(f"/availability/{created.json()['availability_id']}", json={"is_active": False})
        listed = client.get("/availability", params={"resource_kind": "teacher", "resource_id": "T-ADA"})

    assert created.status_code == 201
    assert duplicate.status_code == 409
    assert block.status_code == 201
    assert resolved.json()["free"] == [
        {"start_time": "09:00", "end_time": "12:00"},
        {"start_time": "13:00", "end_time": "17:00"},
    ]
    assert meeting.status_code == 409
    assert deactivated.json()["is_active"] is False
    assert listed.json()["count"] == 1
