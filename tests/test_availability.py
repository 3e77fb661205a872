from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from backend.domain.errors import ConflictError, NotFoundError, ValidationError
from backend.domain.intervals import TimeInterval
from backend.domain.models import DayOfWeek, ResourceKind, Session, TimetableStatus
from backend.repository.data_repository import DataRepository
from backend.services.availability_service import AvailabilityService, resolve_free_intervals
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, seed_demo_catalog=False)


def _build_service(tmp_path) -> tuple[AvailabilityService, DataRepository]:
    settings = _build_test_settings(tmp_path, "availability.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    return AvailabilityService(repository, settings), repository


def _windows(resolved) -> list[tuple[str, str]]:
    return [(item.start_time, item.end_time) for item in resolved.free]


def test_resolve_free_intervals_subtracts_occupancy_then_blocks() -> None:
    free = resolve_free_intervals(
        [TimeInterval.from_strings("09:00", "17:00")],
        [TimeInterval.from_strings("10:00", "11:00")],
        [TimeInterval.from_strings("14:00", "14:30")],
    )
    assert [(item.start_time, item.end_time) for item in free] == [
        ("09:00", "10:00"),
        ("11:00", "14:00"),
        ("14:30", "17:00"),
    ]


def test_resolve_combines_weekly_record_active_timetable_and_block(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    service.create_availability(ResourceKind.TEACHER, "T1", "Monday", "09:00", "17:00")
    timetable_id = repository.save_timetable(
        name="spring",
        sessions=[
            Session(
                session_id="S1",
                course_id="C1",
                teacher_id="T1",
                room_id="R1",
                day_of_week=DayOfWeek.MONDAY,
                start_time="10:00",
                end_time="11:00",
            )
        ],
        algorithm="greedy",
        quality_score=100.0,
    )
    repository.update_timetable_status(timetable_id, TimetableStatus.ACTIVE)
    service.create_block(ResourceKind.TEACHER, "T1", "2025-06-02", "14:00", "14:30", reason="dentist")

    resolved = service.resolve(ResourceKind.TEACHER, "T1", "2025-06-02")

    assert resolved.day_of_week is DayOfWeek.MONDAY
    assert _windows(resolved) == [("09:00", "10:00"), ("11:00", "14:00"), ("14:30", "17:00")]
    assert service.is_free(ResourceKind.TEACHER, "T1", "2025-06-02", "11:00", "12:00")
    assert not service.is_free(ResourceKind.TEACHER, "T1", "2025-06-02", "10:30", "11:30")


def test_draft_timetable_does_not_occupy_time(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    service.create_availability(ResourceKind.ROOM, "R1", "Monday", "09:00", "17:00")
    repository.save_timetable(
        name="draft",
        sessions=[
            Session("S1", "C1", "T1", "R1", DayOfWeek.MONDAY, "10:00", "11:00"),
        ],
        algorithm="greedy",
        quality_score=None,
    )

    resolved = service.resolve(ResourceKind.ROOM, "R1", "2025-06-02")

    assert _windows(resolved) == [("09:00", "17:00")]


def test_block_on_another_date_is_ignored(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    service.create_availability(ResourceKind.TEACHER, "T1", "Monday", "09:00", "17:00")
    service.create_block(ResourceKind.TEACHER, "T1", "2025-06-09", "09:00", "17:00")

    assert _windows(service.resolve(ResourceKind.TEACHER, "T1", "2025-06-02")) == [("09:00", "17:00")]
    assert _windows(service.resolve(ResourceKind.TEACHER, "T1", "2025-06-09")) == []


def test_resource_without_records_has_no_free_time(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    assert _windows(service.resolve(ResourceKind.TEACHER, "ghost", "2025-06-02")) == []


def test_duplicate_active_record_for_same_day_conflicts(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    service.create_availability(ResourceKind.TEACHER, "T1", "Monday", "09:00", "12:00")

    with pytest.raises(ConflictError):
        service.create_availability(ResourceKind.TEACHER, "T1", "monday", "13:00", "17:00")


def test_inactive_record_frees_the_day_for_a_new_one(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    first = service.create_availability(ResourceKind.TEACHER, "T1", "Monday", "09:00", "12:00")
    service.update_availability(first.availability_id, is_active=False)

    second = service.create_availability(ResourceKind.TEACHER, "T1", "Monday", "13:00", "17:00")

    assert second.is_active
    records = service.list_availability(ResourceKind.TEACHER, "T1", "Monday")
    assert [item.is_active for item in records] == [False, True]
    assert len(service.list_availability(ResourceKind.TEACHER, "T1", active_only=True)) == 1
    assert _windows(service.resolve(ResourceKind.TEACHER, "T1", "2025-06-02")) == [("13:00", "17:00")]


def test_update_onto_an_occupied_day_conflicts(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    service.create_availability(ResourceKind.ROOM, "R1", "Monday", "09:00", "12:00")
    tuesday = service.create_availability(ResourceKind.ROOM, "R1", "Tuesday", "09:00", "12:00")

    with pytest.raises(ConflictError):
        service.update_availability(tuesday.availability_id, day_of_week="Monday")


def test_update_unknown_record_raises_not_found(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    with pytest.raises(NotFoundError):
        service.update_availability(999, start_time="08:00")


@pytest.mark.parametrize(
    "day, start, end",
    [("Funday", "09:00", "10:00"), ("Monday", "10:00", "09:00"), ("Monday", "9:00", "10:00")],
)
def test_invalid_availability_is_rejected(tmp_path, day: str, start: str, end: str) -> None:
    service, _ = _build_service(tmp_path)
    with pytest.raises(ValidationError):
        service.create_availability(ResourceKind.TEACHER, "T1", day, start, end)


def test_resolve_rejects_malformed_date(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    with pytest.raises(ValidationError):
        service.resolve(ResourceKind.TEACHER, "T1", "02/06/2025")


def test_day_of_week_is_taken_from_utc() -> None:
    late_evening_utc = datetime(2025, 6, 2, 1, 0, tzinfo=timezone(timedelta(hours=5)))
    assert DayOfWeek.from_date(late_evening_utc) is DayOfWeek.SUNDAY
    assert DayOfWeek.from_date(late_evening_utc.date()) is DayOfWeek.MONDAY
