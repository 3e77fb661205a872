from __future__ import annotations

import threading
from dataclasses import replace

import pytest

from backend.domain.errors import ConflictError, NotFoundError, ValidationError
from backend.domain.intervals import TimeInterval
from backend.domain.models import Booking, BookingStatus, DayOfWeek, Room, Session, TimetableStatus
from backend.repository.data_repository import DataRepository
from backend.services.booking_service import BookingService, check_booking_collision
from backend.utils.config import get_settings


MONDAY = "2025-06-02"


def _build_test_settings(tmp_path, filename: str, reject_past_dates: bool = False):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        booking_reject_past_dates=reject_past_dates,
        seed_demo_catalog=False,
    )


def _build_service(tmp_path, reject_past_dates: bool = False) -> tuple[BookingService, DataRepository]:
    settings = _build_test_settings(tmp_path, "bookings.db", reject_past_dates)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.upsert_room(Room(room_id="R1", name="Room 1", capacity=40))
    return BookingService(repository, settings), repository


def test_overlapping_booking_is_rejected(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    service.create_booking("R1", "alice", MONDAY, "09:30", "10:30")

    with pytest.raises(ConflictError) as exc_info:
        service.create_booking("R1", "bob", MONDAY, "09:00", "10:00")

    assert "already booked" in str(exc_info.value)


def test_touching_bookings_are_both_accepted(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    first = service.create_booking("R1", "alice", MONDAY, "09:30", "10:30")
    second = service.create_booking("R1", "bob", MONDAY, "10:30", "11:30")

    assert first.status is BookingStatus.APPROVED
    assert second.status is BookingStatus.APPROVED
    assert len(repository.list_bookings("R1", BookingStatus.APPROVED, MONDAY)) == 2


def test_booking_clashing_with_active_timetable_is_rejected(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    timetable_id = repository.save_timetable(
        name="term",
        sessions=[Session("CS101-S1", "CS101", "T1", "R1", DayOfWeek.MONDAY, "13:00", "14:00")],
        algorithm="greedy",
        quality_score=100.0,
    )
    repository.update_timetable_status(timetable_id, TimetableStatus.ACTIVE)

    with pytest.raises(ConflictError) as exc_info:
        service.create_booking("R1", "alice", MONDAY, "13:30", "14:00")

    assert "CS101-S1" in str(exc_info.value)
    # Tuesday is untouched by the Monday session.
    service.create_booking("R1", "alice", "2025-06-03", "13:30", "14:00")


def test_cancelled_booking_frees_the_room(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    booking = service.create_booking("R1", "alice", MONDAY, "09:00", "10:00")

    cancelled = service.cancel_booking(booking.booking_id)
    replacement = service.create_booking("R1", "bob", MONDAY, "09:00", "10:00")

    assert cancelled.status is BookingStatus.CANCELLED
    assert replacement.booked_by == "bob"


def test_cancel_is_idempotent(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    booking = service.create_booking("R1", "alice", MONDAY, "09:00", "10:00")

    first = service.cancel_booking(booking.booking_id)
    second = service.cancel_booking(booking.booking_id)

    assert first.status is BookingStatus.CANCELLED
    assert second.status is BookingStatus.CANCELLED


def test_cancel_unknown_booking_raises_not_found(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    with pytest.raises(NotFoundError):
        service.cancel_booking(12345)


@pytest.mark.parametrize(
    "booked_by, date, start, end",
    [
        ("", MONDAY, "09:00", "10:00"),
        ("alice", "2025-13-01", "09:00", "10:00"),
        ("alice", MONDAY, "10:00", "09:00"),
        ("alice", MONDAY, "06:00", "07:30"),
        ("alice", MONDAY, "20:30", "21:30"),
        ("alice", MONDAY, "9:00", "10:00"),
    ],
)
def test_invalid_requests_are_rejected(tmp_path, booked_by: str, date: str, start: str, end: str) -> None:
    service, _ = _build_service(tmp_path)
    with pytest.raises(ValidationError):
        service.create_booking("R1", booked_by, date, start, end)


def test_past_dates_are_rejected_when_enabled(tmp_path) -> None:
    service, _ = _build_service(tmp_path, reject_past_dates=True)
    with pytest.raises(ValidationError):
        service.create_booking("R1", "alice", "2000-01-03", "09:00", "10:00")


def test_unknown_room_raises_not_found(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    with pytest.raises(NotFoundError):
        service.create_booking("R404", "alice", MONDAY, "09:00", "10:00")


def test_list_bookings_filters_by_status(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    kept = service.create_booking("R1", "alice", MONDAY, "09:00", "10:00")
    dropped = service.create_booking("R1", "bob", MONDAY, "10:00", "11:00")
    service.cancel_booking(dropped.booking_id)

    approved = service.list_bookings(room_id="R1", status="approved")
    cancelled = service.list_bookings(room_id="R1", status="cancelled", date=MONDAY)

    assert [item.booking_id for item in approved] == [kept.booking_id]
    assert [item.booking_id for item in cancelled] == [dropped.booking_id]
    with pytest.raises(ValidationError):
        service.list_bookings(status="pending")


def test_concurrent_identical_requests_produce_one_booking(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "race.db")
    setup = DataRepository(settings)
    setup.initialize_database()
    setup.upsert_room(Room(room_id="R1", capacity=40))

    # Separate repositories share only the database file.
    services = [BookingService(DataRepository(settings), settings) for _ in range(4)]
    barrier = threading.Barrier(len(services))
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def attempt(service: BookingService, who: str) -> None:
        barrier.wait()
        try:
            service.create_booking("R1", who, MONDAY, "09:00", "10:00")
            result = "created"
        except ConflictError:
            result = "conflict"
        with outcomes_lock:
            outcomes.append(result)

    threads = [
        threading.Thread(target=attempt, args=(service, f"user-{index}"))
        for index, service in enumerate(services)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["conflict", "conflict", "conflict", "created"]
    assert len(setup.list_bookings("R1", BookingStatus.APPROVED, MONDAY)) == 1


def test_collision_check_prefers_booking_message() -> None:
    candidate = TimeInterval.from_strings("09:00", "10:00")
    existing = Booking(1, "R1", "alice", MONDAY, "09:30", "10:30", BookingStatus.APPROVED)
    session = Session("S1", "C1", "T1", "R1", DayOfWeek.MONDAY, "09:00", "09:30")

    with pytest.raises(ConflictError) as exc_info:
        check_booking_collision(candidate, [existing], [session])

    assert "already booked" in str(exc_info.value)
    check_booking_collision(TimeInterval.from_strings("11:00", "12:00"), [existing], [session])
