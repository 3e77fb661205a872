"""Search space and placement feasibility shared by every generation strategy."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from backend.domain.constraints import GenerationConfig
from backend.domain.intervals import TimeInterval, fits_within
from backend.domain.models import Course, DayOfWeek, Session
from backend.services.conflict_service import SchedulingCatalog


@dataclass(frozen=True)
class TimeSlot:
    day: DayOfWeek
    interval: TimeInterval


@dataclass(frozen=True)
class SessionRequest:
    """One session of a course that still needs a placement."""

    request_id: str
    course: Course
    index: int


@dataclass(frozen=True)
class Candidate:
    slot_index: int
    day: DayOfWeek
    interval: TimeInterval
    room_id: str
    teacher_id: str


@dataclass(frozen=True)
class RequestSpace:
    request: SessionRequest
    candidates: list[Candidate]
    room_ids: tuple[str, ...]
    teacher_ids: tuple[str, ...]

    @property
    def combinations(self) -> int:
        return len(self.room_ids) * len(self.teacher_ids)


def build_time_slots(config: GenerationConfig) -> list[TimeSlot]:
    window = config.working_window
    step = config.slot_duration_minutes + config.break_minutes
    slots: list[TimeSlot] = []
    for day in sorted(config.days, key=lambda item: item.index):
        start = window.start_minutes
        while start + config.slot_duration_minutes <= window.end_minutes:
            slots.append(TimeSlot(day, TimeInterval(start, start + config.slot_duration_minutes)))
            start += step
    return slots


def expand_requests(courses: Iterable[Course], slot_duration_minutes: int) -> list[SessionRequest]:
    requests: list[SessionRequest] = []
    for course in courses:
        for index in range(course.sessions_per_week(slot_duration_minutes)):
            requests.append(
                SessionRequest(
                    request_id=f"{course.course_id}-S{index + 1}",
                    course=course,
                    index=index,
                )
            )
    return requests


def build_space(
    request: SessionRequest,
    catalog: SchedulingCatalog,
    slots: Sequence[TimeSlot],
    config: GenerationConfig,
) -> RequestSpace:
    """Statically feasible candidates in (day, slot, room, teacher) order."""
    course = request.course
    rooms = sorted(
        (room for room in catalog.rooms.values() if room.suits(course)),
        key=lambda room: (room.capacity, room.room_id),
    )
    teachers = sorted(
        (teacher for teacher in catalog.teachers.values() if teacher.is_qualified_for(course)),
        key=lambda teacher: teacher.teacher_id,
    )
    window = config.working_window
    enforce_availability = config.teacher_availability_mode == "hard"
    candidates: list[Candidate] = []
    for slot_index, slot in enumerate(slots):
        for room in rooms:
            for teacher in teachers:
                if enforce_availability:
                    windows = catalog.windows_for(teacher.teacher_id, slot.day, window)
                    if windows is not None and not fits_within(slot.interval, windows):
                        continue
                candidates.append(
                    Candidate(
                        slot_index=slot_index,
                        day=slot.day,
                        interval=slot.interval,
                        room_id=room.room_id,
                        teacher_id=teacher.teacher_id,
                    )
                )
    return RequestSpace(
        request=request,
        candidates=candidates,
        room_ids=tuple(room.room_id for room in rooms),
        teacher_ids=tuple(teacher.teacher_id for teacher in teachers),
    )


def order_by_scarcity(spaces: Iterable[RequestSpace]) -> list[RequestSpace]:
    """Fewest room/teacher combinations first, then larger weekly load."""
    return sorted(
        spaces,
        key=lambda space: (
            space.combinations,
            -space.request.course.required_weekly_hours,
            space.request.course.code,
            space.request.index,
        ),
    )


def to_session(request: SessionRequest, candidate: Candidate) -> Session:
    return Session(
        session_id=request.request_id,
        course_id=request.course.course_id,
        teacher_id=candidate.teacher_id,
        room_id=candidate.room_id,
        day_of_week=candidate.day,
        start_time=candidate.interval.start_time,
        end_time=candidate.interval.end_time,
        student_group=request.course.group_key,
    )


class PlacementState:
    """Committed occupancy for rooms, teachers and student groups."""

    def __init__(self, catalog: SchedulingCatalog) -> None:
        self._catalog = catalog
        self._room_busy: dict[tuple[DayOfWeek, str], list[TimeInterval]] = defaultdict(list)
        self._teacher_busy: dict[tuple[DayOfWeek, str], list[TimeInterval]] = defaultdict(list)
        self._group_busy: dict[tuple[DayOfWeek, str], list[TimeInterval]] = defaultdict(list)
        self._teacher_minutes: dict[str, int] = defaultdict(int)
        self._course_days: dict[tuple[str, DayOfWeek], int] = defaultdict(int)
        self.placements: dict[str, Candidate] = {}

    @staticmethod
    def _clashes(busy: Sequence[TimeInterval], interval: TimeInterval) -> bool:
        return any(existing.overlaps(interval) for existing in busy)

    def violation(self, request: SessionRequest, candidate: Candidate) -> Optional[str]:
        """Name the first hard constraint the candidate breaks, if any."""
        if self._clashes(self._room_busy[(candidate.day, candidate.room_id)], candidate.interval):
            return "room"
        if self._clashes(self._teacher_busy[(candidate.day, candidate.teacher_id)], candidate.interval):
            return "teacher"
        if self._clashes(self._group_busy[(candidate.day, request.course.group_key)], candidate.interval):
            return "group"
        teacher = self._catalog.teachers.get(candidate.teacher_id)
        planned = self._teacher_minutes[candidate.teacher_id] + candidate.interval.duration
        if teacher is not None and planned > teacher.max_weekly_hours * 60:
            return "workload"
        return None

    def is_feasible(self, request: SessionRequest, candidate: Candidate) -> bool:
        return self.violation(request, candidate) is None

    def commit(self, request: SessionRequest, candidate: Candidate) -> None:
        self._room_busy[(candidate.day, candidate.room_id)].append(candidate.interval)
        self._teacher_busy[(candidate.day, candidate.teacher_id)].append(candidate.interval)
        self._group_busy[(candidate.day, request.course.group_key)].append(candidate.interval)
        self._teacher_minutes[candidate.teacher_id] += candidate.interval.duration
        self._course_days[(request.course.course_id, candidate.day)] += 1
        self.placements[request.request_id] = candidate

    def undo(self, request: SessionRequest) -> Candidate:
        candidate = self.placements.pop(request.request_id)
        self._room_busy[(candidate.day, candidate.room_id)].remove(candidate.interval)
        self._teacher_busy[(candidate.day, candidate.teacher_id)].remove(candidate.interval)
        self._group_busy[(candidate.day, request.course.group_key)].remove(candidate.interval)
        self._teacher_minutes[candidate.teacher_id] -= candidate.interval.duration
        self._course_days[(request.course.course_id, candidate.day)] -= 1
        return candidate

    def course_day_load(self, course_id: str, day: DayOfWeek) -> int:
        return self._course_days[(course_id, day)]

    def teacher_minutes(self) -> dict[str, int]:
        return dict(self._teacher_minutes)
