"""Conflict taxonomy, schedule validation and report construction."""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from itertools import combinations
from typing import Iterable, Mapping, Optional, Sequence

from backend.domain.intervals import TimeInterval, fits_within
from backend.domain.models import (
    Conflict,
    ConflictReport,
    ConflictType,
    Course,
    DayOfWeek,
    Room,
    Session,
    Severity,
    Teacher,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)

SEVERITY_ORDER = (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW)

TeacherWindows = Mapping[str, Mapping[DayOfWeek, Sequence[TimeInterval]]]


@dataclass(frozen=True)
class SchedulingCatalog:
    """Typed records supplied by the catalogue for one scheduling run."""

    courses: dict[str, Course]
    teachers: dict[str, Teacher]
    rooms: dict[str, Room]
    teacher_windows: dict[str, dict[DayOfWeek, list[TimeInterval]]] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        courses: Iterable[Course],
        teachers: Iterable[Teacher],
        rooms: Iterable[Room],
        teacher_windows: Optional[TeacherWindows] = None,
    ) -> "SchedulingCatalog":
        return cls(
            courses={course.course_id: course for course in courses},
            teachers={teacher.teacher_id: teacher for teacher in teachers},
            rooms={room.room_id: room for room in rooms},
            teacher_windows={
                teacher_id: {day: list(intervals) for day, intervals in per_day.items()}
                for teacher_id, per_day in (teacher_windows or {}).items()
            },
        )

    def course_by_code(self, code: str) -> Optional[Course]:
        for course in self.courses.values():
            if course.code == code:
                return course
        return None

    def windows_for(
        self,
        teacher_id: str,
        day: DayOfWeek,
        default_window: Optional[TimeInterval],
    ) -> Optional[list[TimeInterval]]:
        """Availability windows for a teacher's day.

        A teacher with no records at all falls back to ``default_window``
        (``None`` meaning unrestricted); one with records but none for the
        day is unavailable.
        """
        per_day = self.teacher_windows.get(teacher_id)
        if per_day is None:
            return None if default_window is None else [default_window]
        return list(per_day.get(day, []))

    def group_for(self, session: Session) -> Optional[str]:
        if session.student_group:
            return session.student_group
        course = self.courses.get(session.course_id)
        return course.group_key if course is not None else None


def make_conflict(conflict_type: ConflictType, description: str, involved_ids: Iterable[str]) -> Conflict:
    return Conflict(
        conflict_type=conflict_type,
        severity=conflict_type.default_severity,
        description=description,
        involved_ids=tuple(involved_ids),
    )


def quality_score(conflicts: Sequence[Conflict]) -> float:
    penalty = sum(conflict.severity.weight for conflict in conflicts)
    return float(max(0, min(100, 100 - penalty)))


def _recommendations(counts: Counter, by_type: Counter) -> list[str]:
    recommendations: list[str] = []
    if counts[Severity.CRITICAL]:
        recommendations.append("Resolve critical conflicts before activating the timetable")
    if by_type[ConflictType.TEACHER_DOUBLE_BOOKING.value] or by_type[ConflictType.TEACHER_UNAVAILABLE.value]:
        recommendations.append("Review teacher assignments and availability")
    if by_type[ConflictType.ROOM_DOUBLE_BOOKING.value]:
        recommendations.append("Review room bookings for double-booked rooms")
    if by_type[ConflictType.CAPACITY_EXCEEDED.value] or by_type[ConflictType.ROOM_TYPE_MISMATCH.value]:
        recommendations.append("Review room capacities and room types against enrollments")
    if by_type[ConflictType.SCHEDULING_FAILED.value]:
        recommendations.append("Add rooms, teachers or time slots for unscheduled sessions")
    return recommendations


def build_report(conflicts: Sequence[Conflict], sessions: Sequence[Session]) -> ConflictReport:
    ordered = sorted(conflicts, key=lambda conflict: -conflict.severity.rank)
    counts = Counter(conflict.severity for conflict in ordered)
    by_type = Counter(conflict.conflict_type.value for conflict in ordered)
    session_ids = {session.session_id for session in sessions}
    affected = {
        involved
        for conflict in ordered
        for involved in conflict.involved_ids
        if involved in session_ids
    }
    total = len(sessions)
    summary = {severity.value: counts[severity] for severity in SEVERITY_ORDER}
    summary["total"] = len(ordered)
    return ConflictReport(
        conflicts=ordered,
        summary=summary,
        by_type=dict(by_type),
        can_proceed=counts[Severity.CRITICAL] == 0,
        requires_review=(counts[Severity.CRITICAL] + counts[Severity.HIGH]) > 0,
        affected_sessions=len(affected),
        total_sessions=total,
        conflict_rate=round(len(affected) / total, 4) if total else 0.0,
        recommendations=_recommendations(counts, by_type),
    )


def _pairwise_overlaps(
    sessions: Sequence[Session],
    key_fn,
) -> list[tuple[Session, Session]]:
    buckets: dict[tuple, list[Session]] = defaultdict(list)
    for session in sessions:
        key = key_fn(session)
        if key is not None:
            buckets[key].append(session)
    pairs: list[tuple[Session, Session]] = []
    for key in sorted(buckets):
        bucket = sorted(buckets[key], key=lambda item: (item.start_time, item.session_id))
        for first, second in combinations(bucket, 2):
            if first.interval.overlaps(second.interval):
                pairs.append((first, second))
    return pairs


class ConflictValidator:
    """Re-derives every conflict in a schedule regardless of where it came from.

    Schedules are weekly, so teacher availability is checked against the
    declared weekly windows rather than a date-resolved free set. Date blocks
    have no weekday to apply to, and time taken by other sessions of the same
    schedule is reported as a teacher double booking. The active timetable is
    not subtracted because the schedule under validation usually replaces it.
    """

    def __init__(self, working_window: Optional[TimeInterval] = None) -> None:
        self._working_window = working_window

    def detect(self, sessions: Sequence[Session], catalog: SchedulingCatalog) -> list[Conflict]:
        conflicts: list[Conflict] = []

        for first, second in _pairwise_overlaps(sessions, lambda s: (s.day_of_week.index, s.room_id)):
            conflicts.append(
                make_conflict(
                    ConflictType.ROOM_DOUBLE_BOOKING,
                    f"Room {first.room_id} is double-booked on {first.day_of_week.value} "
                    f"({first.start_time}-{first.end_time} and {second.start_time}-{second.end_time})",
                    (first.session_id, second.session_id),
                )
            )
        for first, second in _pairwise_overlaps(sessions, lambda s: (s.day_of_week.index, s.teacher_id)):
            conflicts.append(
                make_conflict(
                    ConflictType.TEACHER_DOUBLE_BOOKING,
                    f"Teacher {first.teacher_id} is double-booked on {first.day_of_week.value} "
                    f"({first.start_time}-{first.end_time} and {second.start_time}-{second.end_time})",
                    (first.session_id, second.session_id),
                )
            )

        def group_key(session: Session):
            group = catalog.group_for(session)
            return None if group is None else (session.day_of_week.index, group)

        for first, second in _pairwise_overlaps(sessions, group_key):
            conflicts.append(
                make_conflict(
                    ConflictType.STUDENT_GROUP_CONFLICT,
                    f"Student group {catalog.group_for(first)} has overlapping sessions on "
                    f"{first.day_of_week.value} ({first.course_id} and {second.course_id})",
                    (first.session_id, second.session_id),
                )
            )

        for session in sessions:
            conflicts.extend(self._session_conflicts(session, catalog))
        conflicts.extend(self._overload_conflicts(sessions, catalog))
        conflicts.extend(self._prerequisite_conflicts(sessions, catalog))
        return conflicts

    def validate(
        self,
        sessions: Sequence[Session],
        catalog: SchedulingCatalog,
        extra_conflicts: Sequence[Conflict] = (),
    ) -> ConflictReport:
        conflicts = self.detect(sessions, catalog) + list(extra_conflicts)
        report = build_report(conflicts, sessions)
        logger.info(
            "Schedule validated | sessions=%s | conflicts=%s | critical=%s | can_proceed=%s",
            len(sessions),
            report.summary["total"],
            report.summary[Severity.CRITICAL.value],
            report.can_proceed,
        )
        return report

    def _session_conflicts(self, session: Session, catalog: SchedulingCatalog) -> list[Conflict]:
        conflicts: list[Conflict] = []
        interval = session.interval
        windows = catalog.windows_for(session.teacher_id, session.day_of_week, None)
        if windows is not None and not fits_within(interval, windows):
            conflicts.append(
                make_conflict(
                    ConflictType.TEACHER_UNAVAILABLE,
                    f"Teacher {session.teacher_id} is not available on {session.day_of_week.value} "
                    f"from {session.start_time} to {session.end_time}",
                    (session.session_id,),
                )
            )
        if self._working_window is not None and not self._working_window.contains(interval):
            conflicts.append(
                make_conflict(
                    ConflictType.OUTSIDE_WORKING_HOURS,
                    f"Session {session.session_id} falls outside working hours "
                    f"{self._working_window.start_time}-{self._working_window.end_time}",
                    (session.session_id,),
                )
            )

        course = catalog.courses.get(session.course_id)
        room = catalog.rooms.get(session.room_id)
        if course is None or room is None:
            return conflicts
        if room.capacity < course.enrollment:
            conflicts.append(
                make_conflict(
                    ConflictType.CAPACITY_EXCEEDED,
                    f"Room {room.room_id} holds {room.capacity} but {course.code} enrolls {course.enrollment}",
                    (session.session_id,),
                )
            )
        if course.required_room_type and room.room_type != course.required_room_type:
            conflicts.append(
                make_conflict(
                    ConflictType.ROOM_TYPE_MISMATCH,
                    f"{course.code} requires a {course.required_room_type} but room {room.room_id} "
                    f"is a {room.room_type}",
                    (session.session_id,),
                )
            )
        missing = [item for item in course.required_equipment if item not in room.equipment]
        if missing:
            conflicts.append(
                make_conflict(
                    ConflictType.MISSING_EQUIPMENT,
                    f"Room {room.room_id} lacks {', '.join(missing)} required by {course.code}",
                    (session.session_id,),
                )
            )
        return conflicts

    def _overload_conflicts(self, sessions: Sequence[Session], catalog: SchedulingCatalog) -> list[Conflict]:
        minutes: dict[str, int] = defaultdict(int)
        involved: dict[str, list[str]] = defaultdict(list)
        for session in sessions:
            minutes[session.teacher_id] += session.interval.duration
            involved[session.teacher_id].append(session.session_id)
        conflicts: list[Conflict] = []
        for teacher_id in sorted(minutes):
            teacher = catalog.teachers.get(teacher_id)
            if teacher is None:
                continue
            if minutes[teacher_id] > teacher.max_weekly_hours * 60:
                conflicts.append(
                    make_conflict(
                        ConflictType.TEACHER_OVERLOAD,
                        f"Teacher {teacher_id} is scheduled for {minutes[teacher_id] / 60:.1f}h "
                        f"against a maximum of {teacher.max_weekly_hours:.1f}h",
                        involved[teacher_id],
                    )
                )
        return conflicts

    def _prerequisite_conflicts(self, sessions: Sequence[Session], catalog: SchedulingCatalog) -> list[Conflict]:
        conflicts: list[Conflict] = []
        scheduled_course_ids = sorted({session.course_id for session in sessions})
        for course_id in scheduled_course_ids:
            course = catalog.courses.get(course_id)
            if course is None:
                continue
            course_sessions = [s.session_id for s in sessions if s.course_id == course_id]
            for code in course.prerequisites:
                prerequisite = catalog.course_by_code(code)
                if prerequisite is None:
                    conflicts.append(
                        make_conflict(
                            ConflictType.PREREQUISITE_VIOLATION,
                            f"{course.code} lists unknown prerequisite {code}",
                            course_sessions,
                        )
                    )
                    continue
                if (
                    prerequisite.semester is not None
                    and course.semester is not None
                    and prerequisite.semester >= course.semester
                ):
                    conflicts.append(
                        make_conflict(
                            ConflictType.PREREQUISITE_VIOLATION,
                            f"{course.code} (semester {course.semester}) is offered no later than "
                            f"its prerequisite {code} (semester {prerequisite.semester})",
                            course_sessions,
                        )
                    )
        return conflicts
