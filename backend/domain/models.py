"""Domain models for resource scheduling and conflict resolution."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from backend.domain.errors import ValidationError
from backend.domain.intervals import TimeInterval


class DayOfWeek(str, Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @classmethod
    def parse(cls, value: "str | DayOfWeek") -> "DayOfWeek":
        if isinstance(value, DayOfWeek):
            return value
        normalized = str(value).strip().capitalize()
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValidationError(f"Unknown day of week: {value!r}") from exc

    @classmethod
    def from_date(cls, value: "date | datetime") -> "DayOfWeek":
        """Resolve the weekday of a calendar date normalised to UTC."""
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(timezone.utc)
            value = value.date()
        return list(cls)[value.weekday()]

    @property
    def index(self) -> int:
        return list(DayOfWeek).index(self)


class ResourceKind(str, Enum):
    TEACHER = "teacher"
    ROOM = "room"


class BookingStatus(str, Enum):
    APPROVED = "approved"
    CANCELLED = "cancelled"


class TimetableStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"critical": 4, "high": 3, "medium": 2, "low": 1}[self.value]

    @property
    def weight(self) -> int:
        return {"critical": 20, "high": 10, "medium": 5, "low": 1}[self.value]


class ConflictType(str, Enum):
    ROOM_DOUBLE_BOOKING = "room_double_booking"
    TEACHER_DOUBLE_BOOKING = "teacher_double_booking"
    STUDENT_GROUP_CONFLICT = "student_group_conflict"
    TEACHER_UNAVAILABLE = "teacher_unavailable"
    ROOM_TYPE_MISMATCH = "room_type_mismatch"
    SCHEDULING_FAILED = "scheduling_failed"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    PREREQUISITE_VIOLATION = "prerequisite_violation"
    MISSING_EQUIPMENT = "missing_equipment"
    TEACHER_OVERLOAD = "teacher_overload"
    OUTSIDE_WORKING_HOURS = "outside_working_hours"

    @property
    def default_severity(self) -> Severity:
        return CONFLICT_SEVERITY[self]


CONFLICT_SEVERITY: dict[ConflictType, Severity] = {
    ConflictType.ROOM_DOUBLE_BOOKING: Severity.CRITICAL,
    ConflictType.TEACHER_DOUBLE_BOOKING: Severity.CRITICAL,
    ConflictType.STUDENT_GROUP_CONFLICT: Severity.HIGH,
    ConflictType.TEACHER_UNAVAILABLE: Severity.HIGH,
    ConflictType.ROOM_TYPE_MISMATCH: Severity.HIGH,
    ConflictType.SCHEDULING_FAILED: Severity.HIGH,
    ConflictType.CAPACITY_EXCEEDED: Severity.MEDIUM,
    ConflictType.PREREQUISITE_VIOLATION: Severity.MEDIUM,
    ConflictType.MISSING_EQUIPMENT: Severity.MEDIUM,
    ConflictType.TEACHER_OVERLOAD: Severity.MEDIUM,
    ConflictType.OUTSIDE_WORKING_HOURS: Severity.LOW,
}


@dataclass(frozen=True)
class Course:
    course_id: str
    code: str
    name: str = ""
    credits: float = 3.0
    weekly_hours: Optional[float] = None
    enrollment: int = 30
    required_room_type: Optional[str] = None
    required_equipment: tuple[str, ...] = ()
    department: Optional[str] = None
    student_group: Optional[str] = None
    semester: Optional[int] = None
    prerequisites: tuple[str, ...] = ()

    @property
    def group_key(self) -> str:
        return self.student_group or self.code

    @property
    def required_weekly_hours(self) -> float:
        return float(self.weekly_hours if self.weekly_hours is not None else self.credits)

    def sessions_per_week(self, slot_duration_minutes: int) -> int:
        minutes = self.required_weekly_hours * 60.0
        return max(1, math.ceil(minutes / slot_duration_minutes))


@dataclass(frozen=True)
class Teacher:
    teacher_id: str
    name: str = ""
    department: Optional[str] = None
    qualifications: tuple[str, ...] = ()
    max_weekly_hours: float = 18.0
    preferred_slots: tuple[str, ...] = ()

    def is_qualified_for(self, course: Course) -> bool:
        if course.code in self.qualifications or course.course_id in self.qualifications:
            return True
        if course.department is not None:
            if course.department in self.qualifications:
                return True
            if self.department is not None and self.department == course.department:
                return True
        return False

    def prefers(self, day: DayOfWeek, start_time: str) -> bool:
        return f"{day.value} {start_time}" in self.preferred_slots


@dataclass(frozen=True)
class Room:
    room_id: str
    name: str = ""
    capacity: int = 30
    room_type: str = "classroom"
    equipment: tuple[str, ...] = ()

    def suits(self, course: Course) -> bool:
        """Static room adequacy: capacity, type and equipment."""
        if self.capacity < course.enrollment:
            return False
        if course.required_room_type and self.room_type != course.required_room_type:
            return False
        return all(item in self.equipment for item in course.required_equipment)


@dataclass(frozen=True)
class Availability:
    availability_id: Optional[int]
    resource_id: str
    resource_kind: ResourceKind
    day_of_week: DayOfWeek
    start_time: str
    end_time: str
    is_active: bool = True

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval.from_strings(self.start_time, self.end_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "availability_id": self.availability_id,
            "resource_id": self.resource_id,
            "resource_kind": self.resource_kind.value,
            "day_of_week": self.day_of_week.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class Block:
    block_id: Optional[int]
    resource_id: str
    resource_kind: ResourceKind
    date: str
    start_time: str
    end_time: str
    reason: str = ""

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval.from_strings(self.start_time, self.end_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "block_id": self.block_id,
            "resource_id": self.resource_id,
            "resource_kind": self.resource_kind.value,
            "date": self.date,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class Booking:
    booking_id: int
    room_id: str
    booked_by: str
    date: str
    start_time: str
    end_time: str
    status: BookingStatus
    purpose: str = ""

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval.from_strings(self.start_time, self.end_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "room_id": self.room_id,
            "booked_by": self.booked_by,
            "purpose": self.purpose,
            "date": self.date,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Session:
    """One placed unit of instruction."""

    session_id: str
    course_id: str
    teacher_id: str
    room_id: str
    day_of_week: DayOfWeek
    start_time: str
    end_time: str
    student_group: Optional[str] = None

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval.from_strings(self.start_time, self.end_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "course_id": self.course_id,
            "teacher_id": self.teacher_id,
            "room_id": self.room_id,
            "day_of_week": self.day_of_week.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "student_group": self.student_group,
        }


@dataclass(frozen=True)
class Timetable:
    timetable_id: str
    name: str
    status: TimetableStatus
    schedule: list[Session]
    algorithm: Optional[str] = None
    quality_score: Optional[float] = None


@dataclass(frozen=True)
class Meeting:
    meeting_id: int
    title: str
    date: str
    start_time: str
    end_time: str
    participants: list[str]
    created_by: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "meeting_id": self.meeting_id,
            "title": self.title,
            "date": self.date,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "participants": list(self.participants),
            "created_by": self.created_by,
        }


@dataclass(frozen=True)
class Conflict:
    conflict_type: ConflictType
    severity: Severity
    description: str
    involved_ids: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.conflict_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "involved_ids": list(self.involved_ids),
        }


@dataclass(frozen=True)
class ConflictReport:
    conflicts: list[Conflict]
    summary: dict[str, int]
    by_type: dict[str, int]
    can_proceed: bool
    requires_review: bool
    affected_sessions: int
    total_sessions: int
    conflict_rate: float
    recommendations: list[str]

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "summary": dict(self.summary),
            "by_type": dict(self.by_type),
            "can_proceed": self.can_proceed,
            "requires_review": self.requires_review,
            "affected_sessions": self.affected_sessions,
            "total_sessions": self.total_sessions,
            "conflict_rate": self.conflict_rate,
            "recommendations": list(self.recommendations),
        }


@dataclass
class GenerationJob:
    """Registry entry for an asynchronous generation request."""

    job_id: str
    status: JobStatus
    options: dict[str, Any]
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    cancel_requested: bool = False

    def to_api_dict(self, include_result: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "job_id": self.job_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
            "cancel_requested": self.cancel_requested,
        }
        if include_result and self.result is not None:
            payload["result"] = self.result
        return payload
