"""HTTP controller layer for timetable generation, validation and jobs."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator, model_validator

from backend.domain.errors import ValidationError
from backend.domain.intervals import TimeInterval
from backend.domain.models import Course, DayOfWeek, Room, Session, Teacher
from backend.controllers.dependencies import (
    get_job_manager,
    get_timetable_service,
    translate_service_error,
)
from backend.services.conflict_service import SchedulingCatalog
from backend.services.generator_service import TimetableService
from backend.services.job_service import JobManager
from backend.utils.config import get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["timetable"])


def _parse_day(value: str) -> str:
    try:
        return DayOfWeek.parse(value).value
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


class WorkingHoursPayload(BaseModel):
    start: str = Field(pattern=settings.time_regex)
    end: str = Field(pattern=settings.time_regex)

    @model_validator(mode="after")
    def validate_order(self) -> "WorkingHoursPayload":
        if self.end <= self.start:
            raise ValueError("working_hours end must be after start")
        return self


class CoursePayload(BaseModel):
    course_id: str = Field(min_length=1)
    code: str = Field(min_length=1)
    name: str = ""
    credits: float = Field(default=3.0, gt=0.0)
    weekly_hours: Optional[float] = Field(default=None, gt=0.0)
    enrollment: int = Field(default=settings.generation_default_enrollment, ge=0)
    required_room_type: Optional[str] = None
    required_equipment: list[str] = Field(default_factory=list)
    department: Optional[str] = None
    student_group: Optional[str] = None
    semester: Optional[int] = Field(default=None, ge=1)
    prerequisites: list[str] = Field(default_factory=list)

    def to_domain(self) -> Course:
        return Course(
            course_id=self.course_id,
            code=self.code,
            name=self.name,
            credits=self.credits,
            weekly_hours=self.weekly_hours,
            enrollment=self.enrollment,
            required_room_type=self.required_room_type,
            required_equipment=tuple(self.required_equipment),
            department=self.department,
            student_group=self.student_group,
            semester=self.semester,
            prerequisites=tuple(self.prerequisites),
        )


class TeacherPayload(BaseModel):
    teacher_id: str = Field(min_length=1)
    name: str = ""
    department: Optional[str] = None
    qualifications: list[str] = Field(default_factory=list)
    max_weekly_hours: float = Field(default=float(settings.generation_default_teacher_max_hours), gt=0.0)
    preferred_slots: list[str] = Field(default_factory=list)

    def to_domain(self) -> Teacher:
        return Teacher(
            teacher_id=self.teacher_id,
            name=self.name,
            department=self.department,
            qualifications=tuple(self.qualifications),
            max_weekly_hours=self.max_weekly_hours,
            preferred_slots=tuple(self.preferred_slots),
        )


class RoomPayload(BaseModel):
    room_id: str = Field(min_length=1)
    name: str = ""
    capacity: int = Field(gt=0)
    room_type: str = "classroom"
    equipment: list[str] = Field(default_factory=list)

    def to_domain(self) -> Room:
        return Room(
            room_id=self.room_id,
            name=self.name,
            capacity=self.capacity,
            room_type=self.room_type,
            equipment=tuple(self.equipment),
        )


class TeacherWindowPayload(BaseModel):
    teacher_id: str = Field(min_length=1)
    day_of_week: str
    start_time: str = Field(pattern=settings.time_regex)
    end_time: str = Field(pattern=settings.time_regex)

    @field_validator("day_of_week")
    @classmethod
    def validate_day(cls, value: str) -> str:
        return _parse_day(value)


class CatalogPayload(BaseModel):
    """Optional inline records; when omitted the stored catalogue is used."""

    courses: Optional[list[CoursePayload]] = None
    teachers: Optional[list[TeacherPayload]] = None
    rooms: Optional[list[RoomPayload]] = None
    teacher_availability: Optional[list[TeacherWindowPayload]] = None

    def inline_catalog(self) -> Optional[SchedulingCatalog]:
        if self.courses is None and self.teachers is None and self.rooms is None:
            return None
        windows: dict[str, dict[DayOfWeek, list[TimeInterval]]] = {}
        for window in self.teacher_availability or []:
            per_day = windows.setdefault(window.teacher_id, {})
            per_day.setdefault(DayOfWeek(window.day_of_week), []).append(
                TimeInterval.from_strings(window.start_time, window.end_time)
            )
        return SchedulingCatalog.build(
            courses=[item.to_domain() for item in self.courses or []],
            teachers=[item.to_domain() for item in self.teachers or []],
            rooms=[item.to_domain() for item in self.rooms or []],
            teacher_windows=windows,
        )


class GenerationOptionsPayload(CatalogPayload):
    algorithm: Optional[str] = None
    max_iterations: Optional[int] = Field(default=None, gt=0)
    working_days: Optional[list[str]] = None
    working_hours: Optional[WorkingHoursPayload] = None
    slot_duration_minutes: Optional[int] = Field(default=None, gt=0)
    break_minutes: Optional[int] = Field(default=None, ge=0)
    backtrack_depth: Optional[int] = Field(default=None, ge=0)
    teacher_availability_mode: Optional[str] = None
    population_size: Optional[int] = Field(default=None, ge=2)
    mutation_rate: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    crossover_rate: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    random_seed: Optional[int] = Field(default=None, ge=0)
    course_ids: Optional[list[str]] = None
    save: bool = False
    name: Optional[str] = None

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        return [_parse_day(item) for item in value]

    def options(self) -> dict[str, Any]:
        return self.model_dump(
            exclude_none=True,
            exclude={"courses", "teachers", "rooms", "teacher_availability", "schedule"},
        )


class SessionPayload(BaseModel):
    session_id: str = Field(min_length=1)
    course_id: str = Field(min_length=1)
    teacher_id: str = Field(min_length=1)
    room_id: str = Field(min_length=1)
    day_of_week: str
    start_time: str = Field(pattern=settings.time_regex)
    end_time: str = Field(pattern=settings.time_regex)
    student_group: Optional[str] = None

    @field_validator("day_of_week")
    @classmethod
    def validate_day(cls, value: str) -> str:
        return _parse_day(value)

    @model_validator(mode="after")
    def validate_order(self) -> "SessionPayload":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    def to_domain(self) -> Session:
        return Session(
            session_id=self.session_id,
            course_id=self.course_id,
            teacher_id=self.teacher_id,
            room_id=self.room_id,
            day_of_week=DayOfWeek(self.day_of_week),
            start_time=self.start_time,
            end_time=self.end_time,
            student_group=self.student_group,
        )


class ValidateRequest(GenerationOptionsPayload):
    schedule: list[SessionPayload]

    @field_validator("schedule")
    @classmethod
    def validate_unique_ids(cls, value: list[SessionPayload]) -> list[SessionPayload]:
        ids = [item.session_id for item in value]
        if len(ids) != len(set(ids)):
            raise ValueError("session_id values must be unique")
        return value


class OptimizeRequest(ValidateRequest):
    max_passes: Optional[int] = Field(default=None, gt=0)


class TimetableStatusRequest(BaseModel):
    status: str = Field(min_length=1)


@router.post("/timetable/generate", status_code=status.HTTP_200_OK)
def generate_timetable(
    payload: GenerationOptionsPayload,
    service: TimetableService = Depends(get_timetable_service),
) -> dict[str, Any]:
    """Run generation synchronously and return the full result."""
    try:
        result = service.generate(payload.options(), catalog=payload.inline_catalog())
        return result.to_api_dict()
    except Exception as exc:
        raise translate_service_error(exc, "generate timetable") from exc


@router.post("/timetable/generate-async", status_code=status.HTTP_202_ACCEPTED)
async def generate_timetable_async(
    payload: GenerationOptionsPayload,
    job_manager: JobManager = Depends(get_job_manager),
) -> dict[str, Any]:
    try:
        return job_manager.submit(payload.options(), catalog=payload.inline_catalog())
    except Exception as exc:
        raise translate_service_error(exc, "submit generation job") from exc


@router.get("/timetable/status/{job_id}", status_code=status.HTTP_200_OK)
async def get_job_status(
    job_id: str,
    job_manager: JobManager = Depends(get_job_manager),
) -> dict[str, Any]:
    try:
        return job_manager.get(job_id).to_api_dict()
    except Exception as exc:
        raise translate_service_error(exc, "read job status") from exc


@router.delete("/timetable/jobs/{job_id}", status_code=status.HTTP_200_OK)
async def cancel_job(
    job_id: str,
    job_manager: JobManager = Depends(get_job_manager),
) -> dict[str, Any]:
    try:
        return job_manager.cancel(job_id)
    except Exception as exc:
        raise translate_service_error(exc, "cancel job") from exc


@router.post("/timetable/validate", status_code=status.HTTP_200_OK)
def validate_timetable(
    payload: ValidateRequest,
    service: TimetableService = Depends(get_timetable_service),
) -> dict[str, Any]:
    try:
        report = service.validate(
            [item.to_domain() for item in payload.schedule],
            catalog=payload.inline_catalog(),
            options=payload.options(),
        )
        return {"success": True, **report.to_api_dict()}
    except Exception as exc:
        raise translate_service_error(exc, "validate timetable") from exc


@router.post("/timetable/optimize", status_code=status.HTTP_200_OK)
def optimize_timetable(
    payload: OptimizeRequest,
    service: TimetableService = Depends(get_timetable_service),
) -> dict[str, Any]:
    try:
        return service.optimize(
            [item.to_domain() for item in payload.schedule],
            catalog=payload.inline_catalog(),
            options=payload.options(),
        )
    except Exception as exc:
        raise translate_service_error(exc, "optimize timetable") from exc


@router.get("/timetable/algorithms", status_code=status.HTTP_200_OK)
async def list_algorithms(
    service: TimetableService = Depends(get_timetable_service),
) -> dict[str, Any]:
    return {"algorithms": service.algorithms(), "default": settings.generation_default_algorithm}


@router.patch("/timetables/{timetable_id}/status", status_code=status.HTTP_200_OK)
async def update_timetable_status(
    timetable_id: str,
    payload: TimetableStatusRequest,
    service: TimetableService = Depends(get_timetable_service),
) -> dict[str, Any]:
    try:
        return service.set_timetable_status(timetable_id, payload.status)
    except Exception as exc:
        raise translate_service_error(exc, "update timetable status") from exc
