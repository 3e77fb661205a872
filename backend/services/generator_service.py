"""Timetable generation and the scheduling facade used by controllers."""

from __future__ import annotations

import threading
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

from backend.domain.constraints import GenerationConfig, build_generation_config
from backend.domain.errors import GenerationCancelledError, NotFoundError, ValidationError
from backend.domain.models import (
    ConflictReport,
    ConflictType,
    ResourceKind,
    Session,
    TimetableStatus,
)
from backend.repository.data_repository import DataRepository
from backend.services.availability_service import AvailabilityService
from backend.services.conflict_service import (
    ConflictValidator,
    SchedulingCatalog,
    make_conflict,
    quality_score,
)
from backend.services.optimizer_service import OptimizerService
from backend.services.placement import (
    build_space,
    build_time_slots,
    expand_requests,
    order_by_scarcity,
    to_session,
)
from backend.services.strategies import STRATEGY_REGISTRY, StrategyContext, resolve_strategy
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

BASE_ESTIMATE_SECONDS = {
    "greedy": 30,
    "genetic": 120,
    "constraint_satisfaction": 300,
}

ALLOWED_STATUS_TRANSITIONS = {
    TimetableStatus.DRAFT: {TimetableStatus.ACTIVE, TimetableStatus.ARCHIVED},
    TimetableStatus.ACTIVE: {TimetableStatus.ARCHIVED},
    TimetableStatus.ARCHIVED: set(),
}


class GeneratorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class GenerationResult:
    algorithm: str
    schedule: list[Session]
    unscheduled: list[dict[str, Any]]
    report: ConflictReport
    metrics: dict[str, Any]
    timetable_id: Optional[str] = None

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "algorithm": self.algorithm,
            "timetable_id": self.timetable_id,
            "schedule": [session.to_dict() for session in self.schedule],
            "unscheduled": list(self.unscheduled),
            "conflicts": self.report.to_api_dict(),
            "metrics": dict(self.metrics),
        }


def _sort_schedule(sessions: Iterable[Session]) -> list[Session]:
    return sorted(
        sessions,
        key=lambda session: (
            session.day_of_week.index,
            session.start_time,
            session.room_id,
            session.session_id,
        ),
    )


class TimetableGenerator:
    """Runs one generation batch: idle -> running -> completed | failed."""

    def __init__(self, catalog: SchedulingCatalog, config: GenerationConfig) -> None:
        self._catalog = catalog
        self._config = config
        self.state = GeneratorState.IDLE

    def generate(self, cancel_event: Optional[threading.Event] = None) -> GenerationResult:
        if self.state is not GeneratorState.IDLE:
            raise ValidationError("A generator runs a single batch; create a new generator")
        if not self._catalog.courses:
            raise ValidationError("At least one course is required")
        if not self._catalog.teachers:
            raise ValidationError("At least one teacher is required")
        if not self._catalog.rooms:
            raise ValidationError("At least one room is required")
        strategy = resolve_strategy(self._config.algorithm)

        self.state = GeneratorState.RUNNING
        started = time.perf_counter()
        logger.info(
            "Generation started | algorithm=%s | courses=%s | teachers=%s | rooms=%s",
            strategy.name,
            len(self._catalog.courses),
            len(self._catalog.teachers),
            len(self._catalog.rooms),
        )
        try:
            slots = build_time_slots(self._config)
            courses = sorted(self._catalog.courses.values(), key=lambda course: course.code)
            requests = expand_requests(courses, self._config.slot_duration_minutes)
            spaces = order_by_scarcity(
                build_space(request, self._catalog, slots, self._config) for request in requests
            )
            outcome = strategy.run(
                StrategyContext(
                    spaces=spaces,
                    catalog=self._catalog,
                    config=self._config,
                    cancel_event=cancel_event,
                )
            )
            schedule = _sort_schedule(
                to_session(space.request, outcome.placements[space.request.request_id])
                for space in spaces
                if space.request.request_id in outcome.placements
            )
            unscheduled = [
                {
                    "session_id": request.request_id,
                    "course_id": request.course.course_id,
                    "course_code": request.course.code,
                    "reason": outcome.reasons.get(request.request_id, "no feasible placement"),
                }
                for request in outcome.unscheduled
            ]
            failures = [
                make_conflict(
                    ConflictType.SCHEDULING_FAILED,
                    f"Could not schedule {item['session_id']} ({item['course_code']}): {item['reason']}",
                    (item["session_id"],),
                )
                for item in unscheduled
            ]
            report = ConflictValidator(self._config.working_window).validate(
                schedule,
                self._catalog,
                extra_conflicts=failures,
            )
            elapsed_ms = round((time.perf_counter() - started) * 1000.0, 3)
            metrics = self._metrics(schedule, len(requests), len(slots), report, outcome.iterations, elapsed_ms)
        except GenerationCancelledError:
            self.state = GeneratorState.FAILED
            logger.info("Generation cancelled | algorithm=%s", strategy.name)
            raise
        except Exception:
            self.state = GeneratorState.FAILED
            raise

        self.state = GeneratorState.COMPLETED
        logger.info(
            "Generation completed | algorithm=%s | scheduled=%s | unscheduled=%s | quality=%.1f | elapsed_ms=%s",
            strategy.name,
            len(schedule),
            len(unscheduled),
            metrics["quality_score"],
            elapsed_ms,
        )
        return GenerationResult(
            algorithm=strategy.name,
            schedule=schedule,
            unscheduled=unscheduled,
            report=report,
            metrics=metrics,
        )

    def _metrics(
        self,
        schedule: Sequence[Session],
        total_sessions: int,
        slot_count: int,
        report: ConflictReport,
        iterations: int,
        elapsed_ms: float,
    ) -> dict[str, Any]:
        distribution = Counter(session.day_of_week.value for session in schedule)
        teacher_minutes = Counter()
        room_sessions = Counter()
        for session in schedule:
            teacher_minutes[session.teacher_id] += session.interval.duration
            room_sessions[session.room_id] += 1
        teacher_utilisation = {
            teacher_id: round(100.0 * teacher_minutes[teacher_id] / (teacher.max_weekly_hours * 60), 2)
            for teacher_id, teacher in sorted(self._catalog.teachers.items())
            if teacher.max_weekly_hours > 0
        }
        room_utilisation = {
            room_id: round(100.0 * room_sessions[room_id] / slot_count, 2) if slot_count else 0.0
            for room_id in sorted(self._catalog.rooms)
        }
        return {
            "execution_time_ms": elapsed_ms,
            "iterations": iterations,
            "total_sessions": total_sessions,
            "scheduled": len(schedule),
            "unscheduled": total_sessions - len(schedule),
            "scheduling_rate": round(100.0 * len(schedule) / total_sessions, 2) if total_sessions else 0.0,
            "quality_score": quality_score(report.conflicts),
            "distribution": {day.value: distribution[day.value] for day in self._config.days},
            "teacher_utilisation": teacher_utilisation,
            "room_utilisation": room_utilisation,
        }


class TimetableService:
    """Entry point for generation, validation, optimisation and timetable status."""

    def __init__(
        self,
        repository: DataRepository,
        availability_service: AvailabilityService,
        settings: Optional[Settings] = None,
        optimizer: Optional[OptimizerService] = None,
    ) -> None:
        self._repository = repository
        self._availability = availability_service
        self._settings = settings or get_settings()
        self._optimizer = optimizer or OptimizerService(self._settings)

    def build_config(self, options: Optional[Mapping[str, Any]] = None) -> GenerationConfig:
        return build_generation_config(self._settings, options)

    def load_catalog(self, course_ids: Optional[Sequence[str]] = None) -> SchedulingCatalog:
        courses = self._repository.list_courses()
        if course_ids:
            wanted = set(course_ids)
            courses = [course for course in courses if course.course_id in wanted or course.code in wanted]
        return SchedulingCatalog.build(
            courses=courses,
            teachers=self._repository.list_teachers(),
            rooms=self._repository.list_rooms(),
            teacher_windows=self._availability.weekly_windows(ResourceKind.TEACHER),
        )

    def generate(
        self,
        options: Optional[Mapping[str, Any]] = None,
        catalog: Optional[SchedulingCatalog] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> GenerationResult:
        options = dict(options or {})
        config = self.build_config(options)
        if catalog is None:
            catalog = self.load_catalog(options.get("course_ids"))
        result = TimetableGenerator(catalog, config).generate(cancel_event=cancel_event)
        if options.get("save"):
            timetable_id = self._repository.save_timetable(
                name=str(options.get("name") or f"{config.algorithm} timetable"),
                sessions=result.schedule,
                algorithm=result.algorithm,
                quality_score=result.metrics["quality_score"],
            )
            result = GenerationResult(
                algorithm=result.algorithm,
                schedule=result.schedule,
                unscheduled=result.unscheduled,
                report=result.report,
                metrics=result.metrics,
                timetable_id=timetable_id,
            )
        return result

    def validate(
        self,
        schedule: Sequence[Session],
        catalog: Optional[SchedulingCatalog] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> ConflictReport:
        config = self.build_config(options)
        return ConflictValidator(config.working_window).validate(schedule, catalog or self.load_catalog())

    def optimize(
        self,
        schedule: Sequence[Session],
        catalog: Optional[SchedulingCatalog] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        options = dict(options or {})
        config = self.build_config(options)
        outcome = self._optimizer.optimize(
            schedule,
            catalog or self.load_catalog(),
            config,
            max_passes=options.get("max_passes"),
        )
        return outcome.to_api_dict()

    def set_timetable_status(self, timetable_id: str, status: str) -> dict[str, Any]:
        try:
            target = TimetableStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown timetable status: {status!r}") from exc
        timetable = self._repository.get_timetable(timetable_id)
        if timetable is None:
            raise NotFoundError(f"Timetable {timetable_id} not found")
        if target is not timetable.status and target not in ALLOWED_STATUS_TRANSITIONS[timetable.status]:
            raise ValidationError(
                f"Cannot move timetable from {timetable.status.value} to {target.value}"
            )
        self._repository.update_timetable_status(timetable_id, target)
        logger.info(
            "Timetable status changed | timetable_id=%s | from=%s | to=%s",
            timetable_id,
            timetable.status.value,
            target.value,
        )
        return {"timetable_id": timetable_id, "status": target.value}

    def algorithms(self) -> list[dict[str, Any]]:
        return [
            dict(strategy.describe(), estimated_seconds=BASE_ESTIMATE_SECONDS[name])
            for name, strategy in STRATEGY_REGISTRY.items()
        ]

    def estimate_generation_time(self, algorithm: str, max_iterations: int) -> float:
        base = BASE_ESTIMATE_SECONDS.get(algorithm, BASE_ESTIMATE_SECONDS["greedy"])
        return round(base * max_iterations / 1000.0, 2)
