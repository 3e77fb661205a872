"""Bounded local search that relocates conflicting sessions."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Optional, Sequence

from backend.domain.constraints import GenerationConfig
from backend.domain.models import Conflict, ConflictReport, Course, Session
from backend.services.conflict_service import SEVERITY_ORDER, ConflictValidator, SchedulingCatalog
from backend.services.placement import (
    Candidate,
    PlacementState,
    SessionRequest,
    build_space,
    build_time_slots,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

MAX_CANDIDATES_PER_MOVE = 25


@dataclass(frozen=True)
class OptimizationOutcome:
    schedule: list[Session]
    report: ConflictReport
    original_report: ConflictReport
    moved_session_ids: list[str]
    passes: int

    @property
    def improvements(self) -> dict[str, int]:
        deltas = {
            severity.value: self.original_report.summary[severity.value] - self.report.summary[severity.value]
            for severity in SEVERITY_ORDER
        }
        deltas["total"] = self.original_report.summary["total"] - self.report.summary["total"]
        return deltas

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "schedule": [session.to_dict() for session in self.schedule],
            "conflicts": self.report.to_api_dict(),
            "original_summary": dict(self.original_report.summary),
            "improvements": self.improvements,
            "moved_session_ids": list(self.moved_session_ids),
            "passes": self.passes,
        }


def _weight(conflicts: Sequence[Conflict]) -> int:
    return sum(conflict.severity.weight for conflict in conflicts)


def _request_for(session: Session, catalog: SchedulingCatalog) -> SessionRequest:
    course = catalog.courses.get(session.course_id)
    if course is None:
        course = Course(
            course_id=session.course_id,
            code=session.course_id,
            student_group=catalog.group_for(session),
        )
    return SessionRequest(request_id=session.session_id, course=course, index=0)


def _as_candidate(session: Session) -> Candidate:
    return Candidate(
        slot_index=-1,
        day=session.day_of_week,
        interval=session.interval,
        room_id=session.room_id,
        teacher_id=session.teacher_id,
    )


class OptimizerService:
    """Moves only sessions named in a conflict; all other sessions stay fixed."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def optimize(
        self,
        schedule: Sequence[Session],
        catalog: SchedulingCatalog,
        config: GenerationConfig,
        max_passes: Optional[int] = None,
    ) -> OptimizationOutcome:
        passes_allowed = max_passes or self._settings.optimizer_max_passes
        validator = ConflictValidator(config.working_window)
        original_report = validator.validate(schedule, catalog)
        slots = build_time_slots(config)
        current = list(schedule)
        passes = 0

        for _ in range(passes_allowed):
            conflicts = validator.detect(current, catalog)
            if not conflicts:
                break
            passes += 1
            improved = False
            for session_id in self._implicated(conflicts, current):
                position = next(
                    (index for index, session in enumerate(current) if session.session_id == session_id),
                    None,
                )
                if position is None or current[position].course_id not in catalog.courses:
                    continue
                relocated = self._relocate(position, current, catalog, validator, slots, config)
                if relocated is not None:
                    current[position] = relocated
                    improved = True
            if not improved:
                break

        report = validator.validate(current, catalog)
        original_by_id = {session.session_id: session for session in schedule}
        moved = [
            session.session_id
            for session in current
            if original_by_id[session.session_id] != session
        ]
        logger.info(
            "Optimization finished | passes=%s | moved=%s | conflicts_before=%s | conflicts_after=%s",
            passes,
            len(moved),
            original_report.summary["total"],
            report.summary["total"],
        )
        return OptimizationOutcome(
            schedule=current,
            report=report,
            original_report=original_report,
            moved_session_ids=moved,
            passes=passes,
        )

    @staticmethod
    def _implicated(conflicts: Sequence[Conflict], current: Sequence[Session]) -> list[str]:
        """Conflicting session ids, most severe first, each listed once."""
        known = {session.session_id for session in current}
        ordered: list[str] = []
        for conflict in sorted(conflicts, key=lambda item: -item.severity.rank):
            for involved in conflict.involved_ids:
                if involved in known and involved not in ordered:
                    ordered.append(involved)
        return ordered

    def _relocate(
        self,
        position: int,
        current: list[Session],
        catalog: SchedulingCatalog,
        validator: ConflictValidator,
        slots,
        config: GenerationConfig,
    ) -> Optional[Session]:
        session = current[position]
        others = current[:position] + current[position + 1:]
        state = PlacementState(catalog)
        for other in others:
            state.commit(_request_for(other, catalog), _as_candidate(other))

        request = _request_for(session, catalog)
        space = build_space(request, catalog, slots, config)
        candidates = sorted(
            space.candidates,
            key=lambda candidate: (candidate.teacher_id != session.teacher_id, candidate.day.index),
        )
        baseline = _weight(validator.detect(current, catalog))
        best: Optional[Session] = None
        best_weight = baseline
        evaluated = 0
        for candidate in candidates:
            if evaluated >= MAX_CANDIDATES_PER_MOVE:
                break
            if not state.is_feasible(request, candidate):
                continue
            evaluated += 1
            moved = replace(
                session,
                teacher_id=candidate.teacher_id,
                room_id=candidate.room_id,
                day_of_week=candidate.day,
                start_time=candidate.interval.start_time,
                end_time=candidate.interval.end_time,
            )
            trial = list(current)
            trial[position] = moved
            weight = _weight(validator.detect(trial, catalog))
            if weight < best_weight:
                best, best_weight = moved, weight
        if best is not None:
            logger.debug(
                "Session relocated | session=%s | weight_before=%s | weight_after=%s",
                session.session_id,
                baseline,
                best_weight,
            )
        return best
