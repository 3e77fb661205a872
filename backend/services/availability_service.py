"""Availability resolution and availability/block administration."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date as date_type
from datetime import datetime
from typing import Optional, Sequence

from backend.domain.errors import NotFoundError, ValidationError
from backend.domain.intervals import TimeInterval, fits_within, normalize, subtract
from backend.domain.models import Availability, Block, DayOfWeek, ResourceKind
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedAvailability:
    resource_id: str
    resource_kind: ResourceKind
    date: str
    day_of_week: DayOfWeek
    free: list[TimeInterval]
    occupied: list[TimeInterval]
    blocked: list[TimeInterval]

    def fits(self, candidate: TimeInterval) -> bool:
        return fits_within(candidate, self.free)

    def to_dict(self) -> dict:
        return {
            "resource_id": self.resource_id,
            "resource_kind": self.resource_kind.value,
            "date": self.date,
            "day_of_week": self.day_of_week.value,
            "free": [interval.to_dict() for interval in self.free],
            "occupied": [interval.to_dict() for interval in self.occupied],
            "blocked": [interval.to_dict() for interval in self.blocked],
        }


def parse_date(value: str) -> date_type:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise ValidationError("date must follow YYYY-MM-DD format") from exc


def resolve_free_intervals(
    base: Sequence[TimeInterval],
    occupied: Sequence[TimeInterval],
    blocked: Sequence[TimeInterval],
) -> list[TimeInterval]:
    """Base availability minus timetable occupancy, then minus blocks."""
    free = subtract(normalize(base), list(occupied))
    free = subtract(free, list(blocked))
    return normalize(free)


class AvailabilityService:
    """Resolves free time for teachers and rooms and manages their records."""

    def __init__(
        self,
        repository: DataRepository,
        settings: Optional[Settings] = None,
    ) -> None:
        self._repository = repository
        self._settings = settings or get_settings()

    def resolve(self, resource_kind: ResourceKind, resource_id: str, date: str) -> ResolvedAvailability:
        target = parse_date(date)
        day = DayOfWeek.from_date(target)
        base = [
            record.interval
            for record in self._repository.list_availability(resource_kind, resource_id, day=day)
        ]
        occupied = [
            session.interval
            for session in self._repository.list_active_sessions(resource_kind, resource_id, day)
        ]
        blocked = [
            block.interval
            for block in self._repository.list_blocks(resource_kind, resource_id, target.isoformat())
        ]
        free = resolve_free_intervals(base, occupied, blocked)
        logger.debug(
            "Availability resolved | kind=%s | resource=%s | date=%s | free=%s",
            resource_kind.value,
            resource_id,
            target.isoformat(),
            len(free),
        )
        return ResolvedAvailability(
            resource_id=resource_id,
            resource_kind=resource_kind,
            date=target.isoformat(),
            day_of_week=day,
            free=free,
            occupied=normalize(occupied),
            blocked=normalize(blocked),
        )

    def is_free(
        self,
        resource_kind: ResourceKind,
        resource_id: str,
        date: str,
        start_time: str,
        end_time: str,
    ) -> bool:
        candidate = TimeInterval.from_strings(start_time, end_time)
        return self.resolve(resource_kind, resource_id, date).fits(candidate)

    def list_availability(
        self,
        resource_kind: ResourceKind,
        resource_id: str,
        day_of_week: Optional[str] = None,
        active_only: bool = False,
    ) -> list[Availability]:
        day = DayOfWeek.parse(day_of_week) if day_of_week else None
        return self._repository.list_availability(resource_kind, resource_id, day=day, active_only=active_only)

    def weekly_windows(self, resource_kind: ResourceKind) -> dict[str, dict[DayOfWeek, list[TimeInterval]]]:
        """Active weekly availability per resource and day, for generation."""
        windows: dict[str, dict[DayOfWeek, list[TimeInterval]]] = {}
        for record in self._repository.list_active_availability(resource_kind):
            per_day = windows.setdefault(record.resource_id, {})
            per_day.setdefault(record.day_of_week, []).append(record.interval)
        return windows

    def create_availability(
        self,
        resource_kind: ResourceKind,
        resource_id: str,
        day_of_week: str,
        start_time: str,
        end_time: str,
        is_active: bool = True,
    ) -> Availability:
        day = DayOfWeek.parse(day_of_week)
        TimeInterval.from_strings(start_time, end_time)
        if not resource_id.strip():
            raise ValidationError("resource_id must be non-empty")
        created = self._repository.insert_availability(
            Availability(
                availability_id=None,
                resource_id=resource_id,
                resource_kind=resource_kind,
                day_of_week=day,
                start_time=start_time,
                end_time=end_time,
                is_active=is_active,
            )
        )
        logger.info(
            "Availability created | id=%s | kind=%s | resource=%s | day=%s | window=%s-%s",
            created.availability_id,
            resource_kind.value,
            resource_id,
            day.value,
            start_time,
            end_time,
        )
        return created

    def update_availability(
        self,
        availability_id: int,
        day_of_week: Optional[str] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Availability:
        current = self._repository.get_availability(availability_id)
        if current is None:
            raise NotFoundError(f"Availability {availability_id} not found")
        updated = replace(
            current,
            day_of_week=DayOfWeek.parse(day_of_week) if day_of_week is not None else current.day_of_week,
            start_time=start_time if start_time is not None else current.start_time,
            end_time=end_time if end_time is not None else current.end_time,
            is_active=is_active if is_active is not None else current.is_active,
        )
        TimeInterval.from_strings(updated.start_time, updated.end_time)
        result = self._repository.update_availability(updated)
        logger.info("Availability updated | id=%s | active=%s", availability_id, result.is_active)
        return result

    def create_block(
        self,
        resource_kind: ResourceKind,
        resource_id: str,
        date: str,
        start_time: str,
        end_time: str,
        reason: str = "",
    ) -> Block:
        target = parse_date(date)
        TimeInterval.from_strings(start_time, end_time)
        block = self._repository.insert_block(
            Block(
                block_id=None,
                resource_id=resource_id,
                resource_kind=resource_kind,
                date=target.isoformat(),
                start_time=start_time,
                end_time=end_time,
                reason=reason,
            )
        )
        logger.info(
            "Block created | id=%s | kind=%s | resource=%s | date=%s | window=%s-%s",
            block.block_id,
            resource_kind.value,
            resource_id,
            block.date,
            start_time,
            end_time,
        )
        return block
