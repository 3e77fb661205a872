"""Meeting scheduling against resolved teacher availability."""

from __future__ import annotations

from typing import Optional, Sequence

from backend.domain.errors import ConflictError, ValidationError
from backend.domain.intervals import TimeInterval
from backend.domain.models import Meeting, ResourceKind
from backend.repository.data_repository import DataRepository
from backend.services.availability_service import AvailabilityService, parse_date
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class MeetingService:
    def __init__(
        self,
        repository: DataRepository,
        availability_service: AvailabilityService,
    ) -> None:
        self._repository = repository
        self._availability = availability_service

    def create_meeting(
        self,
        title: str,
        date: str,
        start_time: str,
        end_time: str,
        participants: Sequence[str],
        created_by: str,
    ) -> Meeting:
        if not title.strip():
            raise ValidationError("title must be non-empty")
        unique_participants = list(dict.fromkeys(item for item in participants if item))
        if not unique_participants:
            raise ValidationError("participants must contain at least one teacher")
        target = parse_date(date).isoformat()
        candidate = TimeInterval.from_strings(start_time, end_time)

        with self._repository.write_transaction() as unit:
            for teacher_id in unique_participants:
                resolved = self._availability.resolve(ResourceKind.TEACHER, teacher_id, target)
                if not resolved.fits(candidate):
                    raise ConflictError(
                        f"Teacher {teacher_id} is not available on {target} "
                        f"from {start_time} to {end_time}"
                    )
                for meeting in unit.list_meetings_for_teacher(teacher_id, target):
                    existing = TimeInterval.from_strings(meeting.start_time, meeting.end_time)
                    if existing.overlaps(candidate):
                        raise ConflictError(
                            f"Teacher {teacher_id} already has meeting {meeting.meeting_id} "
                            f"from {meeting.start_time} to {meeting.end_time}"
                        )
            meeting = unit.insert_meeting(
                title=title,
                date=target,
                start_time=start_time,
                end_time=end_time,
                participants=unique_participants,
                created_by=created_by,
            )
        logger.info(
            "Meeting created | meeting_id=%s | date=%s | window=%s-%s | participants=%s",
            meeting.meeting_id,
            target,
            start_time,
            end_time,
            len(unique_participants),
        )
        return meeting

    def list_meetings(self, teacher_id: Optional[str] = None, date: Optional[str] = None) -> list[Meeting]:
        target = parse_date(date).isoformat() if date else None
        return self._repository.list_meetings(teacher_id=teacher_id, date=target)
