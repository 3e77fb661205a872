"""Room booking service with an atomic collision check."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from backend.domain.errors import ConflictError, NotFoundError, ValidationError
from backend.domain.intervals import TimeInterval
from backend.domain.models import Booking, BookingStatus, DayOfWeek, ResourceKind, Session
from backend.repository.data_repository import DataRepository
from backend.services.availability_service import parse_date
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def check_booking_collision(
    candidate: TimeInterval,
    approved_bookings: Sequence[Booking],
    active_sessions: Sequence[Session],
) -> None:
    """Raise ConflictError if the candidate overlaps a booking or a timetable session."""
    for booking in approved_bookings:
        if booking.interval.overlaps(candidate):
            raise ConflictError(
                f"Room {booking.room_id} is already booked on {booking.date} "
                f"from {booking.start_time} to {booking.end_time}"
            )
    for session in active_sessions:
        if session.interval.overlaps(candidate):
            raise ConflictError(
                f"Room {session.room_id} clashes with timetable session {session.session_id} "
                f"({session.course_id}) on {session.day_of_week.value} "
                f"from {session.start_time} to {session.end_time}"
            )


class BookingService:
    def __init__(
        self,
        repository: DataRepository,
        settings: Optional[Settings] = None,
    ) -> None:
        self._repository = repository
        self._settings = settings or get_settings()

    def _validate_request(self, room_id: str, booked_by: str, date: str, start_time: str, end_time: str) -> TimeInterval:
        if not booked_by or not booked_by.strip():
            raise ValidationError("booked_by must be non-empty")
        target = parse_date(date)
        candidate = TimeInterval.from_strings(start_time, end_time)
        window = TimeInterval.from_strings(
            self._settings.booking_working_hours_start,
            self._settings.booking_working_hours_end,
        )
        if not window.contains(candidate):
            raise ValidationError(
                f"Bookings must fall within working hours {window.start_time}-{window.end_time}"
            )
        if self._settings.booking_reject_past_dates:
            today = datetime.now(timezone.utc).date()
            if target < today:
                raise ValidationError("Cannot book a room for a past date")
        if self._repository.get_room(room_id) is None:
            raise NotFoundError(f"Room {room_id} not found")
        return candidate

    def create_booking(
        self,
        room_id: str,
        booked_by: str,
        date: str,
        start_time: str,
        end_time: str,
        purpose: str = "",
    ) -> Booking:
        candidate = self._validate_request(room_id, booked_by, date, start_time, end_time)
        target = parse_date(date)
        day = DayOfWeek.from_date(target)
        try:
            with self._repository.write_transaction() as unit:
                check_booking_collision(
                    candidate,
                    unit.list_approved_bookings(room_id, target.isoformat()),
                    unit.list_active_sessions(ResourceKind.ROOM, room_id, day),
                )
                booking = unit.insert_booking(
                    room_id=room_id,
                    booked_by=booked_by,
                    purpose=purpose,
                    date=target.isoformat(),
                    start_time=start_time,
                    end_time=end_time,
                )
        except ConflictError as exc:
            logger.warning(
                "Booking rejected | room=%s | date=%s | window=%s-%s | reason=%s",
                room_id,
                target.isoformat(),
                start_time,
                end_time,
                exc,
            )
            raise
        logger.info(
            "Booking created | booking_id=%s | room=%s | date=%s | window=%s-%s | by=%s",
            booking.booking_id,
            room_id,
            booking.date,
            start_time,
            end_time,
            booked_by,
        )
        return booking

    def cancel_booking(self, booking_id: int) -> Booking:
        """Move an approved booking to cancelled; cancelling twice is a no-op."""
        booking = self._repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        if booking.status is BookingStatus.CANCELLED:
            return booking
        self._repository.mark_booking_cancelled(booking_id)
        logger.info("Booking cancelled | booking_id=%s | room=%s", booking_id, booking.room_id)
        return self._repository.get_booking(booking_id) or booking

    def list_bookings(
        self,
        room_id: Optional[str] = None,
        status: Optional[str] = None,
        date: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[Booking]:
        resolved_status = None
        if status is not None:
            try:
                resolved_status = BookingStatus(status)
            except ValueError as exc:
                raise ValidationError(f"Unknown booking status: {status!r}") from exc
        return self._repository.list_bookings(
            room_id=room_id,
            status=resolved_status,
            date=parse_date(date).isoformat() if date else None,
            start_date=parse_date(start_date).isoformat() if start_date else None,
            end_date=parse_date(end_date).isoformat() if end_date else None,
        )
