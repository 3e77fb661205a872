"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from backend.domain.errors import ConflictError, NotFoundError, ValidationError
from backend.services.availability_service import AvailabilityService
from backend.services.booking_service import BookingService
from backend.services.generator_service import TimetableService
from backend.services.job_service import JobManager
from backend.services.meeting_service import MeetingService
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def _service(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_availability_service(request: Request) -> AvailabilityService:
    return _service(request, "availability_service", "Availability service")


def get_booking_service(request: Request) -> BookingService:
    return _service(request, "booking_service", "Booking service")


def get_meeting_service(request: Request) -> MeetingService:
    return _service(request, "meeting_service", "Meeting service")


def get_timetable_service(request: Request) -> TimetableService:
    return _service(request, "timetable_service", "Timetable service")


def get_job_manager(request: Request) -> JobManager:
    return _service(request, "job_manager", "Job manager")


def translate_service_error(exc: Exception, action: str) -> HTTPException:
    """Map the scheduling error taxonomy onto HTTP status codes."""
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    logger.exception("Unexpected failure while trying to %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )
