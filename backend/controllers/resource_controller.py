"""HTTP controller layer for bookings, availability, blocks and meetings."""

from __future__ import annotations

from datetime import date as calendar_date
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from backend.controllers.dependencies import (
    get_availability_service,
    get_booking_service,
    get_meeting_service,
    translate_service_error,
)
from backend.domain.models import ResourceKind
from backend.services.availability_service import AvailabilityService
from backend.services.booking_service import BookingService
from backend.services.meeting_service import MeetingService
from backend.utils.config import get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["resources"])


class TimeWindowPayload(BaseModel):
    start_time: str = Field(pattern=settings.time_regex)
    end_time: str = Field(pattern=settings.time_regex)

    @model_validator(mode="after")
    def validate_order(self) -> "TimeWindowPayload":
        if self.end_time <= self.start_time:
            raise ValueError("start_time must be before end_time")
        return self


class BookingRequest(TimeWindowPayload):
    room_id: str = Field(min_length=1)
    booked_by: str = Field(min_length=1)
    date: calendar_date
    purpose: str = ""


class AvailabilityRequest(TimeWindowPayload):
    resource_kind: ResourceKind = ResourceKind.TEACHER
    resource_id: str = Field(min_length=1)
    day_of_week: str = Field(min_length=1)
    is_active: bool = True


class AvailabilityUpdateRequest(BaseModel):
    day_of_week: Optional[str] = None
    start_time: Optional[str] = Field(default=None, pattern=settings.time_regex)
    end_time: Optional[str] = Field(default=None, pattern=settings.time_regex)
    is_active: Optional[bool] = None


class BlockRequest(TimeWindowPayload):
    resource_kind: ResourceKind = ResourceKind.TEACHER
    resource_id: str = Field(min_length=1)
    date: calendar_date
    reason: str = ""


class MeetingRequest(TimeWindowPayload):
    title: str = Field(min_length=1)
    date: calendar_date
    participants: list[str] = Field(min_length=1)
    created_by: str = Field(min_length=1)

    @field_validator("participants")
    @classmethod
    def validate_participants(cls, value: list[str]) -> list[str]:
        if any(not item.strip() for item in value):
            raise ValueError("participants must be non-empty teacher ids")
        return value


@router.post("/bookings", status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingRequest,
    service: BookingService = Depends(get_booking_service),
) -> dict[str, Any]:
    """Commit a room booking after an atomic collision check."""
    try:
        booking = service.create_booking(
            room_id=payload.room_id,
            booked_by=payload.booked_by,
            date=payload.date.isoformat(),
            start_time=payload.start_time,
            end_time=payload.end_time,
            purpose=payload.purpose,
        )
        return booking.to_dict()
    except Exception as exc:
        raise translate_service_error(exc, "create booking") from exc


@router.get("/bookings", status_code=status.HTTP_200_OK)
async def list_bookings(
    room_id: Optional[str] = None,
    booking_status: Optional[str] = Query(default=None, alias="status"),
    booking_date: Optional[calendar_date] = Query(default=None, alias="date"),
    start_date: Optional[calendar_date] = None,
    end_date: Optional[calendar_date] = None,
    service: BookingService = Depends(get_booking_service),
) -> dict[str, Any]:
    try:
        bookings = service.list_bookings(
            room_id=room_id,
            status=booking_status,
            date=booking_date.isoformat() if booking_date else None,
            start_date=start_date.isoformat() if start_date else None,
            end_date=end_date.isoformat() if end_date else None,
        )
        return {"bookings": [item.to_dict() for item in bookings], "count": len(bookings)}
    except Exception as exc:
        raise translate_service_error(exc, "list bookings") from exc


@router.post("/bookings/{booking_id}/cancel", status_code=status.HTTP_200_OK)
async def cancel_booking(
    booking_id: int,
    service: BookingService = Depends(get_booking_service),
) -> dict[str, Any]:
    try:
        return service.cancel_booking(booking_id).to_dict()
    except Exception as exc:
        raise translate_service_error(exc, "cancel booking") from exc


@router.post("/availability", status_code=status.HTTP_201_CREATED)
async def create_availability(
    payload: AvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> dict[str, Any]:
    try:
        record = service.create_availability(
            resource_kind=payload.resource_kind,
            resource_id=payload.resource_id,
            day_of_week=payload.day_of_week,
            start_time=payload.start_time,
            end_time=payload.end_time,
            is_active=payload.is_active,
        )
        return record.to_dict()
    except Exception as exc:
        raise translate_service_error(exc, "create availability") from exc


@router.patch("/availability/{availability_id}", status_code=status.HTTP_200_OK)
async def update_availability(
    availability_id: int,
    payload: AvailabilityUpdateRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> dict[str, Any]:
    try:
        record = service.update_availability(
            availability_id,
            day_of_week=payload.day_of_week,
            start_time=payload.start_time,
            end_time=payload.end_time,
            is_active=payload.is_active,
        )
        return record.to_dict()
    except Exception as exc:
        raise translate_service_error(exc, "update availability") from exc


@router.get("/availability", status_code=status.HTTP_200_OK)
async def list_availability(
    resource_id: str,
    resource_kind: ResourceKind = ResourceKind.TEACHER,
    day_of_week: Optional[str] = None,
    active_only: bool = False,
    service: AvailabilityService = Depends(get_availability_service),
) -> dict[str, Any]:
    try:
        records = service.list_availability(resource_kind, resource_id, day_of_week, active_only)
        return {"availability": [item.to_dict() for item in records], "count": len(records)}
    except Exception as exc:
        raise translate_service_error(exc, "list availability") from exc


@router.get("/availability/{resource_kind}/{resource_id}", status_code=status.HTTP_200_OK)
async def resolve_availability(
    resource_kind: ResourceKind,
    resource_id: str,
    target_date: calendar_date = Query(alias="date"),
    service: AvailabilityService = Depends(get_availability_service),
) -> dict[str, Any]:
    """Free, occupied and blocked intervals of a resource on a date."""
    try:
        return service.resolve(resource_kind, resource_id, target_date.isoformat()).to_dict()
    except Exception as exc:
        raise translate_service_error(exc, "resolve availability") from exc


@router.post("/blocks", status_code=status.HTTP_201_CREATED)
async def create_block(
    payload: BlockRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> dict[str, Any]:
    try:
        block = service.create_block(
            resource_kind=payload.resource_kind,
            resource_id=payload.resource_id,
            date=payload.date.isoformat(),
            start_time=payload.start_time,
            end_time=payload.end_time,
            reason=payload.reason,
        )
        return block.to_dict()
    except Exception as exc:
        raise translate_service_error(exc, "create block") from exc


@router.post("/meetings", status_code=status.HTTP_201_CREATED)
async def create_meeting(
    payload: MeetingRequest,
    service: MeetingService = Depends(get_meeting_service),
) -> dict[str, Any]:
    try:
        meeting = service.create_meeting(
            title=payload.title,
            date=payload.date.isoformat(),
            start_time=payload.start_time,
            end_time=payload.end_time,
            participants=payload.participants,
            created_by=payload.created_by,
        )
        return meeting.to_dict()
    except Exception as exc:
        raise translate_service_error(exc, "create meeting") from exc


@router.get("/meetings", status_code=status.HTTP_200_OK)
async def list_meetings(
    teacher_id: Optional[str] = None,
    meeting_date: Optional[calendar_date] = Query(default=None, alias="date"),
    service: MeetingService = Depends(get_meeting_service),
) -> dict[str, Any]:
    try:
        meetings = service.list_meetings(
            teacher_id=teacher_id,
            date=meeting_date.isoformat() if meeting_date else None,
        )
        return {"meetings": [item.to_dict() for item in meetings], "count": len(meetings)}
    except Exception as exc:
        raise translate_service_error(exc, "list meetings") from exc
