"""Availability router - public slot lookup and provider template management"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_provider
from ...database import get_db
from ...errors import ValidationError
from ...models import User
from ...shared.civil_time import iso_z
from ...shared.validators import parse_iso_date, parse_month
from .schemas import (
    AvailabilityResponse,
    AvailableDaysResponse,
    SlotResponse,
    SyncResponse,
    TemplatesResponse,
    TemplatesUpdate,
    TimeSlotResponse,
)
from .service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/availability", tags=["Availability"])


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db)


@router.get("", response_model=AvailabilityResponse)
async def get_availability(
    provider_id: int = Query(..., alias="providerId"),
    date: str = Query(...),
    duration_minutes: int = Query(..., alias="durationMinutes"),
    timezone: Optional[str] = Query(None),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Bookable start times for one day, expressed in the requester's timezone"""
    try:
        on_date = parse_iso_date(date)
    except ValueError as e:
        raise ValidationError(str(e))

    result = await service.get_bookable_slots(provider_id, on_date, duration_minutes, timezone)
    return AvailabilityResponse(
        providerId=provider_id,
        date=on_date.isoformat(),
        durationMinutes=duration_minutes,
        timezone=result.timezone,
        slots=[
            TimeSlotResponse(
                startMinute=slot.start_minute,
                endMinute=slot.end_minute,
                startInstant=iso_z(slot.start),
                endInstant=iso_z(slot.end),
            )
            for slot in result.slots
        ],
        calendarDegraded=result.calendar_degraded,
    )


@router.get("/days", response_model=AvailableDaysResponse)
async def get_available_days(
    provider_id: int = Query(..., alias="providerId"),
    month: str = Query(...),
    duration_minutes: int = Query(30, alias="durationMinutes"),
    timezone: Optional[str] = Query(None),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Days in a month with at least one open start time (calendar picker)"""
    try:
        year, month_number = parse_month(month)
    except ValueError as e:
        raise ValidationError(str(e))

    days, tz_name = await service.get_available_days(provider_id, year, month_number, duration_minutes, timezone)
    return AvailableDaysResponse(
        providerId=provider_id,
        month=month,
        durationMinutes=duration_minutes,
        timezone=tz_name,
        days=[d.isoformat() for d in days],
    )


@router.get("/templates", response_model=TemplatesResponse)
async def get_templates(
    current_user: User = Depends(get_current_provider),
    service: AvailabilityService = Depends(get_availability_service),
):
    templates, is_default = service.get_templates(current_user)
    return TemplatesResponse(templates=templates, timezone=current_user.timezone, isDefault=is_default)


@router.put("/templates", response_model=TemplatesResponse)
async def replace_templates(
    data: TemplatesUpdate,
    current_user: User = Depends(get_current_provider),
    service: AvailabilityService = Depends(get_availability_service),
):
    templates, slots_created = service.replace_templates(current_user, data.templates)
    return TemplatesResponse(
        templates=templates,
        timezone=current_user.timezone,
        isDefault=False,
        slotsCreated=slots_created,
    )


@router.post("/sync", response_model=SyncResponse)
async def sync_slots(
    current_user: User = Depends(get_current_provider),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Re-materialise slots from the stored templates"""
    return SyncResponse(**service.sync_slots(current_user))


@router.get("/slots", response_model=list[SlotResponse])
async def list_slots(
    days: int = Query(30, ge=1, le=60),
    current_user: User = Depends(get_current_provider),
    service: AvailabilityService = Depends(get_availability_service),
):
    return [
        SlotResponse(
            id=slot.id,
            startTime=iso_z(slot.start_time),
            endTime=iso_z(slot.end_time),
            isBooked=slot.is_booked,
        )
        for slot in service.list_slots(current_user, days=days)
    ]
