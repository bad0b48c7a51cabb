"""Availability domain schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, field_validator, model_validator

from ...shared.validators import hhmm_to_minutes, parse_hhmm


class TemplateWindow(BaseModel):
    """One weekly window; times are wall-clock in the provider's timezone"""

    dayOfWeek: int
    startTime: str
    endTime: str
    isActive: bool = True

    @field_validator("dayOfWeek")
    @classmethod
    def validate_day(cls, v: int) -> int:
        if v < 0 or v > 6:
            raise ValueError("dayOfWeek must be between 0 (Sunday) and 6 (Saturday)")
        return v

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v: str) -> str:
        parse_hhmm(v)
        return v

    @model_validator(mode="after")
    def validate_order(self):
        if hhmm_to_minutes(self.endTime) <= hhmm_to_minutes(self.startTime):
            raise ValueError("endTime must be after startTime")
        return self


class TemplateResponse(TemplateWindow):
    id: Optional[int] = None


class TemplatesUpdate(BaseModel):
    templates: list[TemplateWindow]


class TemplatesResponse(BaseModel):
    templates: list[TemplateResponse]
    timezone: str
    isDefault: bool = False
    slotsCreated: Optional[int] = None


class SyncResponse(BaseModel):
    templatesFound: int
    slotsCreated: int


class SlotResponse(BaseModel):
    id: int
    startTime: str
    endTime: str
    isBooked: bool


class TimeSlotResponse(BaseModel):
    startMinute: int
    endMinute: int
    startInstant: str
    endInstant: str


class AvailabilityResponse(BaseModel):
    providerId: int
    date: str
    durationMinutes: int
    timezone: str
    slots: list[TimeSlotResponse]
    calendarDegraded: bool = False


class AvailableDaysResponse(BaseModel):
    providerId: int
    month: str
    durationMinutes: int
    timezone: str
    days: list[str]
