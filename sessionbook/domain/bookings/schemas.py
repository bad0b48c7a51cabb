"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...shared.civil_time import as_utc_naive
from ...shared.validators import parse_iso_date, validate_duration


class BookingCreate(BaseModel):
    """Schema for creating a booking; date + startMinute are wall-clock in requesterTimezone"""

    providerId: int
    requesterId: int
    date: str
    startMinute: int
    durationMinutes: int
    requesterTimezone: Optional[str] = None
    sidesUrl: Optional[str] = None
    sidesLink: Optional[str] = None
    sidesFileName: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        parse_iso_date(v)
        return v

    @field_validator("startMinute")
    @classmethod
    def validate_start_minute(cls, v: int) -> int:
        if v < 0 or v >= 24 * 60:
            raise ValueError("startMinute must be between 0 and 1439")
        return v

    @field_validator("durationMinutes")
    @classmethod
    def validate_duration_minutes(cls, v: int) -> int:
        return validate_duration(v)

    @field_validator("notes")
    @classmethod
    def limit_notes(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) > 2000:
            raise ValueError("notes must be 2000 characters or fewer")
        return v


class BookingCreateResponse(BaseModel):
    bookingId: str
    status: str
    checkoutUrl: Optional[str] = None
    duplicate: bool = False


class BookingResponse(BaseModel):
    id: str
    providerId: int
    requesterId: int
    startTime: str
    endTime: str
    durationMinutes: int
    status: str
    totalCents: int
    providerEarningsCents: Optional[int] = None
    platformFeeCents: Optional[int] = None
    currency: str
    meetingUrl: Optional[str] = None
    sidesUrl: Optional[str] = None
    sidesLink: Optional[str] = None
    sidesFileName: Optional[str] = None
    notes: Optional[str] = None
    confirmedAt: Optional[str] = None
    cancelledAt: Optional[str] = None
    cancelledBy: Optional[str] = None
    cancelReason: Optional[str] = None
    refundCents: Optional[int] = None
    refundStatus: Optional[str] = None


class RescheduleRequest(BaseModel):
    """New interval as ISO-8601 instants; offsets are honoured, naive values are taken as UTC"""

    newStart: datetime
    newEnd: datetime

    @field_validator("newStart", "newEnd")
    @classmethod
    def normalize_instant(cls, v: datetime) -> datetime:
        return as_utc_naive(v)


class CancelRequest(BaseModel):
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def limit_reason(cls, v: Optional[str]) -> Optional[str]:
        if v:
            v = v.strip()[:255]
        return v or None


class CancelResponse(BaseModel):
    booking: BookingResponse
    refundCents: int
    refundStatus: str
    warning: Optional[str] = None


class ExpirePendingResponse(BaseModel):
    expired: int
