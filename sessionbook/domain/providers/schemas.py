"""Provider profile and booking-settings schemas"""

from typing import Any, Optional

from pydantic import BaseModel, field_validator

from ...shared.civil_time import is_valid_timezone
from ...shared.validators import decode_list_field


class ProviderSettings(BaseModel):
    displayName: Optional[str] = None
    timezone: str
    rate15Cents: int
    rate30Cents: int
    rate60Cents: int
    minAdvanceHours: int
    maxAdvanceDays: int
    payoutConfigured: bool
    cancelledSessions: int
    lastWarningAt: Optional[str] = None
    languages: list[str] = []
    specialties: list[str] = []
    bio: Optional[str] = None


class ProviderSettingsUpdate(BaseModel):
    displayName: Optional[str] = None
    timezone: Optional[str] = None
    rate15Cents: Optional[int] = None
    rate30Cents: Optional[int] = None
    rate60Cents: Optional[int] = None
    minAdvanceHours: Optional[int] = None
    maxAdvanceDays: Optional[int] = None
    payoutAccountId: Optional[str] = None
    languages: Optional[Any] = None
    specialties: Optional[Any] = None
    bio: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_valid_timezone(v):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("rate15Cents", "rate30Cents", "rate60Cents")
    @classmethod
    def validate_rate(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("Rates cannot be negative")
        return v

    @field_validator("minAdvanceHours")
    @classmethod
    def validate_min_advance(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 0 <= v <= 168:
            raise ValueError("minAdvanceHours must be between 0 and 168")
        return v

    @field_validator("maxAdvanceDays")
    @classmethod
    def validate_max_advance(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 1 <= v <= 90:
            raise ValueError("maxAdvanceDays must be between 1 and 90")
        return v

    @field_validator("languages", "specialties")
    @classmethod
    def normalize_list(cls, v: Any) -> Optional[list[str]]:
        return None if v is None else decode_list_field(v)


class ProviderSettingsResponse(BaseModel):
    settings: ProviderSettings
    slotsCreated: Optional[int] = None


class ProviderProfile(BaseModel):
    id: int
    displayName: Optional[str] = None
    timezone: str
    rate15Cents: int
    rate30Cents: int
    rate60Cents: int
    minAdvanceHours: int
    maxAdvanceDays: int
    languages: list[str] = []
    specialties: list[str] = []
    bio: Optional[str] = None
    acceptingBookings: bool
