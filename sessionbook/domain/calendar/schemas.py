from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import validate_email


class CalendarConnectionStatus(BaseModel):
    connected: bool
    kind: Optional[str] = None
    account_email: Optional[str] = None
    feed_url: Optional[str] = None
    is_active: bool = False
    last_error: Optional[str] = None
    connected_at: Optional[datetime] = None


class AuthorizationUrlResponse(BaseModel):
    authorization_url: str
    state: str


class OAuthCallbackRequest(BaseModel):
    code: str
    state: Optional[str] = None

    @field_validator("code")
    @classmethod
    def code_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("No authorization code provided")
        return v.strip()


class ICalConnectRequest(BaseModel):
    feed_url: str
    account_email: Optional[str] = None

    @field_validator("feed_url")
    @classmethod
    def validate_feed_url(cls, v: str) -> str:
        v = (v or "").strip()
        if not v.lower().startswith(("http://", "https://", "webcal://")):
            raise ValueError("Feed URL must start with http://, https:// or webcal://")
        return v

    @field_validator("account_email")
    @classmethod
    def normalize_account_email(cls, v: Optional[str]) -> Optional[str]:
        return validate_email(v) or None
