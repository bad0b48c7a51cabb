"""
Calendar provider adapters.

A provider exposes one capability set (busy listing, and for OAuth
providers event writes) regardless of vendor. Every method is soft-failing:
errors are logged and reported through the return value, never raised.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from ...config import CALENDAR_HTTP_TIMEOUT_SECONDS
from ...models_calendar import CalendarConnection
from ...security_utils import decrypt_secret, encrypt_secret
from ...shared.civil_time import utcnow

logger = logging.getLogger(__name__)

# Refresh OAuth tokens this long before they actually expire
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


@dataclass
class BusyInterval:
    start: datetime  # naive UTC
    end: datetime  # naive UTC

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


@dataclass
class BusyQueryResult:
    intervals: List[BusyInterval] = field(default_factory=list)
    degraded: bool = False
    error: Optional[str] = None


@dataclass
class CalendarEvent:
    summary: str
    description: str
    start: datetime  # naive UTC
    end: datetime  # naive UTC
    attendees: List[str] = field(default_factory=list)
    meeting_url: Optional[str] = None


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str]
    expires_in: int = 3600


class CalendarProvider(ABC):
    """Busy-time source for one kind of external calendar"""

    kind = ""
    supports_write = False

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = CALENDAR_HTTP_TIMEOUT_SECONDS,
    ):
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout)

    @abstractmethod
    async def list_busy(
        self, connection: CalendarConnection, start: datetime, end: datetime, tz_name: str
    ) -> BusyQueryResult:
        """Busy intervals overlapping [start, end)"""

    async def create_event(self, connection: CalendarConnection, event: CalendarEvent) -> Optional[str]:
        return None

    async def delete_event(self, connection: CalendarConnection, event_id: str) -> bool:
        return False


class NullCalendarProvider(CalendarProvider):
    """Used when the provider has no calendar connected"""

    async def list_busy(self, connection, start, end, tz_name) -> BusyQueryResult:
        return BusyQueryResult()


class OAuthCalendarProvider(CalendarProvider):
    """Shared OAuth plumbing for Google and Microsoft"""

    supports_write = True
    authorize_url = ""
    token_url = ""
    scopes: Tuple[str, ...] = ()
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        params.update(self.extra_authorize_params())
        return f"{self.authorize_url}?{urlencode(params)}"

    def extra_authorize_params(self) -> dict:
        return {}

    async def exchange_code(self, code: str) -> Optional[OAuthTokens]:
        """Trade an authorization code for tokens; None when the provider refuses"""
        try:
            async with self._client() as client:
                response = await client.post(
                    self.token_url,
                    data={
                        "code": code,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ {self.kind} token exchange request failed: {e}")
            return None

        if response.status_code != 200:
            logger.error(f"❌ {self.kind} token exchange failed: {response.text}")
            return None

        tokens = response.json()
        if not tokens.get("access_token"):
            logger.error(f"❌ {self.kind} token exchange returned no access token")
            return None
        return OAuthTokens(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_in=int(tokens.get("expires_in", 3600)),
        )

    async def fetch_account_email(self, access_token: str) -> Optional[str]:
        return None

    async def refresh_access_token(self, connection: CalendarConnection) -> Optional[str]:
        """
        Exchange the stored refresh token for a new access token.

        Updates the connection's encrypted token fields in place; the caller
        owns the commit. Returns None on any failure.
        """
        refresh_token = decrypt_secret(connection.refresh_token)
        if not refresh_token:
            return None

        try:
            async with self._client() as client:
                response = await client.post(
                    self.token_url,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ {self.kind} token refresh request failed: {e}")
            return None

        if response.status_code != 200:
            logger.warning(f"⚠️ {self.kind} token refresh failed: HTTP {response.status_code}")
            return None

        tokens = response.json()
        new_access_token = tokens.get("access_token")
        if not new_access_token:
            logger.warning(f"⚠️ No access token in {self.kind} refresh response")
            return None

        connection.access_token = encrypt_secret(new_access_token)
        connection.token_expires_at = utcnow() + timedelta(seconds=int(tokens.get("expires_in", 3600)))
        # Microsoft rotates refresh tokens
        if tokens.get("refresh_token"):
            connection.refresh_token = encrypt_secret(tokens["refresh_token"])
        logger.info(f"✅ {self.kind} calendar token refreshed for user {connection.user_id}")
        return new_access_token

    async def get_access_token(self, connection: CalendarConnection) -> Tuple[Optional[str], Optional[str]]:
        """
        Current access token, refreshed opportunistically when near expiry.

        Returns (token, soft_error). A failed refresh falls back to the
        stored token and reports the failure as a soft error.
        """
        access_token = decrypt_secret(connection.access_token)
        expires_at = connection.token_expires_at
        needs_refresh = connection.refresh_token and (
            expires_at is None or expires_at <= utcnow() + TOKEN_REFRESH_MARGIN
        )
        if not needs_refresh:
            return access_token, None

        refreshed = await self.refresh_access_token(connection)
        if refreshed:
            return refreshed, None
        return access_token, f"{self.kind} token refresh failed"
