"""
Google Calendar adapter
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

import httpx
from dateutil import parser as date_parser

from ...config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REDIRECT_URI
from ...models_calendar import CalendarConnection, CalendarKind
from ...shared.civil_time import as_utc_naive, iso_z
from .base import BusyInterval, BusyQueryResult, CalendarEvent, OAuthCalendarProvider

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 - OAuth endpoint URL
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
)


def filter_google_events(items: Iterable[dict], account_email: Optional[str] = None) -> List[BusyInterval]:
    """
    Reduce raw Google event resources to busy intervals.

    Skipped: all-day events (no start.dateTime), events marked transparent
    ("free"), cancelled events, and events the calendar owner declined.
    """
    account = (account_email or "").lower()
    intervals = []
    for item in items:
        start_raw = (item.get("start") or {}).get("dateTime")
        end_raw = (item.get("end") or {}).get("dateTime")
        if not start_raw or not end_raw:
            continue
        if item.get("transparency") == "transparent":
            continue
        if item.get("status") == "cancelled":
            continue

        declined = False
        for attendee in item.get("attendees") or []:
            is_owner = attendee.get("self") or (account and (attendee.get("email") or "").lower() == account)
            if is_owner and attendee.get("responseStatus") == "declined":
                declined = True
                break
        if declined:
            continue

        try:
            start = as_utc_naive(date_parser.isoparse(start_raw))
            end = as_utc_naive(date_parser.isoparse(end_raw))
        except (ValueError, OverflowError):
            logger.warning(f"⚠️ Skipping Google event with unparseable times: {item.get('id')}")
            continue
        if end > start:
            intervals.append(BusyInterval(start=start, end=end))
    return intervals


class GoogleCalendarProvider(OAuthCalendarProvider):
    kind = CalendarKind.GOOGLE.value
    authorize_url = GOOGLE_AUTH_URL
    token_url = GOOGLE_TOKEN_URL
    scopes = GOOGLE_CALENDAR_SCOPES
    client_id = GOOGLE_CLIENT_ID
    client_secret = GOOGLE_CLIENT_SECRET
    redirect_uri = GOOGLE_REDIRECT_URI

    def extra_authorize_params(self) -> dict:
        return {"access_type": "offline", "prompt": "consent"}

    async def fetch_account_email(self, access_token: str) -> Optional[str]:
        try:
            async with self._client() as client:
                response = await client.get(
                    GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
                )
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Failed to get Google user info: {e}")
            return None
        if response.status_code != 200:
            logger.warning(f"⚠️ Failed to get Google user info: {response.text}")
            return None
        return response.json().get("email")

    async def list_busy(
        self, connection: CalendarConnection, start: datetime, end: datetime, tz_name: str
    ) -> BusyQueryResult:
        access_token, soft_error = await self.get_access_token(connection)
        if not access_token:
            return BusyQueryResult(degraded=True, error=soft_error or "google access token unavailable")

        params = {
            "timeMin": iso_z(start),
            "timeMax": iso_z(end),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": "2500",
        }
        items = []
        try:
            async with self._client() as client:
                while True:
                    response = await client.get(
                        f"{GOOGLE_CALENDAR_API}/calendars/primary/events",
                        headers={"Authorization": f"Bearer {access_token}"},
                        params=params,
                    )
                    if response.status_code != 200:
                        logger.warning(
                            f"⚠️ Google events list failed for user {connection.user_id}: HTTP {response.status_code}"
                        )
                        return BusyQueryResult(degraded=True, error=f"google HTTP {response.status_code}")
                    data = response.json()
                    items.extend(data.get("items") or [])
                    page_token = data.get("nextPageToken")
                    if not page_token:
                        break
                    params["pageToken"] = page_token
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"⚠️ Google events list error for user {connection.user_id}: {e}")
            return BusyQueryResult(degraded=True, error=str(e))

        intervals = filter_google_events(items, connection.account_email)
        return BusyQueryResult(intervals=intervals, degraded=soft_error is not None, error=soft_error)

    async def create_event(self, connection: CalendarConnection, event: CalendarEvent) -> Optional[str]:
        access_token, _ = await self.get_access_token(connection)
        if not access_token:
            return None

        description = event.description
        if event.meeting_url:
            description += f"\n\nJoin: {event.meeting_url}"
        event_data = {
            "summary": event.summary,
            "description": description,
            "start": {"dateTime": iso_z(event.start), "timeZone": "UTC"},
            "end": {"dateTime": iso_z(event.end), "timeZone": "UTC"},
            "attendees": [{"email": email} for email in event.attendees if email],
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 60},
                    {"method": "popup", "minutes": 15},
                ],
            },
        }
        if event.meeting_url:
            event_data["location"] = event.meeting_url

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{GOOGLE_CALENDAR_API}/calendars/primary/events",
                    headers={"Authorization": f"Bearer {access_token}"},
                    json=event_data,
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Error creating Google Calendar event: {e}")
            return None

        if response.status_code not in (200, 201):
            logger.error(f"❌ Failed to create Google Calendar event: {response.text}")
            return None

        event_id = response.json().get("id")
        logger.info(f"✅ Google Calendar event created: {event_id}")
        return event_id

    async def delete_event(self, connection: CalendarConnection, event_id: str) -> bool:
        access_token, _ = await self.get_access_token(connection)
        if not access_token:
            return False
        try:
            async with self._client() as client:
                response = await client.delete(
                    f"{GOOGLE_CALENDAR_API}/calendars/primary/events/{event_id}",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Error deleting Google Calendar event {event_id}: {e}")
            return False

        # 404/410: already deleted on Google's side
        if response.status_code in (200, 204, 404, 410):
            logger.info(f"✅ Google Calendar event deleted: {event_id}")
            return True
        logger.error(f"❌ Failed to delete Google Calendar event {event_id}: HTTP {response.status_code}")
        return False
