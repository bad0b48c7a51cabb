"""
Microsoft Outlook calendar adapter (Graph API)
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

import httpx
from dateutil import parser as date_parser

from ...config import MICROSOFT_CLIENT_ID, MICROSOFT_CLIENT_SECRET, MICROSOFT_REDIRECT_URI
from ...models_calendar import CalendarConnection, CalendarKind
from ...shared.civil_time import as_utc_naive, iso_z
from .base import BusyInterval, BusyQueryResult, CalendarEvent, OAuthCalendarProvider

logger = logging.getLogger(__name__)

MICROSOFT_AUTH_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
MICROSOFT_TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"  # noqa: S105
GRAPH_API = "https://graph.microsoft.com/v1.0"
MICROSOFT_CALENDAR_SCOPES = ("offline_access", "User.Read", "Calendars.ReadWrite")

# Ask Graph to express every dateTime in UTC so naive values can be taken as-is
UTC_PREFERENCE = {"Prefer": 'outlook.timezone="UTC"'}


def _parse_graph_datetime(value: dict) -> datetime:
    # Graph emits seven fractional digits ("2026-03-10T14:00:00.0000000")
    return as_utc_naive(date_parser.isoparse(value["dateTime"]))


def filter_microsoft_events(items: Iterable[dict]) -> List[BusyInterval]:
    """
    Reduce Graph calendarView events to busy intervals.

    Skipped: all-day events, events shown as free, cancelled events, and
    events the mailbox owner declined.
    """
    intervals = []
    for item in items:
        if item.get("isAllDay"):
            continue
        if item.get("showAs") == "free":
            continue
        if item.get("isCancelled"):
            continue
        if (item.get("responseStatus") or {}).get("response") == "declined":
            continue
        try:
            start = _parse_graph_datetime(item["start"])
            end = _parse_graph_datetime(item["end"])
        except (KeyError, TypeError, ValueError, OverflowError):
            logger.warning(f"⚠️ Skipping Outlook event with unparseable times: {item.get('id')}")
            continue
        if end > start:
            intervals.append(BusyInterval(start=start, end=end))
    return intervals


class MicrosoftCalendarProvider(OAuthCalendarProvider):
    kind = CalendarKind.MICROSOFT.value
    authorize_url = MICROSOFT_AUTH_URL
    token_url = MICROSOFT_TOKEN_URL
    scopes = MICROSOFT_CALENDAR_SCOPES
    client_id = MICROSOFT_CLIENT_ID
    client_secret = MICROSOFT_CLIENT_SECRET
    redirect_uri = MICROSOFT_REDIRECT_URI

    def extra_authorize_params(self) -> dict:
        return {"response_mode": "query", "prompt": "consent"}

    async def fetch_account_email(self, access_token: str) -> Optional[str]:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{GRAPH_API}/me", headers={"Authorization": f"Bearer {access_token}"}
                )
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Failed to get Microsoft profile: {e}")
            return None
        if response.status_code != 200:
            logger.warning(f"⚠️ Failed to get Microsoft profile: {response.text}")
            return None
        profile = response.json()
        return profile.get("mail") or profile.get("userPrincipalName")

    async def list_busy(
        self, connection: CalendarConnection, start: datetime, end: datetime, tz_name: str
    ) -> BusyQueryResult:
        access_token, soft_error = await self.get_access_token(connection)
        if not access_token:
            return BusyQueryResult(degraded=True, error=soft_error or "microsoft access token unavailable")

        headers = {"Authorization": f"Bearer {access_token}", **UTC_PREFERENCE}
        url = f"{GRAPH_API}/me/calendarview"
        params = {
            "startDateTime": iso_z(start),
            "endDateTime": iso_z(end),
            "$top": "500",
            "$select": "id,start,end,isAllDay,showAs,isCancelled,responseStatus",
        }
        items = []
        try:
            async with self._client() as client:
                while url:
                    response = await client.get(url, headers=headers, params=params)
                    if response.status_code != 200:
                        logger.warning(
                            f"⚠️ Outlook calendarview failed for user {connection.user_id}: HTTP {response.status_code}"
                        )
                        return BusyQueryResult(degraded=True, error=f"microsoft HTTP {response.status_code}")
                    data = response.json()
                    items.extend(data.get("value") or [])
                    # nextLink already carries the query string
                    url = data.get("@odata.nextLink")
                    params = None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"⚠️ Outlook calendarview error for user {connection.user_id}: {e}")
            return BusyQueryResult(degraded=True, error=str(e))

        intervals = filter_microsoft_events(items)
        return BusyQueryResult(intervals=intervals, degraded=soft_error is not None, error=soft_error)

    async def create_event(self, connection: CalendarConnection, event: CalendarEvent) -> Optional[str]:
        access_token, _ = await self.get_access_token(connection)
        if not access_token:
            return None

        body = event.description.replace("\n", "<br>")
        if event.meeting_url:
            body += f'<br><br><a href="{event.meeting_url}">Join session</a>'
        event_data = {
            "subject": event.summary,
            "body": {"contentType": "HTML", "content": body},
            "start": {"dateTime": event.start.isoformat(), "timeZone": "UTC"},
            "end": {"dateTime": event.end.isoformat(), "timeZone": "UTC"},
            "attendees": [
                {"emailAddress": {"address": email}, "type": "required"} for email in event.attendees if email
            ],
            "isReminderOn": True,
            "reminderMinutesBeforeStart": 15,
        }
        if event.meeting_url:
            event_data["location"] = {"displayName": event.meeting_url}

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{GRAPH_API}/me/events",
                    headers={"Authorization": f"Bearer {access_token}", **UTC_PREFERENCE},
                    json=event_data,
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Error creating Outlook event: {e}")
            return None

        if response.status_code not in (200, 201):
            logger.error(f"❌ Failed to create Outlook event: {response.text}")
            return None

        event_id = response.json().get("id")
        logger.info(f"✅ Outlook event created: {event_id}")
        return event_id

    async def delete_event(self, connection: CalendarConnection, event_id: str) -> bool:
        access_token, _ = await self.get_access_token(connection)
        if not access_token:
            return False
        try:
            async with self._client() as client:
                response = await client.delete(
                    f"{GRAPH_API}/me/events/{event_id}",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Error deleting Outlook event {event_id}: {e}")
            return False

        if response.status_code in (200, 204, 404):
            logger.info(f"✅ Outlook event deleted: {event_id}")
            return True
        logger.error(f"❌ Failed to delete Outlook event {event_id}: HTTP {response.status_code}")
        return False
