"""
Read-only iCalendar (ICS) feed adapter
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

import httpx
from dateutil.rrule import rrulestr
from icalendar import Calendar

from ...models_calendar import CalendarConnection, CalendarKind
from ...shared.civil_time import as_utc_naive, get_zone
from .base import BusyInterval, BusyQueryResult, CalendarProvider

logger = logging.getLogger(__name__)


def normalize_feed_url(url: str) -> str:
    """webcal:// is plain HTTPS as far as fetching goes"""
    if url.lower().startswith("webcal://"):
        return "https://" + url[len("webcal://"):]
    return url


def _as_aware(value: datetime, tz_name: str) -> datetime:
    # Floating times belong to the calendar owner's zone
    if value.tzinfo is None:
        return value.replace(tzinfo=get_zone(tz_name))
    return value


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _owner_declined(component, account_email: Optional[str]) -> bool:
    if not account_email:
        return False
    account = account_email.lower()
    for attendee in _as_list(component.get("attendee")):
        address = str(attendee).lower().replace("mailto:", "")
        if address == account and str(attendee.params.get("PARTSTAT", "")).upper() == "DECLINED":
            return True
    return False


def _excluded_starts(component, tz_name: str) -> set:
    excluded = set()
    for exdate in _as_list(component.get("exdate")):
        for entry in getattr(exdate, "dts", []):
            if isinstance(entry.dt, datetime):
                excluded.add(as_utc_naive(_as_aware(entry.dt, tz_name)))
    return excluded


def _occurrence_starts(component, dtstart: datetime, duration: timedelta, range_start, range_end, tz_name):
    rule = component.get("rrule")
    if not rule:
        return [dtstart]
    try:
        recurrence = rrulestr(rule.to_ical().decode(), dtstart=dtstart)
        window_start = range_start.replace(tzinfo=timezone.utc) - duration
        window_end = range_end.replace(tzinfo=timezone.utc)
        starts = recurrence.between(window_start, window_end, inc=True)
    except (ValueError, TypeError) as e:
        logger.warning(f"⚠️ Unsupported RRULE in feed, using first occurrence only: {e}")
        return [dtstart]
    excluded = _excluded_starts(component, tz_name)
    return [start for start in starts if as_utc_naive(start) not in excluded]


def filter_ical_events(
    components: Iterable,
    range_start: datetime,
    range_end: datetime,
    tz_name: str,
    account_email: Optional[str] = None,
) -> List[BusyInterval]:
    """
    Busy intervals from parsed VEVENT components overlapping [range_start, range_end).

    Skipped: date-only (all-day) events, STATUS:CANCELLED, TRANSP:TRANSPARENT,
    and events the feed owner declined.
    """
    intervals = []
    for component in components:
        dtstart_prop = component.get("dtstart")
        if dtstart_prop is None:
            continue
        dtstart = dtstart_prop.dt
        if not isinstance(dtstart, datetime):
            continue
        if str(component.get("status", "")).upper() == "CANCELLED":
            continue
        if str(component.get("transp", "")).upper() == "TRANSPARENT":
            continue
        if _owner_declined(component, account_email):
            continue

        dtstart = _as_aware(dtstart, tz_name)
        dtend_prop = component.get("dtend")
        if dtend_prop is not None and isinstance(dtend_prop.dt, datetime):
            duration = _as_aware(dtend_prop.dt, tz_name) - dtstart
        elif component.get("duration") is not None:
            duration = component.get("duration").dt
        else:
            continue
        if duration <= timedelta(0):
            continue

        for start in _occurrence_starts(component, dtstart, duration, range_start, range_end, tz_name):
            interval = BusyInterval(start=as_utc_naive(start), end=as_utc_naive(start + duration))
            if interval.overlaps(range_start, range_end):
                intervals.append(interval)
    return intervals


def parse_ical_feed(text: str, range_start, range_end, tz_name: str, account_email: Optional[str] = None):
    calendar = Calendar.from_ical(text)
    return filter_ical_events(calendar.walk("VEVENT"), range_start, range_end, tz_name, account_email)


class ICalFeedProvider(CalendarProvider):
    kind = CalendarKind.ICAL.value

    async def fetch_feed(self, url: str) -> Optional[str]:
        try:
            async with self._client() as client:
                response = await client.get(normalize_feed_url(url), follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ iCal feed fetch failed: {e}")
            return None
        if response.status_code != 200:
            logger.warning(f"⚠️ iCal feed fetch failed: HTTP {response.status_code}")
            return None
        return response.text

    async def list_busy(
        self, connection: CalendarConnection, start: datetime, end: datetime, tz_name: str
    ) -> BusyQueryResult:
        if not connection.feed_url:
            return BusyQueryResult(degraded=True, error="ical feed url missing")
        text = await self.fetch_feed(connection.feed_url)
        if text is None:
            return BusyQueryResult(degraded=True, error="ical feed unavailable")
        try:
            intervals = parse_ical_feed(text, start, end, tz_name, connection.account_email)
        except ValueError as e:
            logger.warning(f"⚠️ iCal feed for user {connection.user_id} could not be parsed: {e}")
            return BusyQueryResult(degraded=True, error="ical feed unparseable")
        return BusyQueryResult(intervals=intervals)
