from datetime import datetime, timedelta

import httpx
import pytest
from conftest import make_user

from sessionbook.domain.calendar.base import BusyInterval
from sessionbook.domain.calendar.google import GoogleCalendarProvider, filter_google_events
from sessionbook.domain.calendar.ical_feed import ICalFeedProvider, normalize_feed_url, parse_ical_feed
from sessionbook.domain.calendar.microsoft import MicrosoftCalendarProvider, filter_microsoft_events
from sessionbook.domain.calendar.service import CalendarService
from sessionbook.models_calendar import CalendarConnection
from sessionbook.security_utils import decrypt_secret, encrypt_secret
from sessionbook.shared.civil_time import utcnow

BUSY = {"start": {"dateTime": "2026-03-02T09:00:00-05:00"}, "end": {"dateTime": "2026-03-02T09:30:00-05:00"}}

FEED = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//sessionbook tests//EN
BEGIN:VEVENT
UID:busy-1
DTSTART:20260302T140000Z
DTEND:20260302T143000Z
SUMMARY:Busy
END:VEVENT
BEGIN:VEVENT
UID:free-1
DTSTART:20260302T150000Z
DTEND:20260302T153000Z
TRANSP:TRANSPARENT
END:VEVENT
BEGIN:VEVENT
UID:cancelled-1
DTSTART:20260302T160000Z
DTEND:20260302T163000Z
STATUS:CANCELLED
END:VEVENT
BEGIN:VEVENT
UID:allday-1
DTSTART;VALUE=DATE:20260302
DTEND;VALUE=DATE:20260303
END:VEVENT
BEGIN:VEVENT
UID:declined-1
DTSTART:20260302T170000Z
DTEND:20260302T173000Z
ATTENDEE;PARTSTAT=DECLINED:mailto:owner@example.com
END:VEVENT
BEGIN:VEVENT
UID:floating-1
DTSTART:20260302T100000
DTEND:20260302T110000
END:VEVENT
BEGIN:VEVENT
UID:daily-1
DTSTART:20260303T180000Z
DTEND:20260303T190000Z
RRULE:FREQ=DAILY;COUNT=5
EXDATE:20260304T180000Z
END:VEVENT
END:VCALENDAR
"""


def _connection(kind="google", expires_in=timedelta(hours=1), **fields):
    return CalendarConnection(
        user_id=1,
        kind=kind,
        access_token=encrypt_secret("stored-token"),
        refresh_token=encrypt_secret("refresh-token"),
        token_expires_at=utcnow() + expires_in,
        account_email="owner@example.com",
        is_active=True,
        **fields,
    )


def test_google_filter_skips_free_declined_cancelled_and_all_day() -> None:
    items = [
        BUSY,
        {**BUSY, "transparency": "transparent"},
        {**BUSY, "status": "cancelled"},
        {"start": {"date": "2026-03-02"}, "end": {"date": "2026-03-03"}},
        {**BUSY, "attendees": [{"email": "OWNER@example.com", "responseStatus": "declined"}]},
        {**BUSY, "attendees": [{"email": "guest@example.com", "responseStatus": "declined"}]},
    ]

    intervals = filter_google_events(items, account_email="owner@example.com")

    # The last one is declined by a guest, not the owner
    assert intervals == [BusyInterval(datetime(2026, 3, 2, 14, 0), datetime(2026, 3, 2, 14, 30))] * 2


def test_microsoft_filter_rules() -> None:
    event = {"start": {"dateTime": "2026-03-02T14:00:00.0000000"}, "end": {"dateTime": "2026-03-02T15:00:00.0000000"}}
    items = [
        event,
        {**event, "isAllDay": True},
        {**event, "showAs": "free"},
        {**event, "isCancelled": True},
        {**event, "responseStatus": {"response": "declined"}},
        {**event, "showAs": "tentative"},
    ]

    intervals = filter_microsoft_events(items)

    assert len(intervals) == 2
    assert intervals[0] == BusyInterval(datetime(2026, 3, 2, 14, 0), datetime(2026, 3, 2, 15, 0))


def test_ical_feed_filtering_and_recurrence() -> None:
    intervals = parse_ical_feed(
        FEED, datetime(2026, 3, 2), datetime(2026, 3, 6), "America/New_York", account_email="owner@example.com"
    )

    assert sorted((i.start, i.end) for i in intervals) == [
        (datetime(2026, 3, 2, 14, 0), datetime(2026, 3, 2, 14, 30)),
        # Floating time read in the owner's zone
        (datetime(2026, 3, 2, 15, 0), datetime(2026, 3, 2, 16, 0)),
        (datetime(2026, 3, 3, 18, 0), datetime(2026, 3, 3, 19, 0)),
        (datetime(2026, 3, 5, 18, 0), datetime(2026, 3, 5, 19, 0)),
    ]


def test_webcal_urls_fetch_over_https() -> None:
    assert normalize_feed_url("webcal://example.com/cal.ics") == "https://example.com/cal.ics"
    assert normalize_feed_url("https://example.com/cal.ics") == "https://example.com/cal.ics"


@pytest.mark.anyio
async def test_google_list_busy_follows_pagination() -> None:
    seen_tokens = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_tokens.append(request.url.params.get("pageToken"))
        if request.url.params.get("pageToken") == "p2":
            return httpx.Response(200, json={"items": [BUSY]})
        return httpx.Response(200, json={"items": [BUSY], "nextPageToken": "p2"})

    provider = GoogleCalendarProvider(transport=httpx.MockTransport(handler))
    result = await provider.list_busy(_connection(), datetime(2026, 3, 1), datetime(2026, 3, 3), "UTC")

    assert seen_tokens == [None, "p2"]
    assert len(result.intervals) == 2
    assert result.degraded is False


@pytest.mark.anyio
async def test_failed_refresh_falls_back_to_stored_token() -> None:
    auth_headers = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            return httpx.Response(400, json={"error": "invalid_grant"})
        auth_headers.append(request.headers["Authorization"])
        return httpx.Response(200, json={"items": [BUSY]})

    provider = GoogleCalendarProvider(transport=httpx.MockTransport(handler))
    result = await provider.list_busy(
        _connection(expires_in=timedelta(minutes=-1)), datetime(2026, 3, 1), datetime(2026, 3, 3), "UTC"
    )

    assert auth_headers == ["Bearer stored-token"]
    assert len(result.intervals) == 1
    assert result.degraded is True
    assert "refresh" in result.error


@pytest.mark.anyio
async def test_refresh_rotates_tokens_near_expiry() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/token"):
            return httpx.Response(200, json={"access_token": "new-token", "refresh_token": "new-refresh", "expires_in": 3600})
        assert request.headers["Authorization"] == "Bearer new-token"
        return httpx.Response(200, json={"value": []})

    connection = _connection(kind="microsoft", expires_in=timedelta(minutes=2))
    provider = MicrosoftCalendarProvider(transport=httpx.MockTransport(handler))
    result = await provider.list_busy(connection, datetime(2026, 3, 1), datetime(2026, 3, 3), "UTC")

    assert result.degraded is False
    assert decrypt_secret(connection.access_token) == "new-token"
    assert decrypt_secret(connection.refresh_token) == "new-refresh"
    assert connection.token_expires_at > utcnow() + timedelta(minutes=50)


@pytest.mark.anyio
async def test_unreachable_calendar_degrades_instead_of_raising() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    provider = ICalFeedProvider(transport=httpx.MockTransport(handler))
    connection = _connection(kind="ical", feed_url="https://example.com/cal.ics")
    result = await provider.list_busy(connection, datetime(2026, 3, 1), datetime(2026, 3, 3), "UTC")

    assert result.degraded is True
    assert result.intervals == []


@pytest.mark.anyio
async def test_google_delete_treats_gone_event_as_deleted() -> None:
    provider = GoogleCalendarProvider(transport=httpx.MockTransport(lambda request: httpx.Response(410)))

    assert await provider.delete_event(_connection(), "evt_1") is True


@pytest.mark.anyio
async def test_calendar_service_without_connection_has_no_busy_time(db) -> None:
    provider = make_user(db)

    result = await CalendarService(db).list_busy(provider, datetime(2026, 3, 1), datetime(2026, 3, 3))

    assert result.intervals == []
    assert result.degraded is False


@pytest.mark.anyio
async def test_calendar_service_reads_ical_connection(db) -> None:
    provider = make_user(db)
    db.add(CalendarConnection(user_id=provider.id, kind="ical", feed_url="webcal://example.com/cal.ics", is_active=True))
    db.commit()

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.scheme == "https"
        return httpx.Response(200, text=FEED)

    service = CalendarService(db, transport=httpx.MockTransport(handler))
    result = await service.list_busy(provider, datetime(2026, 3, 2), datetime(2026, 3, 3))

    assert [(i.start, i.end) for i in result.intervals][:1] == [(datetime(2026, 3, 2, 14, 0), datetime(2026, 3, 2, 14, 30))]


@pytest.mark.anyio
async def test_calendar_service_degrades_on_unexpected_adapter_error(db) -> None:
    provider = make_user(db)
    db.add(
        CalendarConnection(
            user_id=provider.id,
            kind="google",
            access_token=encrypt_secret("stored-token"),
            refresh_token=encrypt_secret("refresh-token"),
            token_expires_at=utcnow() + timedelta(hours=1),
            is_active=True,
        )
    )
    db.commit()

    # A 200 whose body is not the documented object shape
    service = CalendarService(db, transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])))
    result = await service.list_busy(provider, datetime(2026, 3, 2), datetime(2026, 3, 3))

    assert result.intervals == []
    assert result.degraded is True
    assert result.error.startswith("google:")
