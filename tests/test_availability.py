from datetime import date, datetime, timedelta

import pytest
from conftest import FIXED_NOW, make_booking, make_slots, make_template, make_user

from sessionbook.domain.availability.materializer import materialize_provider_slots
from sessionbook.domain.availability.service import AvailabilityService, candidate_starts, coalesce_runs
from sessionbook.domain.calendar.base import BusyInterval, BusyQueryResult
from sessionbook.domain.calendar.google import filter_google_events
from sessionbook.errors import NotFoundError, ValidationError
from sessionbook.models import BookingStatus

NINE_AM = datetime(2026, 3, 2, 14, 0)  # 09:00 in New York


class StubCalendar:
    def __init__(self, intervals=None, degraded=False):
        self.intervals = intervals or []
        self.degraded = degraded
        self.calls = []

    async def list_busy(self, provider, start, end):
        self.calls.append((start, end))
        return BusyQueryResult(intervals=list(self.intervals), degraded=self.degraded)


def _service(db, calendar=None):
    return AvailabilityService(db, calendar=calendar or StubCalendar(), now_fn=lambda: FIXED_NOW)


@pytest.fixture
def provider(db):
    provider = make_user(db, min_advance_hours=1)
    make_slots(db, provider, NINE_AM, 2)
    return provider


def _starts(result):
    return [slot.start_minute for slot in result.slots]


def test_candidate_starts_never_straddle_a_gap() -> None:
    class Slot:
        def __init__(self, start):
            self.start_time = start
            self.end_time = start + timedelta(minutes=30)

    runs = coalesce_runs([Slot(NINE_AM), Slot(NINE_AM + timedelta(minutes=30)), Slot(NINE_AM + timedelta(hours=2))])

    assert runs == [(NINE_AM, NINE_AM + timedelta(hours=1)), (NINE_AM + timedelta(hours=2), NINE_AM + timedelta(hours=2, minutes=30))]
    assert candidate_starts(runs, 60) == [NINE_AM]


@pytest.mark.anyio
async def test_thirty_minute_sessions_step_by_thirty(db, provider) -> None:
    result = await _service(db).get_bookable_slots(provider.id, date(2026, 3, 2), 30, "America/New_York")

    assert _starts(result) == [540, 570]
    assert result.slots[0].start == NINE_AM
    assert result.slots[0].end == NINE_AM + timedelta(minutes=30)


@pytest.mark.anyio
async def test_fifteen_minute_sessions_step_by_fifteen(db, provider) -> None:
    result = await _service(db).get_bookable_slots(provider.id, date(2026, 3, 2), 15, "America/New_York")

    assert _starts(result) == [540, 555, 570, 585]


@pytest.mark.anyio
async def test_sixty_minute_session_needs_a_full_run(db, provider) -> None:
    result = await _service(db).get_bookable_slots(provider.id, date(2026, 3, 2), 60, "America/New_York")

    assert _starts(result) == [540]


@pytest.mark.anyio
async def test_start_minutes_are_in_requester_zone(db, provider) -> None:
    result = await _service(db).get_bookable_slots(provider.id, date(2026, 3, 2), 30, "Europe/London")

    assert result.timezone == "Europe/London"
    assert _starts(result) == [14 * 60, 14 * 60 + 30]


@pytest.mark.anyio
async def test_confirmed_booking_blocks_overlapping_candidates(db, provider) -> None:
    requester = make_user(db, role="requester")
    make_booking(db, provider, requester, NINE_AM)

    result = await _service(db).get_bookable_slots(provider.id, date(2026, 3, 2), 30, "America/New_York")

    assert _starts(result) == [570]


@pytest.mark.anyio
async def test_pending_booking_blocks_only_while_hold_is_fresh(db, provider) -> None:
    requester = make_user(db, role="requester")
    make_booking(
        db, provider, requester, NINE_AM, status=BookingStatus.PENDING.value, created_at=FIXED_NOW - timedelta(minutes=5)
    )
    make_booking(
        db,
        provider,
        requester,
        NINE_AM + timedelta(minutes=30),
        status=BookingStatus.PENDING.value,
        created_at=FIXED_NOW - timedelta(minutes=40),
    )

    result = await _service(db).get_bookable_slots(provider.id, date(2026, 3, 2), 30, "America/New_York")

    assert _starts(result) == [570]


@pytest.mark.anyio
async def test_external_busy_interval_blocks_by_half_open_overlap(db, provider) -> None:
    # Touching the end of the first candidate does not overlap it
    calendar = StubCalendar([BusyInterval(NINE_AM + timedelta(minutes=30), NINE_AM + timedelta(minutes=45))])

    result = await _service(db, calendar).get_bookable_slots(provider.id, date(2026, 3, 2), 30, "America/New_York")

    assert _starts(result) == [540]
    start, end = calendar.calls[0]
    assert start <= NINE_AM - timedelta(days=1)
    assert end >= NINE_AM + timedelta(days=1)


@pytest.mark.anyio
async def test_ignored_external_event_categories_leave_slot_bookable(db, provider) -> None:
    overlap = {"dateTime": "2026-03-02T14:00:00Z"}, {"dateTime": "2026-03-02T14:30:00Z"}
    items = [
        {"start": {"date": "2026-03-02"}, "end": {"date": "2026-03-03"}},
        {"start": overlap[0], "end": overlap[1], "transparency": "transparent"},
        {
            "start": overlap[0],
            "end": overlap[1],
            "attendees": [{"email": "p@example.com", "self": True, "responseStatus": "declined"}],
        },
    ]
    calendar = StubCalendar(filter_google_events(items))

    result = await _service(db, calendar).get_bookable_slots(provider.id, date(2026, 3, 2), 30, "America/New_York")
    assert _starts(result) == [540, 570]

    calendar.intervals = filter_google_events(items + [{"start": overlap[0], "end": overlap[1], "status": "confirmed"}])
    result = await _service(db, calendar).get_bookable_slots(provider.id, date(2026, 3, 2), 30, "America/New_York")
    assert _starts(result) == [570]


@pytest.mark.anyio
async def test_degraded_calendar_still_returns_slots(db, provider) -> None:
    result = await _service(db, StubCalendar(degraded=True)).get_bookable_slots(
        provider.id, date(2026, 3, 2), 30, "America/New_York"
    )

    assert result.calendar_degraded is True
    assert _starts(result) == [540, 570]


@pytest.mark.anyio
async def test_min_advance_window_drops_early_candidates(db, provider) -> None:
    provider.min_advance_hours = 3
    db.commit()

    result = await _service(db).get_bookable_slots(provider.id, date(2026, 3, 2), 30, "America/New_York")

    # now + 3h is 10:00 local
    assert _starts(result) == []


@pytest.mark.anyio
async def test_candidate_exactly_at_min_advance_is_excluded(db) -> None:
    provider = make_user(db, min_advance_hours=2)
    make_slots(db, provider, NINE_AM, 2)

    result = await _service(db).get_bookable_slots(provider.id, date(2026, 3, 2), 30, "America/New_York")

    # now + 2h is exactly 09:00 local
    assert _starts(result) == [570]


@pytest.mark.anyio
async def test_dates_beyond_max_advance_are_empty(db) -> None:
    provider = make_user(db)
    make_slots(db, provider, datetime(2026, 3, 12, 13, 0), 2)

    result = await _service(db).get_bookable_slots(provider.id, date(2026, 3, 12), 30, "America/New_York")

    assert result.slots == []


@pytest.mark.anyio
async def test_invalid_duration_and_unknown_provider(db, provider) -> None:
    with pytest.raises(ValidationError):
        await _service(db).get_bookable_slots(provider.id, date(2026, 3, 2), 45, "America/New_York")
    with pytest.raises(NotFoundError):
        await _service(db).get_bookable_slots(9999, date(2026, 3, 2), 30, "America/New_York")


@pytest.mark.anyio
async def test_available_days_within_booking_window(db) -> None:
    provider = make_user(db)
    make_template(db, provider, 1, "09:00", "10:00")
    materialize_provider_slots(db, provider, now=FIXED_NOW)

    days, tz_name = await _service(db).get_available_days(provider.id, 2026, 3, 30, None)

    assert tz_name == "America/New_York"
    # 9 March 09:00 EDT is past now + 7 days
    assert days == [date(2026, 3, 2)]
