"""Availability service - bookable start times and template management"""

import calendar as month_calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session

from ...config import DEFAULT_TIMEZONE, PENDING_HOLD_MINUTES
from ...errors import NotFoundError, ValidationError
from ...models import User
from ...shared.civil_time import get_zone, local_day_bounds, minutes_since_midnight, utcnow
from ...shared.validators import ALLOWED_DURATIONS
from ..calendar.service import CalendarService
from .materializer import materialize_provider_slots
from .repository import AvailabilityRepository

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES = [
    {"dayOfWeek": day, "startTime": "09:00", "endTime": "17:00", "isActive": True} for day in range(1, 6)
]


@dataclass
class TimeSlot:
    start_minute: int
    end_minute: int
    start: datetime  # naive UTC
    end: datetime  # naive UTC


@dataclass
class AvailabilityResult:
    slots: list[TimeSlot] = field(default_factory=list)
    timezone: str = DEFAULT_TIMEZONE
    calendar_degraded: bool = False


def coalesce_runs(slots: Iterable) -> list[tuple[datetime, datetime]]:
    """Merge slots whose UTC intervals touch into maximal contiguous runs"""
    runs: list[list[datetime]] = []
    for slot in sorted(slots, key=lambda s: s.start_time):
        if runs and slot.start_time <= runs[-1][1]:
            runs[-1][1] = max(runs[-1][1], slot.end_time)
        else:
            runs.append([slot.start_time, slot.end_time])
    return [(start, end) for start, end in runs]


def candidate_starts(runs: Iterable[tuple[datetime, datetime]], duration_minutes: int) -> list[datetime]:
    """
    Start instants inside the runs that fit the whole duration.
    Steps by 15 minutes for 15-minute sessions and 30 otherwise.
    """
    step = timedelta(minutes=15 if duration_minutes == 15 else 30)
    duration = timedelta(minutes=duration_minutes)
    starts = []
    for run_start, run_end in runs:
        cursor = run_start
        while cursor + duration <= run_end:
            starts.append(cursor)
            cursor += step
    return starts


def _overlaps_any(start: datetime, end: datetime, intervals: Iterable) -> bool:
    return any(start < busy_end and end > busy_start for busy_start, busy_end in intervals)


class AvailabilityService:
    """Service layer for availability queries and template management"""

    def __init__(
        self,
        db: Session,
        calendar: Optional[CalendarService] = None,
        now_fn: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.repo = AvailabilityRepository()
        self.calendar = calendar or CalendarService(db)
        self.now_fn = now_fn

    def _get_provider(self, provider_id: int) -> User:
        provider = self.repo.get_provider(self.db, provider_id)
        if not provider or not provider.is_provider:
            raise NotFoundError("Provider not found")
        return provider

    @staticmethod
    def _validate_duration(duration_minutes: int) -> None:
        if duration_minutes not in ALLOWED_DURATIONS:
            raise ValidationError(
                f"durationMinutes must be one of {', '.join(str(d) for d in ALLOWED_DURATIONS)}"
            )

    def _booking_window(self, provider: User, now: datetime) -> tuple[datetime, datetime]:
        earliest = now + timedelta(hours=provider.min_advance_hours or 0)
        latest = now + timedelta(days=provider.max_advance_days or 0)
        return earliest, latest

    async def _busy_intervals(self, provider: User, start: datetime, end: datetime, now: datetime):
        pending_since = now - timedelta(minutes=PENDING_HOLD_MINUTES)
        bookings = self.repo.blocking_bookings(self.db, provider.id, start, end, pending_since)
        busy = [(b.start_time, b.end_time) for b in bookings]

        result = await self.calendar.list_busy(provider, start, end)
        busy.extend((interval.start, interval.end) for interval in result.intervals)
        return busy, result.degraded

    def _day_slots(
        self,
        slots: list,
        busy: list,
        day_start: datetime,
        day_end: datetime,
        earliest: datetime,
        latest: datetime,
        duration_minutes: int,
        tz_name: str,
    ) -> list[TimeSlot]:
        day_slots = [s for s in slots if day_start <= s.start_time < day_end]
        duration = timedelta(minutes=duration_minutes)
        result = []
        for start in candidate_starts(coalesce_runs(day_slots), duration_minutes):
            if start <= earliest or start > latest or start >= day_end:
                continue
            end = start + duration
            if _overlaps_any(start, end, busy):
                continue
            start_minute = minutes_since_midnight(start, tz_name)
            result.append(TimeSlot(start_minute, start_minute + duration_minutes, start, end))
        return result

    async def get_bookable_slots(
        self,
        provider_id: int,
        on_date: date,
        duration_minutes: int,
        tz_name: Optional[str] = None,
    ) -> AvailabilityResult:
        """
        Start times on ``on_date`` (a calendar day in ``tz_name``) at which a
        session of ``duration_minutes`` can be booked with the provider.

        Candidates come from coalesced unbooked slots and are dropped when
        they overlap a confirmed booking, a still-held pending booking, or a
        busy interval on the provider's external calendar.
        """
        self._validate_duration(duration_minutes)
        provider = self._get_provider(provider_id)
        tz_name = tz_name or provider.timezone or DEFAULT_TIMEZONE
        get_zone(tz_name)

        now = self.now_fn()
        earliest, latest = self._booking_window(provider, now)
        day_start, day_end = local_day_bounds(on_date, tz_name)
        if day_end <= earliest or day_start > latest:
            return AvailabilityResult(timezone=tz_name)

        slots = self.repo.get_unbooked_slots(self.db, provider.id, day_start, day_end)
        if not slots:
            return AvailabilityResult(timezone=tz_name)

        busy, degraded = await self._busy_intervals(
            provider, day_start - timedelta(days=1), day_end + timedelta(days=1), now
        )
        available = self._day_slots(slots, busy, day_start, day_end, earliest, latest, duration_minutes, tz_name)
        return AvailabilityResult(slots=available, timezone=tz_name, calendar_degraded=degraded)

    async def get_available_days(
        self,
        provider_id: int,
        year: int,
        month: int,
        duration_minutes: int,
        tz_name: Optional[str] = None,
    ) -> tuple[list[date], str]:
        """Days of the month with at least one bookable start, in one calendar lookup"""
        self._validate_duration(duration_minutes)
        provider = self._get_provider(provider_id)
        tz_name = tz_name or provider.timezone or DEFAULT_TIMEZONE
        get_zone(tz_name)

        now = self.now_fn()
        earliest, latest = self._booking_window(provider, now)
        days_in_month = month_calendar.monthrange(year, month)[1]
        month_days = [date(year, month, day) for day in range(1, days_in_month + 1)]
        month_start = local_day_bounds(month_days[0], tz_name)[0]
        month_end = local_day_bounds(month_days[-1], tz_name)[1]

        range_start = max(month_start, earliest)
        range_end = min(month_end, latest + timedelta(minutes=duration_minutes))
        if range_end <= range_start:
            return [], tz_name

        slots = self.repo.get_unbooked_slots(self.db, provider.id, range_start, range_end)
        if not slots:
            return [], tz_name
        busy, _ = await self._busy_intervals(provider, range_start, range_end, now)

        days = []
        for day in month_days:
            day_start, day_end = local_day_bounds(day, tz_name)
            if day_end <= earliest or day_start > latest:
                continue
            if self._day_slots(slots, busy, day_start, day_end, earliest, latest, duration_minutes, tz_name):
                days.append(day)
        return days, tz_name

    # ------------------------------------------------------------ templates

    def get_templates(self, provider: User) -> tuple[list, bool]:
        """Stored templates, or the Mon-Fri 09:00-17:00 suggestion when none exist"""
        templates = self.repo.get_templates(self.db, provider.id)
        if not templates:
            return list(DEFAULT_TEMPLATES), True
        return [
            {
                "id": t.id,
                "dayOfWeek": t.day_of_week,
                "startTime": t.start_time,
                "endTime": t.end_time,
                "isActive": t.is_active,
            }
            for t in templates
        ], False

    def replace_templates(self, provider: User, windows: list) -> tuple[list, Optional[int]]:
        """
        Replace the provider's templates and rebuild slots.
        Slot materialisation is best-effort: the templates stay saved if it fails.
        """
        self.repo.replace_templates(
            self.db,
            provider.id,
            [
                {
                    "day_of_week": w.dayOfWeek,
                    "start_time": w.startTime,
                    "end_time": w.endTime,
                    "is_active": w.isActive,
                }
                for w in windows
            ],
        )
        logger.info(f"✅ Saved {len(windows)} availability templates for provider {provider.id}")

        slots_created = None
        try:
            slots_created = materialize_provider_slots(self.db, provider, now=self.now_fn())
        except Exception as e:
            logger.error(f"❌ Slot rebuild after template update failed for provider {provider.id}: {e}")
        templates, _ = self.get_templates(provider)
        return templates, slots_created

    def sync_slots(self, provider: User) -> dict:
        templates = self.repo.get_templates(self.db, provider.id, active_only=True)
        created = materialize_provider_slots(self.db, provider, now=self.now_fn())
        return {"templatesFound": len(templates), "slotsCreated": created}

    def list_slots(self, provider: User, start: Optional[datetime] = None, days: int = 30) -> list:
        start = start or self.now_fn()
        return self.repo.list_slots(self.db, provider.id, start, start + timedelta(days=days))
