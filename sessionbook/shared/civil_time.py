"""
Civil-time conversion between IANA-zone wall clock and UTC instants.

Instants are naive datetimes in UTC throughout the application, matching
how they are stored. Wall-clock values are interpreted with fold=0:
a time inside a spring-forward gap resolves to the instant obtained by
shifting forward by the gap, and a time repeated during a fall-back
overlap resolves to its earlier occurrence.
"""

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import ValidationError


@lru_cache(maxsize=256)
def get_zone(tz_name: str) -> ZoneInfo:
    if not tz_name:
        raise ValidationError("Timezone is required")
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {tz_name}")


def is_valid_timezone(tz_name: str) -> bool:
    try:
        get_zone(tz_name)
        return True
    except ValidationError:
        return False


def utcnow() -> datetime:
    """Current instant as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(value: datetime) -> datetime:
    """Normalise an aware datetime to naive UTC; naive values are assumed to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc(local_date: date, hour: int, minute: int, tz_name: str) -> datetime:
    """Wall-clock (date, hour, minute) in ``tz_name`` to a UTC instant."""
    zone = get_zone(tz_name)
    if hour == 24 and minute == 0:
        local_date = local_date + timedelta(days=1)
        hour = 0
    local = datetime.combine(local_date, time(hour, minute), tzinfo=zone)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def to_civil(instant: datetime, tz_name: str) -> datetime:
    """UTC instant to the wall-clock datetime in ``tz_name`` (returned naive)."""
    zone = get_zone(tz_name)
    aware = as_utc_naive(instant).replace(tzinfo=timezone.utc)
    return aware.astimezone(zone).replace(tzinfo=None)


def local_day_bounds(local_date: date, tz_name: str) -> Tuple[datetime, datetime]:
    """UTC [start, end) of the calendar day ``local_date`` in ``tz_name``. 23 or 25 hours long on DST days."""
    start = to_utc(local_date, 0, 0, tz_name)
    end = to_utc(local_date + timedelta(days=1), 0, 0, tz_name)
    return start, end


def local_today(tz_name: str, now: datetime = None) -> date:
    return to_civil(now or utcnow(), tz_name).date()


def weekday_sun0(local_date: date) -> int:
    """Day of week with Sunday = 0 ... Saturday = 6."""
    return (local_date.weekday() + 1) % 7


def minutes_since_midnight(instant: datetime, tz_name: str) -> int:
    local = to_civil(instant, tz_name)
    return local.hour * 60 + local.minute


def iso_z(instant: datetime) -> str:
    """ISO-8601 UTC string with a trailing Z."""
    return as_utc_naive(instant).replace(microsecond=0).isoformat() + "Z"
