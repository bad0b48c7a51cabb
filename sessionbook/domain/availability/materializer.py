"""
Slot materialisation.

Expands a provider's weekly templates into concrete UTC slots for a rolling
window. A rebuild replaces every unbooked slot and never touches booked
ones, so repeated runs over unchanged templates produce the same set.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import SLOT_MINUTES, SLOT_WINDOW_DAYS
from ...errors import ConflictError, PersistenceError
from ...models import AvailabilitySlot, User, UserRole
from ...shared.civil_time import local_today, to_utc, utcnow, weekday_sun0
from ...shared.validators import hhmm_to_minutes
from .repository import AvailabilityRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotWindow:
    start: datetime  # naive UTC
    end: datetime  # naive UTC


def build_slot_windows(
    templates: Iterable,
    tz_name: str,
    first_day: date,
    days: int = SLOT_WINDOW_DAYS,
    slot_minutes: int = SLOT_MINUTES,
    not_before: Optional[datetime] = None,
) -> list[SlotWindow]:
    """
    Concrete UTC slots for ``days`` local days starting at ``first_day``.

    Each template window is cut into ``slot_minutes`` pieces; a trailing
    remainder shorter than a slot is dropped. Slots are deduplicated on
    their UTC start, which also absorbs the wall-clock hour that a
    spring-forward gap maps onto its neighbour.
    """
    by_day: dict[int, list[tuple[int, int]]] = {}
    for template in templates:
        if not getattr(template, "is_active", True):
            continue
        by_day.setdefault(template.day_of_week, []).append(
            (hhmm_to_minutes(template.start_time), hhmm_to_minutes(template.end_time))
        )

    length = timedelta(minutes=slot_minutes)
    windows: dict[datetime, SlotWindow] = {}
    for offset in range(days):
        local_date = first_day + timedelta(days=offset)
        for start_minute, end_minute in by_day.get(weekday_sun0(local_date), []):
            minute = start_minute
            while minute + slot_minutes <= end_minute:
                start = to_utc(local_date, minute // 60, minute % 60, tz_name)
                minute += slot_minutes
                if not_before is not None and start <= not_before:
                    continue
                if start not in windows:
                    windows[start] = SlotWindow(start=start, end=start + length)
    return [windows[key] for key in sorted(windows)]


def materialize_provider_slots(db: Session, provider: User, now: Optional[datetime] = None) -> int:
    """
    Rebuild the provider's unbooked slots from their active templates.

    Runs as one transaction: unbooked slots are deleted and the new set
    inserted, skipping instants already held by a booked slot. A confirmed
    booking whose slot row went missing gets it back marked booked.
    Returns the number of slots inserted.
    """
    now = now or utcnow()
    templates = AvailabilityRepository.get_templates(db, provider.id, active_only=True)
    windows = build_slot_windows(templates, provider.timezone, local_today(provider.timezone, now), not_before=now)

    try:
        booked_starts = AvailabilityRepository.booked_slot_starts(db, provider.id)
        confirmed = AvailabilityRepository.confirmed_booking_starts(db, provider.id, now)
        deleted = AvailabilityRepository.delete_unbooked_slots(db, provider.id)

        rows = []
        for window in windows:
            if window.start in booked_starts:
                continue
            booking_id = confirmed.get(window.start)
            rows.append(
                {
                    "provider_id": provider.id,
                    "start_time": window.start,
                    "end_time": window.end,
                    "is_booked": booking_id is not None,
                    "booking_id": booking_id,
                }
            )
        if rows:
            db.execute(insert(AvailabilitySlot), rows)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"⚠️ Concurrent slot change while materialising provider {provider.id}: {e.orig}")
        raise ConflictError("Availability changed while rebuilding slots, please retry")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Slot materialisation failed for provider {provider.id}: {e}")
        raise PersistenceError("Could not rebuild availability slots")

    logger.info(
        f"✅ Materialised {len(rows)} slots for provider {provider.id} "
        f"({len(templates)} templates, {deleted} stale slots removed)"
    )
    return len(rows)


def rematerialize_all_providers(db: Session, now: Optional[datetime] = None) -> dict:
    """Roll every provider's window forward; one provider failing does not stop the rest"""
    providers = db.query(User).filter(User.role == UserRole.PROVIDER.value).all()
    created = 0
    failures = 0
    for provider in providers:
        try:
            created += materialize_provider_slots(db, provider, now=now)
        except (ConflictError, PersistenceError) as e:
            failures += 1
            logger.error(f"❌ Rematerialisation failed for provider {provider.id}: {e.message}")
    logger.info(f"📊 Rematerialised {len(providers)} providers: {created} slots, {failures} failures")
    return {"providers": len(providers), "slotsCreated": created, "failures": failures}
