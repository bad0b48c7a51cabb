"""Reschedule a confirmed booking onto a new interval"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import PENDING_HOLD_MINUTES, RESCHEDULE_LEAD_HOURS
from ...email_service import BookingNotifier
from ...errors import ConflictError, NotFoundError, PermissionDeniedError, PersistenceError, ValidationError
from ...models import Booking, BookingStatus, User
from ...shared.civil_time import utcnow
from ..calendar.service import CalendarService
from .repository import BookingRepository
from .service import is_party

logger = logging.getLogger(__name__)


class RescheduleService:
    def __init__(
        self,
        db: Session,
        calendar: Optional[CalendarService] = None,
        notifier: Optional[BookingNotifier] = None,
        now_fn: Callable[[], datetime] = utcnow,
        lead_hours: int = RESCHEDULE_LEAD_HOURS,
    ):
        self.db = db
        self.repo = BookingRepository()
        self.calendar = calendar or CalendarService(db)
        self.notifier = notifier or BookingNotifier()
        self.now_fn = now_fn
        self.lead_hours = lead_hours

    def _validate(self, booking: Booking, actor: User, new_start: datetime, new_end: datetime, now: datetime):
        if not (is_party(booking, actor) or actor.is_admin):
            raise PermissionDeniedError("Only the provider or requester can reschedule this booking")
        if booking.status != BookingStatus.CONFIRMED.value:
            raise ConflictError("Only confirmed bookings can be rescheduled", status_code=400)
        if booking.start_time - now <= timedelta(hours=self.lead_hours):
            raise ConflictError(
                f"Bookings cannot be rescheduled within {self.lead_hours} hours of the start time",
                status_code=400,
            )
        if new_end <= new_start:
            raise ValidationError("newEnd must be after newStart")
        if new_start <= now:
            raise ValidationError("New start time must be in the future")
        if new_end - new_start != timedelta(minutes=booking.duration_minutes):
            raise ValidationError(f"New interval must last {booking.duration_minutes} minutes")

    async def reschedule(self, booking_id: str, actor: User, new_start: datetime, new_end: datetime) -> Booking:
        """
        Move a confirmed booking. The old slot is freed and the new one claimed
        in the same transaction as the interval change; calendar and email
        follow-ups run afterwards and only log on failure.
        """
        booking = self.repo.get(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        now = self.now_fn()
        self._validate(booking, actor, new_start, new_end, now)

        old_start = booking.start_time
        old_event_id = booking.calendar_event_id
        old_event_kind = booking.calendar_event_provider
        if new_start == old_start:
            return booking

        try:
            self.repo.expire_stale_pending(
                self.db, now - timedelta(minutes=PENDING_HOLD_MINUTES), now, provider_id=booking.provider_id
            )
            if self.repo.find_blocking(self.db, booking.provider_id, new_start, new_end, exclude_id=booking.id):
                raise ConflictError("The new time conflicts with another booking", status_code=400)
            if self.repo.slot_taken_by_other(self.db, booking.provider_id, new_start, booking.id):
                raise ConflictError("The new time is no longer available", status_code=400)

            self.repo.release_slot(self.db, booking.provider_id, old_start, booking.id)
            booking.start_time = new_start
            booking.end_time = new_end
            booking.calendar_event_id = None
            booking.calendar_event_provider = None
            booking.rescheduled_at = now
            self.db.flush()
            self.repo.claim_slot(self.db, booking.provider_id, new_start, booking.id)
            self.db.commit()
        except ConflictError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Reschedule of booking {booking_id} lost a race: {e.orig}")
            raise ConflictError("The new time is no longer available", status_code=400)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to reschedule booking {booking_id}: {e}")
            raise PersistenceError("Could not reschedule booking")

        self.db.refresh(booking)
        logger.info(f"🔁 Booking {booking_id} moved from {old_start} to {new_start}")

        provider, requester = booking.provider, booking.requester
        try:
            await self.calendar.delete_booking_event(provider.id, old_event_id, old_event_kind)
            await self.calendar.create_booking_event(booking, provider, requester)
        except Exception as e:
            logger.error(f"❌ Calendar update failed for rescheduled booking {booking_id}: {e}")
        try:
            await self.notifier.booking_rescheduled(booking, provider, requester, old_start)
        except Exception as e:
            logger.error(f"❌ Reschedule emails failed for booking {booking_id}: {e}")
        return booking
