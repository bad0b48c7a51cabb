"""
Cancellation policy and refunds.

Provider (or admin) cancellations refund in full. Requesters get the total
minus a processing fee when cancelling at least LATE_CANCEL_CUTOFF_HOURS
ahead, and nothing after that. Unpaid bookings are cancelled without a refund.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import LATE_CANCEL_CUTOFF_HOURS, LATE_CANCEL_PROCESSING_FEE_CENTS, PROVIDER_CANCEL_WARNING_HOURS
from ...email_service import BookingNotifier
from ...errors import ConflictError, NotFoundError, PermissionDeniedError, PersistenceError, ValidationError
from ...models import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, User
from ...shared.civil_time import utcnow
from ..calendar.service import CalendarService
from ..payments.dodo_service import DodoPaymentsService
from .repository import BookingRepository

logger = logging.getLogger(__name__)


@dataclass
class RefundDecision:
    amount_cents: int
    full: bool


@dataclass
class CancellationResult:
    booking: Booking
    refund_cents: int
    refund_status: str
    warning: Optional[str] = None


def cancelled_by_role(booking: Booking, actor: User) -> str:
    if actor.id == booking.provider_id:
        return "provider"
    if actor.id == booking.requester_id:
        return "requester"
    if actor.is_admin:
        return "admin"
    raise PermissionDeniedError("Only the provider or requester can cancel this booking")


def compute_refund(booking: Booking, cancelled_by: str, now: datetime) -> RefundDecision:
    if booking.status != BookingStatus.CONFIRMED.value:
        return RefundDecision(0, False)
    if cancelled_by in ("provider", "admin"):
        return RefundDecision(booking.total_cents, True)
    if booking.start_time - now >= timedelta(hours=LATE_CANCEL_CUTOFF_HOURS):
        return RefundDecision(max(booking.total_cents - LATE_CANCEL_PROCESSING_FEE_CENTS, 0), False)
    return RefundDecision(0, False)


class CancellationService:
    def __init__(
        self,
        db: Session,
        payments: DodoPaymentsService,
        calendar: Optional[CalendarService] = None,
        notifier: Optional[BookingNotifier] = None,
        now_fn: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.repo = BookingRepository()
        self.payments = payments
        self.calendar = calendar or CalendarService(db)
        self.notifier = notifier or BookingNotifier()
        self.now_fn = now_fn

    def _record_refund(self, booking: Booking, refund_id: str, refund_cents: int) -> None:
        booking.refund_id = refund_id
        booking.refund_cents = refund_cents
        booking.refund_status = "completed"
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Refund {refund_id} issued for booking {booking.id} but could not be recorded: {e}")
            raise PersistenceError("Could not record refund")

    async def cancel(self, booking_id: str, actor: User, reason: Optional[str] = None) -> CancellationResult:
        booking = self.repo.get(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        cancelled_by = cancelled_by_role(booking, actor)
        if booking.status == BookingStatus.CANCELLED.value:
            raise ValidationError("Booking is already cancelled")

        now = self.now_fn()
        decision = compute_refund(booking, cancelled_by, now)

        # Refund first: a failed refund leaves the booking untouched. A refund
        # from an earlier attempt that never reached CANCELLED is reused.
        refund_id = booking.refund_id
        refund_cents = (booking.refund_cents or 0) if refund_id else 0
        if refund_id:
            logger.info(f"🔁 Booking {booking_id} already refunded ({refund_id}), finishing cancellation")
        elif decision.amount_cents > 0 and booking.payment_id:
            refund_id = await self.payments.refund_payment(
                booking.payment_id,
                decision.amount_cents,
                full_refund=decision.full,
                reason=reason or f"Cancelled by {cancelled_by}",
            )
            refund_cents = decision.amount_cents
            self._record_refund(booking, refund_id, refund_cents)
        refund_status = "completed" if refund_cents else "none"

        warning = None
        try:
            changed = self.repo.mark_cancelled(
                self.db,
                booking.id,
                ACTIVE_BOOKING_STATUSES,
                cancelled_at=now,
                cancelled_by=cancelled_by,
                cancel_reason=reason,
                refund_cents=refund_cents,
                refund_status=refund_status,
                refund_id=refund_id,
            )
            if changed == 0:
                self.db.rollback()
                if refund_id:
                    logger.error(f"❌ Booking {booking_id} changed during cancellation after refund {refund_id}")
                raise ConflictError("Booking changed while cancelling, please retry")

            self.repo.release_slot(self.db, booking.provider_id, booking.start_time, booking.id)

            if cancelled_by == "provider":
                provider = booking.provider
                provider.cancelled_sessions = (provider.cancelled_sessions or 0) + 1
                if booking.start_time - now < timedelta(hours=PROVIDER_CANCEL_WARNING_HOURS):
                    provider.last_warning_at = now
                    warning = (
                        f"Cancelling within {PROVIDER_CANCEL_WARNING_HOURS} hours of a session "
                        "is recorded against your account"
                    )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to cancel booking {booking_id}: {e}")
            raise PersistenceError("Could not cancel booking")

        self.db.refresh(booking)
        logger.info(f"🚫 Booking {booking_id} cancelled by {cancelled_by}, refund {refund_cents} cents")

        provider, requester = booking.provider, booking.requester
        try:
            await self.calendar.delete_booking_event(
                provider.id, booking.calendar_event_id, booking.calendar_event_provider
            )
        except Exception as e:
            logger.error(f"❌ Calendar cleanup failed for cancelled booking {booking_id}: {e}")
        try:
            await self.notifier.booking_cancelled(booking, provider, requester)
        except Exception as e:
            logger.error(f"❌ Cancellation emails failed for booking {booking_id}: {e}")

        return CancellationResult(booking, refund_cents, refund_status, warning)
