"""
Booking service - creation, payment-driven confirmation and pending expiry.

A booking is inserted PENDING when checkout starts and moves to CONFIRMED
only through the payment webhook. Every state change is a conditional
UPDATE on the current status, so duplicate webhook deliveries and racing
requests settle on exactly one transition.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import DEFAULT_CURRENCY, PENDING_HOLD_MINUTES, PLATFORM_FEE_PERCENT, SLOT_MINUTES
from ...email_service import BookingNotifier
from ...errors import (
    ConflictError,
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
    PersistenceError,
    ValidationError,
)
from ...models import Booking, BookingStatus, User
from ...services.meeting_rooms import MeetingRoomService
from ...shared.civil_time import get_zone, to_utc, utcnow
from ...shared.validators import parse_iso_date, validate_duration
from ..calendar.service import CalendarService
from ..payments.dodo_service import DodoPaymentsService
from .repository import BookingRepository

logger = logging.getLogger(__name__)


@dataclass
class BookingCreated:
    booking: Booking
    checkout_url: Optional[str] = None
    duplicate: bool = False


def split_revenue(total_cents: int, fee_percent: int = PLATFORM_FEE_PERCENT) -> tuple[int, int]:
    """(provider_earnings, platform_fee); the provider share is rounded down"""
    provider_earnings = total_cents * (100 - fee_percent) // 100
    return provider_earnings, total_cents - provider_earnings


def is_party(booking: Booking, actor: User) -> bool:
    return actor.id in (booking.provider_id, booking.requester_id)


class BookingService:
    def __init__(
        self,
        db: Session,
        payments: DodoPaymentsService,
        meeting_rooms: Optional[MeetingRoomService] = None,
        calendar: Optional[CalendarService] = None,
        notifier: Optional[BookingNotifier] = None,
        now_fn: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.repo = BookingRepository()
        self.payments = payments
        self.meeting_rooms = meeting_rooms or MeetingRoomService()
        self.calendar = calendar or CalendarService(db)
        self.notifier = notifier or BookingNotifier()
        self.now_fn = now_fn

    # ------------------------------------------------------------- lookups

    def get_booking(self, booking_id: str, actor: User) -> Booking:
        booking = self.repo.get(self.db, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        if not (is_party(booking, actor) or actor.is_admin):
            raise PermissionDeniedError("Not a participant in this booking")
        return booking

    def list_bookings(self, actor: User, scope: str = "future") -> list[Booking]:
        if scope not in ("future", "all"):
            raise ValidationError("scope must be 'future' or 'all'")
        since = self.now_fn() if scope == "future" else None
        return self.repo.list_for_user(self.db, actor.id, since=since)

    # ------------------------------------------------------------ creation

    def _resolve_interval(
        self, provider: User, requester: User, date_str: str, start_minute: int, duration_minutes: int, tz_name
    ) -> tuple[datetime, datetime]:
        tz_name = tz_name or requester.timezone or provider.timezone
        get_zone(tz_name)
        try:
            local_date = parse_iso_date(date_str)
            validate_duration(duration_minutes)
        except ValueError as e:
            raise ValidationError(str(e))
        if not 0 <= start_minute < 24 * 60:
            raise ValidationError("startMinute must be between 0 and 1439")

        start = to_utc(local_date, start_minute // 60, start_minute % 60, tz_name)
        return start, start + timedelta(minutes=duration_minutes)

    def _check_window(self, provider: User, start: datetime, now: datetime) -> None:
        if start <= now:
            raise ValidationError("Session start must be in the future")
        if start <= now + timedelta(hours=provider.min_advance_hours or 0):
            raise ValidationError(f"Sessions must be booked at least {provider.min_advance_hours} hours ahead")
        if start > now + timedelta(days=provider.max_advance_days or 0):
            raise ValidationError(f"Sessions can be booked at most {provider.max_advance_days} days ahead")

    def _insert_pending(self, provider: User, requester: User, start: datetime, end: datetime, data) -> Booking:
        now = self.now_fn()
        try:
            # Lapsed holds still occupy the partial unique index until expired
            self.repo.expire_stale_pending(
                self.db, now - timedelta(minutes=PENDING_HOLD_MINUTES), now, provider_id=provider.id
            )
            if self.repo.find_blocking(self.db, provider.id, start, end):
                raise ConflictError("Slot no longer available")
            if self.repo.slot_taken_by_other(self.db, provider.id, start):
                raise ConflictError("Slot no longer available")

            booking = Booking(
                provider_id=provider.id,
                requester_id=requester.id,
                start_time=start,
                end_time=end,
                duration_minutes=data.durationMinutes,
                status=BookingStatus.PENDING.value,
                total_cents=provider.rate_for(data.durationMinutes),
                currency=DEFAULT_CURRENCY,
                sides_url=data.sidesUrl,
                sides_link=data.sidesLink,
                sides_file_name=data.sidesFileName,
                notes=data.notes,
                created_at=now,
            )
            self.db.add(booking)
            self.db.commit()
        except ConflictError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Booking insert lost a race for provider {provider.id} at {start}: {e.orig}")
            raise ConflictError("Slot no longer available")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to store booking for provider {provider.id}: {e}")
            raise PersistenceError("Could not save booking")
        self.db.refresh(booking)
        return booking

    async def create_booking(self, data, actor: User) -> BookingCreated:
        """
        Start a booking: dedup, insert PENDING, provision a meeting room and
        open a checkout session. Identical repeat requests get the existing booking.
        """
        if actor.id != data.requesterId and not actor.is_admin:
            raise PermissionDeniedError("Bookings can only be made for yourself")

        provider = self.repo.get_user(self.db, data.providerId)
        if not provider or not provider.is_provider:
            raise NotFoundError("Provider not found")
        requester = self.repo.get_user(self.db, data.requesterId)
        if not requester:
            raise NotFoundError("Requester not found")
        if provider.id == requester.id:
            raise ValidationError("Providers cannot book themselves")

        start, end = self._resolve_interval(
            provider, requester, data.date, data.startMinute, data.durationMinutes, data.requesterTimezone
        )

        existing = self.repo.find_identical(self.db, provider.id, requester.id, start, end)
        if existing:
            logger.info(f"🔁 Duplicate booking request, returning {existing.id}")
            return BookingCreated(booking=existing, duplicate=True)

        self._check_window(provider, start, self.now_fn())
        if not provider.payout_account_id:
            raise ValidationError("This provider is not accepting bookings yet")

        booking = self._insert_pending(provider, requester, start, end, data)
        logger.info(
            f"📅 Booking {booking.id} created PENDING: provider={provider.id} requester={requester.id} start={start}"
        )

        try:
            booking.meeting_url = await self.meeting_rooms.create_room(booking.id)
        except Exception as e:
            logger.error(f"❌ Meeting room provisioning failed for booking {booking.id}: {e}")

        try:
            session = await self.payments.create_booking_checkout(
                booking.id,
                booking.total_cents,
                customer_email=requester.email,
                customer_name=requester.display_name or "",
                metadata={"provider_id": str(provider.id), "requester_id": str(requester.id)},
            )
        except PaymentGatewayError:
            self.repo.mark_cancelled(
                self.db,
                booking.id,
                (BookingStatus.PENDING.value,),
                cancelled_at=self.now_fn(),
                cancelled_by="system",
                cancel_reason="checkout_failed",
                refund_cents=0,
                refund_status="none",
            )
            self.db.commit()
            raise

        booking.checkout_session_id = session.session_id
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to store checkout reference for booking {booking.id}: {e}")
        return BookingCreated(booking=booking, checkout_url=session.checkout_url)

    # -------------------------------------------------------- confirmation

    async def confirm_booking(self, booking_id: str, payment_id: Optional[str] = None) -> bool:
        """
        Apply a payment success. Returns True on the first confirmation and
        False when the booking was already confirmed (or cancelled).
        """
        booking = self.repo.get(self.db, booking_id)
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")

        if booking.status == BookingStatus.CONFIRMED.value:
            logger.info(f"🔄 Booking {booking_id} already confirmed, ignoring repeat payment event")
            return False
        if booking.status == BookingStatus.CANCELLED.value:
            await self._refund_orphan_payment(booking, payment_id)
            return False

        provider_earnings, platform_fee = split_revenue(booking.total_cents)
        now = self.now_fn()
        try:
            changed = self.repo.mark_confirmed(
                self.db, booking.id, payment_id, provider_earnings, platform_fee, now
            )
            if changed == 0:
                self.db.rollback()
                logger.info(f"🔄 Booking {booking_id} changed state concurrently, confirmation skipped")
                return False
            if not self.repo.claim_slot(self.db, booking.provider_id, booking.start_time, booking.id):
                if self.repo.slot_exists(self.db, booking.provider_id, booking.start_time):
                    logger.warning(
                        f"⚠️ Slot at {booking.start_time} already booked, {booking_id} confirmed without claiming it"
                    )
                else:
                    slot_end = min(booking.end_time, booking.start_time + timedelta(minutes=SLOT_MINUTES))
                    self.repo.insert_booked_slot(self.db, booking.provider_id, booking.start_time, slot_end, booking.id)
                    logger.info(f"ℹ️ Restored slot row at {booking.start_time} for booking {booking_id}")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to confirm booking {booking_id}: {e}")
            raise PersistenceError("Could not confirm booking")

        self.db.refresh(booking)
        logger.info(
            f"✅ Booking {booking_id} confirmed: provider earns {provider_earnings}, platform fee {platform_fee}"
        )
        await self._after_confirmation(booking)
        return True

    async def _after_confirmation(self, booking: Booking) -> None:
        provider, requester = booking.provider, booking.requester
        try:
            await self.calendar.create_booking_event(booking, provider, requester)
        except Exception as e:
            logger.error(f"❌ Calendar sync failed for booking {booking.id}: {e}")
        try:
            await self.notifier.booking_confirmed(booking, provider, requester)
        except Exception as e:
            logger.error(f"❌ Confirmation emails failed for booking {booking.id}: {e}")

    async def _refund_orphan_payment(self, booking: Booking, payment_id: Optional[str]) -> None:
        """A payment landed after the hold expired; hand the money back"""
        logger.warning(f"⚠️ Payment {payment_id} arrived for cancelled booking {booking.id}")
        if not payment_id or booking.refund_id:
            return
        try:
            refund_id = await self.payments.refund_payment(
                payment_id, booking.total_cents, full_refund=True, reason="Booking expired before payment"
            )
        except PaymentGatewayError as e:
            logger.error(f"❌ Could not refund late payment {payment_id} for booking {booking.id}: {e}")
            return
        booking.payment_id = payment_id
        booking.refund_cents = booking.total_cents
        booking.refund_status = "completed"
        booking.refund_id = refund_id
        self.db.commit()

    def fail_booking_payment(self, booking_id: str) -> bool:
        try:
            changed = self.repo.mark_cancelled(
                self.db,
                booking_id,
                (BookingStatus.PENDING.value,),
                cancelled_at=self.now_fn(),
                cancelled_by="system",
                cancel_reason="payment_failed",
                refund_cents=0,
                refund_status="none",
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to cancel booking {booking_id} after failed payment: {e}")
            raise PersistenceError("Could not cancel booking")
        if changed:
            logger.info(f"🚫 Booking {booking_id} cancelled after failed payment")
        return bool(changed)

    def expire_stale_pending(self) -> int:
        """Cancel every PENDING booking older than the checkout hold"""
        now = self.now_fn()
        try:
            expired = self.repo.expire_stale_pending(self.db, now - timedelta(minutes=PENDING_HOLD_MINUTES), now)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Pending booking expiry failed: {e}")
            raise PersistenceError("Could not expire pending bookings")
        if expired:
            logger.info(f"⌛ Expired {expired} pending bookings")
        return expired
