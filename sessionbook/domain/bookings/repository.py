"""Booking repository - Database operations for bookings and slot occupancy"""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ...models import ACTIVE_BOOKING_STATUSES, AvailabilitySlot, Booking, BookingStatus, User


class BookingRepository:
    @staticmethod
    def get(db: Session, booking_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_user(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def find_identical(
        db: Session, provider_id: int, requester_id: int, start: datetime, end: datetime
    ) -> Optional[Booking]:
        return (
            db.query(Booking)
            .filter(
                Booking.provider_id == provider_id,
                Booking.requester_id == requester_id,
                Booking.start_time == start,
                Booking.end_time == end,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
            .first()
        )

    @staticmethod
    def find_blocking(
        db: Session,
        provider_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> Optional[Booking]:
        """First active booking of the provider overlapping [start, end)"""
        query = db.query(Booking).filter(
            Booking.provider_id == provider_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if exclude_id:
            query = query.filter(Booking.id != exclude_id)
        return query.first()

    @staticmethod
    def expire_stale_pending(
        db: Session, created_before: datetime, now: datetime, provider_id: Optional[int] = None
    ) -> int:
        """Cancel PENDING bookings whose checkout hold lapsed; caller commits"""
        query = db.query(Booking).filter(
            Booking.status == BookingStatus.PENDING.value,
            Booking.created_at < created_before,
        )
        if provider_id is not None:
            query = query.filter(Booking.provider_id == provider_id)
        return query.update(
            {
                Booking.status: BookingStatus.CANCELLED.value,
                Booking.cancelled_at: now,
                Booking.cancelled_by: "system",
                Booking.cancel_reason: "expired",
                Booking.refund_cents: 0,
                Booking.refund_status: "none",
            },
            synchronize_session=False,
        )

    @staticmethod
    def mark_confirmed(
        db: Session,
        booking_id: str,
        payment_id: Optional[str],
        provider_earnings_cents: int,
        platform_fee_cents: int,
        now: datetime,
    ) -> int:
        """Compare-and-set PENDING -> CONFIRMED; returns rows changed (0 or 1)"""
        return (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.status == BookingStatus.PENDING.value)
            .update(
                {
                    Booking.status: BookingStatus.CONFIRMED.value,
                    Booking.payment_id: payment_id,
                    Booking.provider_earnings_cents: provider_earnings_cents,
                    Booking.platform_fee_cents: platform_fee_cents,
                    Booking.confirmed_at: now,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def mark_cancelled(db: Session, booking_id: str, from_statuses: tuple, **fields) -> int:
        """Compare-and-set into CANCELLED from one of ``from_statuses``"""
        values = {getattr(Booking, key): value for key, value in fields.items()}
        values[Booking.status] = BookingStatus.CANCELLED.value
        return (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.status.in_(from_statuses))
            .update(values, synchronize_session=False)
        )

    @staticmethod
    def claim_slot(db: Session, provider_id: int, start: datetime, booking_id: str) -> int:
        """Mark the free slot at ``start`` as held by the booking; 0 when no free slot exists"""
        return (
            db.query(AvailabilitySlot)
            .filter(
                AvailabilitySlot.provider_id == provider_id,
                AvailabilitySlot.start_time == start,
                AvailabilitySlot.is_booked.is_(False),
            )
            .update(
                {AvailabilitySlot.is_booked: True, AvailabilitySlot.booking_id: booking_id},
                synchronize_session=False,
            )
        )

    @staticmethod
    def slot_exists(db: Session, provider_id: int, start: datetime) -> bool:
        query = db.query(AvailabilitySlot.id).filter(
            AvailabilitySlot.provider_id == provider_id,
            AvailabilitySlot.start_time == start,
        )
        return query.first() is not None

    @staticmethod
    def insert_booked_slot(db: Session, provider_id: int, start: datetime, end: datetime, booking_id: str) -> None:
        """Restore a slot row for a booking whose slot was regenerated away; caller commits"""
        db.add(
            AvailabilitySlot(
                provider_id=provider_id,
                start_time=start,
                end_time=end,
                is_booked=True,
                booking_id=booking_id,
            )
        )
        db.flush()

    @staticmethod
    def slot_taken_by_other(
        db: Session, provider_id: int, start: datetime, booking_id: Optional[str] = None
    ) -> bool:
        query = db.query(AvailabilitySlot.id).filter(
            AvailabilitySlot.provider_id == provider_id,
            AvailabilitySlot.start_time == start,
            AvailabilitySlot.is_booked.is_(True),
        )
        if booking_id:
            query = query.filter(
                or_(AvailabilitySlot.booking_id.is_(None), AvailabilitySlot.booking_id != booking_id)
            )
        return query.first() is not None

    @staticmethod
    def release_slot(db: Session, provider_id: int, start: datetime, booking_id: str) -> int:
        """Free the slot held by the booking (or an unattributed booked slot at its start)"""
        return (
            db.query(AvailabilitySlot)
            .filter(
                AvailabilitySlot.provider_id == provider_id,
                AvailabilitySlot.is_booked.is_(True),
                or_(
                    AvailabilitySlot.booking_id == booking_id,
                    and_(AvailabilitySlot.booking_id.is_(None), AvailabilitySlot.start_time == start),
                ),
            )
            .update(
                {AvailabilitySlot.is_booked: False, AvailabilitySlot.booking_id: None},
                synchronize_session=False,
            )
        )

    @staticmethod
    def list_for_user(db: Session, user_id: int, since: Optional[datetime] = None) -> list[Booking]:
        query = db.query(Booking).filter(or_(Booking.provider_id == user_id, Booking.requester_id == user_id))
        if since is not None:
            query = query.filter(Booking.end_time > since)
            return query.order_by(Booking.start_time.asc()).all()
        return query.order_by(Booking.start_time.desc()).all()
