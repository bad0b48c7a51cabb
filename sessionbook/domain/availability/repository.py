"""Availability repository - Database operations for templates and slots"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ...models import (
    AvailabilitySlot,
    AvailabilityTemplate,
    Booking,
    BookingStatus,
    User,
)


class AvailabilityRepository:
    @staticmethod
    def get_provider(db: Session, provider_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == provider_id).first()

    @staticmethod
    def get_templates(db: Session, provider_id: int, active_only: bool = False) -> list[AvailabilityTemplate]:
        query = db.query(AvailabilityTemplate).filter(AvailabilityTemplate.provider_id == provider_id)
        if active_only:
            query = query.filter(AvailabilityTemplate.is_active.is_(True))
        return query.order_by(AvailabilityTemplate.day_of_week, AvailabilityTemplate.start_time).all()

    @staticmethod
    def replace_templates(db: Session, provider_id: int, windows: Iterable[dict]) -> list[AvailabilityTemplate]:
        """Wholesale replacement; committed as one unit"""
        db.query(AvailabilityTemplate).filter(AvailabilityTemplate.provider_id == provider_id).delete(
            synchronize_session=False
        )
        for window in windows:
            db.add(AvailabilityTemplate(provider_id=provider_id, **window))
        db.commit()
        return AvailabilityRepository.get_templates(db, provider_id)

    @staticmethod
    def booked_slot_starts(db: Session, provider_id: int) -> set:
        rows = (
            db.query(AvailabilitySlot.start_time)
            .filter(AvailabilitySlot.provider_id == provider_id, AvailabilitySlot.is_booked.is_(True))
            .all()
        )
        return {row[0] for row in rows}

    @staticmethod
    def confirmed_booking_starts(db: Session, provider_id: int, since: datetime) -> dict:
        """{start_time: booking_id} for confirmed bookings starting at or after ``since``"""
        rows = (
            db.query(Booking.start_time, Booking.id)
            .filter(
                Booking.provider_id == provider_id,
                Booking.status == BookingStatus.CONFIRMED.value,
                Booking.start_time >= since,
            )
            .all()
        )
        return {start: booking_id for start, booking_id in rows}

    @staticmethod
    def delete_unbooked_slots(db: Session, provider_id: int) -> int:
        return (
            db.query(AvailabilitySlot)
            .filter(AvailabilitySlot.provider_id == provider_id, AvailabilitySlot.is_booked.is_(False))
            .delete(synchronize_session=False)
        )

    @staticmethod
    def get_unbooked_slots(db: Session, provider_id: int, start: datetime, end: datetime) -> list[AvailabilitySlot]:
        return (
            db.query(AvailabilitySlot)
            .filter(
                AvailabilitySlot.provider_id == provider_id,
                AvailabilitySlot.is_booked.is_(False),
                AvailabilitySlot.start_time >= start,
                AvailabilitySlot.start_time < end,
            )
            .order_by(AvailabilitySlot.start_time)
            .all()
        )

    @staticmethod
    def list_slots(db: Session, provider_id: int, start: datetime, end: datetime) -> list[AvailabilitySlot]:
        return (
            db.query(AvailabilitySlot)
            .filter(
                AvailabilitySlot.provider_id == provider_id,
                AvailabilitySlot.start_time >= start,
                AvailabilitySlot.start_time < end,
            )
            .order_by(AvailabilitySlot.start_time)
            .all()
        )

    @staticmethod
    def blocking_bookings(
        db: Session, provider_id: int, start: datetime, end: datetime, pending_since: datetime
    ) -> list[Booking]:
        """
        Bookings that hold time in [start, end): confirmed ones, plus pending
        ones created after ``pending_since`` (older holds have lapsed).
        """
        return (
            db.query(Booking)
            .filter(
                Booking.provider_id == provider_id,
                Booking.start_time < end,
                Booking.end_time > start,
                or_(
                    Booking.status == BookingStatus.CONFIRMED.value,
                    and_(Booking.status == BookingStatus.PENDING.value, Booking.created_at >= pending_since),
                ),
            )
            .all()
        )
