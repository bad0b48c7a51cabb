import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .config import (
    DEFAULT_MAX_ADVANCE_DAYS,
    DEFAULT_MIN_ADVANCE_HOURS,
    DEFAULT_RATE_15_CENTS,
    DEFAULT_RATE_30_CENTS,
    DEFAULT_RATE_60_CENTS,
    DEFAULT_TIMEZONE,
)
from .database import Base
from .shared.civil_time import utcnow
from .shared.validators import decode_list_field


def generate_booking_id():
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    PROVIDER = "provider"
    REQUESTER = "requester"
    ADMIN = "admin"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


# Bookings in these states hold their interval on the provider's calendar
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    display_name = Column(String(255), nullable=True)
    role = Column(String(20), default=UserRole.REQUESTER.value, nullable=False)
    timezone = Column(String(64), default=DEFAULT_TIMEZONE, nullable=False)

    # Per-duration session rates in cents; null falls back to platform defaults
    rate_15_cents = Column(Integer, nullable=True)
    rate_30_cents = Column(Integer, nullable=True)
    rate_60_cents = Column(Integer, nullable=True)

    # Booking window
    min_advance_hours = Column(Integer, default=DEFAULT_MIN_ADVANCE_HOURS, nullable=False)
    max_advance_days = Column(Integer, default=DEFAULT_MAX_ADVANCE_DAYS, nullable=False)

    # Payout account at the payment processor; required before accepting bookings
    payout_account_id = Column(String(255), nullable=True)

    # Provider reliability tracking
    cancelled_sessions = Column(Integer, default=0, nullable=False)
    last_warning_at = Column(DateTime, nullable=True)

    # Free-form profile lists (stored as JSON, legacy rows may hold strings)
    languages = Column(JSON, nullable=True)
    specialties = Column(JSON, nullable=True)
    bio = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    availability_templates = relationship(
        "AvailabilityTemplate", back_populates="provider", cascade="all, delete-orphan"
    )

    @property
    def is_provider(self) -> bool:
        return self.role == UserRole.PROVIDER.value

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def language_list(self):
        return decode_list_field(self.languages)

    @property
    def specialty_list(self):
        return decode_list_field(self.specialties)

    def rate_for(self, duration_minutes: int) -> int:
        """Price in cents for a session of the given length."""
        rates = {
            15: self.rate_15_cents or DEFAULT_RATE_15_CENTS,
            30: self.rate_30_cents or DEFAULT_RATE_30_CENTS,
            60: self.rate_60_cents or DEFAULT_RATE_60_CENTS,
        }
        return rates[duration_minutes]


class AvailabilityTemplate(Base):
    """Weekly recurring availability window, interpreted in the provider's timezone."""

    __tablename__ = "availability_templates"
    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_template_day_of_week"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(String(5), nullable=False)  # "HH:MM"
    end_time = Column(String(5), nullable=False)  # "HH:MM", exclusive
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    provider = relationship("User", back_populates="availability_templates")


class AvailabilitySlot(Base):
    """Concrete 30-minute UTC interval materialised from a provider's templates."""

    __tablename__ = "availability_slots"
    __table_args__ = (
        UniqueConstraint("provider_id", "start_time", name="uq_slot_provider_start"),
        Index("ix_slot_provider_booked_start", "provider_id", "is_booked", "start_time"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)  # UTC
    end_time = Column(DateTime, nullable=False)  # UTC
    is_booked = Column(Boolean, default=False, nullable=False)
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # At most one active booking may start at a given instant for a provider
        Index(
            "uq_booking_active_provider_start",
            "provider_id",
            "start_time",
            unique=True,
            sqlite_where=text("status IN ('PENDING', 'CONFIRMED')"),
            postgresql_where=text("status IN ('PENDING', 'CONFIRMED')"),
        ),
        Index("ix_booking_provider_status_start", "provider_id", "status", "start_time"),
        Index("ix_booking_requester_start", "requester_id", "start_time"),
    )

    id = Column(String(36), primary_key=True, default=generate_booking_id)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    start_time = Column(DateTime, nullable=False)  # UTC
    end_time = Column(DateTime, nullable=False)  # UTC
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String(20), default=BookingStatus.PENDING.value, nullable=False, index=True)

    # Money, in cents
    total_cents = Column(Integer, nullable=False)
    provider_earnings_cents = Column(Integer, nullable=True)
    platform_fee_cents = Column(Integer, nullable=True)
    currency = Column(String(3), default="USD", nullable=False)

    # Payment processor references
    checkout_session_id = Column(String(255), nullable=True)
    payment_id = Column(String(255), nullable=True, index=True)

    meeting_url = Column(String(500), nullable=True)
    calendar_event_id = Column(String(1024), nullable=True)
    calendar_event_provider = Column(String(20), nullable=True)  # google, microsoft

    # Materials shared by the requester
    sides_url = Column(String(1000), nullable=True)
    sides_link = Column(String(1000), nullable=True)
    sides_file_name = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    confirmed_at = Column(DateTime, nullable=True)

    # Cancellation audit
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(20), nullable=True)  # provider, requester, admin, system
    cancel_reason = Column(String(255), nullable=True)
    refund_cents = Column(Integer, nullable=True)
    refund_status = Column(String(20), nullable=True)  # none, pending, succeeded
    refund_id = Column(String(255), nullable=True)

    rescheduled_at = Column(DateTime, nullable=True)

    # Python-side default so pending-hold expiry does not depend on the database clock
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    provider = relationship("User", foreign_keys=[provider_id])
    requester = relationship("User", foreign_keys=[requester_id])

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES
