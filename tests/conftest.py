import itertools
import os
from datetime import datetime, timedelta
from typing import Optional

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ["REDIS_URL"] = ""
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-sessionbook")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from sessionbook import models, models_calendar  # noqa: E402,F401
from sessionbook.database import Base, SessionLocal, engine, get_db  # noqa: E402
from sessionbook.domain.payments.dodo_service import CheckoutSession, get_payments_service  # noqa: E402
from sessionbook.email_service import get_booking_notifier  # noqa: E402
from sessionbook.errors import PaymentGatewayError  # noqa: E402
from sessionbook.models import AvailabilitySlot, AvailabilityTemplate, Booking, BookingStatus, User  # noqa: E402
from sessionbook.services.meeting_rooms import get_meeting_room_service  # noqa: E402

# Monday 2 March 2026, 07:00 in New York (EST, a week before the DST switch)
FIXED_NOW = datetime(2026, 3, 2, 12, 0)

_ids = itertools.count(1)


class FakePayments:
    def __init__(self, fail_checkout: bool = False, fail_refund: bool = False):
        self.fail_checkout = fail_checkout
        self.fail_refund = fail_refund
        self.checkouts = []
        self.refunds = []

    async def create_booking_checkout(self, booking_id, amount_cents, customer_email, customer_name="", metadata=None):
        if self.fail_checkout:
            raise PaymentGatewayError("Failed to create checkout session")
        self.checkouts.append((booking_id, amount_cents))
        return CheckoutSession(checkout_url=f"https://pay.example/{booking_id}", session_id=f"cs_{booking_id}")

    async def refund_payment(self, payment_id, amount_cents, full_refund, reason=None):
        if self.fail_refund:
            raise PaymentGatewayError("Refund could not be issued")
        self.refunds.append((payment_id, amount_cents, full_refund))
        return f"rf_{len(self.refunds)}"


class FakeNotifier:
    def __init__(self):
        self.sent = []

    async def booking_confirmed(self, booking, provider, requester):
        self.sent.append(("confirmed", booking.id))

    async def booking_rescheduled(self, booking, provider, requester, old_start):
        self.sent.append(("rescheduled", booking.id))

    async def booking_cancelled(self, booking, provider, requester):
        self.sent.append(("cancelled", booking.id))


class FakeMeetingRooms:
    async def create_room(self, booking_id):
        return f"https://meet.example/booking-{booking_id}"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def meeting_rooms():
    return FakeMeetingRooms()


@pytest.fixture
def client(db, payments, notifier, meeting_rooms):
    from sessionbook.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payments_service] = lambda: payments
    app.dependency_overrides[get_booking_notifier] = lambda: notifier
    app.dependency_overrides[get_meeting_room_service] = lambda: meeting_rooms
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def make_user(
    db,
    role: str = "provider",
    timezone: str = "America/New_York",
    payout_account_id: Optional[str] = "acct_test",
    **fields,
) -> User:
    n = next(_ids)
    user = User(
        email=fields.pop("email", f"{role}{n}@example.com"),
        display_name=fields.pop("display_name", f"{role.title()} {n}"),
        role=role,
        timezone=timezone,
        payout_account_id=payout_account_id if role == "provider" else None,
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_template(db, provider: User, day_of_week: int, start: str, end: str) -> AvailabilityTemplate:
    template = AvailabilityTemplate(provider_id=provider.id, day_of_week=day_of_week, start_time=start, end_time=end)
    db.add(template)
    db.commit()
    return template


def make_slots(db, provider: User, start: datetime, count: int, minutes: int = 30) -> list:
    slots = []
    for i in range(count):
        slot_start = start + timedelta(minutes=minutes * i)
        slot = AvailabilitySlot(provider_id=provider.id, start_time=slot_start, end_time=slot_start + timedelta(minutes=minutes))
        db.add(slot)
        slots.append(slot)
    db.commit()
    return slots


def make_booking(
    db,
    provider: User,
    requester: User,
    start: datetime,
    duration_minutes: int = 30,
    status: str = BookingStatus.CONFIRMED.value,
    created_at: Optional[datetime] = None,
    **fields,
) -> Booking:
    booking = Booking(
        provider_id=provider.id,
        requester_id=requester.id,
        start_time=start,
        end_time=start + timedelta(minutes=duration_minutes),
        duration_minutes=duration_minutes,
        status=status,
        total_cents=fields.pop("total_cents", provider.rate_for(duration_minutes)),
        created_at=created_at or FIXED_NOW,
        **fields,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking
