from datetime import datetime, timedelta

import pytest
from conftest import FIXED_NOW, FakePayments, make_booking, make_slots, make_user

from sessionbook.domain.bookings.repository import BookingRepository
from sessionbook.domain.bookings.schemas import BookingCreate
from sessionbook.domain.bookings.service import BookingService, split_revenue
from sessionbook.errors import (
    ConflictError,
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
    ValidationError,
)
from sessionbook.models import AvailabilitySlot, Booking, BookingStatus

# Tuesday 3 March 2026, 10:00 in New York
SESSION_START = datetime(2026, 3, 3, 15, 0)


def _service(db, payments, notifier, meeting_rooms):
    return BookingService(db, payments, meeting_rooms=meeting_rooms, notifier=notifier, now_fn=lambda: FIXED_NOW)


def _request(provider, requester, date="2026-03-03", start_minute=600, duration=30, **fields):
    return BookingCreate(
        providerId=provider.id,
        requesterId=requester.id,
        date=date,
        startMinute=start_minute,
        durationMinutes=duration,
        requesterTimezone=fields.pop("tz", "America/New_York"),
        **fields,
    )


@pytest.fixture
def parties(db):
    return make_user(db), make_user(db, role="requester")


@pytest.mark.parametrize(
    "total, expected",
    [
        (2500, (2000, 500)),
        (6000, (4800, 1200)),
        (1999, (1599, 400)),
        (0, (0, 0)),
    ],
)
def test_split_revenue_rounds_provider_share_down(total, expected) -> None:
    assert split_revenue(total) == expected


@pytest.mark.anyio
async def test_create_inserts_pending_and_opens_checkout(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    service = _service(db, payments, notifier, meeting_rooms)

    created = await service.create_booking(_request(provider, requester, notes="Monologue prep"), requester)

    booking = created.booking
    assert created.duplicate is False
    assert created.checkout_url == f"https://pay.example/{booking.id}"
    assert booking.status == BookingStatus.PENDING.value
    assert (booking.start_time, booking.end_time) == (SESSION_START, SESSION_START + timedelta(minutes=30))
    assert booking.total_cents == 2500
    assert booking.meeting_url == f"https://meet.example/booking-{booking.id}"
    assert booking.checkout_session_id == f"cs_{booking.id}"
    assert booking.notes == "Monologue prep"
    assert payments.checkouts == [(booking.id, 2500)]


@pytest.mark.anyio
async def test_requester_timezone_decides_the_instant(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties

    created = await _service(db, payments, notifier, meeting_rooms).create_booking(
        _request(provider, requester, start_minute=15 * 60, tz="Europe/London"), requester
    )

    assert created.booking.start_time == SESSION_START


@pytest.mark.anyio
async def test_identical_request_returns_existing_booking(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    service = _service(db, payments, notifier, meeting_rooms)

    first = await service.create_booking(_request(provider, requester), requester)
    second = await service.create_booking(_request(provider, requester), requester)

    assert second.duplicate is True
    assert second.booking.id == first.booking.id
    assert second.checkout_url is None
    assert len(payments.checkouts) == 1
    assert db.query(Booking).count() == 1


@pytest.mark.anyio
async def test_overlapping_booking_is_a_conflict(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    other = make_user(db, role="requester")
    make_booking(db, provider, other, SESSION_START - timedelta(minutes=30), duration_minutes=60)

    with pytest.raises(ConflictError):
        await _service(db, payments, notifier, meeting_rooms).create_booking(_request(provider, requester), requester)

    assert payments.checkouts == []


@pytest.mark.anyio
async def test_booked_slot_is_a_conflict(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    slot = make_slots(db, provider, SESSION_START, 1)[0]
    slot.is_booked = True
    db.commit()

    with pytest.raises(ConflictError):
        await _service(db, payments, notifier, meeting_rooms).create_booking(_request(provider, requester), requester)


@pytest.mark.anyio
async def test_lapsed_hold_is_expired_and_slot_reused(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    other = make_user(db, role="requester")
    stale = make_booking(
        db, provider, other, SESSION_START, status=BookingStatus.PENDING.value, created_at=FIXED_NOW - timedelta(minutes=20)
    )

    created = await _service(db, payments, notifier, meeting_rooms).create_booking(
        _request(provider, requester), requester
    )

    db.refresh(stale)
    assert stale.status == BookingStatus.CANCELLED.value
    assert stale.cancel_reason == "expired"
    assert created.booking.status == BookingStatus.PENDING.value


@pytest.mark.anyio
async def test_fresh_hold_still_blocks(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    other = make_user(db, role="requester")
    make_booking(
        db, provider, other, SESSION_START, status=BookingStatus.PENDING.value, created_at=FIXED_NOW - timedelta(minutes=5)
    )

    with pytest.raises(ConflictError):
        await _service(db, payments, notifier, meeting_rooms).create_booking(_request(provider, requester), requester)


@pytest.mark.anyio
@pytest.mark.parametrize(
    "date, start_minute",
    [
        ("2026-03-01", 600),  # past
        ("2026-03-02", 480),  # 08:00 local, inside the 2 hour minimum
        ("2026-03-10", 600),  # beyond the 7 day maximum
    ],
)
async def test_booking_window_enforced(db, parties, payments, notifier, meeting_rooms, date, start_minute) -> None:
    provider, requester = parties

    with pytest.raises(ValidationError):
        await _service(db, payments, notifier, meeting_rooms).create_booking(
            _request(provider, requester, date=date, start_minute=start_minute), requester
        )


@pytest.mark.anyio
async def test_provider_without_payout_account_rejected(db, payments, notifier, meeting_rooms) -> None:
    provider = make_user(db, payout_account_id=None)
    requester = make_user(db, role="requester")

    with pytest.raises(ValidationError, match="not accepting bookings"):
        await _service(db, payments, notifier, meeting_rooms).create_booking(_request(provider, requester), requester)


@pytest.mark.anyio
async def test_cannot_book_for_someone_else(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    intruder = make_user(db, role="requester")

    with pytest.raises(PermissionDeniedError):
        await _service(db, payments, notifier, meeting_rooms).create_booking(_request(provider, requester), intruder)


@pytest.mark.anyio
async def test_unknown_provider_not_found(db, parties, payments, notifier, meeting_rooms) -> None:
    _, requester = parties
    not_a_provider = make_user(db, role="requester")

    with pytest.raises(NotFoundError):
        await _service(db, payments, notifier, meeting_rooms).create_booking(
            _request(not_a_provider, requester), requester
        )


@pytest.mark.anyio
async def test_checkout_failure_cancels_pending_booking(db, parties, notifier, meeting_rooms) -> None:
    provider, requester = parties

    with pytest.raises(PaymentGatewayError):
        await _service(db, FakePayments(fail_checkout=True), notifier, meeting_rooms).create_booking(
            _request(provider, requester), requester
        )

    booking = db.query(Booking).one()
    assert booking.status == BookingStatus.CANCELLED.value
    assert booking.cancel_reason == "checkout_failed"

    # The failed attempt no longer holds the time
    retry = await _service(db, FakePayments(), notifier, meeting_rooms).create_booking(
        _request(provider, requester), requester
    )
    assert retry.booking.id != booking.id


@pytest.mark.anyio
async def test_confirm_is_idempotent(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    make_slots(db, provider, SESSION_START, 2)
    booking = make_booking(db, provider, requester, SESSION_START, status=BookingStatus.PENDING.value)
    service = _service(db, payments, notifier, meeting_rooms)

    assert await service.confirm_booking(booking.id, "pay_1") is True
    assert await service.confirm_booking(booking.id, "pay_1") is False

    db.refresh(booking)
    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.payment_id == "pay_1"
    assert (booking.provider_earnings_cents, booking.platform_fee_cents) == (2000, 500)
    assert booking.confirmed_at == FIXED_NOW
    claimed = db.query(AvailabilitySlot).filter(AvailabilitySlot.is_booked.is_(True)).all()
    assert [(s.start_time, s.booking_id) for s in claimed] == [(SESSION_START, booking.id)]
    assert notifier.sent == [("confirmed", booking.id)]


@pytest.mark.anyio
async def test_confirm_restores_missing_slot_row(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    booking = make_booking(db, provider, requester, SESSION_START, status=BookingStatus.PENDING.value)

    assert await _service(db, payments, notifier, meeting_rooms).confirm_booking(booking.id, "pay_1") is True

    slot = db.query(AvailabilitySlot).filter(AvailabilitySlot.start_time == SESSION_START).one()
    assert (slot.is_booked, slot.booking_id) == (True, booking.id)
    assert slot.end_time == SESSION_START + timedelta(minutes=30)


@pytest.mark.anyio
async def test_racing_insert_fails_closed(db, parties, payments, notifier, meeting_rooms, monkeypatch) -> None:
    provider, requester = parties
    other = make_user(db, role="requester")
    make_booking(
        db, provider, other, SESSION_START, status=BookingStatus.PENDING.value, created_at=FIXED_NOW - timedelta(minutes=1)
    )
    # Both requests passed the overlap check before either committed
    monkeypatch.setattr(BookingRepository, "find_blocking", staticmethod(lambda *args, **kwargs: None))

    with pytest.raises(ConflictError) as exc:
        await _service(db, payments, notifier, meeting_rooms).create_booking(_request(provider, requester), requester)

    assert exc.value.status_code == 409
    assert exc.value.message == "Slot no longer available"
    assert db.query(Booking).count() == 1
    assert payments.checkouts == []


@pytest.mark.anyio
async def test_confirm_unknown_booking_not_found(db, payments, notifier, meeting_rooms) -> None:
    with pytest.raises(NotFoundError):
        await _service(db, payments, notifier, meeting_rooms).confirm_booking("missing", "pay_1")


@pytest.mark.anyio
async def test_late_payment_on_cancelled_booking_is_refunded(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    booking = make_booking(
        db, provider, requester, SESSION_START, status=BookingStatus.CANCELLED.value, cancel_reason="expired"
    )

    assert await _service(db, payments, notifier, meeting_rooms).confirm_booking(booking.id, "pay_late") is False

    db.refresh(booking)
    assert booking.status == BookingStatus.CANCELLED.value
    assert payments.refunds == [("pay_late", 2500, True)]
    assert booking.refund_status == "completed"
    assert notifier.sent == []


def test_failed_payment_cancels_pending_only(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    pending = make_booking(db, provider, requester, SESSION_START, status=BookingStatus.PENDING.value)
    confirmed = make_booking(db, provider, requester, SESSION_START + timedelta(hours=2))
    service = _service(db, payments, notifier, meeting_rooms)

    assert service.fail_booking_payment(pending.id) is True
    assert service.fail_booking_payment(confirmed.id) is False

    db.refresh(pending)
    db.refresh(confirmed)
    assert (pending.status, pending.cancel_reason) == (BookingStatus.CANCELLED.value, "payment_failed")
    assert confirmed.status == BookingStatus.CONFIRMED.value


def test_expire_stale_pending_counts_only_lapsed_holds(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    for minutes_ago, hour in ((30, 0), (16, 1), (5, 2)):
        make_booking(
            db,
            provider,
            requester,
            SESSION_START + timedelta(hours=hour),
            status=BookingStatus.PENDING.value,
            created_at=FIXED_NOW - timedelta(minutes=minutes_ago),
        )

    assert _service(db, payments, notifier, meeting_rooms).expire_stale_pending() == 2
    assert db.query(Booking).filter(Booking.status == BookingStatus.PENDING.value).count() == 1


def test_list_bookings_scopes(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    past = make_booking(db, provider, requester, FIXED_NOW - timedelta(days=1))
    soon = make_booking(db, provider, requester, SESSION_START)
    later = make_booking(db, provider, requester, SESSION_START + timedelta(days=1))
    service = _service(db, payments, notifier, meeting_rooms)

    assert [b.id for b in service.list_bookings(requester, "future")] == [soon.id, later.id]
    assert [b.id for b in service.list_bookings(provider, "all")] == [later.id, soon.id, past.id]
    with pytest.raises(ValidationError):
        service.list_bookings(requester, "past")


def test_get_booking_requires_participant(db, parties, payments, notifier, meeting_rooms) -> None:
    provider, requester = parties
    booking = make_booking(db, provider, requester, SESSION_START)
    service = _service(db, payments, notifier, meeting_rooms)

    assert service.get_booking(booking.id, provider).id == booking.id
    assert service.get_booking(booking.id, make_user(db, role="admin")).id == booking.id
    with pytest.raises(PermissionDeniedError):
        service.get_booking(booking.id, make_user(db, role="requester"))
    with pytest.raises(NotFoundError):
        service.get_booking("missing", provider)
