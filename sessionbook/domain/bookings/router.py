"""Booking router - create, list, reschedule and cancel sessions"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_actor, get_current_admin
from ...database import get_db
from ...email_service import BookingNotifier, get_booking_notifier
from ...models import Booking, User
from ...services.meeting_rooms import MeetingRoomService, get_meeting_room_service
from ...shared.civil_time import iso_z
from ..payments.dodo_service import DodoPaymentsService, get_payments_service
from .cancellation import CancellationService
from .reschedule import RescheduleService
from .schemas import (
    BookingCreate,
    BookingCreateResponse,
    BookingResponse,
    CancelRequest,
    CancelResponse,
    ExpirePendingResponse,
    RescheduleRequest,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])
admin_router = APIRouter(prefix="/admin/bookings", tags=["Admin"])


def get_booking_service(
    db: Session = Depends(get_db),
    payments: DodoPaymentsService = Depends(get_payments_service),
    meeting_rooms: MeetingRoomService = Depends(get_meeting_room_service),
    notifier: BookingNotifier = Depends(get_booking_notifier),
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, payments, meeting_rooms=meeting_rooms, notifier=notifier)


def get_reschedule_service(
    db: Session = Depends(get_db),
    notifier: BookingNotifier = Depends(get_booking_notifier),
) -> RescheduleService:
    return RescheduleService(db, notifier=notifier)


def get_cancellation_service(
    db: Session = Depends(get_db),
    payments: DodoPaymentsService = Depends(get_payments_service),
    notifier: BookingNotifier = Depends(get_booking_notifier),
) -> CancellationService:
    return CancellationService(db, payments, notifier=notifier)


def _iso(value):
    return iso_z(value) if value else None


def to_booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        providerId=booking.provider_id,
        requesterId=booking.requester_id,
        startTime=iso_z(booking.start_time),
        endTime=iso_z(booking.end_time),
        durationMinutes=booking.duration_minutes,
        status=booking.status,
        totalCents=booking.total_cents,
        providerEarningsCents=booking.provider_earnings_cents,
        platformFeeCents=booking.platform_fee_cents,
        currency=booking.currency,
        meetingUrl=booking.meeting_url,
        sidesUrl=booking.sides_url,
        sidesLink=booking.sides_link,
        sidesFileName=booking.sides_file_name,
        notes=booking.notes,
        confirmedAt=_iso(booking.confirmed_at),
        cancelledAt=_iso(booking.cancelled_at),
        cancelledBy=booking.cancelled_by,
        cancelReason=booking.cancel_reason,
        refundCents=booking.refund_cents,
        refundStatus=booking.refund_status,
    )


@router.post("", response_model=BookingCreateResponse, response_model_exclude_none=True)
async def create_booking(
    data: BookingCreate,
    current_user: User = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """Start a booking and return the checkout URL (omitted for duplicates)"""
    created = await service.create_booking(data, current_user)
    return BookingCreateResponse(
        bookingId=created.booking.id,
        status=created.booking.status,
        checkoutUrl=created.checkout_url,
        duplicate=created.duplicate,
    )


@router.get("", response_model=list[BookingResponse])
async def list_bookings(
    scope: str = Query("future"),
    current_user: User = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    return [to_booking_response(b) for b in service.list_bookings(current_user, scope)]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    current_user: User = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    return to_booking_response(service.get_booking(booking_id, current_user))


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: str,
    data: RescheduleRequest,
    current_user: User = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service),
):
    booking = await service.reschedule(booking_id, current_user, data.newStart, data.newEnd)
    return to_booking_response(booking)


@router.post("/{booking_id}/cancel", response_model=CancelResponse)
async def cancel_booking(
    booking_id: str,
    data: Optional[CancelRequest] = None,
    current_user: User = Depends(get_current_actor),
    service: CancellationService = Depends(get_cancellation_service),
):
    result = await service.cancel(booking_id, current_user, data.reason if data else None)
    return CancelResponse(
        booking=to_booking_response(result.booking),
        refundCents=result.refund_cents,
        refundStatus=result.refund_status,
        warning=result.warning,
    )


@admin_router.post("/expire-pending", response_model=ExpirePendingResponse)
async def expire_pending_bookings(
    current_user: User = Depends(get_current_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Cancel PENDING bookings whose checkout hold has lapsed"""
    expired = service.expire_stale_pending()
    logger.info(f"Admin {current_user.id} expired {expired} pending bookings")
    return ExpirePendingResponse(expired=expired)
