"""
Dodo Payments webhook.

Signed with the Standard Webhooks scheme (webhook-id, webhook-timestamp,
webhook-signature). Delivery is at-least-once; confirmation itself is a
conditional update, the webhook-id set only short-circuits repeats early
and is cleared again when handling fails.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ...cache import forget_webhook, mark_webhook_processed
from ...config import DODO_PAYMENTS_WEBHOOK_SECRET
from ...errors import NotFoundError
from ...webhook_security import verify_dodo_webhook
from ..bookings.router import get_booking_service
from ..bookings.service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _booking_id_from(data: dict):
    metadata = data.get("metadata") or {}
    return metadata.get("booking_id") or metadata.get("bookingId")


@router.post("/dodopayments")
async def dodo_payments_webhook(
    request: Request,
    service: BookingService = Depends(get_booking_service),
):
    if not DODO_PAYMENTS_WEBHOOK_SECRET:
        logger.error("❌ DODO_PAYMENTS_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook not configured")

    raw_body = await verify_dodo_webhook(request, DODO_PAYMENTS_WEBHOOK_SECRET)
    webhook_id = request.headers.get("webhook-id", "unknown")

    try:
        event = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"Failed to parse webhook JSON: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

    event_type = event.get("type")
    data = event.get("data") or {}
    booking_id = _booking_id_from(data)
    logger.info(f"🔔 Webhook received id={webhook_id} type={event_type} booking={booking_id}")

    if event_type not in ("payment.succeeded", "payment.failed"):
        return {"status": "ignored", "type": event_type}
    if not booking_id:
        logger.warning(f"⚠️ {event_type} webhook {webhook_id} carries no booking_id metadata")
        return {"status": "ignored", "reason": "no booking"}
    if not mark_webhook_processed(webhook_id):
        logger.info(f"🔄 Webhook {webhook_id} already processed, skipping")
        return {"status": "already_processed", "webhook_id": webhook_id}

    try:
        if event_type == "payment.succeeded":
            confirmed = await service.confirm_booking(booking_id, data.get("payment_id"))
            return {"status": "confirmed" if confirmed else "noop", "bookingId": booking_id}
        cancelled = service.fail_booking_payment(booking_id)
        return {"status": "cancelled" if cancelled else "noop", "bookingId": booking_id}
    except NotFoundError:
        logger.warning(f"⚠️ Webhook {webhook_id} refers to unknown booking {booking_id}")
        return {"status": "ignored", "reason": "unknown booking"}
    except Exception:
        # Let the gateway redeliver; confirmation is a conditional update
        forget_webhook(webhook_id)
        raise
