"""Dodo Payments service - checkout sessions and refunds for bookings"""

import logging
from dataclasses import dataclass
from typing import Optional

from dodopayments import AsyncDodoPayments  # type: ignore

from ...config import (
    DODO_ADHOC_PRODUCT_ID,
    DODO_PAYMENTS_API_KEY,
    DODO_PAYMENTS_ENVIRONMENT,
    FRONTEND_URL,
)
from ...errors import PaymentGatewayError

logger = logging.getLogger(__name__)


def normalize_dodo_environment(env: Optional[str]) -> str:
    """Normalize Dodo environment value to expected format"""
    value = (env or "test_mode").strip().lower()
    if value in {"live", "production", "prod"}:
        return "live_mode"
    if value in {"test", "sandbox", "staging", "dev", "development"}:
        return "test_mode"
    if value in {"test_mode", "live_mode"}:
        return value
    logger.warning(f"Unknown DODO environment '{env}', defaulting to test_mode")
    return "test_mode"


def _field(obj, name: str):
    """SDK responses are models; tests and older SDKs hand back dicts"""
    value = getattr(obj, name, None)
    if value is None and isinstance(obj, dict):
        value = obj.get(name)
    return value


@dataclass
class CheckoutSession:
    checkout_url: str
    session_id: Optional[str] = None


class DodoPaymentsService:
    """Service for Dodo Payments API operations"""

    def __init__(self, client=None):
        self.api_key = DODO_PAYMENTS_API_KEY
        self.environment = normalize_dodo_environment(DODO_PAYMENTS_ENVIRONMENT)
        self.client = client

        if self.client is None and self.api_key:
            try:
                self.client = AsyncDodoPayments(
                    bearer_token=self.api_key,
                    environment=self.environment,
                )
                logger.info(f"Dodo Payments client initialized (env={self.environment})")
            except Exception as e:
                logger.error(f"Failed to initialize Dodo client (env={self.environment}): {e}")
                self.client = None
        elif self.client is None:
            logger.warning("DODO_PAYMENTS_API_KEY not set; checkout and refunds will fail until configured")

    async def create_booking_checkout(
        self,
        booking_id: str,
        amount_cents: int,
        customer_email: str,
        customer_name: str = "",
        metadata: Optional[dict] = None,
    ) -> CheckoutSession:
        """Pay-what-you-want checkout on the adhoc product, priced per booking"""
        if not self.client:
            raise PaymentGatewayError("Payment processor not configured")
        if not DODO_ADHOC_PRODUCT_ID:
            raise PaymentGatewayError("DODO_ADHOC_PRODUCT_ID not configured")

        try:
            session = await self.client.checkout_sessions.create(
                product_cart=[
                    {
                        "product_id": DODO_ADHOC_PRODUCT_ID,
                        "quantity": 1,
                        # Amount in lowest currency unit (cents)
                        "amount": amount_cents,
                    }
                ],
                customer={"email": customer_email, "name": customer_name},
                metadata={"booking_id": booking_id, **(metadata or {})},
                return_url=f"{FRONTEND_URL}/bookings/{booking_id}/confirmation",
            )
        except Exception as e:
            logger.error(f"❌ Failed to create checkout session for booking {booking_id}: {e}")
            raise PaymentGatewayError("Failed to create checkout session") from e

        checkout_url = _field(session, "checkout_url")
        if not checkout_url:
            logger.error(f"❌ Unexpected checkout session response: {session}")
            raise PaymentGatewayError("Invalid checkout session response")
        return CheckoutSession(checkout_url=checkout_url, session_id=_field(session, "session_id"))

    async def refund_payment(
        self,
        payment_id: str,
        amount_cents: int,
        full_refund: bool,
        reason: Optional[str] = None,
    ) -> Optional[str]:
        """Refund a captured payment; returns the processor's refund id"""
        if not self.client:
            raise PaymentGatewayError("Payment processor not configured")

        params = {"payment_id": payment_id, "reason": reason or "Booking cancelled"}
        if not full_refund:
            params["items"] = [{"item_id": DODO_ADHOC_PRODUCT_ID, "amount": amount_cents}]
        try:
            refund = await self.client.refunds.create(**params)
        except Exception as e:
            logger.error(f"❌ Refund of {amount_cents} cents failed for payment {payment_id}: {e}")
            raise PaymentGatewayError("Refund could not be issued") from e

        refund_id = _field(refund, "refund_id") or _field(refund, "id")
        logger.info(f"💸 Refund {refund_id} issued: {amount_cents} cents on payment {payment_id}")
        return refund_id


_service: Optional[DodoPaymentsService] = None


def get_payments_service() -> DodoPaymentsService:
    """Dependency injection for the shared DodoPaymentsService"""
    global _service
    if _service is None:
        _service = DodoPaymentsService()
    return _service
