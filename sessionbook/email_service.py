"""
Email Service using Resend
Booking notifications are rendered from MJML templates; sending is best-effort
and failures are logged, never surfaced to the booking flow.
"""

import logging
from datetime import datetime
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import (
    booking_cancelled_template,
    booking_confirmed_template,
    booking_rescheduled_template,
)
from .models import Booking, User
from .shared.civil_time import to_civil

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailNotConfigured(Exception):
    pass


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    result = mjml_to_html(mjml_content)
    errors = getattr(result, "errors", None) or (result.get("errors") if isinstance(result, dict) else None)
    if errors:
        logger.warning(f"MJML compilation warnings: {errors}")
    html = getattr(result, "html", None)
    if html is None and isinstance(result, dict):
        html = result.get("html")
    return html if html is not None else str(result)


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    if not RESEND_API_KEY:
        raise EmailNotConfigured("RESEND_API_KEY missing")

    recipients = [to] if isinstance(to, str) else to
    email_data = {
        "from": from_address or EMAIL_FROM_ADDRESS,
        "to": recipients,
        "subject": subject,
        "html": compile_mjml_to_html(mjml_content),
    }
    logger.info(f"📧 Sending email via Resend to: {recipients}")
    response = resend.Emails.send(email_data)
    logger.info(f"✅ Email sent successfully via Resend: {response}")
    return response


def format_when(instant: datetime, tz_name: str) -> str:
    """'Tue, Mar 10 2026 at 9:00 AM (America/New_York)' in the recipient's zone"""
    local = to_civil(instant, tz_name)
    hour = local.strftime("%I").lstrip("0") or "12"
    return f"{local.strftime('%a, %b')} {local.day} {local.year} at {hour}:{local.strftime('%M %p')} ({tz_name})"


def _name(user: User) -> str:
    return user.display_name or user.email


class BookingNotifier:
    """Booking lifecycle emails to both parties"""

    async def _deliver(self, to: str, subject: str, mjml_content: str) -> bool:
        try:
            await send_email(to=to, subject=subject, mjml_content=mjml_content)
            return True
        except EmailNotConfigured:
            logger.info(f"ℹ️ Email not configured, skipped '{subject}' to {to}")
        except Exception as e:
            logger.error(f"❌ Email send error to {to} ('{subject}'): {e}")
        return False

    async def booking_confirmed(self, booking: Booking, provider: User, requester: User) -> None:
        for recipient, label, counterpart in (
            (requester, "With", provider),
            (provider, "Booked by", requester),
        ):
            await self._deliver(
                recipient.email,
                "Your session is confirmed",
                booking_confirmed_template(
                    _name(recipient),
                    label,
                    _name(counterpart),
                    format_when(booking.start_time, recipient.timezone),
                    booking.duration_minutes,
                    booking.meeting_url,
                    booking.id,
                ),
            )

    async def booking_rescheduled(
        self, booking: Booking, provider: User, requester: User, old_start: datetime
    ) -> None:
        for recipient, label, counterpart in (
            (requester, "With", provider),
            (provider, "Booked by", requester),
        ):
            await self._deliver(
                recipient.email,
                "Your session has been rescheduled",
                booking_rescheduled_template(
                    _name(recipient),
                    label,
                    _name(counterpart),
                    format_when(old_start, recipient.timezone),
                    format_when(booking.start_time, recipient.timezone),
                    booking.duration_minutes,
                    booking.id,
                ),
            )

    async def booking_cancelled(self, booking: Booking, provider: User, requester: User) -> None:
        refund_text = None
        if booking.refund_cents:
            refund_text = f"A refund of ${booking.refund_cents / 100:.2f} is on its way to the original payment method."
        for recipient, label, counterpart in (
            (requester, "With", provider),
            (provider, "Booked by", requester),
        ):
            await self._deliver(
                recipient.email,
                "Your session was cancelled",
                booking_cancelled_template(
                    _name(recipient),
                    label,
                    _name(counterpart),
                    format_when(booking.start_time, recipient.timezone),
                    booking.duration_minutes,
                    booking.cancelled_by or "system",
                    refund_text=refund_text if recipient is requester else None,
                    reason=booking.cancel_reason,
                ),
            )


def get_booking_notifier() -> BookingNotifier:
    return BookingNotifier()
