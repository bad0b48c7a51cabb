"""
MJML Email Templates
Booking notification emails using MJML for responsive, cross-client compatibility
"""

from typing import Optional

from .config import FRONTEND_URL

# App theme colors - Indigo/Slate color scheme
THEME = {
    "primary": "#4f46e5",
    "primary_dark": "#4338ca",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "warning": "#f59e0b",
    "danger": "#ef4444",
}


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="40px 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              You're receiving this because you have a session booked on Sessionbook.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _session_details(when: str, duration_minutes: int, counterpart_label: str, counterpart: str) -> str:
    return f"""
    <mj-text>
      {counterpart_label}: <strong>{counterpart}</strong><br/>
      When: {when}<br/>
      Length: {duration_minutes} minutes
    </mj-text>
    """


def booking_confirmed_template(
    recipient_name: str,
    counterpart_label: str,
    counterpart_name: str,
    when: str,
    duration_minutes: int,
    meeting_url: Optional[str],
    booking_id: str,
) -> str:
    content = f"""
    <mj-text>
      Hi {recipient_name},
    </mj-text>

    <mj-text>
      Your session is confirmed.
    </mj-text>
    {_session_details(when, duration_minutes, counterpart_label, counterpart_name)}
    """
    if meeting_url:
        content += f"""
    <mj-text>
      Video room: <a href="{meeting_url}" style="color: {THEME['primary']};">{meeting_url}</a>
    </mj-text>
    """
    return get_base_template(
        title="Session Confirmed",
        preview_text=f"Your session on {when} is confirmed",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/bookings/{booking_id}",
        cta_label="View Booking",
    )


def booking_rescheduled_template(
    recipient_name: str,
    counterpart_label: str,
    counterpart_name: str,
    old_when: str,
    new_when: str,
    duration_minutes: int,
    booking_id: str,
) -> str:
    content = f"""
    <mj-text>
      Hi {recipient_name},
    </mj-text>

    <mj-text>
      Your session has moved.
    </mj-text>

    <mj-text color="{THEME['text_muted']}">
      Previously: <s>{old_when}</s>
    </mj-text>
    {_session_details(new_when, duration_minutes, counterpart_label, counterpart_name)}
    """
    return get_base_template(
        title="Session Rescheduled",
        preview_text=f"Your session now starts {new_when}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/bookings/{booking_id}",
        cta_label="View Booking",
    )


def booking_cancelled_template(
    recipient_name: str,
    counterpart_label: str,
    counterpart_name: str,
    when: str,
    duration_minutes: int,
    cancelled_by: str,
    refund_text: Optional[str] = None,
    reason: Optional[str] = None,
) -> str:
    content = f"""
    <mj-text>
      Hi {recipient_name},
    </mj-text>

    <mj-text>
      This session was cancelled by the {cancelled_by}.
    </mj-text>
    {_session_details(when, duration_minutes, counterpart_label, counterpart_name)}
    """
    if reason:
        content += f"""
    <mj-text color="{THEME['text_muted']}">
      Reason: {reason}
    </mj-text>
    """
    if refund_text:
        content += f"""
    <mj-text>
      {refund_text}
    </mj-text>
    """
    return get_base_template(
        title="Session Cancelled",
        preview_text=f"Your session on {when} was cancelled",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/bookings",
        cta_label="Book Another Session",
    )
