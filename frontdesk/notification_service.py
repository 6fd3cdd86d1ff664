"""
NotificationDispatcher - emails the business owner about a captured lead.

Whatever happens, dispatch() returns a NotificationRecord
{status, sent_at, error, recipients} so the Lead's notification state is
always observable. It never raises.
"""

import html
import logging
import os
from datetime import datetime
from typing import Any, List, Optional, Tuple

from dialogue.signals import format_phone

from .email_service import EmailService
from .models import BusinessProfile, NotificationRecord

logger = logging.getLogger(__name__)

TRANSCRIPT_EXCERPT_LIMIT = 1000
SHORT_REASON_LIMIT = 50


def short_reason(reason: Optional[str]) -> str:
    reason = " ".join((reason or "").split())
    if not reason:
        return "General inquiry"
    if len(reason) > SHORT_REASON_LIMIT:
        return reason[:SHORT_REASON_LIMIT].rstrip() + "..."
    return reason


def transcript_excerpt(transcript: Optional[str], limit: int = TRANSCRIPT_EXCERPT_LIMIT) -> str:
    """Transcript trimmed to at most `limit` characters."""
    transcript = (transcript or "").strip()
    if len(transcript) <= limit:
        return transcript
    return transcript[: limit - 3].rstrip() + "..."


def _yes_no(value: Any) -> str:
    return "Yes" if value else "No"


def lead_fields(lead: Any) -> List[Tuple[str, str]]:
    """Captured-field table rows for the notification."""
    rows = [
        ("Name", lead.name or "Unknown"),
        ("Phone", format_phone(lead.phone)),
        ("Email", lead.email or "Not provided"),
        ("Reason", lead.reason_for_calling or lead.interested_in or "General inquiry"),
        ("Quality", (lead.quality or "unknown").capitalize()),
        ("Callback requested", _yes_no(lead.callback_requested)),
        ("Appointment requested", _yes_no(lead.appointment_requested)),
    ]
    if lead.appointment_details:
        rows.append(("Appointment details", lead.appointment_details))
    if lead.services:
        rows.append(("Services", ", ".join(lead.services)))
    if lead.questions:
        rows.append(("Questions", "; ".join(lead.questions)))
    return rows


def build_lead_email(
    business: BusinessProfile,
    lead: Any,
    summary_text: str,
    received_at: Optional[datetime] = None,
) -> Tuple[str, str, str]:
    """Return (subject, text, html) for a new-lead notification."""
    name = lead.name or "Unknown"
    reason = short_reason(lead.reason_for_calling or lead.interested_in)
    subject = f"New Lead – {name} – {reason}"

    rows = lead_fields(lead)
    excerpt = transcript_excerpt(lead.transcript)
    when = (received_at or lead.created_at or datetime.utcnow()).strftime("%Y-%m-%d %H:%M UTC")

    text_lines = [
        f"New lead for {business.business_name}",
        f"Received: {when}",
        "",
        "SUMMARY",
        summary_text,
        "",
        "DETAILS",
    ]
    text_lines.extend(f"{label}: {value}" for label, value in rows)
    text_lines.extend(["", "TRANSCRIPT EXCERPT", excerpt or "(no transcript)"])
    text = "\n".join(text_lines)

    row_html = "".join(
        f"<tr><td style=\"padding:4px 12px 4px 0;color:#555\"><strong>{html.escape(label)}</strong></td>"
        f"<td style=\"padding:4px 0\">{html.escape(str(value))}</td></tr>"
        for label, value in rows
    )
    html_body = (
        "<div style=\"font-family:Arial,sans-serif;max-width:600px\">"
        f"<h2 style=\"margin-bottom:4px\">New lead for {html.escape(business.business_name)}</h2>"
        f"<p style=\"color:#777;margin-top:0\">Received {html.escape(when)}</p>"
        "<h3>Summary</h3>"
        f"<pre style=\"white-space:pre-wrap;font-family:inherit;background:#f6f6f6;padding:12px\">"
        f"{html.escape(summary_text)}</pre>"
        "<h3>Details</h3>"
        f"<table>{row_html}</table>"
        "<h3>Transcript excerpt</h3>"
        f"<pre style=\"white-space:pre-wrap;font-family:inherit;color:#444\">"
        f"{html.escape(excerpt or '(no transcript)')}</pre>"
        "</div>"
    )
    return subject, text, html_body


class NotificationDispatcher:
    """Resolves recipients and sends the lead notification email."""

    def __init__(self, email_service: EmailService):
        self.email_service = email_service
        self.operator_alert_email = os.getenv("OPERATOR_ALERT_EMAIL")

    def resolve_recipients(self, business: BusinessProfile) -> List[str]:
        """Primary (or owner) + CC; operator alert address if none configured."""
        settings = business.notification_settings
        candidates = [settings.primary_email or business.owner_email] + list(settings.cc_emails)

        recipients: List[str] = []
        for address in candidates:
            address = (address or "").strip()
            if address and address.lower() not in (r.lower() for r in recipients):
                recipients.append(address)

        if not recipients and self.operator_alert_email:
            logger.warning(
                f"No recipients for {business.business_name}, using operator alert address"
            )
            recipients = [a.strip() for a in self.operator_alert_email.split(",") if a.strip()]
        return recipients

    async def dispatch(self, business: BusinessProfile, lead: Any, summary_text: str) -> NotificationRecord:
        """GUARANTEE: never raises."""
        try:
            if not business.notification_settings.enable_email:
                return NotificationRecord(status="failed", error="Email notifications disabled", recipients=[])

            recipients = self.resolve_recipients(business)
            if not recipients:
                return NotificationRecord(
                    status="failed",
                    error="No notification recipients configured",
                    recipients=[],
                )

            subject, text, html_body = build_lead_email(business, lead, summary_text)
            result = await self.email_service.send(recipients, subject, text, html_body)

            if result.success:
                logger.info(f"EMAIL_SENT lead={lead.id} recipients={recipients}")
                return NotificationRecord(
                    status="sent",
                    sent_at=datetime.utcnow(),
                    error=None,
                    recipients=recipients,
                )

            logger.error(f"EMAIL_FAILED lead={lead.id} error={result.error}")
            return NotificationRecord(status="failed", error=result.error or "Unknown email error", recipients=[])

        except Exception as e:
            logger.error(f"EMAIL_FAILED lead={getattr(lead, 'id', None)} error={type(e).__name__}: {e}", exc_info=True)
            return NotificationRecord(status="failed", error=str(e) or type(e).__name__, recipients=[])
