"""
SMTP email transport (aiosmtplib).

Reads SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, EMAIL_FROM. Missing
credentials leave the service unconfigured; send() then returns a failed
EmailResult instead of raising.
"""

import logging
import os
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import List, Optional

import aiosmtplib

logger = logging.getLogger(__name__)

NOT_CONFIGURED_ERROR = "Email transporter not configured (missing SMTP credentials)"


@dataclass
class EmailResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


class EmailService:
    def __init__(self):
        self.host = os.getenv("SMTP_HOST", "smtp.gmail.com")
        self.port = int(os.getenv("SMTP_PORT", "587"))
        self.user = os.getenv("SMTP_USER")
        self.password = os.getenv("SMTP_PASS")
        self.from_address = os.getenv("EMAIL_FROM") or self.user
        self.from_name = os.getenv("EMAIL_FROM_NAME", "Frontdesk")
        self.timeout = float(os.getenv("SMTP_TIMEOUT_SECONDS", "30"))

        if not self.is_configured:
            logger.warning("SMTP_USER/SMTP_PASS not set - email notifications will fail")

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    async def send(self, to: List[str], subject: str, text: str, html: Optional[str] = None) -> EmailResult:
        """Send one message to all recipients. Never raises."""
        if not self.is_configured:
            return EmailResult(success=False, error=NOT_CONFIGURED_ERROR)
        if not to:
            return EmailResult(success=False, error="No recipients")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = ", ".join(to)
        msg["Message-ID"] = make_msgid(domain=self.from_address.split("@")[-1] if "@" in self.from_address else None)
        msg.attach(MIMEText(text, "plain", "utf-8"))
        if html:
            msg.attach(MIMEText(html, "html", "utf-8"))

        try:
            await aiosmtplib.send(
                msg,
                hostname=self.host,
                port=self.port,
                username=self.user,
                password=self.password,
                start_tls=self.port == 587,
                use_tls=self.port == 465,
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"EMAIL_FAILED to={to} error={type(e).__name__}: {e}")
            return EmailResult(success=False, error=f"{type(e).__name__}: {e}")

        logger.info(f"EMAIL_SENT to={to} subject={subject!r}")
        return EmailResult(success=True, message_id=msg["Message-ID"])
