"""
Outbound email over SMTP (stdlib smtplib).
With SMTP_HOST unset the message is logged instead of sent.
"""
from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from app.core.config import settings
from app.utils.metrics import emails_total

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    pass


class EmailNotifier:
    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        sender: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.host = (host if host is not None else settings.smtp_host).strip()
        self.port = port or settings.smtp_port
        self.user = user if user is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_password
        self.sender = sender or settings.smtp_from or self.user
        self.timeout = timeout or settings.smtp_timeout

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def send(self, to: str, subject: str, body: str) -> bool:
        """Send a plain-text email. Returns False when SMTP is not configured."""
        if not self.enabled:
            emails_total.labels(status="skipped").inc()
            logger.info("email_skipped_no_smtp", extra={"status": "skipped"})
            return False

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{settings.mail_brand_name} <{self.sender}>"
        msg["To"] = to
        msg.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            emails_total.labels(status="failed").inc()
            raise NotificationError(str(e)) from e

        emails_total.labels(status="sent").inc()
        logger.info("email_sent", extra={"status": "sent"})
        return True


# ----------------------------------------------------------------------
# Message bodies
# ----------------------------------------------------------------------


def application_approved_message(
    role: str,
    name: str,
    code: str,
    code_label: str,
    discount_rate,
    valid_to,
) -> tuple[str, str]:
    subject = f"{role.capitalize()} Application Approved"
    valid_until = valid_to.date().isoformat() if valid_to is not None else "n/a"
    body = (
        f"Congratulations, {name}!\n\n"
        f"Your {role} application has been approved.\n\n"
        f"Your {code_label}: {code}\n"
        f"Discount: {float(discount_rate) * 100:g}%\n"
        f"Valid until: {valid_until}\n"
    )
    return subject, body


def application_declined_message(role: str, name: str) -> tuple[str, str]:
    subject = f"{role.capitalize()} Application Declined"
    body = (
        f"Dear {name},\n\n"
        f"Your {role} application has been declined.\n"
    )
    return subject, body


def monthly_reminder_message(name: str | None) -> tuple[str, str]:
    subject = "Your Monthly Reminder"
    body = (
        f"Hello {name or 'there'},\n\n"
        f"This is your monthly reminder from {settings.mail_brand_name}.\n"
        "Please take a moment to review your account and stay up to date.\n\n"
        "Best regards,\n"
        f"The {settings.mail_brand_name} Team\n\n"
        "This is an automated message. Please do not reply.\n"
    )
    return subject, body
