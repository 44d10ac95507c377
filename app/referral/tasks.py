"""
Celery tasks: transactional email off the request path, and the monthly
reminder (beat: 25th of each month, 00:00 UTC).
"""
import logging

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.models.user import User
from app.services.notifications.email import (
    EmailNotifier,
    NotificationError,
    monthly_reminder_message,
)

logger = logging.getLogger(__name__)


@celery_app.task(name="app.referral.tasks.send_email")
def send_email(to: str, subject: str, body: str) -> bool:
    try:
        return EmailNotifier().send(to, subject, body)
    except NotificationError:
        logger.exception("email_send_failed")
        return False


class QueuedEmailNotifier:
    """Notifier for request handlers: enqueues send_email and returns at once."""

    def send(self, to: str, subject: str, body: str) -> bool:
        send_email.delay(to, subject, body)
        return True


@celery_app.task(name="app.referral.tasks.send_monthly_reminders")
def send_monthly_reminders() -> dict:
    """Email every user that has an address. One failed send never stops the batch."""
    db = SessionLocal()
    try:
        notifier = EmailNotifier()
        users = (
            db.query(User.id, User.email, User.name)
            .filter(User.email.isnot(None), User.email != "")
            .all()
        )
        sent = 0
        failed = 0
        for user_id, email, name in users:
            subject, body = monthly_reminder_message(name)
            try:
                if notifier.send(email, subject, body):
                    sent += 1
            except Exception:
                failed += 1
                logger.exception("monthly_reminder_send_failed", extra={"user_id": user_id})

        logger.info("monthly_reminders_done", extra={"sent": sent, "failed": failed})
        return {"sent": sent, "failed": failed, "total": len(users)}
    finally:
        db.close()
