"""
tasks/notification_tasks.py
Transactional email delivery through Resend.

In-app notifications are written synchronously by services/notification;
only outbound email goes through the queue.

Usage from a route:
    from tasks.notification_tasks import send_password_reset_email
    send_password_reset_email.delay(user.email, user.name, reset_url)
"""

import logging

import resend

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Send one email via Resend. Returns True on success."""
    try:
        resend.api_key = settings.RESEND_API_KEY
        resend.Emails.send({
            "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
            "to": to_email,
            "subject": subject,
            "html": html_body,
        })
        return True
    except Exception as e:
        logger.warning(f"Email send failed for {to_email}: {e}")
        return False


def render_password_reset(name: str, reset_url: str) -> tuple[str, str]:
    subject = f"Reset your {settings.APP_NAME} password"
    html = (
        f"<p>Hi {name},</p>"
        f"<p>We received a request to reset your password. "
        f"<a href=\"{reset_url}\">Choose a new password</a>.</p>"
        f"<p>This link expires in {settings.PASSWORD_RESET_TOKEN_TTL_SECONDS // 60} minutes "
        f"and can only be used once. If you did not ask for it, ignore this email.</p>"
    )
    return subject, html


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_password_reset_email(self, to_email: str, name: str, reset_url: str):
    """Send the reset link, retrying with exponential backoff."""
    subject, html = render_password_reset(name, reset_url)
    if not settings.RESEND_API_KEY:
        logger.warning("Email is not configured; password reset email dropped")
        return False
    if not _send_email(to_email, subject, html):
        raise self.retry(countdown=60 * (2 ** self.request.retries))
    logger.info(f"Password reset email sent to {to_email}")
    return True
