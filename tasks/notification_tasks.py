"""
tasks/notification_tasks.py
Celery tasks for transactional email: password reset links and booking
status updates. Tasks receive everything they need as arguments and never
open a database session.

Usage from a route:
    from tasks.notification_tasks import send_booking_status_email
    send_booking_status_email.delay(booking.customer_email, booking.booking_number, "confirmed")
"""

import logging

import resend

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Delivery ──────────────────────────────────────────────────

def _send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
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
        logger.warning(f"Email send failed: {e}")
        return False


# ── Templates ─────────────────────────────────────────────────

BOOKING_STATUS_TEMPLATES = {
    "confirmed": {
        "subject": "Booking Confirmed – {booking_number}",
        "body": "Your ride {booking_number} is confirmed. Your driver details will follow before pickup.",
    },
    "completed": {
        "subject": "Trip Completed – {booking_number}",
        "body": "Your ride {booking_number} is complete. Thank you for travelling with us.",
    },
    "cancelled": {
        "subject": "Booking Cancelled – {booking_number}",
        "body": "Your ride {booking_number} has been cancelled.",
    },
}

PASSWORD_RESET_TEMPLATE = {
    "subject": "Reset your admin password",
    "body": (
        "<p>We received a request to reset your password.</p>"
        '<p><a href="{link}">Choose a new password</a></p>'
        "<p>This link expires in {minutes} minutes. If you did not ask for it, ignore this email.</p>"
    ),
}


def _render(template: str, **kwargs) -> str:
    """Simple string template renderer."""
    for key, value in kwargs.items():
        template = template.replace(f"{{{key}}}", str(value))
    return template


# ── Tasks ─────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_email(self, to_email: str, subject: str, html_body: str):
    """Send a transactional email via Resend with retry on failure."""
    success = _send_email(to_email, subject, html_body)
    if not success:
        raise self.retry(countdown=60 * (2 ** self.request.retries))


@celery_app.task
def send_password_reset_email(to_email: str, reset_link: str):
    """Mail a reset link. The link itself is never logged."""
    html_body = _render(
        PASSWORD_RESET_TEMPLATE["body"],
        link=reset_link,
        minutes=settings.RESET_TOKEN_EXPIRE_MINUTES,
    )
    send_email.delay(to_email, PASSWORD_RESET_TEMPLATE["subject"], html_body)
    logger.info("Password reset email queued")


@celery_app.task
def send_booking_status_email(to_email: str, booking_number: str, status: str):
    tmpl = BOOKING_STATUS_TEMPLATES.get(status)
    if tmpl is None:
        logger.warning(f"No email template for booking status '{status}'")
        return
    send_email.delay(
        to_email,
        _render(tmpl["subject"], booking_number=booking_number),
        f"<p>{_render(tmpl['body'], booking_number=booking_number)}</p>",
    )
