"""
tasks/notification_tasks.py
Celery tasks for outbound booking notifications: email (Resend),
WhatsApp and voice calls (Twilio).

Tasks receive fully rendered content, so workers never touch the database.
A failed delivery is retried with exponential backoff; one channel failing
never affects the others.

Usage (see services/notification/dispatcher.py):
    send_email.delay(to_email, subject, html_body)
"""

import logging
import re

from twilio.twiml.voice_response import VoiceResponse

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Helpers ────────────────────────────────────────────────────────────────────

def format_phone(phone: str) -> str:
    """
    Normalise to E.164. Bare 10-digit numbers get the default country code.
        '70707 01099' -> '+917070701099'
    """
    cleaned = re.sub(r"[^\d+]", "", phone or "")
    if len(cleaned) == 10 and not cleaned.startswith("+"):
        cleaned = f"{settings.DEFAULT_COUNTRY_CODE}{cleaned}"
    if not cleaned.startswith("+"):
        cleaned = f"+{cleaned}"
    return cleaned


def build_voice_twiml(lines: list) -> str:
    response = VoiceResponse()
    for line in lines:
        response.say(line, voice="man", language="en-IN")
        response.pause(length=1)
    return str(response)


def _twilio_client():
    from twilio.rest import Client
    return Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)


# ── Core Delivery Functions ────────────────────────────────────────────────────

def _send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
    try:
        import resend
        resend.api_key = settings.RESEND_API_KEY
        resend.Emails.send({
            "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
            "to": [to_email],
            "subject": subject,
            "html": html_body,
        })
        return True
    except Exception as e:
        logger.warning(f"Email send to {to_email} failed: {e}")
        return False


def _send_whatsapp(phone: str, body: str) -> bool:
    """Send a WhatsApp message through Twilio. Returns True on success."""
    try:
        _twilio_client().messages.create(
            body=body,
            from_=f"whatsapp:{settings.TWILIO_WHATSAPP_FROM}",
            to=f"whatsapp:{format_phone(phone)}",
        )
        return True
    except Exception as e:
        logger.warning(f"WhatsApp send to {phone} failed: {e}")
        return False


def _place_call(phone: str, lines: list) -> bool:
    """Place an outbound voice call that reads `lines`. Returns True on success."""
    try:
        _twilio_client().calls.create(
            twiml=build_voice_twiml(lines),
            from_=settings.TWILIO_VOICE_FROM,
            to=format_phone(phone),
        )
        return True
    except Exception as e:
        logger.warning(f"Voice call to {phone} failed: {e}")
        return False


# ── Channel Tasks ──────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_email(self, to_email: str, subject: str, html_body: str):
    """Send a transactional email with retry on failure."""
    if not _send_email(to_email, subject, html_body):
        raise self.retry(countdown=60 * (2 ** self.request.retries))


@celery_app.task(bind=True, max_retries=3, default_retry_delay=120)
def send_whatsapp(self, phone: str, body: str):
    """Send a WhatsApp message with retry on failure."""
    if not _send_whatsapp(phone, body):
        raise self.retry(countdown=120 * (2 ** self.request.retries))


@celery_app.task(bind=True, max_retries=2, default_retry_delay=300)
def place_voice_call(self, phone: str, lines: list):
    """Place a booking voice call with retry on failure."""
    if not _place_call(phone, lines):
        raise self.retry(countdown=300 * (2 ** self.request.retries))
