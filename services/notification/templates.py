"""
services/notification/templates.py
Per-event message content for each delivery channel.
"""

from dataclasses import dataclass, field
from html import escape
from typing import Dict, List

from shared.models.models import NotificationType
from shared.schemas.schemas import BookingNotice

CLINIC_NAME = "Zennara Clinic"


@dataclass
class RenderedNotification:
    title: str
    body: str
    email_subject: str
    email_html: str
    whatsapp: str
    voice_lines: List[str] = field(default_factory=list)


# title, one-line summary, extra WhatsApp/email lines
TEMPLATES: Dict[NotificationType, Dict[str, object]] = {
    NotificationType.BOOKING_CREATED: {
        "title": "Appointment request received",
        "summary": "Your appointment request {ref} has been received and is awaiting confirmation.",
        "subject": "Appointment request received - {ref}",
        "extra": [
            "Preferred date: {date}",
            "Preferred time: {time}",
            "You will receive a confirmation message once your appointment is scheduled.",
        ],
    },
    NotificationType.BOOKING_CONFIRMED: {
        "title": "Appointment confirmed",
        "summary": "Your appointment {ref} is confirmed for {date} at {time}.",
        "subject": "Appointment confirmed - {ref}",
        "extra": ["Please arrive 10 minutes early with any relevant medical documents."],
    },
    NotificationType.BOOKING_RESCHEDULED: {
        "title": "Appointment rescheduled",
        "summary": "Your appointment {ref} has been moved to {date} at {time}.",
        "subject": "Appointment rescheduled - {ref}",
        "extra": ["Previous slot: {previous}"],
    },
    NotificationType.BOOKING_CHECKED_IN: {
        "title": "Checked in",
        "summary": "You have been checked in for {treatment} at {location}.",
        "subject": "Check-in successful - {ref}",
        "extra": ["Please have a seat in the waiting area."],
    },
    NotificationType.BOOKING_COMPLETED: {
        "title": "Visit completed",
        "summary": "Thank you for visiting {location} today.",
        "subject": "Thank you for your visit - {ref}",
        "extra": ["You can rate your visit in the Zennara App."],
    },
    NotificationType.BOOKING_CANCELLED: {
        "title": "Appointment cancelled",
        "summary": "Your appointment {ref} on {date} has been cancelled.",
        "subject": "Appointment cancelled - {ref}",
        "extra": ["Reason: {reason}", "You can book a new appointment through the Zennara App."],
    },
    NotificationType.BOOKING_NO_SHOW: {
        "title": "We missed you",
        "summary": "We missed you for appointment {ref} on {date} at {time}.",
        "subject": "Missed appointment - {ref}",
        "extra": ["You can reschedule through the Zennara App."],
    },
    NotificationType.BOOKING_EXPIRED: {
        "title": "Appointment request expired",
        "summary": "Your appointment request {ref} for {date} expired before it could be confirmed.",
        "subject": "Appointment request expired - {ref}",
        "extra": ["Please book a new slot through the Zennara App."],
    },
}


def _context(notice: BookingNotice) -> Dict[str, str]:
    previous = ""
    if notice.rescheduled_from:
        previous = f"{notice.rescheduled_from.date or ''} {notice.rescheduled_from.time or ''}".strip()
    return {
        "ref": notice.reference_number,
        "name": notice.full_name,
        "date": notice.appointment_date.strftime("%d %b %Y"),
        "time": notice.appointment_time,
        "treatment": notice.consultation_name or "your consultation",
        "location": notice.preferred_location,
        "reason": notice.cancellation_reason or "Not specified",
        "previous": previous or "-",
    }


def _voice_script(notice: BookingNotice, ctx: Dict[str, str]) -> List[str]:
    # Read out character by character
    spoken_ref = " ".join(notice.reference_number)
    lines = [
        f"Hello {ctx['name']}, thank you for booking an appointment with {CLINIC_NAME}.",
        f"Your booking reference number is {spoken_ref}.",
        f"You have booked {ctx['treatment']}.",
        f"Your preferred appointment date is {ctx['date']}.",
        f"Your preferred time slots are {ctx['time']}.",
        f"You have selected the {ctx['location']} branch.",
    ]
    if notice.branch_address:
        lines.append(f"The branch is located at {notice.branch_address}.")
    lines.append("Our team will confirm your appointment shortly.")
    lines.append(f"Thank you for choosing {CLINIC_NAME}. Have a great day!")
    return lines


def render(event: NotificationType, notice: BookingNotice) -> RenderedNotification:
    tmpl = TEMPLATES[event]
    ctx = _context(notice)

    summary = tmpl["summary"].format(**ctx)
    extra = [line.format(**ctx) for line in tmpl["extra"]]
    if event == NotificationType.BOOKING_RESCHEDULED and not notice.rescheduled_from:
        extra = []

    whatsapp = "\n".join(
        [f"Hello {ctx['name']}!", "", summary, *extra, "", CLINIC_NAME]
    )
    paragraphs = "".join(f"<p>{escape(line)}</p>" for line in [summary, *extra])
    email_html = (
        f"<h2>{escape(tmpl['title'])}</h2>"
        f"<p>Dear {escape(ctx['name'])},</p>"
        f"{paragraphs}"
        f"<p>Reference: <strong>{escape(ctx['ref'])}</strong></p>"
        f"<p>{CLINIC_NAME}</p>"
    )

    return RenderedNotification(
        title=tmpl["title"],
        body=summary,
        email_subject=tmpl["subject"].format(**ctx),
        email_html=email_html,
        whatsapp=whatsapp,
        voice_lines=_voice_script(notice, ctx) if event == NotificationType.BOOKING_CREATED else [],
    )
