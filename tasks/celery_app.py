"""
tasks/celery_app.py
Celery application instance shared by all task modules.

Workers are started with:
    celery -A tasks.celery_app worker -Q notifications,default --loglevel=info --concurrency=4

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from config.settings import settings

celery_app = Celery(
    "clinic_booking",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.notification_tasks",
        "tasks.booking_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.CLINIC_TIMEZONE,
    enable_utc=True,

    # Acknowledge after execution so a dying worker does not lose the message
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,
    task_max_retries=3,

    # Provider rate limits (per worker per second)
    task_annotations={
        "tasks.notification_tasks.send_email": {"rate_limit": "20/s"},
        "tasks.notification_tasks.send_whatsapp": {"rate_limit": "10/s"},
        "tasks.notification_tasks.place_voice_call": {"rate_limit": "1/s"},
    },

    task_routes={
        "tasks.notification_tasks.*": {"queue": "notifications"},
        "tasks.booking_tasks.expire_unconfirmed_bookings": {"queue": "default"},
    },

    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    # Delete unconfirmed bookings whose slot has passed; crontab runs in clinic time
    "expire-unconfirmed-bookings": {
        "task": "tasks.booking_tasks.expire_unconfirmed_bookings",
        "schedule": crontab(minute=0),  # top of every hour
    },
}
