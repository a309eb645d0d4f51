"""
tasks/booking_tasks.py
Periodic booking maintenance driven by Celery beat:
    celery -A tasks.celery_app beat --loglevel=info
"""

import asyncio
import logging
from dataclasses import asdict
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def run_expiry_sweep(
    session_factory: Optional[async_sessionmaker] = None,
    notifier=None,
) -> dict:
    """
    One sweep through BookingExpiryScheduler.run_once().
    Without a session factory a throwaway engine is used, since every beat run
    gets a fresh event loop.
    """
    from services.booking.scheduler import BookingExpiryScheduler
    from services.notification.dispatcher import BookingNotifier

    engine = None
    if session_factory is None:
        engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
        session_factory = async_sessionmaker(
            bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
        )

    try:
        scheduler = BookingExpiryScheduler(
            notifier=notifier or BookingNotifier(session_factory=session_factory),
            session_factory=session_factory,
        )
        result = await scheduler.run_once()
    finally:
        if engine is not None:
            await engine.dispose()
    return asdict(result)


@celery_app.task
def expire_unconfirmed_bookings():
    """
    Beat task: top of every hour, clinic time.
    Deletes bookings still awaiting confirmation whose slot has passed and
    emails the patients.
    """
    result = asyncio.run(run_expiry_sweep())
    logger.info(
        f"expire_unconfirmed_bookings: deleted {result['deleted_count']}, "
        f"notified {result['notified']}, failures {result['failures']}"
    )
    return result
