"""Celery periodic task: record reminders for overdue loan installments."""

import asyncio
import logging
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from lendbook.tasks import celery_app
from lendbook.config import settings
from lendbook.services.reminders import collect_due_reminders

logger = logging.getLogger(__name__)

__all__ = ["send_repayment_reminders"]


def _get_async_session():
    engine = create_async_engine(settings.database_url)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def run_reminder_sweep(session_factory, today: date | None = None) -> dict:
    async with session_factory() as db:
        reminders = await collect_due_reminders(db, today)
        return {
            "reminders": len(reminders),
            "loans": len({r.loan_id for r in reminders}),
        }


@celery_app.task(name="lendbook.tasks.repayment_reminders.send_repayment_reminders")
def send_repayment_reminders() -> dict:
    """Sweep disbursed loans for overdue installments.

    This runs as a synchronous Celery task that wraps an async inner function.
    """
    loop = asyncio.new_event_loop()
    try:
        stats = loop.run_until_complete(run_reminder_sweep(_get_async_session()))
    finally:
        loop.close()
    logger.info("Reminder sweep finished: %s", stats)
    return stats
