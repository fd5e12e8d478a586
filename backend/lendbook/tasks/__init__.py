"""Celery task definitions for background processing."""

from celery import Celery
from celery.schedules import crontab

from lendbook.config import settings

celery_app = Celery(
    "lendbook",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.timezone,
    enable_utc=True,
)

# Periodic beat schedule
celery_app.conf.beat_schedule = {
    "repayment-reminders-daily": {
        "task": "lendbook.tasks.repayment_reminders.send_repayment_reminders",
        "schedule": crontab(hour=settings.reminder_hour, minute=0),
    },
}

# Import tasks so they get registered
from lendbook.tasks.repayment_reminders import *  # noqa
