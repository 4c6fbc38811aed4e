"""Celery task definitions for periodic loan maintenance."""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

celery_app = Celery(
    "debtdesk",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.celery_timezone,
    enable_utc=True,
)

# Periodic beat schedule
celery_app.conf.beat_schedule = {
    "increment-act-days": {
        "task": "app.tasks.loan_maintenance.increment_act_days",
        "schedule": crontab(hour=0, minute=0),  # Midnight Tbilisi time
    },
}

# Import tasks so they get registered
from app.tasks.loan_maintenance import *  # noqa
