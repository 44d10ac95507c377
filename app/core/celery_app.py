"""
Celery application: broker and result backend from settings.
Periodic tasks live in app.referral.tasks.
"""
from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "app",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.referral.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=3600,
    result_expires=86400,
    timezone="UTC",
    beat_schedule={
        "send-monthly-reminders": {
            "task": "app.referral.tasks.send_monthly_reminders",
            "schedule": crontab(minute=0, hour=0, day_of_month=25),
        },
    },
)
