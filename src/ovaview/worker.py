"""Celery application with the periodic back-office tasks."""

from celery import Celery

from .config import settings
from .scheduler import DailyInsightsScheduler


celery_app = Celery(
    "ovaview",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["ovaview.tasks"],
)

celery_app.conf.beat_schedule = {
    "purge-revoked-tokens": {
        "task": "ovaview.tasks.purge_expired_revocations",
        "schedule": settings.revoked_token_purge_frequency,
    }
}
celery_app.conf.timezone = "UTC"

daily_insights_scheduler = DailyInsightsScheduler(
    celery_app,
    schedule=settings.daily_insights_cron_schedule,
    enabled=settings.cron_enabled,
)
daily_insights_scheduler.start()
