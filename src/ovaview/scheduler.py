"""Start/stop control over the daily-insights scraper beat entry."""

import logging
from typing import Optional

from celery import Celery
from celery.schedules import crontab

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = "0 */6 * * *"
ENTRY_NAME = "daily-insights-scrape"
TASK_NAME = "ovaview.tasks.trigger_daily_insights_scrape"


def parse_cron(expression: str) -> crontab:
    """Turn a five-field ``minute hour day month weekday`` string into a crontab."""
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"expected 5 cron fields, got {len(fields)}: {expression!r}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


class DailyInsightsScheduler:
    """Owns the periodic scraper trigger for one Celery app.

    Nothing is scheduled until ``start`` is called, and a disabled scheduler
    never installs its entry.
    """

    def __init__(
        self,
        celery_app: Celery,
        schedule: Optional[str] = None,
        enabled: bool = False,
        entry_name: str = ENTRY_NAME,
    ):
        self.celery_app = celery_app
        self.schedule = schedule or DEFAULT_SCHEDULE
        self.enabled = enabled
        self.entry_name = entry_name
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> bool:
        if not self.enabled:
            logger.info("daily insights cron disabled (enable with ENABLE_CRON=true)")
            return False
        if self._running:
            logger.warning("daily insights cron already started, skipping")
            return True

        beat_schedule = dict(self.celery_app.conf.beat_schedule or {})
        beat_schedule[self.entry_name] = {
            "task": TASK_NAME,
            "schedule": parse_cron(self.schedule),
        }
        self.celery_app.conf.beat_schedule = beat_schedule
        self._running = True
        logger.info("daily insights cron started with schedule %s", self.schedule)
        return True

    def stop(self) -> None:
        if not self._running:
            return
        beat_schedule = dict(self.celery_app.conf.beat_schedule or {})
        beat_schedule.pop(self.entry_name, None)
        self.celery_app.conf.beat_schedule = beat_schedule
        self._running = False
        logger.info("daily insights cron stopped")
