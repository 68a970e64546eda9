"""Celery tasks: the daily-insights scraper trigger and denylist cleanup."""

import logging
from typing import Optional

import requests
from prometheus_client import Counter

from .config import settings
from .database import SessionLocal
from .tokens import purge_revoked_tokens
from .worker import celery_app


logger = logging.getLogger(__name__)

SCRAPER_RUN_COUNTER = Counter(
    "scraper_runs_total", "Daily insights scraper runs by status", ["status"]
)


def run_daily_insights_scrape(api_url: Optional[str] = None, timeout: float = 300) -> int:
    """Ask the external scraper to run and return how many articles it scraped."""
    base = (api_url or settings.scraper_api).rstrip("/")
    response = requests.post(f"{base}/api/scrape", json={}, timeout=timeout)
    response.raise_for_status()
    stats = response.json().get("stats") or {}
    return int(stats.get("total_articles") or 0)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def trigger_daily_insights_scrape(self) -> int:
    """Periodic entry point installed by ``DailyInsightsScheduler``."""
    logger.info("starting scheduled daily insights scraper run")
    try:
        total = run_daily_insights_scrape()
    except requests.RequestException as exc:
        SCRAPER_RUN_COUNTER.labels(status="failed").inc()
        logger.exception("daily insights scraper failed")
        raise self.retry(exc=exc)
    SCRAPER_RUN_COUNTER.labels(status="completed").inc()
    logger.info("daily insights scraper completed: %d articles scraped", total)
    return total


@celery_app.task
def purge_expired_revocations() -> int:
    """Remove denylist entries for tokens that have expired on their own."""
    session = SessionLocal()
    try:
        deleted = purge_revoked_tokens(session)
        logger.info("purged %d expired token revocations", deleted)
        return deleted
    except Exception:
        session.rollback()
        logger.exception("failed to purge token revocations")
        raise
    finally:
        session.close()
