import pytest
import requests
from celery import Celery
from celery.schedules import crontab

from ovaview import tasks
from ovaview.scheduler import ENTRY_NAME, TASK_NAME, DailyInsightsScheduler, parse_cron


@pytest.fixture
def celery_app():
    app = Celery("scheduler-test")
    app.conf.beat_schedule = {"other": {"task": "x", "schedule": 60}}
    return app


def test_disabled_scheduler_installs_nothing(celery_app):
    scheduler = DailyInsightsScheduler(celery_app, enabled=False)
    assert scheduler.start() is False
    assert not scheduler.is_running
    assert ENTRY_NAME not in celery_app.conf.beat_schedule


def test_start_installs_cron_entry(celery_app):
    scheduler = DailyInsightsScheduler(celery_app, enabled=True)
    assert scheduler.start() is True
    assert scheduler.is_running

    entry = celery_app.conf.beat_schedule[ENTRY_NAME]
    assert entry["task"] == TASK_NAME
    assert isinstance(entry["schedule"], crontab)
    assert entry["schedule"].hour == {0, 6, 12, 18}
    assert entry["schedule"].minute == {0}
    assert "other" in celery_app.conf.beat_schedule


def test_start_twice_keeps_one_entry(celery_app):
    scheduler = DailyInsightsScheduler(celery_app, schedule="30 6 * * 1", enabled=True)
    scheduler.start()
    scheduler.start()
    assert list(celery_app.conf.beat_schedule) == ["other", ENTRY_NAME]


def test_stop_removes_the_entry(celery_app):
    scheduler = DailyInsightsScheduler(celery_app, enabled=True)
    scheduler.start()
    scheduler.stop()
    assert not scheduler.is_running
    assert ENTRY_NAME not in celery_app.conf.beat_schedule
    scheduler.stop()


def test_separate_schedulers_do_not_share_state(celery_app):
    other_app = Celery("scheduler-test-2")
    first = DailyInsightsScheduler(celery_app, enabled=True)
    second = DailyInsightsScheduler(other_app, enabled=True)
    first.start()
    assert first.is_running and not second.is_running
    assert ENTRY_NAME not in (other_app.conf.beat_schedule or {})


@pytest.mark.parametrize("expression", ["", "* * *", "0 */6 * * * *"])
def test_parse_cron_requires_five_fields(expression):
    with pytest.raises(ValueError):
        parse_cron(expression)


class FakeResponse:
    def __init__(self, status=200, payload=None):
        self.status_code = status
        self._payload = payload or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self):
        return self._payload


def test_scrape_posts_to_scraper_api(monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json))
        return FakeResponse(payload={"stats": {"total_articles": 42}})

    monkeypatch.setattr(tasks.requests, "post", fake_post)
    assert tasks.run_daily_insights_scrape("http://scraper:5000/") == 42
    assert calls == [("http://scraper:5000/api/scrape", {})]


def test_scrape_without_stats_counts_zero(monkeypatch):
    monkeypatch.setattr(tasks.requests, "post", lambda *a, **k: FakeResponse(payload={}))
    assert tasks.run_daily_insights_scrape("http://scraper") == 0


def test_scrape_failure_propagates(monkeypatch):
    monkeypatch.setattr(tasks.requests, "post", lambda *a, **k: FakeResponse(status=502))
    with pytest.raises(requests.HTTPError):
        tasks.run_daily_insights_scrape("http://scraper")
