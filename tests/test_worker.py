"""
Tests for the arq worker configuration and the retry sweep job.
"""

from unittest.mock import AsyncMock, patch

import pytest

from patient_api import worker


def test_redis_settings_from_url(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "rediss://:s3cret@cache.internal:6380/0")

    settings = worker.get_redis_settings()

    assert settings.host == "cache.internal"
    assert settings.port == 6380
    assert settings.password == "s3cret"
    assert settings.ssl is True


def test_redis_settings_from_host(monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.setenv("REDIS_HOST", "redis")
    monkeypatch.setenv("REDIS_PORT", "6390")

    settings = worker.get_redis_settings()

    assert (settings.host, settings.port, settings.ssl) == ("redis", 6390, False)


def test_sweep_runs_every_two_hours():
    job = worker.WorkerSettings.cron_jobs[0]

    assert job.coroutine is worker.retry_stuck_ironsail_orders_task
    assert job.hour == set(range(0, 24, 2))
    assert job.minute == 0


@pytest.mark.asyncio
async def test_sweep_task_closes_session(db, monkeypatch):
    summary = {"total": 0, "succeeded": 0, "failed": 0, "stillRetrying": 0}
    monkeypatch.setattr(worker, "SessionLocal", lambda: db)

    with patch.object(
        worker.IronSailRetryService, "retry_stuck_orders", AsyncMock(return_value=summary)
    ) as sweep, patch.object(db, "close") as close:
        result = await worker.retry_stuck_ironsail_orders_task({})

    assert result == summary
    sweep.assert_awaited_once_with(min_age_minutes=0, limit=worker.RETRY_SWEEP_LIMIT)
    close.assert_called_once()
