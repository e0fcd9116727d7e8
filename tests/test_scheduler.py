"""Tests for MaintenanceScheduler."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from menureader.config import load_config
from menureader.offline import FlushReport
from menureader.scheduler import MaintenanceScheduler


@pytest.fixture
def config(monkeypatch):
    monkeypatch.delenv("MENUREADER_UPLOAD_URL", raising=False)
    return load_config(env_file=None)


def test_evict_job_always_registered(config):
    scheduler = MaintenanceScheduler(config, MagicMock())
    scheduler.setup_jobs()

    job_ids = {j["id"] for j in scheduler.get_jobs()}
    assert job_ids == {"evict_old"}
    assert scheduler.running is False


def test_flush_job_requires_upload_url_and_manager(config):
    manager = MagicMock()
    scheduler = MaintenanceScheduler(config, MagicMock(), manager)
    scheduler.setup_jobs()
    assert "flush_pending" not in {j["id"] for j in scheduler.get_jobs()}

    config.sync.upload_url = "https://sync.example.com/menus"
    scheduler = MaintenanceScheduler(config, MagicMock(), manager)
    scheduler.setup_jobs()
    assert {j["id"] for j in scheduler.get_jobs()} == {"evict_old", "flush_pending"}


def test_invalid_cron(config):
    config.storage.cleanup_schedule = "every day"
    scheduler = MaintenanceScheduler(config, MagicMock())
    with pytest.raises(ValueError, match="無効なcron式"):
        scheduler.setup_jobs()


@pytest.mark.asyncio
async def test_evict_job_uses_retention_days(config):
    config.storage.retention_days = 14
    storage = MagicMock()
    storage.evict_old.return_value = 3
    scheduler = MaintenanceScheduler(config, storage)

    await scheduler._job_evict_old()

    storage.evict_old.assert_called_once_with(14)


@pytest.mark.asyncio
async def test_evict_job_purges_expired_image_cache(config):
    storage = MagicMock()
    storage.evict_old.return_value = 0
    cache = MagicMock()
    scheduler = MaintenanceScheduler(config, storage, image_cache=cache)

    await scheduler._job_evict_old()

    cache.clear_expired.assert_called_once_with()


@pytest.mark.asyncio
async def test_evict_job_logs_errors(config, caplog):
    storage = MagicMock()
    storage.evict_old.side_effect = RuntimeError("disk gone")
    scheduler = MaintenanceScheduler(config, storage)

    await scheduler._job_evict_old()

    assert "履歴削除ジョブでエラーが発生しました" in caplog.text


@pytest.mark.asyncio
async def test_flush_job_processes_queue(config):
    manager = MagicMock()
    manager.process_queue = AsyncMock(return_value=FlushReport(uploaded=2))
    scheduler = MaintenanceScheduler(config, MagicMock(), manager)

    await scheduler._job_flush_pending()

    manager.process_queue.assert_awaited_once()
