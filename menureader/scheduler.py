"""Scheduled maintenance jobs: history retention and pending-queue flush."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import MenuReaderConfig
    from .offline import OfflineManager
    from .storage import ImageCache, MenuStorage

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Runs storage housekeeping on cron schedules.

    Uses APScheduler for cron-based scheduling.
    """

    def __init__(
        self,
        config: MenuReaderConfig,
        storage: MenuStorage,
        offline_manager: OfflineManager | None = None,
        image_cache: ImageCache | None = None,
    ) -> None:
        """Initialize scheduler.

        Args:
            config: MenuReaderConfig instance.
            storage: History store the retention job prunes.
            offline_manager: Drains the pending queue; the flush job is only
                registered when this is given and an upload URL is set.
            image_cache: Expired entries are purged by the retention job.

        Raises:
            ImportError: If apscheduler is not installed.
        """
        try:
            from apscheduler.schedulers.asyncio import AsyncIOScheduler
            from apscheduler.triggers.cron import CronTrigger
        except ImportError:
            raise ImportError(
                "apscheduler が必要です: pip install apscheduler"
            ) from None

        self._config = config
        self._storage = storage
        self._offline = offline_manager
        self._image_cache = image_cache
        self._scheduler = AsyncIOScheduler()
        self._CronTrigger = CronTrigger
        self._running = False

    def setup_jobs(self) -> None:
        """Register scheduled jobs based on config."""
        schedule = self._config.storage.cleanup_schedule
        self._scheduler.add_job(
            self._job_evict_old,
            trigger=self._parse_cron(schedule),
            id="evict_old",
            name="古い履歴の削除",
            replace_existing=True,
        )
        logger.info("履歴削除ジョブ登録: %s", schedule)

        if self._offline is not None and self._config.sync.upload_url:
            schedule = self._config.sync.flush_schedule
            self._scheduler.add_job(
                self._job_flush_pending,
                trigger=self._parse_cron(schedule),
                id="flush_pending",
                name="未送信データのアップロード",
                replace_existing=True,
            )
            logger.info("アップロードジョブ登録: %s", schedule)

    def start(self) -> None:
        """Start the scheduler."""
        self.setup_jobs()
        self._scheduler.start()
        self._running = True
        logger.info("スケジューラー開始")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("スケジューラー停止")

    @property
    def running(self) -> bool:
        return self._running

    def get_jobs(self) -> list[dict]:
        """Return info about scheduled jobs."""
        jobs = []
        for job in self._scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": str(next_run) if next_run else None,
            })
        return jobs

    def _parse_cron(self, expr: str):
        """Parse a cron expression into a CronTrigger."""
        parts = expr.split()
        if len(parts) == 5:
            return self._CronTrigger(
                minute=parts[0],
                hour=parts[1],
                day=parts[2],
                month=parts[3],
                day_of_week=parts[4],
            )
        raise ValueError(f"無効なcron式: {expr}")

    async def _job_evict_old(self) -> None:
        logger.info("古い履歴の削除を実行中...")
        try:
            removed = self._storage.evict_old(self._config.storage.retention_days)
            if removed:
                logger.info("履歴 %d 件を削除しました", removed)
            if self._image_cache is not None:
                self._image_cache.clear_expired()
        except Exception:
            logger.exception("履歴削除ジョブでエラーが発生しました")

    async def _job_flush_pending(self) -> None:
        logger.info("未送信データのアップロードを実行中...")
        try:
            report = await self._offline.process_queue()
            logger.info(
                "アップロード完了: %d 件成功, %d 件失敗",
                report.uploaded,
                report.failed,
            )
        except Exception:
            logger.exception("アップロードジョブでエラーが発生しました")
