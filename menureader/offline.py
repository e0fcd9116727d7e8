"""Connectivity tracking and the offline upload queue."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Protocol

import httpx

from .api import ApiRequest, ResilientClient
from .exceptions import ApiError, ConfigurationError
from .models import PersistedMenuRecord
from .storage import MenuStorage

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks whether the network is reachable and notifies listeners on change."""

    def __init__(
        self,
        connected: bool = True,
        probe_url: str = "https://www.google.com/generate_204",
    ) -> None:
        self._connected = connected
        self._probe_url = probe_url
        self._listeners: list[ConnectivityListener] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    def add_listener(self, listener: ConnectivityListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ConnectivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        logger.info("Connectivity changed: %s", "online" if connected else "offline")
        for listener in list(self._listeners):
            listener(connected)

    async def probe(self, timeout: float = 5.0) -> bool:
        """Check reachability with a lightweight HTTP request and record it."""
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(self._probe_url)
            reachable = response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug("Connectivity probe failed: %s", e)
            reachable = False
        self.set_connected(reachable)
        return reachable


class Uploader(Protocol):
    async def upload(self, record: PersistedMenuRecord) -> None: ...


class HttpUploader:
    """POSTs a record's JSON document to a fixed URL."""

    def __init__(self, client: ResilientClient, url: str) -> None:
        if not url:
            raise ConfigurationError(missing=["MENUREADER_UPLOAD_URL"])
        self._client = client
        self._url = url

    async def upload(self, record: PersistedMenuRecord) -> None:
        await self._client.execute(
            ApiRequest(method="POST", url=self._url, json=record.to_dict())
        )


@dataclass
class FlushReport:
    uploaded: int = 0
    failed: int = 0
    remaining: int = 0


class OfflineManager:
    """Routes saves through the storage layer according to connectivity.

    Results created while offline are also queued for upload; when the
    monitor reports the network is back, the queue is drained through the
    uploader (if one is configured).
    """

    def __init__(
        self,
        storage: MenuStorage,
        monitor: ConnectivityMonitor | None = None,
        uploader: Uploader | None = None,
    ) -> None:
        self._storage = storage
        self._monitor = monitor or ConnectivityMonitor()
        self._uploader = uploader
        self._flush_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._monitor.add_listener(self._on_connectivity_change)

    @property
    def is_offline(self) -> bool:
        return not self._monitor.is_connected

    @property
    def monitor(self) -> ConnectivityMonitor:
        return self._monitor

    def save_result(self, record: PersistedMenuRecord) -> None:
        offline = self.is_offline
        self._storage.save(record, offline=offline)
        if offline:
            logger.info("Saved offline; queued %s for upload", record.id)

    def pending_count(self) -> int:
        return len(self._storage.pending_queue())

    def clear_queue(self) -> None:
        self._storage.clear_pending()

    def status_description(self) -> str:
        pending = self.pending_count()
        if self.is_offline:
            return f"オフライン (未送信: {pending}件)"
        if pending:
            return f"オンライン (未送信: {pending}件)"
        return "オンライン"

    def _on_connectivity_change(self, connected: bool) -> None:
        if not connected or self._uploader is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; queue will be flushed later")
            return
        task = loop.create_task(self.process_queue())
        self._tasks.add(task)
        task.add_done_callback(self._flush_done)

    def _flush_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Automatic queue flush failed", exc_info=task.exception())

    async def process_queue(self) -> FlushReport:
        """Upload every pending record, removing each one that succeeds.

        Records that fail stay queued for the next attempt.

        Raises:
            ConfigurationError: If no uploader is configured.
        """
        if self._uploader is None:
            raise ConfigurationError(
                "アップロード先が設定されていません", missing=["MENUREADER_UPLOAD_URL"]
            )

        report = FlushReport()
        async with self._flush_lock:
            if self.is_offline:
                report.remaining = self.pending_count()
                return report
            for record in self._storage.pending_queue():
                try:
                    await self._uploader.upload(record)
                except ApiError as e:
                    logger.warning("Upload failed for %s: %s", record.id, e)
                    report.failed += 1
                    continue
                self._storage.dequeue_pending(record.id)
                report.uploaded += 1
            report.remaining = self.pending_count()
        logger.info(
            "Processed pending queue",
            extra={"uploaded": report.uploaded, "failed": report.failed},
        )
        return report
