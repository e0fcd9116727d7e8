"""Menu history, pending-upload queue and storage quota."""

from __future__ import annotations

import json
import logging
import math
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..exceptions import RecordNotFoundError, StorageError
from ..models import PersistedMenuRecord
from .kvstore import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "menuHistory"
PENDING_KEY = "pendingUploadQueue"
QUOTA_KEY = "maxStorageLimit"

DEFAULT_QUOTA_BYTES = 100 * 1024 * 1024


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _encoded_size(records: list[PersistedMenuRecord]) -> int:
    try:
        encoded = json.dumps([r.to_dict() for r in records], ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise StorageError(f"データをシリアライズできません: {e}") from e
    return len(encoded.encode("utf-8"))


@dataclass(frozen=True)
class Page:
    items: list[PersistedMenuRecord]
    page: int
    size: int
    total: int

    @property
    def has_next(self) -> bool:
        return (self.page + 1) * self.size < self.total


class MenuStorage:
    """Durable menu history with an offline queue and a size ceiling.

    All read-modify-write cycles run under one re-entrant lock, so
    concurrent ``save`` calls from different threads never lose entries.
    Favorites are never evicted, neither by :meth:`evict_old` nor by quota
    enforcement.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_items: int | None = None,
        default_quota: int = DEFAULT_QUOTA_BYTES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_items is not None and max_items < 1:
            raise ValueError("max_items must be positive")
        if default_quota <= 0:
            raise ValueError("default_quota must be positive")
        self._store = store
        self._max_items = max_items
        self._default_quota = default_quota
        self._clock = clock or _utcnow
        self._lock = threading.RLock()

    # --- helpers ---------------------------------------------------------

    def _load(self, key: str) -> list[PersistedMenuRecord]:
        records: list[PersistedMenuRecord] = []
        for raw in self._store.get(key, []) or []:
            try:
                records.append(PersistedMenuRecord.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable %s entry: %s", key, e)
        return records

    def _write(
        self,
        history: list[PersistedMenuRecord] | None = None,
        pending: list[PersistedMenuRecord] | None = None,
    ) -> None:
        values: dict[str, Any] = {}
        if history is not None:
            values[HISTORY_KEY] = [r.to_dict() for r in history]
        if pending is not None:
            values[PENDING_KEY] = [r.to_dict() for r in pending]
        if values:
            self._store.set_many(values)

    def _apply_cap(
        self, history: list[PersistedMenuRecord]
    ) -> list[PersistedMenuRecord]:
        if self._max_items is None or len(history) <= self._max_items:
            return history
        excess = len(history) - self._max_items
        kept = list(history)
        # oldest entries sit at the end
        for record in reversed(history):
            if excess == 0:
                break
            if not record.is_favorite:
                kept.remove(record)
                excess -= 1
        return kept

    def _other_bytes(self) -> int:
        return self._store.size_bytes() - self._store.size_bytes(HISTORY_KEY)

    def _fit_quota(
        self,
        history: list[PersistedMenuRecord],
        other_bytes: int,
        protect: uuid.UUID | None = None,
    ) -> list[PersistedMenuRecord]:
        """Shrink the retention window until ``history`` fits the quota."""
        quota = self.quota
        size = other_bytes + _encoded_size(history)
        if size <= quota:
            return history

        now = self._clock()
        candidates = [r for r in history if not r.is_favorite and r.id != protect]
        if not candidates:
            logger.warning(
                "Storage quota exceeded but nothing is evictable",
                extra={"size": size, "quota": quota},
            )
            return history

        oldest = min(r.scan_date for r in candidates)
        window = max(math.ceil((now - oldest).total_seconds() / 86400), 1)
        while size > quota and window > 0:
            window = min(window - 1, int(window * quota / size))
            window = max(window, 0)
            cutoff = now - timedelta(days=window)
            history = [
                r
                for r in history
                if r.is_favorite or r.id == protect or r.scan_date >= cutoff
            ]
            size = other_bytes + _encoded_size(history)
            logger.info(
                "Tightened retention window",
                extra={"days": window, "size": size, "quota": quota},
            )

        if size > quota:
            logger.warning(
                "Storage quota still exceeded after eviction",
                extra={"size": size, "quota": quota},
            )
        return history

    # --- history ---------------------------------------------------------

    def save(self, record: PersistedMenuRecord, offline: bool = False) -> None:
        """Prepend ``record`` to the history.

        When ``offline`` is true the record is also added to the pending
        upload queue in the same transaction; an id already queued is not
        queued twice.

        Raises:
            StorageError: If the record cannot be serialised or written.
        """
        with self._lock:
            history = [r for r in self._load(HISTORY_KEY) if r.id != record.id]
            history.insert(0, record)
            history = self._apply_cap(history)

            pending = None
            if offline:
                pending = self._load(PENDING_KEY)
                if not any(p.id == record.id for p in pending):
                    pending.append(record)

            other = self._other_bytes()
            if pending is not None:
                other += _encoded_size(pending)
                other -= self._store.size_bytes(PENDING_KEY)
            history = self._fit_quota(history, other, protect=record.id)
            self._write(history, pending)
        logger.debug(
            "Saved menu record",
            extra={"id": str(record.id), "items": len(record.items), "offline": offline},
        )

    def load_history(self) -> list[PersistedMenuRecord]:
        """Return every record, most recent first."""
        with self._lock:
            return self._load(HISTORY_KEY)

    def get(self, record_id: uuid.UUID | str) -> PersistedMenuRecord | None:
        target = str(record_id)
        for record in self.load_history():
            if str(record.id) == target:
                return record
        return None

    def delete(self, record_id: uuid.UUID | str) -> bool:
        """Remove a record from the history. The pending queue is untouched."""
        target = str(record_id)
        with self._lock:
            history = self._load(HISTORY_KEY)
            kept = [r for r in history if str(r.id) != target]
            if len(kept) == len(history):
                return False
            self._write(history=kept)
        return True

    def toggle_favorite(self, record_id: uuid.UUID | str) -> bool:
        """Flip the favorite flag and return the new value.

        Raises:
            RecordNotFoundError: If no record has ``record_id``.
        """
        target = str(record_id)
        with self._lock:
            history = self._load(HISTORY_KEY)
            for record in history:
                if str(record.id) == target:
                    record.is_favorite = not record.is_favorite
                    self._write(history=history)
                    return record.is_favorite
        raise RecordNotFoundError(target)

    def paginate(self, page: int, size: int) -> Page:
        """Return the 0-based ``page`` of the history."""
        if page < 0:
            raise ValueError("page must be >= 0")
        if size < 1:
            raise ValueError("size must be positive")
        history = self.load_history()
        start = page * size
        return Page(
            items=history[start : start + size],
            page=page,
            size=size,
            total=len(history),
        )

    def clear_history(self) -> None:
        with self._lock:
            self._write(history=[])

    def evict_old(self, keep_days: int) -> int:
        """Remove non-favorite records older than ``keep_days`` days.

        Returns:
            The number of records removed.
        """
        if keep_days < 0:
            raise ValueError("keep_days must be >= 0")
        cutoff = self._clock() - timedelta(days=keep_days)
        with self._lock:
            history = self._load(HISTORY_KEY)
            kept = [r for r in history if r.is_favorite or r.scan_date >= cutoff]
            removed = len(history) - len(kept)
            if removed:
                self._write(history=kept)
        logger.info("Evicted %d old menu records", removed)
        return removed

    # --- pending queue ---------------------------------------------------

    def enqueue_pending(self, record: PersistedMenuRecord) -> bool:
        """Queue ``record`` for upload. Returns False if it was already queued."""
        with self._lock:
            pending = self._load(PENDING_KEY)
            if any(p.id == record.id for p in pending):
                return False
            pending.append(record)
            self._write(pending=pending)
        return True

    def dequeue_pending(self, record_id: uuid.UUID | str) -> bool:
        target = str(record_id)
        with self._lock:
            pending = self._load(PENDING_KEY)
            kept = [p for p in pending if str(p.id) != target]
            if len(kept) == len(pending):
                return False
            self._write(pending=kept)
        return True

    def pending_queue(self) -> list[PersistedMenuRecord]:
        with self._lock:
            return self._load(PENDING_KEY)

    def clear_pending(self) -> None:
        with self._lock:
            self._write(pending=[])

    # --- quota -----------------------------------------------------------

    def storage_size_bytes(self) -> int:
        return self._store.size_bytes()

    @property
    def quota(self) -> int:
        """The stored ceiling, or ``default_quota`` until one is set."""
        value = self._store.get(QUOTA_KEY)
        if isinstance(value, int) and value > 0:
            return value
        return self._default_quota

    def set_quota(self, limit_bytes: int) -> int:
        """Store a new ceiling and evict until the history fits it.

        Returns:
            The number of records evicted.
        """
        if limit_bytes <= 0:
            raise ValueError("limit_bytes must be positive")
        with self._lock:
            self._store.set(QUOTA_KEY, int(limit_bytes))
            history = self._load(HISTORY_KEY)
            fitted = self._fit_quota(history, self._other_bytes())
            removed = len(history) - len(fitted)
            if removed:
                self._write(history=fitted)
        return removed
