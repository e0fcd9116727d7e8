"""Dish image search results cached in SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from ..config import DEFAULT_DB_PATH
from ..exceptions import StorageError
from ..models import DishImage
from .schema import ensure_schema

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_DAYS = 7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _stamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")


class ImageCache:
    """Caches image search results per query so known dishes skip the API.

    Entries older than ``max_age_days`` are treated as misses and removed by
    :meth:`clear_expired`.
    """

    def __init__(
        self,
        db_path: str | Path = DEFAULT_DB_PATH,
        *,
        max_age_days: int = DEFAULT_MAX_AGE_DAYS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_age_days < 0:
            raise ValueError("max_age_days must be >= 0")
        self._db_path = db_path
        self._max_age = timedelta(days=max_age_days)
        self._clock = clock or _utcnow
        self._conn: sqlite3.Connection | None = None

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = ensure_schema(self._db_path)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _cutoff(self) -> str:
        return _stamp(self._clock() - self._max_age)

    def get(self, query: str, count: int) -> list[DishImage] | None:
        """Return cached images for ``query``, or None on a miss.

        An entry cached for fewer results than ``count`` is a miss.
        """
        row = self._get_conn().execute(
            "SELECT requested, images_json FROM image_cache"
            " WHERE query = ? AND cached_at >= ?",
            (query, self._cutoff()),
        ).fetchone()
        if row is None or row["requested"] < count:
            return None
        try:
            images = [DishImage.from_dict(d) for d in json.loads(row["images_json"])]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable cache entry for %r: %s", query, e)
            self.invalidate(query)
            return None
        return images[:count]

    def put(self, query: str, count: int, images: list[DishImage]) -> None:
        """Insert or replace the cached results for ``query``."""
        try:
            payload = json.dumps([img.to_dict() for img in images], ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"画像キャッシュを保存できません: {e}") from e
        conn = self._get_conn()
        conn.execute(
            """INSERT INTO image_cache (query, requested, images_json, cached_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(query) DO UPDATE SET
                 requested=excluded.requested,
                 images_json=excluded.images_json,
                 cached_at=excluded.cached_at""",
            (query, count, payload, _stamp(self._clock())),
        )
        conn.commit()

    def invalidate(self, query: str) -> None:
        conn = self._get_conn()
        conn.execute("DELETE FROM image_cache WHERE query = ?", (query,))
        conn.commit()

    def clear(self) -> int:
        """Remove every entry. Returns the number removed."""
        conn = self._get_conn()
        removed = conn.execute("DELETE FROM image_cache").rowcount
        conn.commit()
        return removed

    def clear_expired(self) -> int:
        """Remove entries older than the maximum age. Returns the number removed."""
        conn = self._get_conn()
        removed = conn.execute(
            "DELETE FROM image_cache WHERE cached_at < ?", (self._cutoff(),)
        ).rowcount
        conn.commit()
        if removed:
            logger.info("Removed %d expired image cache entries", removed)
        return removed

    def count(self) -> int:
        row = self._get_conn().execute("SELECT COUNT(*) FROM image_cache").fetchone()
        return row[0]
