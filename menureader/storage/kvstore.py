"""JSON key-value store on top of SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from ..exceptions import StorageError
from .schema import ensure_schema

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Manages the kv_store table.

    Values are JSON documents. Every write serialises its values first and
    then commits them in a single transaction, so a value that cannot be
    serialised leaves the stored data untouched.
    """

    def __init__(self, db_path: str | Path = "~/.config/menureader/menureader.db") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = ensure_schema(self._db_path)
        return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            logger.warning("Corrupt value for key %s: %s", key, e)
            return default

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, values: dict[str, Any]) -> None:
        """Write several keys atomically.

        Raises:
            StorageError: If a value cannot be serialised or the write fails.
        """
        try:
            encoded = [
                (key, json.dumps(value, ensure_ascii=False))
                for key, value in values.items()
            ]
        except (TypeError, ValueError) as e:
            raise StorageError(f"データをシリアライズできません: {e}") from e

        with self._lock:
            conn = self._get_conn()
            try:
                with conn:
                    conn.executemany(
                        """INSERT INTO kv_store (key, value, updated_at)
                           VALUES (?, ?, datetime('now'))
                           ON CONFLICT(key) DO UPDATE SET
                               value = excluded.value,
                               updated_at = excluded.updated_at""",
                        encoded,
                    )
            except sqlite3.Error as e:
                raise StorageError(f"データベースへの書き込みに失敗しました: {e}") from e

    def delete(self, key: str) -> bool:
        with self._lock:
            conn = self._get_conn()
            with conn:
                cur = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        return cur.rowcount > 0

    def keys(self) -> list[str]:
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT key FROM kv_store ORDER BY key"
            ).fetchall()
        return [r["key"] for r in rows]

    def size_bytes(self, key: str | None = None) -> int:
        """Return the encoded size of one value, or of all values."""
        with self._lock:
            conn = self._get_conn()
            if key is None:
                row = conn.execute(
                    "SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) AS n FROM kv_store"
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) AS n "
                    "FROM kv_store WHERE key = ?",
                    (key,),
                ).fetchone()
        return int(row["n"])
