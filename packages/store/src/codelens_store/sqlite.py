"""SQLiteStore — local file-based store for single-host deployments.

Records survive a server restart, which the in-memory store cannot offer,
without running a Redis instance. Expiry is emulated with an ``expires_at``
column checked on every read; expired rows are purged on every write.

sqlite3 calls block, so each primitive runs in a worker thread via
asyncio.to_thread. A threading.Lock serializes access to the shared connection.

Schema:
  reviews — one row per review key holding the JSON-serialized record.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import time
from collections.abc import Callable

from codelens_store.base import DEFAULT_TTL_SECONDS, BaseStore

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS reviews (
    key         TEXT PRIMARY KEY,
    payload     TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reviews_expires ON reviews (expires_at);
"""


class SQLiteStore(BaseStore):
    """Stores review records in a local SQLite database file.

    The database file path defaults to `.codelens.db` in the current working
    directory. Configure via .codelens.yml: `store_path: /path/to/codelens.db`.
    """

    def __init__(
        self,
        db_path: str = ".codelens.db",
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._db_lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    async def _read(self, key: str) -> str | None:
        return await asyncio.to_thread(self._read_row, key)

    async def _write(self, key: str, payload: str) -> None:
        await asyncio.to_thread(self._write_row, key, payload)

    async def _remove(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete_row, key)

    def _read_row(self, key: str) -> str | None:
        with self._db_lock:
            now = self._clock()
            row = self._conn.execute("SELECT payload, expires_at FROM reviews WHERE key=?", (key,)).fetchone()
            if row is None:
                return None
            if row["expires_at"] <= now:
                self._conn.execute("DELETE FROM reviews WHERE key=?", (key,))
                self._conn.commit()
                return None
            self._conn.execute("UPDATE reviews SET expires_at=? WHERE key=?", (now + self.ttl_seconds, key))
            self._conn.commit()
            return row["payload"]

    def _write_row(self, key: str, payload: str) -> None:
        with self._db_lock:
            now = self._clock()
            self._delete_expired(now)
            self._conn.execute(
                """
                INSERT INTO reviews (key, payload, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET payload=excluded.payload, expires_at=excluded.expires_at
                """,
                (key, payload, now + self.ttl_seconds),
            )
            self._conn.commit()

    def _delete_row(self, key: str) -> bool:
        with self._db_lock:
            cursor = self._conn.execute("DELETE FROM reviews WHERE key=?", (key,))
            self._conn.commit()
            return cursor.rowcount > 0

    def _delete_expired(self, now: float) -> int:
        # Caller holds _db_lock and commits.
        cursor = self._conn.execute("DELETE FROM reviews WHERE expires_at <= ?", (now,))
        if cursor.rowcount:
            logger.debug("Purged %d expired review(s)", cursor.rowcount)
        return cursor.rowcount

    def purge_expired(self) -> int:
        """Delete every expired row. Returns the number of rows removed."""
        with self._db_lock:
            removed = self._delete_expired(self._clock())
            self._conn.commit()
            return removed

    def __len__(self) -> int:
        with self._db_lock:
            row = self._conn.execute("SELECT COUNT(*) FROM reviews WHERE expires_at > ?", (self._clock(),)).fetchone()
            return row[0]

    async def close(self) -> None:
        with self._db_lock:
            self._conn.close()
