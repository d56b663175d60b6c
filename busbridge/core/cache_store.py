"""Key/value cache stores for issued credentials.

Two backends share the ``CacheStore`` protocol:

1. **SQLite** (``SQLiteCacheStore``): persistent, survives restarts, so a
   restarted bridge does not pay for a fresh exchange per partition.
2. **In-memory** (``InMemoryCacheStore``): volatile, suitable for tests
   and single-process deployments.

Both honour a per-key TTL; expired entries are invisible to ``get``.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class CacheStoreError(RuntimeError):
    """Raised when a cache backend cannot be read or written."""


@runtime_checkable
class CacheStore(Protocol):
    """Minimal get/set/expire primitives the credential manager relies on."""

    def get(self, key: str) -> str | None:
        """Return the stored value, or ``None`` if absent or expired."""
        ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store *value* under *key* for *ttl_seconds*."""
        ...

    def delete(self, key: str) -> None:
        """Remove *key* if present."""
        ...


class InMemoryCacheStore:
    """Thread-safe dict-backed store with per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires = entry
            if expires <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            self.delete(key)
            return
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for _, expires in self._entries.values() if expires > now)

    def __repr__(self) -> str:
        return f"InMemoryCacheStore(entries={len(self)})"


class SQLiteCacheStore:
    """SQLite-backed store; expired rows are skipped and purged lazily.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    clock:
        Wall-clock source in epoch seconds (injectable for tests).
    """

    def __init__(
        self, db_path: Path | str, clock: Callable[[], float] = time.time
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = threading.Lock()
        try:
            self._db = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._db.execute("PRAGMA journal_mode=WAL")
            self._db.execute(
                "CREATE TABLE IF NOT EXISTS cache ("
                "  key TEXT PRIMARY KEY,"
                "  value TEXT NOT NULL,"
                "  expires_at REAL NOT NULL"
                ")"
            )
            self._db.commit()
        except sqlite3.Error as exc:
            raise CacheStoreError(f"Cannot open cache at {self._db_path}: {exc}") from exc
        logger.info("SQLiteCacheStore: using %s", self._db_path)

    def get(self, key: str) -> str | None:
        try:
            with self._lock:
                row = self._db.execute(
                    "SELECT value, expires_at FROM cache WHERE key = ?", (key,)
                ).fetchone()
                if row is None:
                    return None
                if row[1] <= self._clock():
                    self._db.execute("DELETE FROM cache WHERE key = ?", (key,))
                    self._db.commit()
                    return None
                return row[0]
        except sqlite3.Error as exc:
            raise CacheStoreError(f"Cache read failed for {key}: {exc}") from exc

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            self.delete(key)
            return
        try:
            with self._lock:
                self._db.execute(
                    "INSERT OR REPLACE INTO cache (key, value, expires_at) VALUES (?, ?, ?)",
                    (key, value, self._clock() + ttl_seconds),
                )
                self._db.commit()
        except sqlite3.Error as exc:
            raise CacheStoreError(f"Cache write failed for {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            with self._lock:
                self._db.execute("DELETE FROM cache WHERE key = ?", (key,))
                self._db.commit()
        except sqlite3.Error as exc:
            raise CacheStoreError(f"Cache delete failed for {key}: {exc}") from exc

    def purge_expired(self) -> int:
        """Delete every expired row, returning how many were removed."""
        try:
            with self._lock:
                cur = self._db.execute(
                    "DELETE FROM cache WHERE expires_at <= ?", (self._clock(),)
                )
                self._db.commit()
                return cur.rowcount
        except sqlite3.Error as exc:
            raise CacheStoreError(f"Cache purge failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._db.close()

    def __enter__(self) -> SQLiteCacheStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SQLiteCacheStore(db_path={str(self._db_path)!r})"
