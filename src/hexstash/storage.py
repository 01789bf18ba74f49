"""Key-value substrates the chunked store writes to.

Both implementations are text-only and may enforce a quota measured in
characters of key + value, like a browser-hosted local store.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from hexstash.errors import QuotaExceeded, StorageError

_log = logging.getLogger(__name__)


@runtime_checkable
class StoragePort(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


def _entry_size(key: str, value: str) -> int:
    return len(key) + len(value)


class MemoryStorage:
    """Dict-backed store. ``quota`` of None or 0 means unlimited."""

    def __init__(self, quota: int | None = None) -> None:
        self.quota = quota or None
        self._items: dict[str, str] = {}
        self._used = 0

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    @property
    def used(self) -> int:
        return self._used

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"value for {key!r} is not text")
        old = self._items.get(key)
        needed = self._used + _entry_size(key, value)
        if old is not None:
            needed -= _entry_size(key, old)
        if self.quota is not None and needed > self.quota:
            raise QuotaExceeded(needed, self.quota)
        self._items[key] = value
        self._used = needed

    def remove(self, key: str) -> None:
        old = self._items.pop(key, None)
        if old is not None:
            self._used -= _entry_size(key, old)

    def keys(self) -> list[str]:
        return list(self._items)


# ── SQLite ─────────────────────────────────────────────────────────

_SCHEMA = "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"


class SqliteStorage:
    """Single-table SQLite store. Every ``set`` commits on its own."""

    def __init__(self, path: Path | str, quota: int | None = None) -> None:
        self.path = str(path)
        self.quota = quota or None
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            self._conn.execute(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"cannot open {self.path}: {e}") from e
        _log.debug("opened kv store at %s (quota=%s)", self.path, self.quota)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> SqliteStorage:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def used(self) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0) FROM kv"
            ).fetchone()
        return int(row[0])

    def get(self, key: str) -> str | None:
        with self._lock:
            try:
                row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"value for {key!r} is not text")
        with self._lock:
            try:
                if self.quota is not None:
                    c = self._conn.cursor()
                    c.execute(
                        "SELECT COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0) FROM kv WHERE key != ?",
                        (key,),
                    )
                    needed = c.fetchone()[0] + _entry_size(key, value)
                    if needed > self.quota:
                        raise QuotaExceeded(needed, self.quota)
                self._conn.execute(
                    "INSERT INTO kv (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, value),
                )
                self._conn.commit()
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e

    def remove(self, key: str) -> None:
        with self._lock:
            try:
                self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                self._conn.commit()
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e

    def keys(self) -> list[str]:
        with self._lock:
            try:
                rows = self._conn.execute("SELECT key FROM kv ORDER BY rowid").fetchall()
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e
        return [row[0] for row in rows]
