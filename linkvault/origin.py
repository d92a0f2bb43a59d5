"""Per-origin durable key-value storage.

An origin is one sqlite file holding a flat ``kv`` table with a fixed byte
quota. Every open handle on the same file is registered so that a write made
through one handle is announced to the others as a :class:`StorageEvent`,
the way a browser fires ``storage`` events in every other tab of an origin.
"""

from __future__ import annotations

import sqlite3
import threading
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import QuotaExceededError, StorageError
from .log import get_logger

log = get_logger(__name__)

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class StorageEvent:
    key: Optional[str]  # None when the whole origin was cleared
    old_value: Optional[str]
    new_value: Optional[str]
    origin: str


Listener = Callable[[StorageEvent], None]

_registry_lock = threading.Lock()
_registry: Dict[str, "weakref.WeakSet[OriginStorage]"] = {}


def _entry_size(key: str, value: str) -> int:
    """UTF-8 bytes a key/value pair occupies against the quota."""
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class OriginStorage:
    def __init__(self, db_path: Path | str, *, quota_bytes: int = 5 * 1024 * 1024):
        self.db_path = Path(db_path)
        self.quota_bytes = max(0, int(quota_bytes))
        self.conn: sqlite3.Connection | None = None
        self._listeners: List[Listener] = []

    def __enter__(self) -> "OriginStorage":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def origin(self) -> str:
        return str(self.db_path.expanduser().resolve())

    def open(self) -> None:
        if self.conn is not None:
            return
        path = self.db_path.expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(path, isolation_level=None, timeout=5.0)
        self.conn.execute("PRAGMA busy_timeout = 5000")
        self._init_schema()
        with _registry_lock:
            _registry.setdefault(self.origin, weakref.WeakSet()).add(self)

    def close(self) -> None:
        if self.conn is None:
            return
        with _registry_lock:
            peers = _registry.get(self.origin)
            if peers is not None:
                peers.discard(self)
                if not peers:
                    _registry.pop(self.origin, None)
        self.conn.close()
        self.conn = None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def get(self, key: str) -> Optional[str]:
        row = self._conn().execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return None if row is None else row[0]

    def keys(self) -> List[str]:
        return [r[0] for r in self._conn().execute("SELECT key FROM kv ORDER BY key")]

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, items: Mapping[str, str]) -> None:
        """Write several keys in one transaction; nothing is written if the quota would be exceeded."""
        if not items:
            return
        conn = self._conn()
        changes: List[Tuple[str, Optional[str], str]] = []
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StorageError(f"cannot write {', '.join(items)}: {e}") from e
        try:
            used = self._used_bytes()
            for key, value in items.items():
                old = self.get(key)
                if old is not None:
                    used -= _entry_size(key, old)
                used += _entry_size(key, value)
                if used > self.quota_bytes:
                    raise QuotaExceededError(key, used, self.quota_bytes)
                changes.append((key, old, value))
            conn.executemany(
                "INSERT INTO kv(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                [(k, v) for k, _old, v in changes],
            )
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback()
            raise StorageError(f"cannot write {', '.join(items)}: {e}") from e
        except BaseException:
            self._rollback()
            raise
        for key, old, value in changes:
            if old != value:
                self._broadcast(StorageEvent(key, old, value, self.origin))

    def remove(self, key: str) -> None:
        conn = self._conn()
        old = self.get(key)
        if old is None:
            return
        try:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(f"cannot remove {key}: {e}") from e
        self._broadcast(StorageEvent(key, old, None, self.origin))

    def remove_many(self, keys: Iterable[str]) -> None:
        for key in list(keys):
            self.remove(key)

    def clear(self) -> None:
        try:
            self._conn().execute("DELETE FROM kv")
        except sqlite3.Error as e:
            raise StorageError(f"cannot clear {self.db_path}: {e}") from e
        self._broadcast(StorageEvent(None, None, None, self.origin))

    def used_bytes(self, keys: Optional[Iterable[str]] = None) -> int:
        if keys is None:
            return self._used_bytes()
        total = 0
        for key in keys:
            value = self.get(key)
            if value is not None:
                total += _entry_size(key, value)
        return total

    def _used_bytes(self) -> int:
        row = self._conn().execute(
            "SELECT COALESCE(SUM(LENGTH(CAST(key AS BLOB)) + LENGTH(CAST(value AS BLOB))), 0) FROM kv"
        ).fetchone()
        return int(row[0] or 0)

    def _rollback(self) -> None:
        try:
            self._conn().execute("ROLLBACK")
        except sqlite3.Error as e:
            # sqlite already rolled back on its own (e.g. a failed COMMIT).
            log.debug("ROLLBACK on %s: %s", self.db_path, e)

    def _init_schema(self) -> None:
        conn = self._conn()
        conn.execute("CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        ver = int(conn.execute("PRAGMA user_version").fetchone()[0] or 0)
        if ver < SCHEMA_VERSION:
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    def _broadcast(self, event: StorageEvent) -> None:
        with _registry_lock:
            peers = [p for p in _registry.get(self.origin, ()) if p is not self]
        for peer in peers:
            peer._deliver(event)

    def _deliver(self, event: StorageEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception("Storage listener failed for key %r", event.key)

    def _conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise RuntimeError(f"origin storage is not open: {self.db_path}")
        return self.conn
