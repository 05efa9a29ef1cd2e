"""
Pluggable key/value persistence (SYNC-ONLY).

Schedules and execution states are stored as opaque byte documents under
string keys. The scheduler and state store never see how the bytes are
kept, so the same logic runs against process memory, a directory of
files or an embedded SQLite database.

Manifesto:
    - **Protocol-based:** duck typing via a runtime-checkable Protocol
    - **Atomic writes:** a ``set`` either lands completely or not at all
    - **Reads never throw for missing data:** ``get`` returns None
    - **Writes never fail silently:** backend errors surface as StorageError

Architecture:
    ::

        SchedulerService / StateStore
                    │
                    │ get / set / delete / keys
                    ▼
        ┌────────────────────────────────────┐
        │       KeyValueStore Protocol       │
        └────────────────────────────────────┘
             │               │              │
        ┌────▼─────┐   ┌─────▼──────┐  ┌────▼──────────┐
        │ Memory   │   │ File       │  │ SQLite        │
        │ (dict)   │   │ (tmp+rename)│ │ (sqlite3)     │
        └──────────┘   └────────────┘  └───────────────┘

Guardrails:
    - Record-level locking for read-modify-write lives in the callers
      (``record_lock``), so writers to different keys never block each other.

Tags:
    storage, protocol, key-value, sqlite, persistence, blockflow

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import os
import sqlite3
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable
from urllib.parse import quote, unquote

from blockflow.core.errors import StorageError
from blockflow.core.logging import get_logger

if TYPE_CHECKING:
    from blockflow.core.settings import BlockflowSettings

logger = get_logger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal durable key/value interface.

    Implementations must make ``set`` atomic per key and be safe to call
    from multiple threads.
    """

    def get(self, key: str) -> bytes | None:
        """Return the stored bytes or None when the key is absent."""
        ...

    def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``. Raises StorageError on failure."""
        ...

    def delete(self, key: str) -> bool:
        """Delete ``key``. Returns True if something was removed."""
        ...

    def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with ``prefix`` in sorted order."""
        ...


class _LockEntry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.holders = 0


class _RecordLocks:
    """Per-key re-entrant locks for read-modify-write sequences.

    An entry lives only while some thread holds or waits for it, so the
    table does not grow with every execution id ever seen.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _LockEntry] = {}

    def __contains__(self, key: str) -> bool:
        with self._guard:
            return key in self._locks

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _LockEntry()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]


_record_locks = _RecordLocks()


def record_lock(key: str):
    """Serialize read-modify-write access to a single record.

    Example:
        >>> with record_lock("executions/exec_1"):
        ...     state = load(); mutate(state); save(state)
    """
    return _record_locks.hold(key)


class MemoryKeyValueStore:
    """Dict-backed store for tests and embedding. Nothing survives the process."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def __len__(self) -> int:
        return len(self._data)


class FileKeyValueStore:
    """One file per key under a root directory.

    Keys are percent-encoded into file names so ``/`` in a key does not
    create subdirectories. Writes go to a temp file in the same directory
    followed by ``os.replace``.
    """

    _SUFFIX = ".kv"

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}{self._SUFFIX}"

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("storage.read_failed", key=key, error=str(e))
            return None

    def set(self, key: str, value: bytes) -> None:
        path = self._path(key)
        try:
            fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=self._SUFFIX)
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(value)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write key {key}", cause=e).with_context(key=key) from e

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete key {key}", cause=e).with_context(key=key) from e

    def keys(self, prefix: str = "") -> list[str]:
        found = []
        for path in self.root.glob(f"*{self._SUFFIX}"):
            if path.name.startswith(".tmp-"):
                continue
            key = unquote(path.name[: -len(self._SUFFIX)])
            if key.startswith(prefix):
                found.append(key)
        return sorted(found)


class SQLiteKeyValueStore:
    """Single-table SQLite store.

    Example:
        >>> store = SQLiteKeyValueStore(":memory:")
        >>> store.set("schedules", b"{}")
        >>> store.get("schedules")
        b'{}'
    """

    def __init__(self, path: str | Path = ":memory:"):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            self._conn.commit()

    def get(self, key: str) -> bytes | None:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            logger.warning("storage.read_failed", key=key, error=str(e))
            return None
        return bytes(row[0]) if row else None

    def set(self, key: str, value: bytes) -> None:
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, sqlite3.Binary(value)),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write key {key}", cause=e).with_context(key=key) from e

    def delete(self, key: str) -> bool:
        try:
            with self._lock:
                cur = self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete key {key}", cause=e).with_context(key=key) from e
        return cur.rowcount > 0

    def keys(self, prefix: str = "") -> list[str]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT key FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                    (f"{escaped}%",),
                ).fetchall()
        except sqlite3.Error as e:
            logger.warning("storage.list_failed", prefix=prefix, error=str(e))
            return []
        return [r[0] for r in rows if r[0].startswith(prefix)]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def create_store(settings: BlockflowSettings | None = None) -> KeyValueStore:
    """Build the KeyValueStore selected by settings.

    Args:
        settings: Settings to use; defaults to :func:`get_settings`.
    """
    from blockflow.core.settings import StorageBackend, get_settings

    settings = settings or get_settings()
    backend = StorageBackend(settings.storage_backend)

    if backend == StorageBackend.MEMORY:
        return MemoryKeyValueStore()
    if backend == StorageBackend.FILE:
        return FileKeyValueStore(settings.storage_path)
    return SQLiteKeyValueStore(settings.storage_path)


__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "SQLiteKeyValueStore",
    "create_store",
    "record_lock",
]
