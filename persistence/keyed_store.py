"""
Keyed Store

In-memory map with per-key exclusive sections. Backs lockout records,
rate-limit windows and refresh-token records.

Each key gets its own lock, so unrelated identifiers never contend. The
lock table is guarded by a short-lived global lock and entries are
reference counted, so the table only holds locks for keys that are
currently in use.

Usage:
    store = KeyedStore[LockoutRecord]("lockout")
    with store.locked("203.0.113.7:Mozilla/5.0"):
        record = store.get("203.0.113.7:Mozilla/5.0")
        ...
        store.set("203.0.113.7:Mozilla/5.0", record)
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Generic, Iterator, List, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreClosedError(RuntimeError):
    """Raised when a closed store is used."""
    pass


class _KeyLock:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refs = 0


class KeyedStore(Generic[T]):
    """
    Thread-safe keyed map with per-key exclusive sections.

    Read-modify-write sequences on one key must run inside
    ``locked(key)``; plain ``get``/``set``/``pop`` are individually atomic.
    """

    def __init__(self, name: str = "store") -> None:
        self.name = name
        self._data: Dict[str, T] = {}
        self._locks: Dict[str, _KeyLock] = {}
        self._lock_guard = threading.Lock()  # Protects _data and _locks
        self._closed = False

    # -------------------------------------------------------------------------
    # Exclusive sections
    # -------------------------------------------------------------------------

    @contextmanager
    def locked(self, key: str) -> Iterator[None]:
        """Hold the exclusive section for ``key``."""
        with self._lock_guard:
            if self._closed:
                raise StoreClosedError(f"{self.name} store is closed")
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.refs += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._lock_guard:
                entry.refs -= 1
                if entry.refs == 0:
                    self._locks.pop(key, None)

    # -------------------------------------------------------------------------
    # Map operations
    # -------------------------------------------------------------------------

    def get(self, key: str) -> Optional[T]:
        with self._lock_guard:
            return self._data.get(key)

    def set(self, key: str, value: T) -> None:
        with self._lock_guard:
            if self._closed:
                raise StoreClosedError(f"{self.name} store is closed")
            self._data[key] = value

    def pop(self, key: str) -> Optional[T]:
        with self._lock_guard:
            return self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock_guard:
            return list(self._data.keys())

    def snapshot(self) -> Dict[str, T]:
        """Shallow copy of the current contents."""
        with self._lock_guard:
            return dict(self._data)

    def __len__(self) -> int:
        with self._lock_guard:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock_guard:
            return key in self._data

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def sweep(self, is_expired: Callable[[T], bool]) -> int:
        """
        Remove every entry for which ``is_expired`` returns True.

        Each key is checked inside its own exclusive section, so a sweep
        never races a concurrent transition on the same key.

        Returns:
            Number of entries removed.
        """
        removed = 0
        for key in self.keys():
            with self.locked(key):
                value = self.get(key)
                if value is not None and is_expired(value):
                    self.pop(key)
                    removed += 1
        if removed:
            logger.debug(f"{self.name} sweep removed {removed} entries")
        return removed

    def close(self) -> None:
        """Drop all entries; further use raises StoreClosedError."""
        with self._lock_guard:
            self._closed = True
            self._data.clear()
        logger.info(f"{self.name} store closed")

    @property
    def closed(self) -> bool:
        return self._closed
