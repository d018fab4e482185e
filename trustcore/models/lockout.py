"""
Brute-Force Lockout State Machine

Per-identifier failed-attempt counter with a time-windowed reset and a
temporary lock.

States:
    Open(fail_count, window_reset_at) → Locked(lock_until) → Open(0, new window)

Transitions:
- failure: expired window resets the count; the 5th failure inside one
  window locks for 30 minutes
- success: clears the record
- while locked: attempts (failure or success) are rejected unchanged
- expired locks and windows are cleared lazily on access and by sweep()

Every transition for one identifier runs inside that identifier's
exclusive section in the keyed store.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from persistence.keyed_store import KeyedStore
from trustcore.schemas.outputs import LockoutStatus


logger = logging.getLogger(__name__)


DEFAULT_THRESHOLD = 5
DEFAULT_WINDOW = 15 * 60
DEFAULT_LOCK_DURATION = 30 * 60


@dataclass
class LockoutRecord:
    """Attempt history for one identifier."""
    fail_count: int = 0
    window_reset_at: float = 0.0
    locked: bool = False
    lock_until: float = 0.0

    def is_expired(self, now: float) -> bool:
        if self.locked:
            return now >= self.lock_until
        return now >= self.window_reset_at


class BruteForceLockout:
    """Lockout gate over an injectable keyed store."""

    def __init__(
        self,
        store: Optional[KeyedStore[LockoutRecord]] = None,
        threshold: int = DEFAULT_THRESHOLD,
        window_seconds: float = DEFAULT_WINDOW,
        lock_seconds: float = DEFAULT_LOCK_DURATION,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if threshold < 1:
            raise ValueError("Lockout threshold must be at least 1")
        self.store: KeyedStore[LockoutRecord] = store or KeyedStore("lockout")
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.lock_seconds = lock_seconds
        self.clock = clock

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def check(self, identifier: str) -> LockoutStatus:
        """Current lockout status; clears an expired record."""
        now = self.clock()
        with self.store.locked(identifier):
            return self._status(self._current(identifier, now))

    def is_locked(self, identifier: str) -> bool:
        return self.check(identifier).locked

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def record_attempt(self, identifier: str, success: bool) -> LockoutStatus:
        """Apply one authentication outcome."""
        now = self.clock()
        with self.store.locked(identifier):
            record = self._current(identifier, now)

            if record is not None and record.locked:
                logger.warning(f"Attempt rejected for locked identifier {identifier}")
                status = self._status(record)
                status.accepted = False
                return status

            if success:
                self.store.pop(identifier)
                return self._status(None)

            if record is None:
                record = LockoutRecord(fail_count=0, window_reset_at=now + self.window_seconds)

            record.fail_count += 1
            if record.fail_count >= self.threshold:
                record.locked = True
                record.lock_until = now + self.lock_seconds
                logger.warning(
                    f"Identifier {identifier} locked after {record.fail_count} failures "
                    f"until {record.lock_until:.0f}"
                )

            self.store.set(identifier, record)
            return self._status(record)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def sweep(self) -> int:
        """Remove expired locks and windows."""
        now = self.clock()
        return self.store.sweep(lambda record: record.is_expired(now))

    def close(self) -> None:
        self.store.close()

    # -------------------------------------------------------------------------
    # Helpers (caller holds the identifier's section)
    # -------------------------------------------------------------------------

    def _current(self, identifier: str, now: float) -> Optional[LockoutRecord]:
        record = self.store.get(identifier)
        if record is None:
            return None
        if record.is_expired(now):
            if record.locked:
                logger.info(f"Lock expired for {identifier}")
            self.store.pop(identifier)
            return None
        return record

    def _status(self, record: Optional[LockoutRecord]) -> LockoutStatus:
        if record is None:
            return LockoutStatus(locked=False, fail_count=0, attempts_left=self.threshold)
        if record.locked:
            return LockoutStatus(
                locked=True,
                fail_count=record.fail_count,
                attempts_left=0,
                lock_until=record.lock_until,
            )
        return LockoutStatus(
            locked=False,
            fail_count=record.fail_count,
            attempts_left=max(0, self.threshold - record.fail_count),
        )
