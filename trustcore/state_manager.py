"""
Session Registry

Thread-safe, in-memory "Hot Storage" index of live telemetry sessions and
the environment fingerprint first seen for each of them.

Sessions are created on first telemetry event or assessment, and removed
when ended explicitly, when idle past the TTL (sweep), or when the
registry is full (least recently active evicted first).

Usage:
    registry = SessionRegistry(idle_ttl=1800)
    session = registry.get_or_create("sess_123")
    # session is passed to TelemetryCollector.record(session, event)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from trustcore.processors.fingerprint import Fingerprint
from trustcore.processors.telemetry import TelemetrySession


logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Index of TelemetrySession objects keyed by session id.

    The registry only guards the index; each session guards its own
    buffers.
    """

    def __init__(
        self,
        idle_ttl: float = 30 * 60,
        max_sessions: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.idle_ttl = idle_ttl
        self.max_sessions = max_sessions
        self.clock = clock
        self._sessions: Dict[str, TelemetrySession] = {}
        self._fingerprints: Dict[str, Fingerprint] = {}
        self._store_lock = threading.Lock()

    def get(self, session_id: str) -> Optional[TelemetrySession]:
        with self._store_lock:
            return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> TelemetrySession:
        """
        Retrieve the session, creating it on first use.

        Note:
            A new session at capacity evicts the least recently active one.
        """
        with self._store_lock:
            session = self._sessions.get(session_id)
            if session is not None:
                return session

            if len(self._sessions) >= self.max_sessions:
                oldest = min(self._sessions.values(), key=lambda s: s.last_activity)
                self._drop(oldest.session_id)
                logger.warning(f"Session registry full, evicted {oldest.session_id}")

            now = self.clock()
            session = TelemetrySession(session_id=session_id, started_at=now, last_activity=now)
            self._sessions[session_id] = session
            logger.debug(f"Telemetry session created: {session_id}")
            return session

    def bind_fingerprint(self, session_id: str, fingerprint: Fingerprint) -> Optional[Fingerprint]:
        """
        Remember the first fingerprint seen for a session.

        Returns:
            The previously bound fingerprint, or None if this call bound it.
        """
        with self._store_lock:
            bound = self._fingerprints.get(session_id)
            if bound is None:
                self._fingerprints[session_id] = fingerprint
            return bound

    def end(self, session_id: str) -> bool:
        with self._store_lock:
            return self._drop(session_id)

    def sweep(self) -> int:
        """Remove sessions idle longer than the TTL."""
        cutoff = self.clock() - self.idle_ttl
        with self._store_lock:
            idle = [sid for sid, s in self._sessions.items() if s.last_activity < cutoff]
            for session_id in idle:
                self._drop(session_id)
        if idle:
            logger.info(f"Swept {len(idle)} idle telemetry sessions")
        return len(idle)

    def __len__(self) -> int:
        with self._store_lock:
            return len(self._sessions)

    def close(self) -> None:
        with self._store_lock:
            self._sessions.clear()
            self._fingerprints.clear()

    def _drop(self, session_id: str) -> bool:
        self._fingerprints.pop(session_id, None)
        return self._sessions.pop(session_id, None) is not None
