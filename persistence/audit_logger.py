"""
Security Event Log

Append-only record of notable engine decisions.

Events are kept in a bounded in-memory log (newest retained) that serves
queries and statistics, and are queued for an optional Supabase sink.
Appending never fails the caller; sink delivery is retried by
flush_pending() and dropped with a warning after MAX_ATTEMPTS.

Schema:
    security_events (
        event_id   TEXT PRIMARY KEY,
        payload    JSONB,
        created_at TIMESTAMPTZ DEFAULT now()
    )
"""

from __future__ import annotations

import copy
import logging
import os
import threading
import time
import uuid
from collections import Counter, deque
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Sequence, Tuple

from supabase import create_client, Client

from trustcore.schemas.outputs import (
    EventStatistics,
    EventType,
    SecurityEvent,
    Severity,
    Signal,
)

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def write(self, event: SecurityEvent) -> None:
        ...


# =============================================================================
# Supabase Sink
# =============================================================================

class SupabaseEventSink:
    """Inserts security events into the Supabase `security_events` table."""

    TABLE_NAME = "security_events"

    def __init__(self, client: Client) -> None:
        self._client = client

    @classmethod
    def from_env(cls) -> Optional["SupabaseEventSink"]:
        """Sink from SUPABASE_URL/SUPABASE_KEY, or None when unconfigured."""
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_KEY")
        if not url or not key:
            logger.warning("Supabase credentials missing, security events kept in memory only")
            return None
        return cls(create_client(url, key))

    def write(self, event: SecurityEvent) -> None:
        self._client.table(self.TABLE_NAME).insert({
            "event_id": event.id,
            "payload": event.model_dump(mode="json", by_alias=True),
        }).execute()
        logger.debug(f"Security event inserted: {event.id}")


# =============================================================================
# Event Log
# =============================================================================

class SecurityEventLog:
    """
    In-memory security event log with best-effort external delivery.

    All writes are best-effort: errors are logged but never raised to
    the request that produced the event.
    """

    MAX_ATTEMPTS = 3
    MAX_PENDING = 1000

    def __init__(
        self,
        sink: Optional[EventSink] = None,
        max_events: int = 500,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sink = sink
        self.clock = clock
        self._events: Deque[SecurityEvent] = deque(maxlen=max_events)
        self._pending: Deque[Tuple[SecurityEvent, int]] = deque()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def append(
        self,
        event_type: EventType,
        severity: Severity,
        identifier_context: Optional[Dict[str, Any]] = None,
        signals: Optional[Sequence[Signal]] = None,
        snapshot: Optional[Dict[str, Any]] = None,
        details: str = "",
    ) -> Optional[SecurityEvent]:
        """Record an event. Returns None only if the event could not be built."""
        try:
            event = SecurityEvent(
                id=f"evt_{uuid.uuid4()}",
                timestamp=self.clock(),
                type=event_type,
                severity=severity,
                identifier_context=copy.deepcopy(dict(identifier_context or {})),
                signals=[s.model_copy(deep=True) for s in signals or []],
                snapshot=copy.deepcopy(dict(snapshot or {})),
                details=details,
            )
        except Exception as e:
            logger.error(f"Security event dropped, could not be built: {e}")
            return None

        with self._lock:
            self._events.append(event)
            if self.sink is not None:
                if len(self._pending) >= self.MAX_PENDING:
                    dropped, _ = self._pending.popleft()
                    logger.warning(f"Event delivery queue full, dropped {dropped.id}")
                self._pending.append((event, 0))

        level = logging.WARNING if severity in (Severity.HIGH, Severity.CRITICAL) else logging.INFO
        logger.log(level, f"[{severity.value}] {event_type.value}: {details}")
        return event.model_copy(deep=True)

    def flush_pending(self) -> int:
        """
        Deliver queued events to the sink.

        Returns:
            Number of events delivered.
        """
        if self.sink is None:
            return 0

        with self._lock:
            batch = list(self._pending)
            self._pending.clear()

        delivered = 0
        retry: List[Tuple[SecurityEvent, int]] = []
        for event, attempts in batch:
            try:
                self.sink.write(event)
                delivered += 1
            except Exception as e:
                attempts += 1
                if attempts >= self.MAX_ATTEMPTS:
                    logger.warning(f"Dropping security event {event.id} after {attempts} attempts: {e}")
                else:
                    logger.error(f"Security event delivery failed ({attempts}/{self.MAX_ATTEMPTS}): {e}")
                    retry.append((event, attempts))

        if retry:
            with self._lock:
                self._pending.extendleft(reversed(retry))
        return delivered

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def query(
        self,
        event_type: Optional[EventType] = None,
        severity: Optional[Severity] = None,
        since: Optional[float] = None,
        until: Optional[float] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SecurityEvent]:
        """Matching events, newest first."""
        with self._lock:
            events = list(self._events)

        matched = [
            e for e in reversed(events)
            if (event_type is None or e.type == event_type)
            and (severity is None or e.severity == severity)
            and (since is None or e.timestamp >= since)
            and (until is None or e.timestamp <= until)
        ]
        matched.sort(key=lambda e: e.timestamp, reverse=True)
        offset = max(0, offset)
        # Callers get copies; the retained events stay as recorded
        return [e.model_copy(deep=True) for e in matched[offset:offset + max(0, limit)]]

    def statistics(self, recent: int = 10) -> EventStatistics:
        with self._lock:
            events = list(self._events)

        identifiers = {
            e.identifier_context.get("identifier")
            for e in events
            if e.identifier_context.get("identifier")
        }
        newest_first = sorted(events, key=lambda e: e.timestamp, reverse=True)
        return EventStatistics(
            total=len(events),
            by_type=dict(Counter(e.type.value for e in events)),
            by_severity=dict(Counter(e.severity.value for e in events)),
            unique_identifiers=len(identifiers),
            recent=[e.model_copy(deep=True) for e in newest_first[:recent]],
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def close(self) -> None:
        """Final delivery attempt for queued events."""
        self.flush_pending()
