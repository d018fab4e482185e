"""
Telemetry Collector

Accumulates raw interaction events per browsing session into bounded
buffers. Recording never blocks on I/O and never raises: downstream
extraction is statistical and degrades gracefully with sparse or
malformed data.

Buffers (oldest evicted past capacity):
- keystrokes: 200
- pointer moves, clicks, scrolls: 100 each
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional, Set

from trustcore.schemas.inputs import (
    KeyEvent,
    PointerEvent,
    PointerKind,
    TelemetryEvent,
    TelemetryKind,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Buffer Capacities
# =============================================================================

KEYSTROKE_CAPACITY = 200
POINTER_CAPACITY = 100
CLICK_CAPACITY = 100
SCROLL_CAPACITY = 100

BACKSPACE_CLASSES = frozenset({"backspace", "delete"})


def _finite(*values: Optional[float]) -> bool:
    """True when every value is absent or a finite number."""
    return all(v is None or math.isfinite(v) for v in values)


# =============================================================================
# Session Buffer
# =============================================================================

@dataclass
class TelemetrySession:
    """
    Per-session interaction buffers and counters.

    ``started_at``, ``rendered_at`` and ``last_activity`` are server clock
    seconds; event ``ts`` values are client milliseconds.
    """

    session_id: str
    started_at: float = field(default_factory=time.time)
    rendered_at: Optional[float] = None
    last_activity: float = 0.0

    keystrokes: Deque[KeyEvent] = field(
        default_factory=lambda: deque(maxlen=KEYSTROKE_CAPACITY)
    )
    moves: Deque[PointerEvent] = field(
        default_factory=lambda: deque(maxlen=POINTER_CAPACITY)
    )
    clicks: Deque[PointerEvent] = field(
        default_factory=lambda: deque(maxlen=CLICK_CAPACITY)
    )
    scrolls: Deque[PointerEvent] = field(
        default_factory=lambda: deque(maxlen=SCROLL_CAPACITY)
    )

    trap_fields_filled: Set[str] = field(default_factory=set)
    paste_count: int = 0
    focus_changes: int = 0
    backspace_count: int = 0
    event_count: int = 0

    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.last_activity:
            self.last_activity = self.started_at

    @property
    def form_started_at(self) -> float:
        """Reference time for submit-speed checks."""
        return self.rendered_at if self.rendered_at is not None else self.started_at


# =============================================================================
# Collector
# =============================================================================

class TelemetryCollector:
    """
    Appends telemetry events to a session's buffers.

    Pointer moves without kinematics get velocity (px/s), acceleration
    (velocity delta) and angle (degrees) derived from the previous move.
    """

    def record(
        self,
        session: TelemetrySession,
        event: TelemetryEvent,
        now: Optional[float] = None,
    ) -> bool:
        """
        Record one event.

        Returns:
            True if the event was stored, False if it was dropped.
        """
        now = time.time() if now is None else now
        try:
            with session.lock:
                stored = self._apply(session, event, now)
                if stored:
                    session.event_count += 1
                    session.last_activity = now
                return stored
        except Exception as e:
            logger.debug(f"Dropped telemetry event for {session.session_id}: {e}")
            return False

    def _apply(self, session: TelemetrySession, event: TelemetryEvent, now: float) -> bool:
        kind = event.kind

        if kind == TelemetryKind.KEY:
            key = event.key
            if key is None or not _finite(key.dwell_ms, key.flight_ms, key.ts):
                return False
            session.keystrokes.append(key)
            if key.key_class.lower() in BACKSPACE_CLASSES:
                session.backspace_count += 1
            return True

        if kind == TelemetryKind.POINTER:
            pointer = event.pointer
            if pointer is None or not _finite(
                pointer.x, pointer.y, pointer.ts,
                pointer.velocity, pointer.acceleration, pointer.angle,
            ):
                return False
            if pointer.kind == PointerKind.CLICK:
                session.clicks.append(pointer)
            elif pointer.kind == PointerKind.SCROLL:
                session.scrolls.append(pointer)
            else:
                session.moves.append(self._with_kinematics(session, pointer))
            return True

        if kind == TelemetryKind.TRAP:
            if not event.field_name:
                return False
            session.trap_fields_filled.add(event.field_name)
            return True

        if kind == TelemetryKind.PASTE:
            session.paste_count += 1
            return True

        if kind == TelemetryKind.FOCUS:
            session.focus_changes += 1
            return True

        if kind == TelemetryKind.RENDER:
            session.rendered_at = now
            return True

        return False

    def _with_kinematics(self, session: TelemetrySession, pointer: PointerEvent) -> PointerEvent:
        """Fill in missing velocity/acceleration/angle from the previous move."""
        if (
            pointer.velocity is not None
            and pointer.acceleration is not None
            and pointer.angle is not None
        ):
            return pointer

        previous = session.moves[-1] if session.moves else None
        if previous is None:
            return pointer.model_copy(update={
                "velocity": pointer.velocity if pointer.velocity is not None else 0.0,
                "acceleration": pointer.acceleration if pointer.acceleration is not None else 0.0,
                "angle": pointer.angle if pointer.angle is not None else 0.0,
            })

        dx = pointer.x - previous.x
        dy = pointer.y - previous.y
        dt_ms = pointer.ts - previous.ts
        distance = math.hypot(dx, dy)

        velocity = pointer.velocity
        if velocity is None:
            velocity = distance / dt_ms * 1000.0 if dt_ms > 0 else 0.0

        acceleration = pointer.acceleration
        if acceleration is None:
            acceleration = velocity - (previous.velocity or 0.0)

        angle = pointer.angle
        if angle is None:
            angle = math.degrees(math.atan2(dy, dx))

        return pointer.model_copy(update={
            "velocity": velocity,
            "acceleration": acceleration,
            "angle": angle,
        })
