"""
Telemetry Collector Unit Tests

Tests for TelemetryCollector event recording into per-session buffers.
Validates buffer bounds, counters, derived pointer kinematics and that
malformed events are dropped without raising.
"""

import pytest

from trustcore.processors.telemetry import (
    KEYSTROKE_CAPACITY,
    POINTER_CAPACITY,
    TelemetryCollector,
    TelemetrySession,
)
from trustcore.schemas.inputs import (
    KeyEvent,
    PointerEvent,
    PointerKind,
    TelemetryEvent,
    TelemetryKind,
)

from tests.conftest import key_event, pointer_event, simple_event, trap_event


@pytest.fixture
def collector():
    return TelemetryCollector()


@pytest.fixture
def session():
    return TelemetrySession(session_id="sess-1", started_at=1000.0)


# =============================================================================
# Buffer Tests
# =============================================================================

class TestBuffers:
    """Events land in the right buffer and buffers stay bounded."""

    def test_keystrokes_are_bounded(self, collector, session):
        for i in range(KEYSTROKE_CAPACITY + 50):
            collector.record(session, key_event(100, 120, i * 200.0), now=1001.0)

        assert len(session.keystrokes) == KEYSTROKE_CAPACITY
        # Oldest evicted first
        assert session.keystrokes[0].ts == 50 * 200.0
        assert session.event_count == KEYSTROKE_CAPACITY + 50

    def test_pointer_kinds_are_routed(self, collector, session):
        collector.record(session, pointer_event(1, 1, 10), now=1001.0)
        collector.record(session, pointer_event(1, 1, 20, PointerKind.CLICK), now=1001.0)
        collector.record(session, pointer_event(1, 1, 30, PointerKind.SCROLL), now=1001.0)

        assert len(session.moves) == 1
        assert len(session.clicks) == 1
        assert len(session.scrolls) == 1

    def test_moves_are_bounded(self, collector, session):
        for i in range(POINTER_CAPACITY + 10):
            collector.record(session, pointer_event(i, i, i * 16.0), now=1001.0)

        assert len(session.moves) == POINTER_CAPACITY


# =============================================================================
# Counter Tests
# =============================================================================

class TestCounters:
    """Backspaces, pastes, focus changes, traps and render time."""

    def test_backspace_classes_counted(self, collector, session):
        collector.record(session, key_event(90, 100, 100, "backspace"))
        collector.record(session, key_event(90, 100, 300, "Delete"))
        collector.record(session, key_event(90, 100, 500, "char"))

        assert session.backspace_count == 2

    def test_paste_and_focus(self, collector, session):
        collector.record(session, simple_event(TelemetryKind.PASTE))
        collector.record(session, simple_event(TelemetryKind.PASTE))
        collector.record(session, simple_event(TelemetryKind.FOCUS))

        assert session.paste_count == 2
        assert session.focus_changes == 1

    def test_trap_fields_deduplicated(self, collector, session):
        collector.record(session, trap_event("website"))
        collector.record(session, trap_event("website"))
        collector.record(session, trap_event("fax"))

        assert session.trap_fields_filled == {"website", "fax"}

    def test_render_sets_form_start(self, collector, session):
        assert session.form_started_at == 1000.0

        collector.record(session, simple_event(TelemetryKind.RENDER), now=1005.0)

        assert session.rendered_at == 1005.0
        assert session.form_started_at == 1005.0

    def test_last_activity_updated(self, collector, session):
        collector.record(session, key_event(90, 100, 100), now=1042.0)
        assert session.last_activity == 1042.0


# =============================================================================
# Kinematics Tests
# =============================================================================

class TestKinematics:
    """Missing velocity/acceleration/angle are derived from the previous move."""

    def test_first_move_gets_zero_kinematics(self, collector, session):
        collector.record(session, pointer_event(0, 0, 0))

        move = session.moves[0]
        assert move.velocity == 0.0
        assert move.acceleration == 0.0
        assert move.angle == 0.0

    def test_velocity_in_pixels_per_second(self, collector, session):
        collector.record(session, pointer_event(0, 0, 0))
        collector.record(session, pointer_event(30, 40, 100))  # 50 px in 100 ms

        move = session.moves[1]
        assert move.velocity == pytest.approx(500.0)
        assert move.acceleration == pytest.approx(500.0)
        assert move.angle == pytest.approx(53.1301, abs=1e-3)

    def test_explicit_kinematics_kept(self, collector, session):
        collector.record(session, pointer_event(0, 0, 0))
        collector.record(session, pointer_event(5, 5, 10, velocity=123.0, acceleration=4.0, angle=90.0))

        move = session.moves[1]
        assert move.velocity == 123.0
        assert move.acceleration == 4.0
        assert move.angle == 90.0

    def test_zero_time_delta(self, collector, session):
        collector.record(session, pointer_event(0, 0, 50))
        collector.record(session, pointer_event(10, 0, 50))

        assert session.moves[1].velocity == 0.0


# =============================================================================
# Malformed Event Tests
# =============================================================================

class TestMalformedEvents:
    """Malformed events are dropped, never raised."""

    def test_key_kind_without_payload(self, collector, session):
        stored = collector.record(session, TelemetryEvent(kind=TelemetryKind.KEY))

        assert stored is False
        assert session.event_count == 0

    def test_trap_without_field_name(self, collector, session):
        assert collector.record(session, TelemetryEvent(kind=TelemetryKind.TRAP)) is False
        assert session.trap_fields_filled == set()

    def test_pointer_kind_without_payload(self, collector, session):
        assert collector.record(session, TelemetryEvent(kind=TelemetryKind.POINTER)) is False

    def test_non_finite_key_timing(self, collector, session):
        key = KeyEvent.model_construct(key_class="char", dwell_ms=float("nan"), flight_ms=0.0, ts=10.0)

        assert collector.record(session, TelemetryEvent(kind=TelemetryKind.KEY, key=key)) is False
        assert len(session.keystrokes) == 0

    def test_non_finite_pointer_kinematics(self, collector, session):
        pointer = PointerEvent.model_construct(
            x=1.0, y=2.0, ts=10.0, kind=PointerKind.MOVE,
            velocity=float("inf"), acceleration=None, angle=None,
        )

        assert collector.record(session, TelemetryEvent(kind=TelemetryKind.POINTER, pointer=pointer)) is False
        assert len(session.moves) == 0
