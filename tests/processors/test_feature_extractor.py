"""
Statistical Signal Extractor Unit Tests

Tests for FeatureSet computation: minimum sample gates, keystroke and
pointer statistics, click cadence and session rhythm counters.
"""

import pytest

from trustcore.processors.features import (
    MIN_CLICKS,
    MIN_KEYSTROKES,
    MIN_POINTER_MOVES,
    StatisticalSignalExtractor,
)
from trustcore.processors.telemetry import TelemetryCollector, TelemetrySession
from trustcore.schemas.inputs import KeyEvent, PointerEvent, PointerKind, TelemetryKind

from tests.conftest import (
    human_clicks,
    human_keystrokes,
    human_pointer_moves,
    key_event,
    pointer_event,
    simple_event,
)


@pytest.fixture
def extractor():
    return StatisticalSignalExtractor()


def session_with(events, started_at=1000.0):
    collector = TelemetryCollector()
    session = TelemetrySession(session_id="feat", started_at=started_at)
    for event in events:
        collector.record(session, event, now=started_at)
    return session


# =============================================================================
# Sample Gate Tests
# =============================================================================

class TestSampleGates:
    """Features stay neutral below their minimum sample counts."""

    def test_empty_session_is_neutral(self, extractor):
        features = extractor.extract(session_with([]), now=1000.0)

        assert features.keystroke_count == 0
        assert features.dwell_mean is None
        assert features.velocity_mean is None
        assert features.click_interval_std is None
        assert features.error_rate is None
        assert features.channel_count == 0
        assert features.session_seconds == 0.0

    def test_keystrokes_below_minimum(self, extractor):
        events = [key_event(20, 20, i * 40.0) for i in range(MIN_KEYSTROKES - 1)]
        features = extractor.extract(session_with(events), now=1000.0)

        assert features.keystroke_count == MIN_KEYSTROKES - 1
        assert features.dwell_mean is None
        assert features.typing_wpm is None

    def test_pointer_below_minimum(self, extractor):
        events = [pointer_event(i, 0, i * 10.0) for i in range(MIN_POINTER_MOVES - 1)]
        features = extractor.extract(session_with(events), now=1000.0)

        assert features.pointer_count == MIN_POINTER_MOVES - 1
        assert features.velocity_mean is None
        assert features.angle_change_mean is None

    def test_clicks_below_minimum(self, extractor):
        events = [pointer_event(0, 0, i * 50.0, PointerKind.CLICK) for i in range(MIN_CLICKS - 1)]
        features = extractor.extract(session_with(events), now=1000.0)

        assert features.click_interval_std is None


# =============================================================================
# Keystroke Feature Tests
# =============================================================================

class TestKeystrokeFeatures:

    def test_constant_timing(self, extractor):
        # 20 keys, 100 ms dwell, 150 ms flight, one key every 250 ms
        events = [key_event(100, 150 if i else 0, i * 250.0) for i in range(20)]
        features = extractor.extract(session_with(events), now=1000.0)

        assert features.dwell_mean == pytest.approx(100.0)
        assert features.dwell_std == pytest.approx(0.0)
        # First key's zero flight is excluded
        assert features.flight_mean == pytest.approx(150.0)
        # 20 keys over 4.75 s
        assert features.typing_wpm == pytest.approx(20 / 4.75 * 60 / 5)

    def test_human_typing_ranges(self, extractor):
        features = extractor.extract(session_with(human_keystrokes()), now=1000.0)

        assert 80 <= features.dwell_mean <= 140
        assert features.dwell_std > 10
        assert features.flight_mean > 50
        assert features.typing_wpm < 120
        assert features.error_rate == pytest.approx(4 / 60)


# =============================================================================
# Pointer Feature Tests
# =============================================================================

class TestPointerFeatures:

    def test_straight_line_has_no_turns(self, extractor):
        events = [pointer_event(10.0 * i, 0, 16.0 * i) for i in range(30)]
        features = extractor.extract(session_with(events), now=1000.0)

        assert features.angle_change_mean == pytest.approx(0.0)
        # 10 px every 16 ms
        assert features.velocity_mean == pytest.approx(625.0 * 29 / 30)

    def test_angle_change_wraps(self, extractor):
        angles = [179.0 if i % 2 == 0 else -179.0 for i in range(MIN_POINTER_MOVES)]
        events = [
            pointer_event(i, i, i * 10.0, velocity=100.0, acceleration=20.0, angle=a)
            for i, a in enumerate(angles)
        ]
        features = extractor.extract(session_with(events), now=1000.0)

        assert features.angle_change_mean == pytest.approx(2.0)

    def test_acceleration_is_absolute(self, extractor):
        events = [
            pointer_event(i, 0, i * 10.0, velocity=100.0, acceleration=-30.0 if i % 2 else 30.0, angle=0.0)
            for i in range(MIN_POINTER_MOVES)
        ]
        features = extractor.extract(session_with(events), now=1000.0)

        assert features.acceleration_mean == pytest.approx(30.0)

    def test_human_pointer_ranges(self, extractor):
        features = extractor.extract(session_with(human_pointer_moves()), now=1000.0)

        assert features.velocity_mean == pytest.approx(400.0)
        assert features.velocity_std > 50
        assert features.angle_change_mean == pytest.approx(37.0)


# =============================================================================
# Click & Rhythm Tests
# =============================================================================

class TestClickAndRhythm:

    def test_regular_rapid_clicks(self, extractor):
        events = [pointer_event(0, 0, i * 50.0, PointerKind.CLICK) for i in range(6)]
        features = extractor.extract(session_with(events), now=1000.0)

        assert features.click_interval_std == pytest.approx(0.0)
        assert features.rapid_click_fraction == pytest.approx(1.0)

    def test_human_clicks(self, extractor):
        features = extractor.extract(session_with(human_clicks()), now=1000.0)

        assert features.click_interval_std > 10
        assert features.rapid_click_fraction == 0.0

    def test_channel_count_and_session_age(self, extractor):
        events = [
            key_event(100, 100, 0),
            pointer_event(0, 0, 0),
            simple_event(TelemetryKind.PASTE),
            simple_event(TelemetryKind.FOCUS),
        ]
        features = extractor.extract(session_with(events), now=1030.0)

        assert features.channel_count == 2
        assert features.paste_count == 1
        assert features.focus_changes == 1
        assert features.session_seconds == pytest.approx(30.0)

    def test_unknown_feature_is_neutral(self, extractor):
        features = extractor.extract(session_with([]), now=1000.0)
        assert features.get("does_not_exist") is None


class TestNonFiniteSamples:
    """A NaN or inf sample in a buffer never neutralizes a channel."""

    def test_nan_keystroke_ignored(self, extractor):
        events = [key_event(5, 100, i * 105.0) for i in range(30)]
        session = session_with(events)
        session.keystrokes.append(
            KeyEvent.model_construct(key_class="char", dwell_ms=float("nan"), flight_ms=100.0, ts=4000.0)
        )

        features = extractor.extract(session, now=1030.0)

        assert features.keystroke_count == 30
        assert features.dwell_mean == pytest.approx(5.0)
        assert features.dwell_std == pytest.approx(0.0)

    def test_infinite_velocity_ignored(self, extractor):
        session = session_with(human_pointer_moves())
        session.moves.append(PointerEvent.model_construct(
            x=0.0, y=0.0, ts=9999.0, kind=PointerKind.MOVE,
            velocity=float("inf"), acceleration=0.0, angle=0.0,
        ))

        features = extractor.extract(session, now=1000.0)

        assert features.pointer_count == MIN_POINTER_MOVES * 2
        assert features.velocity_mean is not None
        assert features.velocity_mean < float("inf")
