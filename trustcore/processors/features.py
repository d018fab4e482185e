"""
Statistical Signal Extractor

Reduces a session's raw interaction buffers to scalar features.

Every feature is None (neutral) until its channel has the minimum sample
count; sample counts are always reported so rule gates can check them.

Features:
- Keystroke (>= 10 keys): dwell_mean, flight_mean, dwell_std, typing_wpm
- Pointer (>= 20 moves): velocity_mean, acceleration_mean, velocity_std,
  angle_change_mean
- Click cadence (>= 3 clicks): click_interval_std, rapid_click_fraction
- Session rhythm: scroll_count, error_rate, channel_count, paste_count,
  focus_changes, session_seconds
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from trustcore.processors.telemetry import TelemetrySession


logger = logging.getLogger(__name__)


# =============================================================================
# Minimum Sample Counts
# =============================================================================

MIN_KEYSTROKES = 10
MIN_POINTER_MOVES = 20
MIN_CLICKS = 3

# Inter-click interval below which a click counts as rapid
RAPID_CLICK_MS = 100.0

# Average word length used for the words-per-minute estimate
CHARS_PER_WORD = 5.0


@dataclass
class FeatureSet:
    """Scalar features for one session snapshot."""

    # Sample counts
    keystroke_count: int = 0
    pointer_count: int = 0
    click_count: int = 0
    scroll_count: int = 0

    # Keystroke dynamics
    dwell_mean: Optional[float] = None
    flight_mean: Optional[float] = None
    dwell_std: Optional[float] = None
    typing_wpm: Optional[float] = None

    # Pointer dynamics
    velocity_mean: Optional[float] = None
    acceleration_mean: Optional[float] = None
    velocity_std: Optional[float] = None
    angle_change_mean: Optional[float] = None

    # Click cadence
    click_interval_std: Optional[float] = None
    rapid_click_fraction: Optional[float] = None

    # Session rhythm
    error_rate: Optional[float] = None
    channel_count: int = 0
    paste_count: int = 0
    focus_changes: int = 0
    session_seconds: float = 0.0

    def get(self, name: str) -> Optional[float]:
        """Feature value by name; unknown names are neutral."""
        value = getattr(self, name, None)
        if value is None:
            return None
        return float(value)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _finite_samples(samples: List[Any], fields: Tuple[str, ...]) -> List[Any]:
    """Samples whose listed fields are all finite; missing fields count as 0."""
    if not samples:
        return samples
    values = np.array(
        [[getattr(s, name) or 0.0 for name in fields] for s in samples], dtype=float
    )
    keep = np.isfinite(values).all(axis=1)
    if keep.all():
        return samples
    logger.debug(f"Ignoring {int((~keep).sum())} non-finite samples")
    return [s for s, ok in zip(samples, keep) if ok]


# =============================================================================
# Extractor
# =============================================================================

class StatisticalSignalExtractor:
    """Computes a FeatureSet from a TelemetrySession."""

    def extract(self, session: TelemetrySession, now: Optional[float] = None) -> FeatureSet:
        now = time.time() if now is None else now

        with session.lock:
            keystrokes = list(session.keystrokes)
            moves = list(session.moves)
            clicks = list(session.clicks)
            scroll_count = len(session.scrolls)
            backspaces = session.backspace_count
            paste_count = session.paste_count
            focus_changes = session.focus_changes
            started_at = session.started_at

        # Non-finite samples would turn every reduction into NaN
        keystrokes = _finite_samples(keystrokes, ("dwell_ms", "flight_ms", "ts"))
        moves = _finite_samples(moves, ("x", "y", "ts", "velocity", "acceleration", "angle"))
        clicks = _finite_samples(clicks, ("ts",))

        features = FeatureSet(
            keystroke_count=len(keystrokes),
            pointer_count=len(moves),
            click_count=len(clicks),
            scroll_count=scroll_count,
            paste_count=paste_count,
            focus_changes=focus_changes,
            session_seconds=max(0.0, now - started_at),
        )

        features.channel_count = sum(
            1 for n in (len(keystrokes), len(moves), len(clicks), scroll_count) if n > 0
        )
        if keystrokes:
            features.error_rate = backspaces / len(keystrokes)

        self._keystroke_features(features, keystrokes)
        self._pointer_features(features, moves)
        self._click_features(features, clicks)

        return features

    # -------------------------------------------------------------------------
    # Channels
    # -------------------------------------------------------------------------

    def _keystroke_features(self, features: FeatureSet, keystrokes: List[Any]) -> None:
        if len(keystrokes) < MIN_KEYSTROKES:
            logger.debug(
                f"Keystroke features neutral: {len(keystrokes)}/{MIN_KEYSTROKES} samples"
            )
            return

        dwell = np.array([k.dwell_ms for k in keystrokes], dtype=float)
        features.dwell_mean = float(np.mean(dwell))
        features.dwell_std = float(np.std(dwell))

        # First key of a burst has no predecessor; only positive flights count
        flight = np.array([k.flight_ms for k in keystrokes if k.flight_ms > 0], dtype=float)
        if flight.size:
            features.flight_mean = float(np.mean(flight))

        span_s = (keystrokes[-1].ts - keystrokes[0].ts) / 1000.0
        if span_s > 0:
            features.typing_wpm = len(keystrokes) / span_s * 60.0 / CHARS_PER_WORD

    def _pointer_features(self, features: FeatureSet, moves: List[Any]) -> None:
        if len(moves) < MIN_POINTER_MOVES:
            logger.debug(
                f"Pointer features neutral: {len(moves)}/{MIN_POINTER_MOVES} samples"
            )
            return

        velocity = np.array([m.velocity or 0.0 for m in moves], dtype=float)
        acceleration = np.abs(np.array([m.acceleration or 0.0 for m in moves], dtype=float))
        angle = np.array([m.angle or 0.0 for m in moves], dtype=float)

        features.velocity_mean = float(np.mean(velocity))
        features.velocity_std = float(np.std(velocity))
        features.acceleration_mean = float(np.mean(acceleration))

        # Direction change wrapped to [0, 180] so -179 -> 179 is a 2 degree turn
        delta = np.abs(np.diff(angle)) % 360.0
        delta = np.where(delta > 180.0, 360.0 - delta, delta)
        features.angle_change_mean = float(np.mean(delta))

    def _click_features(self, features: FeatureSet, clicks: List[Any]) -> None:
        if len(clicks) < MIN_CLICKS:
            logger.debug(f"Click features neutral: {len(clicks)}/{MIN_CLICKS} samples")
            return

        intervals = np.diff(np.array([c.ts for c in clicks], dtype=float))
        features.click_interval_std = float(np.std(intervals))
        features.rapid_click_fraction = float(np.mean(intervals < RAPID_CLICK_MS))
