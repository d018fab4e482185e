"""
Behavioral Anomaly Rules

Table-driven mapping from extracted features to penalty points. Tuning a
threshold means editing a row here; fusion never inspects features.

A rule fires only when its gate feature has reached the gate minimum and
its feature is not neutral (None).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from trustcore.processors.features import FeatureSet
from trustcore.schemas.outputs import Signal


class Comparison(str, Enum):
    LT = "lt"
    GT = "gt"
    EQ = "eq"

    def holds(self, value: float, threshold: float) -> bool:
        if self is Comparison.LT:
            return value < threshold
        if self is Comparison.GT:
            return value > threshold
        return value == threshold


@dataclass(frozen=True)
class BehaviorRule:
    """One anomaly rule: ``feature <comparison> threshold`` → ``penalty``."""
    name: str
    family: str
    feature: str
    comparison: Comparison
    threshold: float
    penalty: int
    detail: str
    gate_feature: Optional[str] = None
    gate_min: float = 0.0

    def evaluate(self, features: FeatureSet) -> Optional[Signal]:
        if self.gate_feature is not None:
            gate = features.get(self.gate_feature)
            if gate is None or gate < self.gate_min:
                return None

        value = features.get(self.feature)
        if value is None or not self.comparison.holds(value, self.threshold):
            return None

        return Signal(
            name=self.name,
            score=self.penalty,
            detail=f"{self.detail} ({self.feature}={value:.2f})",
        )


# Minimum session age before rhythm rules apply
RHYTHM_MIN_SECONDS = 10.0

LT, GT, EQ = Comparison.LT, Comparison.GT, Comparison.EQ

BEHAVIOR_RULES = (
    # Keystroke dynamics
    BehaviorRule("keystroke_dwell_too_short", "keystroke", "dwell_mean", LT, 30.0, 30,
                 "Keys held shorter than humanly typical", "keystroke_count", 10),
    BehaviorRule("keystroke_dwell_too_long", "keystroke", "dwell_mean", GT, 300.0, 15,
                 "Keys held unusually long", "keystroke_count", 10),
    BehaviorRule("keystroke_flight_too_short", "keystroke", "flight_mean", LT, 50.0, 35,
                 "Inter-key gaps too short", "keystroke_count", 10),
    BehaviorRule("keystroke_timing_too_consistent", "keystroke", "dwell_std", LT, 10.0, 40,
                 "Keystroke timing too consistent", "keystroke_count", 10),
    BehaviorRule("typing_speed_too_fast", "keystroke", "typing_wpm", GT, 120.0, 25,
                 "Typing speed above human range", "keystroke_count", 10),

    # Pointer dynamics (velocity in px/s)
    BehaviorRule("pointer_velocity_too_slow", "pointer", "velocity_mean", LT, 50.0, 25,
                 "Pointer moves too slowly", "pointer_count", 20),
    BehaviorRule("pointer_velocity_too_fast", "pointer", "velocity_mean", GT, 5000.0, 30,
                 "Pointer moves unrealistically fast", "pointer_count", 20),
    BehaviorRule("pointer_too_linear", "pointer", "angle_change_mean", LT, 5.0, 35,
                 "Pointer path too linear", "pointer_count", 20),
    BehaviorRule("pointer_no_curves", "pointer", "acceleration_mean", LT, 10.0, 20,
                 "Pointer shows no acceleration", "pointer_count", 20),
    BehaviorRule("pointer_too_smooth", "pointer", "velocity_std", LT, 50.0, 25,
                 "Pointer speed too smooth", "pointer_count", 20),

    # Click cadence
    BehaviorRule("click_timing_too_consistent", "click", "click_interval_std", LT, 10.0, 35,
                 "Click intervals too regular", "click_count", 3),
    BehaviorRule("rapid_clicks", "click", "rapid_click_fraction", GT, 0.5, 30,
                 "Most clicks under 100 ms apart", "click_count", 3),

    # Session rhythm
    BehaviorRule("no_scroll_activity", "rhythm", "scroll_count", EQ, 0.0, 20,
                 "No scrolling in an established session", "session_seconds", RHYTHM_MIN_SECONDS),
    BehaviorRule("unnaturally_perfect_typing", "rhythm", "error_rate", EQ, 0.0, 25,
                 "No corrections over many keystrokes", "keystroke_count", 51),
    BehaviorRule("error_rate_too_high", "rhythm", "error_rate", GT, 0.3, 15,
                 "Correction rate unusually high", "keystroke_count", 10),
    BehaviorRule("limited_interaction_diversity", "rhythm", "channel_count", LT, 2.0, 30,
                 "Fewer than two interaction channels", "session_seconds", RHYTHM_MIN_SECONDS),
    BehaviorRule("excessive_paste", "rhythm", "paste_count", GT, 3.0, 20,
                 "Repeated paste into form fields"),
)


def evaluate_rules(
    features: FeatureSet,
    rules: Iterable[BehaviorRule] = BEHAVIOR_RULES,
) -> List[Signal]:
    """All signals fired by ``rules`` for ``features``."""
    signals = []
    for rule in rules:
        signal = rule.evaluate(features)
        if signal is not None:
            signals.append(signal)
    return signals
