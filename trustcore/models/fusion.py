"""
Trust Fusion Engine

Combines honeypot, environment and behavioral signals into one decision.

Canonical direction is BOT CONFIDENCE: every signal carries penalty
points, and ``bot_confidence = clamp(sum of family totals, 0, 100)``.
The published trust score is its inverse, ``score = 100 - bot_confidence``.

Decision bands (trust / bot confidence):
    allow      score >= 70   confidence <= 30
    challenge  40..69        31..60
    block      score < 40    confidence > 60

isBot: confidence > 50 (score < 50).

Family totals are capped before summing. Honeypot and environment
signals are near-deterministic and may reach 100 on their own; the
behavioral family is advisory and capped at 60, so behavior alone can
challenge but never block.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from trustcore.models.rules import BEHAVIOR_RULES, BehaviorRule, evaluate_rules
from trustcore.processors.features import FeatureSet
from trustcore.schemas.outputs import (
    Recommendation,
    Severity,
    Signal,
    TrapResult,
    TrustAssessment,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Policy Constants
# =============================================================================

MAX_POINTS = 100

FAMILY_CAPS: Dict[str, int] = {
    "honeypot": 100,
    "environment": 100,
    "behavioral": 60,
}

ALLOW_MIN_SCORE = 70
CHALLENGE_MIN_SCORE = 40
BOT_SCORE_BELOW = 50

# Event severity by bot confidence
SEVERITY_BANDS = (
    (75, Severity.CRITICAL),
    (50, Severity.HIGH),
    (25, Severity.MEDIUM),
)


# =============================================================================
# Direction Conversion
# =============================================================================

def clamp_points(value: float) -> int:
    return int(max(0, min(MAX_POINTS, round(value))))


def trust_from_confidence(confidence: float) -> int:
    """Trust score for a bot-confidence value."""
    return MAX_POINTS - clamp_points(confidence)


def confidence_from_trust(score: float) -> int:
    """Bot confidence for a trust score."""
    return MAX_POINTS - clamp_points(score)


def recommendation_for(score: int) -> Recommendation:
    if score >= ALLOW_MIN_SCORE:
        return Recommendation.ALLOW
    if score >= CHALLENGE_MIN_SCORE:
        return Recommendation.CHALLENGE
    return Recommendation.BLOCK


def severity_for(confidence: int) -> Severity:
    for floor, severity in SEVERITY_BANDS:
        if confidence >= floor:
            return severity
    return Severity.LOW


# =============================================================================
# Fusion
# =============================================================================

class TrustFusionEngine:
    """Sums capped family penalties into a TrustAssessment."""

    def __init__(self, rules: Iterable[BehaviorRule] = BEHAVIOR_RULES) -> None:
        self.rules = tuple(rules)

    def fuse(
        self,
        trap_result: Optional[TrapResult],
        features: Optional[FeatureSet],
        environment_signals: Optional[Sequence[Signal]],
    ) -> TrustAssessment:
        """
        Fuse one evaluation.

        Any argument may be None; a missing family contributes nothing.
        """
        families: Dict[str, List[Signal]] = {
            "honeypot": list(trap_result.signals) if trap_result is not None else [],
            "environment": list(environment_signals or []),
            "behavioral": evaluate_rules(features, self.rules) if features is not None else [],
        }

        total = 0
        for family, signals in families.items():
            raw = sum(s.score for s in signals)
            capped = min(raw, FAMILY_CAPS[family])
            if capped < raw:
                logger.debug(f"{family} penalties capped: {raw} -> {capped}")
            total += capped

        confidence = clamp_points(total)
        score = trust_from_confidence(confidence)
        signals = families["honeypot"] + families["environment"] + families["behavioral"]

        return TrustAssessment(
            score=score,
            is_bot=score < BOT_SCORE_BELOW,
            recommendation=recommendation_for(score),
            signals=signals,
        )
