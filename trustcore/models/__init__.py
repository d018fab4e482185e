"""
Trust Engine Models

Static policy components: anomaly rules, honeypot traps, fusion,
injection detection, lockout, rate limiting and token binding.
"""

from trustcore.models.fusion import (
    TrustFusionEngine,
    confidence_from_trust,
    severity_for,
    trust_from_confidence,
)
from trustcore.models.honeypot import HoneypotEvaluator, TrapType, DECOY_ENDPOINTS
from trustcore.models.injection import InjectionAttemptTracker, InjectionDetector
from trustcore.models.lockout import BruteForceLockout, LockoutRecord
from trustcore.models.rate_limit import (
    InMemoryRateLimitBackend,
    RateLimiter,
    RateLimitPolicy,
)
from trustcore.models.rules import BEHAVIOR_RULES, BehaviorRule
from trustcore.models.tokens import RefreshOutcome, TokenTrustBinder

__all__ = [
    "TrustFusionEngine",
    "confidence_from_trust",
    "severity_for",
    "trust_from_confidence",
    "HoneypotEvaluator",
    "TrapType",
    "DECOY_ENDPOINTS",
    "InjectionAttemptTracker",
    "InjectionDetector",
    "BruteForceLockout",
    "LockoutRecord",
    "InMemoryRateLimitBackend",
    "RateLimiter",
    "RateLimitPolicy",
    "BEHAVIOR_RULES",
    "BehaviorRule",
    "RefreshOutcome",
    "TokenTrustBinder",
]
