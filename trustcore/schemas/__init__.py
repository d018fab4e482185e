"""
Trust Engine Schemas

Public exports for input and output Pydantic models.
"""

# Input schemas - Telemetry
from trustcore.schemas.inputs import (
    KeyEvent,
    PointerEvent,
    PointerKind,
    TelemetryBatchPayload,
    TelemetryEvent,
    TelemetryKind,
)

# Input schemas - Engine requests
from trustcore.schemas.inputs import (
    AssessPayload,
    AttemptPayload,
    SessionPayload,
    IdentifierPayload,
    InspectPayload,
    RateLimitPayload,
    RefreshPayload,
    TokenPayload,
    RevokeUserPayload,
    TokenClaims,
)

# Output schemas
from trustcore.schemas.outputs import (
    EventStatistics,
    EventType,
    InjectionKind,
    InjectionReport,
    LockoutStatus,
    RateLimitDecision,
    Recommendation,
    SecurityEvent,
    Severity,
    Signal,
    TokenPair,
    TokenVerification,
    TrapResult,
    TrustAssessment,
)

__all__ = [
    # Input - Telemetry
    "KeyEvent",
    "PointerEvent",
    "PointerKind",
    "TelemetryBatchPayload",
    "TelemetryEvent",
    "TelemetryKind",
    # Input - Requests
    "AssessPayload",
    "AttemptPayload",
    "SessionPayload",
    "IdentifierPayload",
    "InspectPayload",
    "RateLimitPayload",
    "RefreshPayload",
    "TokenPayload",
    "RevokeUserPayload",
    "TokenClaims",
    # Output
    "EventStatistics",
    "EventType",
    "InjectionKind",
    "InjectionReport",
    "LockoutStatus",
    "RateLimitDecision",
    "Recommendation",
    "SecurityEvent",
    "Severity",
    "Signal",
    "TokenPair",
    "TokenVerification",
    "TrapResult",
    "TrustAssessment",
]
