"""
Trust Engine Output Schemas

This module defines Pydantic V2 models that enforce the serialized
contracts of engine decisions. Wire names are camelCase aliases; Python
code uses the snake_case attributes.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums
# =============================================================================

class Recommendation(str, Enum):
    """Access-control action."""
    ALLOW = "allow"
    CHALLENGE = "challenge"
    BLOCK = "block"


class Severity(str, Enum):
    """Security event severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EventType(str, Enum):
    """Security event type."""
    LOGIN_ATTEMPT = "login_attempt"
    HONEYPOT_TRIGGERED = "honeypot_triggered"
    BOT_DETECTED = "bot_detected"
    SUSPICIOUS_BEHAVIOR = "suspicious_behavior"
    FAILED_AUTH = "failed_auth"
    INJECTION_ATTEMPT = "injection_attempt"


# =============================================================================
# Signals & Assessment
# =============================================================================

class Signal(BaseModel):
    """A named check outcome carrying penalty points (bot-confidence direction)."""
    model_config = ConfigDict(frozen=True)

    name: str
    score: int = Field(..., ge=0, description="Penalty points")
    detail: str = ""


class TrapResult(BaseModel):
    """Honeypot evaluation outcome."""
    model_config = ConfigDict(populate_by_name=True)

    fields_filled: List[str] = Field(default_factory=list, alias="fieldsFilled")
    timing_anomaly: bool = Field(False, alias="timingAnomaly")
    score: int = Field(0, ge=0, le=100)
    signals: List[Signal] = Field(default_factory=list, exclude=True)


class TrustAssessment(BaseModel):
    """
    Fusion output.

    ``score`` is the trust value (higher means more likely human). The
    canonical internal quantity is bot confidence; ``score`` is always
    ``100 - bot_confidence``.
    """
    model_config = ConfigDict(populate_by_name=True)

    score: int = Field(..., ge=0, le=100, description="Trust score")
    is_bot: bool = Field(..., alias="isBot")
    recommendation: Recommendation
    signals: List[Signal] = Field(default_factory=list)

    @property
    def bot_confidence(self) -> int:
        return 100 - self.score


# =============================================================================
# Gate Decisions
# =============================================================================

class LockoutStatus(BaseModel):
    """Brute-force lockout decision for one identifier."""
    model_config = ConfigDict(populate_by_name=True)

    locked: bool
    fail_count: int = Field(0, alias="failCount")
    attempts_left: int = Field(..., alias="attemptsLeft")
    lock_until: Optional[float] = Field(None, alias="lockUntil")
    accepted: bool = Field(True, description="False when an attempt was rejected by an active lock")


class RateLimitDecision(BaseModel):
    """Fixed-window rate limit decision."""
    model_config = ConfigDict(populate_by_name=True)

    allowed: bool
    remaining: int = Field(..., ge=0)
    reset_at: float = Field(..., alias="resetAt")
    policy: str
    message: Optional[str] = None


class InjectionKind(str, Enum):
    """Family of the strongest injection pattern matched."""
    SQL = "sql"
    NOSQL = "nosql"
    CODE = "code"
    OPERATOR = "operator"


class InjectionReport(BaseModel):
    """Injection scan outcome for one request value."""
    model_config = ConfigDict(populate_by_name=True)

    detected: bool
    severity: Severity = Severity.LOW
    kind: Optional[InjectionKind] = None
    patterns: List[str] = Field(default_factory=list, description="Matched pattern names")
    path: str = Field("", description="Location of the finding inside the inspected value")
    blocked: bool = False
    attempts: int = Field(0, description="Injection attempts by this identifier in the window")
    identifier_blocked: bool = Field(False, alias="identifierBlocked")


# =============================================================================
# Tokens
# =============================================================================

class TokenPair(BaseModel):
    """
    Issued access/refresh pair.

    Only the four wire fields serialize; binding metadata stays internal.
    """
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken")
    refresh_token: str = Field(..., alias="refreshToken")
    expires_in: int = Field(..., alias="expiresIn", description="Access token lifetime in seconds")
    token_type: Literal["Bearer"] = Field("Bearer", alias="tokenType")

    fingerprint_id: str = Field(..., exclude=True)
    session_id: Optional[str] = Field(None, exclude=True)
    version: int = Field(1, exclude=True)
    issued_at: float = Field(..., exclude=True)
    access_expires_at: float = Field(..., exclude=True)
    refresh_expires_at: float = Field(..., exclude=True)


class TokenVerification(BaseModel):
    """Result of verifying an access token. Failures carry no reason."""
    valid: bool
    user_id: Optional[str] = None
    role: Optional[str] = None
    session_id: Optional[str] = None
    expires_at: Optional[float] = None


# =============================================================================
# Security Events
# =============================================================================

class SecurityEvent(BaseModel):
    """Immutable audit record of a notable engine decision."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    timestamp: float
    type: EventType
    severity: Severity
    identifier_context: Dict[str, Any] = Field(default_factory=dict, alias="identifierContext")
    signals: List[Signal] = Field(default_factory=list)
    snapshot: Dict[str, Any] = Field(default_factory=dict)
    details: str = ""


class EventStatistics(BaseModel):
    """Aggregate view over the retained security events."""
    model_config = ConfigDict(populate_by_name=True)

    total: int
    by_type: Dict[str, int] = Field(default_factory=dict, alias="byType")
    by_severity: Dict[str, int] = Field(default_factory=dict, alias="bySeverity")
    unique_identifiers: int = Field(0, alias="uniqueIdentifiers")
    recent: List[SecurityEvent] = Field(default_factory=list)
