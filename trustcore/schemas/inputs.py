"""
Trust Engine Input Schemas

This module defines Pydantic V2 models for:
- Telemetry events streamed by the client wrapper (keys, pointer, traps)
- Engine requests (assessment, lockout, rate limit, tokens)
- Closed token claims
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================

class PointerKind(str, Enum):
    """Pointer event kind."""
    MOVE = "move"
    CLICK = "click"
    SCROLL = "scroll"


class TelemetryKind(str, Enum):
    """Telemetry event kind; selects which payload field is read."""
    KEY = "key"
    POINTER = "pointer"
    TRAP = "trap"
    PASTE = "paste"
    FOCUS = "focus"
    RENDER = "render"


# =============================================================================
# Telemetry Event Models
# =============================================================================

class KeyEvent(BaseModel):
    """Single keystroke with its hold and inter-key timing."""
    model_config = ConfigDict(allow_inf_nan=False)

    key_class: str = Field(
        "char",
        description="Key class (char, backspace, modifier, navigation); never the key itself",
    )
    dwell_ms: float = Field(..., description="Key hold time in milliseconds")
    flight_ms: float = Field(0.0, description="Time since previous key release in milliseconds")
    ts: float = Field(..., description="Event timestamp in milliseconds")


class PointerEvent(BaseModel):
    """
    Single pointer sample.

    Kinematics are optional; the collector derives them from the previous
    move when the client does not send them.
    """
    model_config = ConfigDict(allow_inf_nan=False)

    x: float = Field(..., description="X coordinate on screen")
    y: float = Field(..., description="Y coordinate on screen")
    velocity: Optional[float] = Field(None, description="Speed in px/s")
    acceleration: Optional[float] = Field(None, description="Speed delta since previous move")
    angle: Optional[float] = Field(None, description="Movement direction in degrees")
    ts: float = Field(..., description="Event timestamp in milliseconds")
    kind: PointerKind = Field(PointerKind.MOVE, description="move, click or scroll")


class TelemetryEvent(BaseModel):
    """One interaction event; exactly the payload matching ``kind`` is read."""
    kind: TelemetryKind
    key: Optional[KeyEvent] = None
    pointer: Optional[PointerEvent] = None
    field_name: Optional[str] = Field(None, description="Trap field name for kind=trap")


class TelemetryBatchPayload(BaseModel):
    """
    Batch of telemetry events sent periodically by the client.

    Events that fail validation (unknown kind, NaN/inf timings) are dropped
    individually; the rest of the batch is kept.
    """
    session_id: str = Field(..., min_length=1, description="Browsing session identifier")
    events: List[TelemetryEvent] = Field(default_factory=list)

    @field_validator("events", mode="before")
    @classmethod
    def drop_malformed_events(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        kept = []
        for raw in value:
            try:
                kept.append(TelemetryEvent.model_validate(raw))
            except ValidationError as e:
                logger.debug(f"Dropped malformed telemetry event: {e.error_count()} errors")
        return kept


# =============================================================================
# Engine Requests
# =============================================================================

class SessionPayload(BaseModel):
    """Request scoped to one browsing session."""
    session_id: str = Field(..., min_length=1)


class AssessPayload(BaseModel):
    """
    Trust assessment request.

    ``probes`` maps environment probe names to opaque strings. Omitting it
    skips the environment family entirely.
    """
    session_id: str = Field(..., min_length=1)
    probes: Optional[Dict[str, str]] = Field(None, description="Environment probe values")


class IdentifierPayload(BaseModel):
    """Lockout query; the identifier is derived from the request when omitted."""
    identifier: Optional[str] = None


class AttemptPayload(BaseModel):
    """Outcome of one authentication attempt."""
    identifier: Optional[str] = None
    success: bool


class RateLimitPayload(BaseModel):
    """Rate limit check against a named policy."""
    identifier: Optional[str] = None
    policy: str = Field("api", description="Policy name (auth, api, strict, refresh)")


class InspectPayload(BaseModel):
    """Request data to scan for injection patterns."""
    identifier: Optional[str] = None
    value: Any = Field(..., description="Any JSON value; strings, keys and nesting are scanned")


class RefreshPayload(BaseModel):
    """Refresh token rotation request."""
    refresh_token: str = Field(..., min_length=1)
    fingerprint_id: Optional[str] = Field(None, description="Caller's current fingerprint id")


class TokenPayload(BaseModel):
    """A single access or refresh token."""
    token: str = Field(..., min_length=1)


class RevokeUserPayload(BaseModel):
    """Revoke every refresh token of a user."""
    user_id: str = Field(..., min_length=1)


# =============================================================================
# Token Claims
# =============================================================================

class TokenClaims(BaseModel):
    """
    Identity claims embedded in issued tokens.

    Closed record: unknown fields are rejected at construction.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    user_id: str = Field(..., min_length=1, description="Unique user identifier")
    email: Optional[str] = Field(None, description="User email")
    role: str = Field("user", pattern=r"^[a-z][a-z0-9_-]*$", description="Lower-case role")
    session_id: Optional[str] = Field(None, description="Session the tokens belong to")
    fingerprint_id: Optional[str] = Field(None, description="Environment fingerprint binding")
