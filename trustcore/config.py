"""
Trust Engine Configuration

Static policy and infrastructure settings, loaded from TRUST_* environment
variables. Thresholds for scoring live next to the code that applies them;
this module only carries values an operator is expected to change per
deployment.
"""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass


logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Trust engine configuration."""

    # Token signing. Empty means a random per-process secret is generated,
    # which invalidates every issued token on restart.
    token_secret: str = ""
    access_token_ttl: int = 300               # 5 minutes
    refresh_token_ttl: int = 7 * 24 * 3600    # 7 days

    # Shared key the backend presents on identity-bearing and admin routes.
    # Empty disables those routes.
    service_key: str = ""

    # Brute-force lockout
    lockout_threshold: int = 5
    lockout_window: int = 15 * 60
    lockout_duration: int = 30 * 60

    # Background sweep
    sweep_interval: float = 300.0

    # Telemetry sessions
    session_idle_ttl: float = 30 * 60
    max_sessions: int = 10_000

    # Security event log
    max_events: int = 500

    # "memory" or "redis"
    rate_limit_backend: str = "memory"

    geoip_path: str = "assets/GeoLite2-City.mmdb"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.token_secret:
            logger.warning(
                "TRUST_TOKEN_SECRET not set, using a random per-process secret"
            )
            self.token_secret = secrets.token_urlsafe(32)
        if not self.service_key:
            logger.warning(
                "TRUST_SERVICE_KEY not set, token issuance and admin routes are disabled"
            )
        if self.rate_limit_backend not in ("memory", "redis"):
            raise ValueError(
                f"Unknown rate limit backend: {self.rate_limit_backend!r}"
            )

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load configuration from environment variables"""
        def _int_env(var: str, default: int) -> int:
            try:
                return int(os.getenv(var, str(default)))
            except ValueError:
                return default

        def _float_env(var: str, default: float) -> float:
            try:
                return float(os.getenv(var, str(default)))
            except ValueError:
                return default

        return cls(
            token_secret=os.getenv("TRUST_TOKEN_SECRET", ""),
            service_key=os.getenv("TRUST_SERVICE_KEY", ""),
            access_token_ttl=_int_env("TRUST_ACCESS_TOKEN_TTL", 300),
            refresh_token_ttl=_int_env("TRUST_REFRESH_TOKEN_TTL", 7 * 24 * 3600),
            lockout_threshold=_int_env("TRUST_LOCKOUT_THRESHOLD", 5),
            lockout_window=_int_env("TRUST_LOCKOUT_WINDOW", 15 * 60),
            lockout_duration=_int_env("TRUST_LOCKOUT_DURATION", 30 * 60),
            sweep_interval=_float_env("TRUST_SWEEP_INTERVAL", 300.0),
            session_idle_ttl=_float_env("TRUST_SESSION_IDLE_TTL", 30 * 60),
            max_sessions=_int_env("TRUST_MAX_SESSIONS", 10_000),
            max_events=_int_env("TRUST_MAX_EVENTS", 500),
            rate_limit_backend=os.getenv("TRUST_RATE_LIMIT_BACKEND", "memory").lower(),
            geoip_path=os.getenv("TRUST_GEOIP_PATH", "assets/GeoLite2-City.mmdb"),
            log_level=os.getenv("TRUST_LOG_LEVEL", "INFO").upper(),
        )
