"""
Rate Limiter

Fixed-window request counter per (policy, identifier), independent of
authentication outcome. Denied requests still count toward the window.

Backends:
- InMemoryRateLimitBackend: keyed store, expired windows removed by sweep()
- RedisRateLimitBackend (persistence.redis_rate_limit): INCR + EXPIRE
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

from persistence.keyed_store import KeyedStore
from trustcore.schemas.outputs import RateLimitDecision


logger = logging.getLogger(__name__)


# =============================================================================
# Policies
# =============================================================================

@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    max_requests: int
    window_seconds: float
    message: str


DEFAULT_POLICIES: Dict[str, RateLimitPolicy] = {
    "auth": RateLimitPolicy(
        "auth", 5, 15 * 60, "Too many authentication attempts. Please try again in 15 minutes."
    ),
    "api": RateLimitPolicy(
        "api", 60, 60, "Too many requests. Please slow down."
    ),
    "strict": RateLimitPolicy(
        "strict", 10, 60, "Rate limit exceeded for sensitive operation."
    ),
    "refresh": RateLimitPolicy(
        "refresh", 10, 60, "Too many token refresh requests."
    ),
}


# =============================================================================
# Backends
# =============================================================================

class RateLimitBackend(Protocol):
    def hit(self, key: str, window_seconds: float, now: float) -> Tuple[int, float]:
        """Count one request; returns (count in window, window reset time)."""
        ...

    def sweep(self, now: float) -> int:
        ...

    def close(self) -> None:
        ...


@dataclass
class RateLimitRecord:
    count: int
    window_reset_at: float


class InMemoryRateLimitBackend:
    """Process-local fixed windows in a keyed store."""

    def __init__(self, store: Optional[KeyedStore[RateLimitRecord]] = None) -> None:
        self.store: KeyedStore[RateLimitRecord] = store or KeyedStore("rate_limit")

    def hit(self, key: str, window_seconds: float, now: float) -> Tuple[int, float]:
        with self.store.locked(key):
            record = self.store.get(key)
            if record is None or now >= record.window_reset_at:
                record = RateLimitRecord(count=0, window_reset_at=now + window_seconds)
            record.count += 1
            self.store.set(key, record)
            return record.count, record.window_reset_at

    def sweep(self, now: float) -> int:
        return self.store.sweep(lambda record: now >= record.window_reset_at)

    def close(self) -> None:
        self.store.close()


# =============================================================================
# Limiter
# =============================================================================

class RateLimiter:
    """Applies named policies on top of a counting backend."""

    def __init__(
        self,
        backend: Optional[RateLimitBackend] = None,
        policies: Optional[Dict[str, RateLimitPolicy]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend or InMemoryRateLimitBackend()
        self.policies = dict(policies or DEFAULT_POLICIES)
        self.clock = clock

    def check(self, identifier: str, policy_name: str = "api") -> RateLimitDecision:
        """
        Count one request and decide.

        Raises:
            ValueError: ``policy_name`` is not configured.
        """
        policy = self.policies.get(policy_name)
        if policy is None:
            raise ValueError(f"Unknown rate limit policy: {policy_name!r}")

        now = self.clock()
        count, reset_at = self.backend.hit(
            f"{policy.name}:{identifier}", policy.window_seconds, now
        )
        allowed = count <= policy.max_requests

        if not allowed:
            logger.warning(
                f"Rate limit '{policy.name}' exceeded for {identifier} "
                f"({count}/{policy.max_requests})"
            )

        return RateLimitDecision(
            allowed=allowed,
            remaining=max(0, policy.max_requests - count),
            reset_at=reset_at,
            policy=policy.name,
            message=None if allowed else policy.message,
        )

    def sweep(self) -> int:
        return self.backend.sweep(self.clock())

    def close(self) -> None:
        self.backend.close()
