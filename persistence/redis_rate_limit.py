"""
Redis Rate Limit Backend

Fixed-window counters shared across processes.

Key Schema:
    RATE:{policy}:{identifier}   → request counter, expires with the window

The first hit of a window sets the expiry; the counter disappears when
the window ends, so no sweep is needed. Redis errors fail open.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Tuple

import redis
from redis.exceptions import RedisError

from .connection import get_redis_client


logger = logging.getLogger(__name__)


class RedisRateLimitBackend:
    """INCR/EXPIRE fixed-window counter."""

    KEY_PREFIX = "RATE"

    def __init__(self, client: Optional[redis.Redis] = None) -> None:
        self.client = client or get_redis_client()

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}:{key}"

    def hit(self, key: str, window_seconds: float, now: float) -> Tuple[int, float]:
        redis_key = self._key(key)
        window = max(1, int(math.ceil(window_seconds)))
        try:
            pipe = self.client.pipeline()
            pipe.incr(redis_key)
            pipe.ttl(redis_key)
            count, ttl = pipe.execute()

            # New window, or a counter that lost its expiry
            if count == 1 or ttl is None or ttl < 0:
                self.client.expire(redis_key, window)
                ttl = window

            return int(count), now + ttl
        except RedisError as e:
            logger.warning(f"Rate limit check failed: {e}")
            return 0, now + window  # Fail open

    def sweep(self, now: float) -> int:
        # Counters expire server-side
        return 0

    def close(self) -> None:
        # The client is shared through get_redis_client()
        pass
