"""
Redis Connection

Shared client for the Redis rate-limit backend. Only created when
TRUST_RATE_LIMIT_BACKEND=redis.

Configuration (environment):
- REDIS_URL: full connection URL; takes precedence when set
- REDIS_HOST / REDIS_PORT / REDIS_PASSWORD: used otherwise
"""

import os
import logging
from functools import lru_cache

import redis
from redis.exceptions import RedisError, AuthenticationError

logger = logging.getLogger(__name__)

# Rate-limit checks sit on the request path; fail fast when Redis is down
SOCKET_TIMEOUT = 1.0
MAX_CONNECTIONS = 50


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    """
    Process-wide Redis client backed by a connection pool.

    Raises:
        RedisError: Redis is unreachable or rejects the credentials.
    """
    url = os.getenv("REDIS_URL")
    if url:
        pool = redis.ConnectionPool.from_url(
            url,
            decode_responses=True,
            max_connections=MAX_CONNECTIONS,
            socket_timeout=SOCKET_TIMEOUT,
        )
        target = url.rsplit("@", 1)[-1]
    else:
        host = os.getenv("REDIS_HOST", "localhost")
        port = int(os.getenv("REDIS_PORT", 6379))
        password = os.getenv("REDIS_PASSWORD")
        if not password:
            logger.warning("REDIS_PASSWORD is not set, connecting without authentication")
        pool = redis.ConnectionPool(
            host=host,
            port=port,
            password=password,
            decode_responses=True,
            max_connections=MAX_CONNECTIONS,
            socket_timeout=SOCKET_TIMEOUT,
        )
        target = f"{host}:{port}"

    client = redis.Redis(connection_pool=pool)
    try:
        client.ping()
    except AuthenticationError:
        logger.critical("Redis authentication failed. Check REDIS_PASSWORD.")
        raise
    except RedisError as e:
        logger.critical(f"Could not connect to Redis at {target}: {e}")
        raise

    logger.info(f"Connected to Redis at {target}")
    return client
