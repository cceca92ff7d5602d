"""
Redis client factory
Returns None when Redis is not configured or unreachable so callers can use memory
"""
import logging
from typing import Optional

import redis

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None
_initialized = False


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get Redis client if configured

    Returns:
        Redis client instance or None if REDIS_URL is unset or the ping fails
    """
    global _client, _initialized

    if _initialized:
        return _client

    from ..config import config

    _initialized = True
    if not config.REDIS_URL:
        return None

    try:
        client = redis.Redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )
        client.ping()
        logger.info("Redis connection established")
        _client = client
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e}. Using in-memory fallback.")
        _client = None

    return _client
