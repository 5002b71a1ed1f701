"""
Redis client for sharing used-receipt keys between service processes.

Redis is only ever a fast path: every helper degrades to a miss (or a no-op
write) when Redis is disabled or unreachable, and the database stays the
source of truth.
"""

import logging
from typing import Iterable

from rewards_ledger.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

_redis_client = None


def get_redis_client():
    """
    Lazy-initialize Redis client singleton.
    Returns None if Redis is disabled or unavailable.
    """
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            import redis
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=2,
            )
            _redis_client.ping()
            logger.info("[CACHE] Redis connected")
        except Exception as e:
            logger.warning(f"[CACHE] Redis unavailable, shared cache disabled: {e}")
            _redis_client = None

    return _redis_client


def cache_mark(key: str, ttl: int) -> bool:
    """Record that key exists. Returns True if written."""
    client = get_redis_client()
    if client is None:
        return False
    try:
        client.setex(key, ttl, "1")
        return True
    except Exception as e:
        logger.warning(f"[CACHE] mark failed for {key}: {e}")
        return False


def cache_mark_many(keys: Iterable[str], ttl: int) -> int:
    """Record many keys in one round-trip. Returns how many were sent."""
    client = get_redis_client()
    if client is None:
        return 0
    keys = list(keys)
    try:
        pipe = client.pipeline()
        for key in keys:
            pipe.setex(key, ttl, "1")
        pipe.execute()
        return len(keys)
    except Exception as e:
        logger.warning(f"[CACHE] bulk mark failed: {e}")
        return 0


def cache_has(key: str) -> bool:
    """True only when Redis is reachable and holds key."""
    client = get_redis_client()
    if client is None:
        return False
    try:
        return bool(client.exists(key))
    except Exception as e:
        logger.warning(f"[CACHE] lookup failed for {key}: {e}")
        return False
