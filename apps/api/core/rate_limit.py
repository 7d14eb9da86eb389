"""
Per-tenant limit on migration upload attempts.

Fixed one-hour window counted in Redis under
`rate_limit:migration_upload:<tenant slug>`. Redis being down (or slow) never
blocks an upload: the check fails open and logs.
"""
import logging
import time
from typing import Optional, Tuple

import redis
from redis.exceptions import RedisError

from core.config import settings

logger = logging.getLogger(__name__)

UPLOAD_WINDOW_S = 60 * 60
KEY_PREFIX = "rate_limit:migration_upload"

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Shared client, created on first use. None while Redis is unreachable."""
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    client = redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    try:
        client.ping()
    except RedisError as e:
        logger.warning(f"Redis unavailable, upload rate limit disabled: {e}")
        return None

    _redis_client = client
    return _redis_client


def upload_key(tenant_slug: str) -> str:
    return f"{KEY_PREFIX}:{tenant_slug}"


def check_migration_upload_rate_limit(
    tenant_slug: str,
    limit: Optional[int] = None,
    window: int = UPLOAD_WINDOW_S,
) -> Tuple[bool, int, int]:
    """
    Count one upload attempt for the tenant.

    Returns (allowed, remaining, reset_at) where reset_at is a unix timestamp.
    """
    limit = limit or settings.MIGRATION_UPLOAD_ATTEMPTS_PER_HOUR
    now = int(time.time())

    if not settings.RATE_LIMIT_ENABLED:
        return True, limit, now + window

    client = get_redis_client()
    if client is None:
        return True, limit, now + window

    key = upload_key(tenant_slug)
    try:
        current = client.get(key)
        if current is None:
            client.setex(key, window, 1)
            return True, limit - 1, now + window

        if int(current) >= limit:
            ttl = client.ttl(key)
            return False, 0, now + (ttl if ttl > 0 else window)

        count = client.incr(key)
        if count == 1:
            # key expired between get and incr
            client.expire(key, window)
        ttl = client.ttl(key)
        return True, max(0, limit - count), now + (ttl if ttl > 0 else window)

    except Exception as e:
        logger.error(f"Migration upload rate limit check failed, allowing upload: {e}")
        return True, limit, now + window
