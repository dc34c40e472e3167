"""
Redis caching utilities

Cache failures never propagate: they are logged and treated as a miss.
"""
import json
import hashlib
import logging
from typing import Optional, Any

import redis

from techconnect.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.Redis(
    host=settings.REDIS_HOST,
    port=settings.REDIS_PORT,
    db=settings.REDIS_DB,
    decode_responses=True,
    socket_connect_timeout=1,
    socket_timeout=1,
)

DEFAULT_CACHE_TTL = 300  # 5 minutes


def generate_cache_key(prefix: str, *args, **kwargs) -> str:
    """
    Build a cache key from a prefix and arguments.

    Long keys are hashed so Redis keys stay short.
    """
    key_parts = [str(arg) for arg in args]
    key_parts.extend(f"{k}={v}" for k, v in sorted(kwargs.items()))
    key_string = ":".join(key_parts)

    if len(key_string) > 100:
        key_hash = hashlib.md5(key_string.encode("utf-8")).hexdigest()
        return f"{prefix}:{key_hash}"

    return f"{prefix}:{key_string}" if key_string else prefix


def get_cached(key: str) -> Optional[Any]:
    try:
        value = redis_client.get(key)
        if value:
            return json.loads(value)
        return None
    except (redis.RedisError, ValueError) as e:
        logger.warning(f"Cache get error for {key}: {e}")
        return None


def set_cached(key: str, value: Any, ttl: int = DEFAULT_CACHE_TTL) -> bool:
    try:
        redis_client.setex(key, ttl, json.dumps(value, default=str))
        return True
    except (redis.RedisError, TypeError) as e:
        logger.warning(f"Cache set error for {key}: {e}")
        return False


def invalidate_cache(pattern: str) -> int:
    """Delete every key matching ``pattern`` (supports * wildcards)"""
    try:
        keys = redis_client.keys(pattern)
        if keys:
            return redis_client.delete(*keys)
        return 0
    except redis.RedisError as e:
        logger.warning(f"Cache invalidation error for {pattern}: {e}")
        return 0


def invalidate_company_cache():
    """Company listings are cached per filter set; drop them all"""
    invalidate_cache("companies:*")


def redis_health_check() -> bool:
    try:
        return bool(redis_client.ping())
    except redis.RedisError:
        return False
