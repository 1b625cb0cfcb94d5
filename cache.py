"""
Redis helpers: JSON cache entries with optional TTL, key invalidation and a
fixed-window rate limiter.
"""
import json
from typing import Any, Optional

import redis
import structlog
from fastapi import Request

from config import RATE_LIMIT_MAX, RATE_LIMIT_WINDOW, REDIS_URL
from errors import AppError

logger = structlog.get_logger(__name__)

redis_client = redis.Redis.from_url(REDIS_URL, decode_responses=True, socket_timeout=5)

# Cache keys
PRODUCTS_ALL_KEY = "products:all"
CATEGORIES_ALL_KEY = "categories:all"
STAGED_ORDER_PREFIX = "order:staged:"
RESET_TOKEN_PREFIX = "password:reset:"
REVOKED_TOKEN_PREFIX = "token:revoked:"


def set_cache(key: str, value: Any, ttl: Optional[int] = None) -> None:
    data = value if isinstance(value, str) else json.dumps(value, default=str)
    try:
        if ttl:
            redis_client.set(key, data, ex=ttl)
        else:
            redis_client.set(key, data)
    except redis.RedisError as exc:
        logger.error("cache_set_failed", key=key, error=str(exc))
        raise AppError("Failed to set cache", 500)
    logger.debug("cache_set", key=key, ttl=ttl)


def get_cache(key: str) -> Any:
    """Return the decoded value, or None on a miss or when Redis is unavailable."""
    try:
        value = redis_client.get(key)
    except redis.RedisError as exc:
        logger.error("cache_get_failed", key=key, error=str(exc))
        return None
    if value is None:
        logger.debug("cache_miss", key=key)
        return None
    logger.debug("cache_hit", key=key)
    try:
        return json.loads(value)
    except ValueError:
        return value


def delete_cache(*keys: str) -> None:
    if not keys:
        return
    try:
        redis_client.delete(*keys)
    except redis.RedisError as exc:
        logger.error("cache_delete_failed", keys=keys, error=str(exc))
        raise AppError("Failed to delete cache", 500)


def invalidate_catalog() -> None:
    """Drop cached product and category listings after a catalog write."""
    delete_cache(PRODUCTS_ALL_KEY, CATEGORIES_ALL_KEY)


def ping() -> bool:
    try:
        return bool(redis_client.ping())
    except redis.RedisError:
        return False


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(request: Request) -> None:
    """
    FastAPI dependency: at most RATE_LIMIT_MAX calls per RATE_LIMIT_WINDOW
    seconds for one client IP on one path.
    """
    key = f"ratelimit:{request.url.path}:{client_ip(request)}"
    try:
        count = redis_client.incr(key)
        if count == 1:
            redis_client.expire(key, RATE_LIMIT_WINDOW)
    except redis.RedisError as exc:
        # Limiter unavailable: let the request through
        logger.error("rate_limit_unavailable", error=str(exc))
        return
    if count > RATE_LIMIT_MAX:
        minutes = RATE_LIMIT_WINDOW // 60
        raise AppError(
            f"Too many requests from this device, please try again after {minutes} minutes", 429
        )
