"""Per-IP throttle for /chat and the portfolio endpoint (slowapi).

Counters live in Redis when the shared cache is Redis-backed and
reachable, otherwise in process memory. Login, registration, invite and
verification limits are separate: they are counted in the Store by
services/security.py because callers need the reset time back.
"""

import os

import redis
from loguru import logger
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

TESTING = bool(os.environ.get("TESTING"))


def limiter_storage_uri() -> str | None:
    """Redis URL when the shared cache can actually be reached, else None (memory)."""
    if TESTING or settings.cache_backend != "redis" or not settings.redis_url:
        return None
    try:
        redis.Redis.from_url(settings.redis_url, socket_connect_timeout=2).ping()
    except redis.RedisError as exc:
        logger.warning("Chat throttle falling back to per-process memory: {}", exc)
        return None
    return settings.redis_url


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    storage_uri=limiter_storage_uri(),
    enabled=settings.rate_limit_enabled and not TESTING,
)
