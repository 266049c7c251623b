"""Shared key/value store — Redis primary with in-process fallback.

The only process-wide mutable state in the app goes through this narrow
interface: the portfolio cache (5-min TTL) and the fixed-window rate
limiter counters. Tests inject a MemoryStore with a controllable clock.

Usage:
    from abi.store import get_store
    store = get_store()
    store.set_with_ttl("portfolio", data, 300)
    count = store.incr("rl:1.2.3.4:login", ttl_seconds=60)
"""

import json
import logging
import os
import threading
import time
from typing import Any, Callable, Protocol

log = logging.getLogger("abi.store")


class Store(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set_with_ttl(self, key: str, value: Any, ttl_seconds: float) -> None: ...

    def incr(self, key: str, ttl_seconds: float) -> int: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store.

    Expired keys are dropped when read, and writes sweep the whole map at
    most once per SWEEP_INTERVAL so one-off rate-limit keys do not pile up.
    """

    SWEEP_INTERVAL = 60.0

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + self.SWEEP_INTERVAL

    def __len__(self) -> int:
        return len(self._data)

    def _live(self, key: str):
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            self._data.pop(key, None)
            return None
        return entry

    def _maybe_sweep(self) -> None:
        now = self._clock()
        if now < self._next_sweep:
            return
        self._next_sweep = now + self.SWEEP_INTERVAL
        expired = [k for k, (_, expires_at) in self._data.items() if expires_at <= now]
        for k in expired:
            del self._data[k]
        if expired:
            log.debug("Swept %d expired keys", len(expired))

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def set_with_ttl(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._maybe_sweep()
            self._data[key] = (value, self._clock() + ttl_seconds)

    def incr(self, key: str, ttl_seconds: float) -> int:
        """Increment a counter; the TTL starts with the first increment."""
        with self._lock:
            self._maybe_sweep()
            entry = self._live(key)
            if entry is None:
                self._data[key] = (1, self._clock() + ttl_seconds)
                return 1
            count = int(entry[0]) + 1
            self._data[key] = (count, entry[1])
            return count

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisStore:
    """Redis-backed store. Values are JSON-encoded."""

    def __init__(self, client, prefix: str = "abi:"):
        self._r = client
        self._prefix = prefix

    def get(self, key: str) -> Any | None:
        raw = self._r.get(self._prefix + key)
        return json.loads(raw) if raw is not None else None

    def set_with_ttl(self, key: str, value: Any, ttl_seconds: float) -> None:
        self._r.setex(self._prefix + key, max(1, int(ttl_seconds)), json.dumps(value, default=str))

    def incr(self, key: str, ttl_seconds: float) -> int:
        full = self._prefix + key
        pipe = self._r.pipeline()
        pipe.incr(full)
        pipe.expire(full, max(1, int(ttl_seconds)), nx=True)
        count, _ = pipe.execute()
        return int(count)

    def delete(self, key: str) -> None:
        self._r.delete(self._prefix + key)


_store: Store | None = None


def _build_store() -> Store:
    if os.environ.get("TESTING"):
        return MemoryStore()

    from .config import settings

    if settings.cache_backend != "redis" or not settings.redis_url:
        return MemoryStore()
    try:
        import redis

        client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=2,
        )
        client.ping()
        log.info("Store using Redis: %s", settings.redis_url)
        return RedisStore(client)
    except Exception as e:
        log.warning("Redis unavailable, using in-memory store: %s", e)
        return MemoryStore()


def get_store() -> Store:
    """Lazy-init the shared store."""
    global _store
    if _store is None:
        _store = _build_store()
    return _store


def set_store(store: Store | None) -> None:
    """Swap the shared store (tests, lifespan)."""
    global _store
    _store = store
