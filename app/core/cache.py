"""
Key/value cache backends.

RedisCache is used when REDIS_URL is configured so that dedupe windows and
execution locks are shared across API processes and Celery workers.
InMemoryCache is the per-process fallback.
"""
import json
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from redis import Redis

from app.core.logging_config import log_info, log_warning


class InMemoryCache:
    """Thread-safe in-process cache with per-key expiry."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._store: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._clock = clock or time.monotonic

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._expired(expires_at):
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ex: Optional[float] = None, nx: bool = False) -> bool:
        """
        Store a value.

        Args:
            ex: Expiry in seconds (None keeps the value until deleted)
            nx: Only set when the key is absent or expired

        Returns:
            True if the value was stored
        """
        with self._lock:
            if nx:
                existing = self._store.get(key)
                if existing is not None and not self._expired(existing[1]):
                    return False
            expires_at = self._clock() + ex if ex else None
            self._store[key] = (value, expires_at)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def delete_if_equal(self, key: str, value: Any) -> bool:
        """Delete the key only while it still holds ``value``."""
        with self._lock:
            item = self._store.get(key)
            if item is None or self._expired(item[1]) or item[0] != value:
                return False
            del self._store[key]
            return True

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


_COMPARE_AND_DELETE = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str, sort_keys=True)


class RedisCache:
    """Redis-backed cache storing JSON-encoded values."""

    def __init__(self, redis_url: str):
        self._redis = Redis.from_url(redis_url)
        self._compare_and_delete = self._redis.register_script(_COMPARE_AND_DELETE)

    def get(self, key: str) -> Optional[Any]:
        raw = self._redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ex: Optional[float] = None, nx: bool = False) -> bool:
        # Redis expects integer seconds; round up so short windows never become 0
        expiry = max(1, int(ex + 0.999)) if ex else None
        return bool(self._redis.set(key, _dumps(value), ex=expiry, nx=nx))

    def delete(self, key: str) -> None:
        self._redis.delete(key)

    def delete_if_equal(self, key: str, value: Any) -> bool:
        return bool(self._compare_and_delete(keys=[key], args=[_dumps(value)]))

    def close(self) -> None:
        self._redis.close()


def create_cache(redis_url: Optional[str] = None):
    """Create a Redis cache when a URL is configured, otherwise an in-memory cache."""
    if redis_url:
        try:
            cache = RedisCache(redis_url)
            cache._redis.ping()
            log_info("Using Redis cache backend")
            return cache
        except Exception as exc:
            log_warning(
                f"Redis unavailable, falling back to in-memory cache: {exc}",
                redis_url=redis_url,
            )
    return InMemoryCache()
