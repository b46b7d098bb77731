"""
Shared cache utilities for scoped, namespaced caches.

Provides a thin wrapper to standardize key construction and TTL handling
across cache implementations.
"""
import logging
from typing import Any, Dict, Optional

from app.core.cache import create_cache
from app.core.config import settings
from app.core.logging_config import LogCategory

logger = logging.getLogger(LogCategory.APP)


class ScopedCache:
    """
    Base class for cache wrappers with namespaced keys.

    Each cache entry is keyed as: "{namespace}:{cache_type}:{scope_id}".
    """

    def __init__(self, namespace: str, cache_backend=None, log: Optional[logging.Logger] = None):
        self._namespace = namespace
        self._cache = cache_backend or create_cache(settings.redis_url)
        self._logger = log or logger

    @property
    def backend(self):
        return self._cache

    def _make_key(self, scope_id: str, cache_type: str) -> str:
        """
        Generate a namespaced cache key.

        Args:
            scope_id: Identifier for the cache scope (must not contain ':')
            cache_type: Type of cache entry (must not contain ':')

        Returns:
            Cache key in format: "{namespace}:{cache_type}:{scope_id}"

        Raises:
            ValueError: If scope_id or cache_type contains ':' character
        """
        if ':' in cache_type:
            raise ValueError(f"cache_type must not contain ':' character, got: {cache_type}")
        if ':' in scope_id:
            raise ValueError(f"scope_id must not contain ':' character, got: {scope_id}")
        return f"{self._namespace}:{cache_type}:{scope_id}"

    def get(self, scope_id: str, cache_type: str) -> Optional[Dict[str, Any]]:
        """Fetch a cached value by scope and type."""
        try:
            key = self._make_key(scope_id, cache_type)
            return self._cache.get(key)
        except Exception as e:
            self._logger.error(
                f"Cache get operation failed: scope_id={scope_id}, cache_type={cache_type}, error={type(e).__name__}: {e}"
            )
            return None

    def set(self, scope_id: str, cache_type: str, value: Dict[str, Any], ttl_seconds: Optional[float]) -> None:
        """Store a cached value by scope and type."""
        try:
            key = self._make_key(scope_id, cache_type)
            self._cache.set(key, value, ex=ttl_seconds)
        except Exception as e:
            self._logger.error(
                f"Cache set operation failed: scope_id={scope_id}, cache_type={cache_type}, error={type(e).__name__}: {e}"
            )

    def claim(self, scope_id: str, cache_type: str, value: Dict[str, Any], ttl_seconds: float) -> bool:
        """
        Store a value only if no live value exists for the key.

        Returns True when this caller won the claim. A backend failure is
        reported as a successful claim so work is never silently dropped.
        """
        try:
            key = self._make_key(scope_id, cache_type)
            return bool(self._cache.set(key, value, ex=ttl_seconds, nx=True))
        except ValueError:
            raise
        except Exception as e:
            self._logger.error(
                f"Cache claim operation failed: scope_id={scope_id}, cache_type={cache_type}, error={type(e).__name__}: {e}"
            )
            return True

    def delete(self, scope_id: str, cache_type: str) -> None:
        """Delete a cached value by scope and type."""
        try:
            key = self._make_key(scope_id, cache_type)
            self._cache.delete(key)
        except Exception as e:
            self._logger.error(
                f"Cache delete operation failed: scope_id={scope_id}, cache_type={cache_type}, error={type(e).__name__}: {e}"
            )

    def release(self, scope_id: str, cache_type: str, value: Dict[str, Any]) -> bool:
        """
        Delete a claimed value only if it is still the one this caller stored.

        Returns False when the claim expired and another caller holds the key.
        """
        try:
            key = self._make_key(scope_id, cache_type)
            return bool(self._cache.delete_if_equal(key, value))
        except Exception as e:
            self._logger.error(
                f"Cache release operation failed: scope_id={scope_id}, cache_type={cache_type}, error={type(e).__name__}: {e}"
            )
            return False
