"""
Unit tests for the in-memory cache backend and the cache factory.
"""
from unittest.mock import patch

from app.core.cache import InMemoryCache, create_cache


class ManualTime:
    def __init__(self):
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


class TestInMemoryCache:
    def test_set_and_get(self):
        cache = InMemoryCache()

        assert cache.set("k", {"a": 1})
        assert cache.get("k") == {"a": 1}

    def test_missing_key(self):
        assert InMemoryCache().get("missing") is None

    def test_expiry(self):
        clock = ManualTime()
        cache = InMemoryCache(clock=clock)
        cache.set("k", "v", ex=10)

        clock.now += 9
        assert cache.get("k") == "v"

        clock.now += 1
        assert cache.get("k") is None

    def test_nx_refuses_live_key(self):
        cache = InMemoryCache()

        assert cache.set("k", "first", nx=True)
        assert not cache.set("k", "second", nx=True)
        assert cache.get("k") == "first"

    def test_nx_allows_expired_key(self):
        clock = ManualTime()
        cache = InMemoryCache(clock=clock)
        cache.set("k", "first", ex=5, nx=True)

        clock.now += 5
        assert cache.set("k", "second", ex=5, nx=True)
        assert cache.get("k") == "second"

    def test_delete(self):
        cache = InMemoryCache()
        cache.set("k", "v")

        cache.delete("k")

        assert cache.get("k") is None

    def test_delete_if_equal_removes_own_value(self):
        cache = InMemoryCache()
        cache.set("k", {"token": "a"})

        assert cache.delete_if_equal("k", {"token": "a"})
        assert cache.get("k") is None

    def test_delete_if_equal_keeps_other_value(self):
        clock = ManualTime()
        cache = InMemoryCache(clock=clock)
        cache.set("k", {"token": "a"}, ex=10, nx=True)
        clock.now += 10
        cache.set("k", {"token": "b"}, ex=10, nx=True)

        assert not cache.delete_if_equal("k", {"token": "a"})
        assert cache.get("k") == {"token": "b"}

    def test_delete_if_equal_missing_key(self):
        assert not InMemoryCache().delete_if_equal("missing", "v")


class TestCreateCache:
    def test_no_url_uses_memory(self):
        assert isinstance(create_cache(None), InMemoryCache)

    def test_unreachable_redis_falls_back_to_memory(self):
        with patch("app.core.cache.RedisCache") as redis_cache:
            redis_cache.return_value._redis.ping.side_effect = ConnectionError("refused")

            cache = create_cache("redis://localhost:1/0")

        assert isinstance(cache, InMemoryCache)
