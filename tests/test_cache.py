"""Tests for the stats cache (in-memory LRU + CacheManager with Redis failover)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from src.services.cache import CacheManager, InMemoryCacheBackend, stable_key


# -----------------------------------------------------------------------
# InMemoryCacheBackend tests
# -----------------------------------------------------------------------


class TestInMemoryCacheBackend:
    async def test_get_set_basic(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("key1", b"value1")
        assert await cache.get("key1") == b"value1", "get should return the value that was set"

    async def test_get_missing_key_returns_none(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        assert await cache.get("nonexistent") is None

    async def test_delete_many_keys(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("a", b"1")
        await cache.set("b", b"2")
        await cache.set("c", b"3")
        await cache.delete("a", "b", "missing")
        assert await cache.get("a") is None
        assert await cache.get("b") is None
        assert await cache.get("c") == b"3", "keys not named should survive delete"

    async def test_lru_eviction(self) -> None:
        cache = InMemoryCacheBackend(max_size=3)
        await cache.set("a", b"1")
        await cache.set("b", b"2")
        await cache.set("c", b"3")
        await cache.set("d", b"4")
        assert cache.size == 3, "size should remain at max_size after eviction"
        assert await cache.get("a") is None, "LRU entry 'a' should have been evicted"
        assert await cache.get("d") == b"4"

    async def test_lru_access_promotes_entry(self) -> None:
        cache = InMemoryCacheBackend(max_size=3)
        await cache.set("a", b"1")
        await cache.set("b", b"2")
        await cache.set("c", b"3")
        await cache.get("a")
        await cache.set("d", b"4")
        assert await cache.get("b") is None, "'b' should be evicted as LRU after 'a' was accessed"
        assert await cache.get("a") == b"1"

    async def test_ttl_expiration(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("key1", b"value1", ttl_seconds=0)
        await asyncio.sleep(0.01)
        assert await cache.get("key1") is None, "entry with TTL=0 should expire almost immediately"

    async def test_ttl_not_expired_within_window(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("key1", b"value1", ttl_seconds=60)
        assert await cache.get("key1") == b"value1"


# -----------------------------------------------------------------------
# stable_key tests
# -----------------------------------------------------------------------


class TestStableKey:
    def test_deterministic(self) -> None:
        assert stable_key("department:Library") == stable_key("department:Library")

    def test_different_scopes_different_keys(self) -> None:
        assert stable_key("student:stu-1") != stable_key("student:stu-2")

    def test_key_length(self) -> None:
        assert len(stable_key("admin")) == 16, "stable_key should return a 16-character hex string"


# -----------------------------------------------------------------------
# CacheManager tests
# -----------------------------------------------------------------------


class TestCacheManager:
    async def test_inmemory_when_no_redis(self) -> None:
        mgr = CacheManager(redis_url=None, namespace="test:")
        await mgr.set("key1", {"total": 3, "pending": 1, "resolved": 2})
        assert await mgr.get("key1") == {"total": 3, "pending": 1, "resolved": 2}
        assert mgr.backend_name == "memory"

    async def test_get_returns_default_for_missing_key(self) -> None:
        mgr = CacheManager(redis_url=None)
        assert await mgr.get("missing", default="fallback") == "fallback"

    async def test_invalidate_removes_keys(self) -> None:
        mgr = CacheManager(namespace="stats:")
        await mgr.set("admin", {"total": 1})
        await mgr.set("student", {"total": 1})
        await mgr.invalidate("admin")
        assert await mgr.get("admin") is None
        assert await mgr.get("student") == {"total": 1}

    async def test_namespaces_do_not_collide(self) -> None:
        fallback = InMemoryCacheBackend()
        first = CacheManager(namespace="a:")
        second = CacheManager(namespace="b:")
        first._fallback = fallback
        second._fallback = fallback
        await first.set("k", 1)
        await second.set("k", 2)
        assert await first.get("k") == 1
        assert await second.get("k") == 2

    async def test_ping_without_redis(self) -> None:
        mgr = CacheManager()
        assert await mgr.ping() is True, "the in-memory backend always answers"

    async def test_close_without_redis(self) -> None:
        mgr = CacheManager(redis_url=None)
        await mgr.close()

    async def test_redis_used_when_reachable(self) -> None:
        mgr = CacheManager(namespace="ns:")
        redis = MagicMock()
        redis.ping = AsyncMock(return_value=True)
        redis.get = AsyncMock(return_value=b'{"total":5}')
        mgr._redis = redis

        assert await mgr.get("admin") == {"total": 5}
        redis.get.assert_awaited_once_with("ns:admin")
        assert mgr.backend_name == "redis"

    async def test_redis_failure_falls_back_to_memory(self) -> None:
        mgr = CacheManager(namespace="ns:")
        redis = MagicMock()
        redis.ping = AsyncMock(return_value=True)
        redis.set = AsyncMock(side_effect=ConnectionError("redis down"))
        redis.get = AsyncMock(side_effect=ConnectionError("redis down"))
        mgr._redis = redis

        await mgr.set("k", "v")
        assert mgr.backend_name == "memory", "a failed Redis call should switch to the local cache"
        assert await mgr.get("k") == "v"

    async def test_redis_unreachable_at_first_use(self) -> None:
        mgr = CacheManager(namespace="ns:")
        redis = MagicMock()
        redis.ping = AsyncMock(return_value=False)
        redis.get = AsyncMock()
        mgr._redis = redis

        assert await mgr.get("k") is None
        redis.get.assert_not_awaited()

    async def test_corrupt_entry_returns_default(self) -> None:
        mgr = CacheManager()
        await mgr._fallback.set("bad", b"{not json")
        assert await mgr.get("bad", default=0) == 0
