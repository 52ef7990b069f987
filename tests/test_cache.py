"""Tests for the dual-layer caching system (in-memory LRU + CacheManager)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from src.services.cache import CacheManager, InMemoryCacheBackend


# -----------------------------------------------------------------------
# InMemoryCacheBackend tests
# -----------------------------------------------------------------------


class TestInMemoryCacheBackend:
    """Test the in-memory LRU cache backend."""

    async def test_get_set_basic(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("key1", b"value1")
        result = await cache.get("key1")
        assert result == b"value1", "get should return the value that was set"

    async def test_get_missing_key_returns_none(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        assert await cache.get("nonexistent") is None

    async def test_set_overwrites_existing(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("key1", b"original")
        await cache.set("key1", b"updated")
        assert await cache.get("key1") == b"updated"

    async def test_delete_removes_key(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("key1", b"value1")
        await cache.delete("key1")
        assert await cache.get("key1") is None, "get should return None after delete"

    async def test_lru_eviction(self) -> None:
        """When max_size is reached, the least-recently-used entry should be evicted."""
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
        await cache.set("key1", b"value1", ttl_seconds=3600)
        assert await cache.get("key1") == b"value1"


# -----------------------------------------------------------------------
# CacheManager tests
# -----------------------------------------------------------------------


class TestCacheManager:
    """Test the CacheManager facade with Redis disabled (falls back to in-memory)."""

    async def test_fallback_to_inmemory_when_no_redis(self) -> None:
        mgr = CacheManager(redis_url=None, namespace="test:")
        await mgr.set("district:UP:LUCKNOW:2024-2025", {"person_days_generated": 40000})
        result = await mgr.get("district:UP:LUCKNOW:2024-2025")
        assert result == {"person_days_generated": 40000}

    async def test_namespace_key_prefixing(self) -> None:
        mgr = CacheManager(redis_url=None, namespace="mgnrega:")
        assert mgr._make_key("districts:BIHAR") == "mgnrega:districts:BIHAR"

    async def test_empty_namespace(self) -> None:
        mgr = CacheManager(redis_url=None, namespace="")
        assert mgr._make_key("foo") == "foo", "empty namespace should not add prefix"

    async def test_get_returns_default_for_missing_key(self) -> None:
        mgr = CacheManager(redis_url=None)
        assert await mgr.get("missing", default="fallback") == "fallback"
        assert await mgr.get("missing") is None

    async def test_set_and_get_various_types(self) -> None:
        mgr = CacheManager(redis_url=None)
        await mgr.set("dict_key", {"a": 1, "b": [2, 3]})
        assert await mgr.get("dict_key") == {"a": 1, "b": [2, 3]}

        await mgr.set("list_key", ["AGRA", "LUCKNOW"])
        assert await mgr.get("list_key") == ["AGRA", "LUCKNOW"]

        await mgr.set("str_key", "hello")
        assert await mgr.get("str_key") == "hello"

    async def test_delete(self) -> None:
        mgr = CacheManager(redis_url=None)
        await mgr.set("key1", "val1")
        await mgr.delete("key1")
        assert await mgr.get("key1") is None, "deleted key should not be retrievable"

    async def test_close_without_redis(self) -> None:
        mgr = CacheManager(redis_url=None)
        await mgr.close()  # should not raise

    async def test_ping_reports_inmemory_backend(self) -> None:
        mgr = CacheManager(redis_url=None)
        assert await mgr.ping() == {"status": "ok", "backend": "inmemory"}


class TestCacheManagerSoftFailure:
    """get/set must never raise; failures read as a miss or are dropped."""

    async def test_get_backend_error_returns_default(self) -> None:
        mgr = CacheManager(redis_url=None)
        mgr._fallback = MagicMock(get=AsyncMock(side_effect=RuntimeError("boom")))
        assert await mgr.get("k", default="d") == "d"

    async def test_get_corrupt_payload_returns_default(self) -> None:
        mgr = CacheManager(redis_url=None)
        await mgr._fallback.set("k", b"{not json")
        assert await mgr.get("k") is None

    async def test_set_unserialisable_value_is_dropped(self) -> None:
        mgr = CacheManager(redis_url=None)
        await mgr.set("k", object())  # should not raise
        assert await mgr.get("k") is None

    async def test_set_backend_error_is_swallowed(self) -> None:
        mgr = CacheManager(redis_url=None)
        mgr._fallback = MagicMock(set=AsyncMock(side_effect=RuntimeError("boom")))
        await mgr.set("k", {"v": 1})  # should not raise

    async def test_redis_failure_flips_to_inmemory(self) -> None:
        mgr = CacheManager(redis_url=None)
        redis = MagicMock()
        redis.ping = AsyncMock(return_value=True)
        redis.get = AsyncMock(side_effect=ConnectionError("redis down"))
        redis.set = AsyncMock(side_effect=ConnectionError("redis down"))
        mgr._redis = redis

        await mgr.set("k", {"v": 1})
        assert mgr.redis_available is False, "a failed Redis op should switch to in-memory"
        assert await mgr.get("k") == {"v": 1}, "value should have landed in the in-memory fallback"
        redis.get.assert_not_called()
