"""Key-value cache client with Redis primary and in-memory LRU fallback.

The cache is an optimisation, never a dependency: :meth:`CacheManager.get`
and :meth:`CacheManager.set` do not raise.  Backend or serialisation
errors are logged and reported as a miss (``get``) or dropped (``set``).
If Redis becomes unreachable, operations degrade to a process-local LRU
so repeated lookups still avoid the store and the upstream API.

Key naming and TTLs live in :mod:`src.services.cache_keys`.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import OrderedDict
from typing import Any, Protocol, runtime_checkable

import orjson
import structlog

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Cache backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class CacheBackend(Protocol):
    """Async cache backend interface."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisCacheBackend:
    """Redis-backed cache using ``redis.asyncio`` with connection pooling."""

    __slots__ = ("_pool", "_redis")

    def __init__(self, url: str = "redis://localhost:6379/0", *, max_connections: int = 20) -> None:
        import redis.asyncio as aioredis

        self._pool = aioredis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=False,
        )
        self._redis = aioredis.Redis(connection_pool=self._pool)

    async def get(self, key: str) -> bytes | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        if ttl_seconds is not None:
            await self._redis.set(key, value, ex=ttl_seconds)
        else:
            await self._redis.set(key, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def close(self) -> None:
        await self._redis.aclose()
        await self._pool.aclose()

    async def ping(self) -> bool:
        """Return *True* if the Redis server is reachable."""
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False


# ---------------------------------------------------------------------------
# In-memory LRU backend
# ---------------------------------------------------------------------------


class _CacheEntry:
    """Single cache entry with optional TTL."""

    __slots__ = ("expires_at", "value")

    def __init__(self, value: bytes, ttl_seconds: int | None) -> None:
        self.value = value
        self.expires_at: float | None = (time.monotonic() + ttl_seconds) if ttl_seconds is not None else None

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at


class InMemoryCacheBackend:
    """OrderedDict-based LRU cache honouring per-entry TTLs.

    Expired entries are lazily evicted on access; the least recently
    used entry is evicted when the cache is full.
    """

    __slots__ = ("_data", "_lock", "_max_size")

    def __init__(self, *, max_size: int = 10_000) -> None:
        self._max_size = max_size
        self._data: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.expired:
                del self._data[key]
                return None
            self._data.move_to_end(key)
            return entry.value

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        async with self._lock:
            if key in self._data:
                del self._data[key]
            while len(self._data) >= self._max_size:
                self._data.popitem(last=False)
            self._data[key] = _CacheEntry(value, ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    @property
    def size(self) -> int:
        """Return the current number of (possibly expired) entries."""
        return len(self._data)


# ---------------------------------------------------------------------------
# CacheManager  --  public API
# ---------------------------------------------------------------------------


class CacheManager:
    """Soft-failing cache facade with automatic Redis -> in-memory fallback.

    Parameters
    ----------
    redis_url:
        Redis connection string.  Pass *None* to skip Redis entirely.
    namespace:
        Optional prefix prepended to every key (e.g. ``"mgnrega:"``).
    inmemory_max_size:
        Maximum entries for the in-memory fallback cache.
    """

    __slots__ = (
        "_fallback",
        "_namespace",
        "_redis",
        "_redis_available",
        "_redis_checked",
    )

    def __init__(
        self,
        *,
        redis_url: str | None = "redis://localhost:6379/0",
        namespace: str = "",
        inmemory_max_size: int = 10_000,
    ) -> None:
        self._namespace = namespace
        self._fallback = InMemoryCacheBackend(max_size=inmemory_max_size)
        self._redis: RedisCacheBackend | None = None
        self._redis_available: bool = False
        self._redis_checked: bool = False

        if redis_url is not None:
            try:
                self._redis = RedisCacheBackend(url=redis_url)
            except Exception:
                logger.warning("cache.redis_init_failed", redis_url=redis_url)
                self._redis = None

    # -- Internal helpers ------------------------------------------------------

    def _make_key(self, key: str) -> str:
        if self._namespace:
            return f"{self._namespace}{key}"
        return key

    async def _ensure_checked(self) -> None:
        """Probe Redis once, lazily, on first use."""
        if self._redis is not None and not self._redis_checked:
            self._redis_checked = True
            self._redis_available = await self._redis.ping()
            if self._redis_available:
                logger.info("cache.redis_connected")
            else:
                logger.warning("cache.redis_unavailable_using_inmemory")

    async def _safe_redis_op(self, method: str, key: str, *args: Any, **kwargs: Any) -> Any:
        """Try Redis; on failure, flip to in-memory and retry transparently."""
        if self._redis_available and self._redis is not None:
            try:
                return await getattr(self._redis, method)(key, *args, **kwargs)
            except Exception:
                logger.warning("cache.redis_op_failed", method=method, key=key)
                self._redis_available = False

        return await getattr(self._fallback, method)(key, *args, **kwargs)

    # -- Public API ------------------------------------------------------------

    @property
    def redis_available(self) -> bool:
        return self._redis_available

    async def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for *key*, or *default* on miss or error."""
        full_key = self._make_key(key)
        try:
            await self._ensure_checked()
            raw: bytes | None = await self._safe_redis_op("get", full_key)
            if raw is None:
                return default
            return orjson.loads(raw)
        except Exception:
            logger.warning("cache.get_failed", key=full_key, exc_info=True)
            return default

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Serialise *value* via *orjson* and store it; errors are logged only."""
        full_key = self._make_key(key)
        try:
            raw = orjson.dumps(value)
            await self._ensure_checked()
            await self._safe_redis_op("set", full_key, raw, ttl_seconds=ttl_seconds)
        except Exception:
            logger.warning("cache.set_failed", key=full_key, exc_info=True)

    async def delete(self, key: str) -> None:
        full_key = self._make_key(key)
        try:
            await self._ensure_checked()
            await self._safe_redis_op("delete", full_key)
        except Exception:
            logger.warning("cache.delete_failed", key=full_key, exc_info=True)

    async def ping(self) -> dict[str, Any]:
        """Readiness probe.

        The in-memory fallback always answers, so the cache is never
        reported as down; ``backend`` says which tier is serving.
        """
        if self._redis is not None:
            self._redis_available = await self._redis.ping()
            self._redis_checked = True
        return {
            "status": "ok",
            "backend": "redis" if self._redis_available else "inmemory",
        }

    # -- Lifecycle -------------------------------------------------------------

    async def close(self) -> None:
        """Cleanly shut down the Redis connection pool (if any)."""
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.close()
