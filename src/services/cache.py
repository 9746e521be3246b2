"""Short-lived cache for derived complaint data (statistics per scope).

Redis is used when ``REDIS_URL`` is configured and reachable; otherwise,
or as soon as a Redis call fails, operations fall through to a
process-local LRU so a missing cache never blocks a request.  Values are
serialised with orjson.
"""

from __future__ import annotations

import contextlib
import hashlib
import time
from collections import OrderedDict
from typing import Any

import orjson
import structlog

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class RedisCacheBackend:
    """``redis.asyncio`` client over a bounded connection pool."""

    __slots__ = ("_pool", "_redis")

    def __init__(self, url: str, *, max_connections: int = 10) -> None:
        import redis.asyncio as aioredis

        self._pool = aioredis.ConnectionPool.from_url(url, max_connections=max_connections, decode_responses=False)
        self._redis = aioredis.Redis(connection_pool=self._pool)

    async def get(self, key: str) -> bytes | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        await self._redis.set(key, value, ex=ttl_seconds)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._redis.delete(*keys)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self._redis.aclose()
        await self._pool.aclose()


class InMemoryCacheBackend:
    """Process-local LRU; entries carry an optional monotonic deadline."""

    __slots__ = ("_data", "_max_size")

    def __init__(self, *, max_size: int = 2_048) -> None:
        self._max_size = max_size
        self._data: OrderedDict[str, tuple[float | None, bytes]] = OrderedDict()

    async def get(self, key: str) -> bytes | None:
        hit = self._data.get(key)
        if hit is None:
            return None
        deadline, value = hit
        if deadline is not None and time.monotonic() >= deadline:
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return value

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        self._data.pop(key, None)
        if len(self._data) >= self._max_size:
            self._data.popitem(last=False)
        deadline = time.monotonic() + ttl_seconds if ttl_seconds is not None else None
        self._data[key] = (deadline, value)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)

    @property
    def size(self) -> int:
        return len(self._data)


# ---------------------------------------------------------------------------
# CacheManager
# ---------------------------------------------------------------------------


def stable_key(text: str) -> str:
    """Short deterministic digest, used to turn scope keys into cache keys."""
    return hashlib.sha256(text.encode()).hexdigest()[:16]


class CacheManager:
    """Namespaced JSON cache with Redis -> in-memory failover.

    Parameters
    ----------
    redis_url:
        Redis connection string; empty or *None* keeps everything in-process.
    namespace:
        Prefix for every key, e.g. ``"campusdesk:stats:"``.
    """

    __slots__ = ("_fallback", "_namespace", "_redis", "_redis_checked", "_use_redis")

    def __init__(
        self,
        *,
        redis_url: str | None = None,
        namespace: str = "",
        inmemory_max_size: int = 2_048,
    ) -> None:
        self._namespace = namespace
        self._fallback = InMemoryCacheBackend(max_size=inmemory_max_size)
        self._redis: RedisCacheBackend | None = None
        self._redis_checked = False
        self._use_redis = False

        if redis_url:
            try:
                self._redis = RedisCacheBackend(redis_url)
            except Exception:
                logger.warning("cache.redis_init_failed", exc_info=True)

    @property
    def backend_name(self) -> str:
        return "redis" if self._use_redis else "memory"

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def _ensure_checked(self) -> None:
        if self._redis is None or self._redis_checked:
            return
        self._redis_checked = True
        self._use_redis = await self._redis.ping()
        if self._use_redis:
            logger.info("cache.redis_connected", namespace=self._namespace)
        else:
            logger.warning("cache.redis_unavailable_using_inmemory", namespace=self._namespace)

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        await self._ensure_checked()
        if self._use_redis and self._redis is not None:
            try:
                return await getattr(self._redis, method)(*args, **kwargs)
            except Exception:
                logger.warning("cache.redis_op_failed", method=method, exc_info=True)
                self._use_redis = False
        return await getattr(self._fallback, method)(*args, **kwargs)

    async def get(self, key: str, default: Any = None) -> Any:
        raw = await self._call("get", self._key(key))
        if raw is None:
            return default
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("cache.corrupt_entry", key=key)
            return default

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        await self._call("set", self._key(key), orjson.dumps(value), ttl_seconds=ttl_seconds)

    async def invalidate(self, *keys: str) -> None:
        """Drop *keys*; a Redis failure here also clears the local copies."""
        full = [self._key(k) for k in keys]
        await self._call("delete", *full)
        await self._fallback.delete(*full)

    async def ping(self) -> bool:
        """True when the active backend answers; the in-memory one always does."""
        await self._ensure_checked()
        if self._use_redis and self._redis is not None:
            return await self._redis.ping()
        return True

    async def close(self) -> None:
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.close()
