"""Redis implementation of the cache-store abstraction."""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from ragstream.cache.base import CacheStore

logger = logging.getLogger(__name__)


class RedisCacheStore(CacheStore):
    """JSON values in Redis with ``SETEX`` expiry.

    Backend errors are logged and reported as misses: the cache only
    memoises, so an unavailable Redis must not fail a request.

    Parameters
    ----------
    client:
        An ``redis.asyncio.Redis`` client.
    default_ttl:
        Seconds an entry lives when ``set`` is called without ``ttl``.
    """

    def __init__(self, client: redis.Redis, *, default_ttl: int | None = 3600) -> None:
        self._client = client
        self._default_ttl = default_ttl

    @classmethod
    def from_url(cls, url: str, *, default_ttl: int | None = 3600) -> RedisCacheStore:
        return cls(redis.from_url(url), default_ttl=default_ttl)

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(key)
        except RedisError:
            logger.error("Redis GET failed for %s", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Ignoring undecodable cache entry %s", key)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        ttl = ttl if ttl is not None else self._default_ttl
        data = json.dumps(value)
        try:
            if ttl:
                await self._client.setex(key, ttl, data)
            else:
                await self._client.set(key, data)
        except RedisError:
            logger.error("Redis SET failed for %s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError:
            logger.error("Redis DEL failed for %s", key, exc_info=True)

    async def delete_by_pattern(self, pattern: str) -> int:
        deleted = 0
        try:
            async for key in self._client.scan_iter(match=pattern, count=500):
                deleted += await self._client.delete(key)
        except RedisError:
            logger.error("Redis pattern delete failed for %r", pattern, exc_info=True)
        return deleted

    async def close(self) -> None:
        await self._client.aclose()
