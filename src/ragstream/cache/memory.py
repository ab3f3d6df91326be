"""In-process cache backed by ``cachetools.TLRUCache``.

Suitable for tests and single-process deployments.  Each entry carries
its own expiry, so ``set(key, value, ttl)`` honours per-call TTLs.
"""

from __future__ import annotations

import fnmatch
import logging
import time
from typing import Any

from cachetools import TLRUCache

from ragstream.cache.base import CacheStore

logger = logging.getLogger(__name__)

_NO_EXPIRY = float("inf")


def _time_to_use(_key: str, entry: tuple[Any, float | None], now: float) -> float:
    _value, ttl = entry
    return now + ttl if ttl else _NO_EXPIRY


class MemoryCacheStore(CacheStore):
    """Per-entry TTL cache.

    Parameters
    ----------
    max_size:
        Maximum number of entries before the least-recently-used one is
        evicted.
    default_ttl:
        Seconds an entry lives when ``set`` is called without ``ttl``.
        ``0`` / ``None`` means no expiry.
    """

    def __init__(self, max_size: int = 10_000, default_ttl: int | None = 3600) -> None:
        self._default_ttl = default_ttl
        self._cache: TLRUCache[str, tuple[Any, float | None]] = TLRUCache(
            maxsize=max_size, ttu=_time_to_use, timer=time.monotonic
        )

    async def get(self, key: str) -> Any | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        return entry[0]

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._cache[key] = (value, ttl if ttl is not None else self._default_ttl)

    async def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    async def delete_by_pattern(self, pattern: str) -> int:
        doomed = [k for k in list(self._cache.keys()) if fnmatch.fnmatchcase(k, pattern)]
        for key in doomed:
            self._cache.pop(key, None)
        logger.debug("Deleted %d cache keys matching %r", len(doomed), pattern)
        return len(doomed)

    def __len__(self) -> int:
        return len(self._cache)
