"""
Cache: content-addressed memoisation for embeddings, rerank orderings
and answers.

Public surface
--------------
- :class:`CacheStore`: abstract async backend.
- :class:`MemoryCacheStore`: in-process TTL cache.
- :func:`cache_key`: deterministic key fingerprints.
- ``RedisCacheStore``: Redis backend (imported lazily).
"""

from ragstream.cache.base import CacheStore, cache_key, digest
from ragstream.cache.memory import MemoryCacheStore

__all__ = [
    "CacheStore",
    "MemoryCacheStore",
    "RedisCacheStore",
    "cache_key",
    "digest",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import RedisCacheStore so the redis client is optional at import time."""
    if name == "RedisCacheStore":
        from ragstream.cache.redis_store import RedisCacheStore

        return RedisCacheStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
