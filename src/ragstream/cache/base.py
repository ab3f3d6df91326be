"""Cache-store contract and deterministic key fingerprints.

The cache is a pure memoisation layer: a miss (or a broken backend) only
costs latency, never correctness.  Values must be JSON-serialisable so
that every backend can hold them.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import Any


def digest(text: str) -> str:
    """Short, stable content digest used inside cache keys."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


_KEY_BUILDERS = {
    "embedding": lambda model, text: f"emb:{model}:{digest(text)}",
    "rerank": lambda query, pool_size, top_k, version="v1": f"rrk:{digest(query)}:{pool_size}:{top_k}:{version}",
    "answer": lambda model, message, context, template="v1": (
        f"ans:{model}:{digest(message)}:{digest(context)}:{template}"
    ),
}


def cache_key(kind: str, *parts: Any) -> str:
    """Build the fingerprint for operation *kind* over *parts*.

    >>> cache_key("rerank", "what is mmr?", 20, 6, "v1").startswith("rrk:")
    True
    """
    builder = _KEY_BUILDERS.get(kind)
    if builder is None:
        raise ValueError(f"Unknown cache key type: {kind!r}")
    return builder(*parts)


class CacheStore(ABC):
    """Backend-agnostic async key/value cache with per-entry TTL."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached value for *key*, or ``None`` when absent/expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key*; ``ttl=None`` uses the store default."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def delete_by_pattern(self, pattern: str) -> int:
        """Delete every key matching glob *pattern*; return how many went."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release backend resources.  Optional."""
