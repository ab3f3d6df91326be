"""Second-pass relevance scoring applied to the snippet pool.

Each snippet and the query are embedded with a dedicated relevance model;
candidates are re-ordered by cosine similarity to the query.  Results are
memoised per ``(query, pool size, top_k, version)``.  Any provider failure
falls back to the vector-search order, so reranking never fails a request.
"""

from __future__ import annotations

import asyncio
import logging
import time

from langchain_core.embeddings import Embeddings

from ragstream.cache.base import CacheStore, cache_key
from ragstream.errors import RerankError
from ragstream.retrieval.diversify import cosine_similarity
from ragstream.retrieval.models import RetrievedCandidate

logger = logging.getLogger(__name__)

RERANK_VERSION = "v1"


def by_original_score(candidates: list[RetrievedCandidate], top_k: int) -> list[RetrievedCandidate]:
    """Top-*top_k* by vector-search score; ties keep input order."""
    return sorted(candidates, key=lambda c: c.score, reverse=True)[:top_k]


class Reranker:
    """Embedding-similarity reranker with cache and graceful fallback.

    Parameters
    ----------
    provider:
        LangChain embeddings used as the relevance signal.
    cache:
        Optional cache for orderings.
    top_k:
        Default number of candidates kept.
    ttl:
        Cache TTL in seconds.
    timeout:
        Deadline for the provider calls; exceeding it triggers the fallback.
    enabled:
        When ``False`` the fallback ordering is always used.
    """

    def __init__(
        self,
        provider: Embeddings,
        cache: CacheStore | None = None,
        *,
        top_k: int = 6,
        ttl: int | None = None,
        timeout: float | None = None,
        enabled: bool = True,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self.top_k = top_k
        self._ttl = ttl
        self._timeout = timeout
        self.enabled = enabled

    async def rerank(
        self,
        query: str,
        candidates: list[RetrievedCandidate],
        top_k: int | None = None,
        *,
        use_cache: bool = True,
    ) -> list[RetrievedCandidate]:
        """Return the *top_k* most relevant candidates for *query*.

        Pools no larger than *top_k* are returned unchanged without calling
        the provider.
        """
        top_k = top_k or self.top_k
        if len(candidates) <= top_k:
            return list(candidates)
        if not self.enabled:
            return by_original_score(candidates, top_k)

        key = cache_key("rerank", query, len(candidates), top_k, RERANK_VERSION)
        if use_cache and self._cache is not None:
            cached = await self._from_cache(key, candidates)
            if cached is not None:
                logger.debug("Rerank cache hit")
                return cached

        start = time.monotonic()
        try:
            reranked = await self._score(query, candidates, top_k)
        except RerankError as exc:
            logger.warning("Reranking failed (%s); falling back to vector search ranking", exc)
            return by_original_score(candidates, top_k)

        if use_cache and self._cache is not None:
            await self._cache.set(key, [[c.id, c.rerank_score] for c in reranked], self._ttl)
        logger.info(
            "Reranked %d candidates to top %d in %.3fs",
            len(candidates), top_k, time.monotonic() - start,
        )
        return reranked

    # -- internals ------------------------------------------------------------

    async def _score(
        self, query: str, candidates: list[RetrievedCandidate], top_k: int
    ) -> list[RetrievedCandidate]:
        try:
            query_vector, doc_vectors = await asyncio.wait_for(
                asyncio.gather(
                    self._provider.aembed_query(query),
                    self._provider.aembed_documents([c.text for c in candidates]),
                ),
                self._timeout,
            )
        except Exception as exc:
            raise RerankError(str(exc) or type(exc).__name__) from exc
        if len(doc_vectors) != len(candidates):
            raise RerankError(f"expected {len(candidates)} vectors, got {len(doc_vectors)}")

        scored = [
            c.model_copy(update={"rerank_score": cosine_similarity(query_vector, v)})
            for c, v in zip(candidates, doc_vectors)
        ]
        scored.sort(key=lambda c: c.rerank_score, reverse=True)
        return scored[:top_k]

    async def _from_cache(
        self, key: str, candidates: list[RetrievedCandidate]
    ) -> list[RetrievedCandidate] | None:
        ordering = await self._cache.get(key)
        if not ordering:
            return None
        try:
            pairs = [(str(point_id), float(score)) for point_id, score in ordering]
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed rerank cache entry %s", key)
            return None
        by_id = {c.id: c for c in candidates}
        restored: list[RetrievedCandidate] = []
        for point_id, score in pairs:
            candidate = by_id.get(point_id)
            if candidate is None:
                # The pool changed since the entry was written.
                return None
            restored.append(candidate.model_copy(update={"rerank_score": score}))
        return restored

    async def rank_documents(
        self, query: str, candidates: list[RetrievedCandidate], top_k: int | None = None
    ) -> list[RetrievedCandidate]:
        """Rerank without consulting the cache."""
        return await self.rerank(query, candidates, top_k, use_cache=False)
