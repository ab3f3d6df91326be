"""Semantic retriever: similarity search over the vector index.

Usage::

    retriever = Retriever(store, embedder, default_k=20, score_threshold=0.1)
    candidates = await retriever.search("How is the overlap configured?")
    for c in candidates:
        print(c.payload.citation(), round(c.score, 3))
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from ragstream.errors import UpstreamError
from ragstream.ingestion.embedder import CachedEmbedder
from ragstream.ingestion.models import PointPayload
from ragstream.retrieval.base import VectorStoreBase
from ragstream.retrieval.models import MetadataFilter, RetrievedCandidate

logger = logging.getLogger(__name__)


class Retriever:
    """Async front-end over any :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        A concrete vector-store backend.
    embedder:
        Used by :meth:`search` to embed text queries.
    default_k:
        Number of candidates requested when no limit is given.
    score_threshold:
        Minimum similarity score; candidates below it are discarded.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: CachedEmbedder | None = None,
        *,
        default_k: int = 20,
        score_threshold: float = 0.1,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.default_k = default_k
        self.score_threshold = score_threshold

    # -- public API -----------------------------------------------------------

    async def retrieve(
        self,
        query_vector: list[float],
        *,
        limit: int | None = None,
        score_threshold: float | None = None,
        filters: list[MetadataFilter] | None = None,
    ) -> list[RetrievedCandidate]:
        """Nearest neighbours of *query_vector* above the score threshold.

        Raises
        ------
        UpstreamError
            When the index call fails.  No retry happens here.
        """
        limit = limit or self.default_k
        threshold = self.score_threshold if score_threshold is None else score_threshold

        start = time.monotonic()
        try:
            raw_hits = await asyncio.to_thread(
                self._store.search, query_vector, limit=limit, filters=filters, with_vectors=True
            )
        except UpstreamError:
            raise
        except Exception as exc:
            logger.error("Retrieval failed: %s", exc)
            raise UpstreamError(f"Vector search failed: {exc}") from exc

        candidates = self._to_candidates(raw_hits, threshold)
        logger.debug(
            "Retrieved %d candidates (%d raw) in %.3fs",
            len(candidates), len(raw_hits), time.monotonic() - start,
        )
        return candidates[:limit]

    async def search(
        self,
        query: str,
        *,
        k: int | None = None,
        filters: list[MetadataFilter] | None = None,
    ) -> list[RetrievedCandidate]:
        """Embed *query* and delegate to :meth:`retrieve`."""
        if self._embedder is None:
            raise RuntimeError("Retriever.search needs an embedder")
        vector = await self._embedder.embed(query)
        return await self.retrieve(vector, limit=k, filters=filters)

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _to_candidates(raw_hits: list[dict[str, Any]], threshold: float) -> list[RetrievedCandidate]:
        candidates: list[RetrievedCandidate] = []
        for hit in raw_hits:
            score = float(hit.get("score", 0.0))
            if score < threshold:
                continue
            candidates.append(
                RetrievedCandidate(
                    id=str(hit["id"]),
                    score=score,
                    payload=PointPayload.model_validate(hit.get("payload") or {}),
                    vector=hit.get("vector"),
                )
            )
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates
