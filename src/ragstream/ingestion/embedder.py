"""Embedding with a content-addressed cache in front of the provider."""

from __future__ import annotations

import asyncio
import logging

from langchain_core.embeddings import Embeddings

from ragstream.cache.base import CacheStore, cache_key
from ragstream.errors import ProviderTimeoutError, UpstreamError
from ragstream.ingestion.models import Chunk, EmbeddedChunk

logger = logging.getLogger(__name__)


def build_embeddings(provider: str, model_name: str, *, api_key: str = "") -> Embeddings:
    """Return the configured LangChain embedding function.

    ``"huggingface"`` runs a local sentence-transformer; ``"openai"`` calls
    the OpenAI embeddings endpoint.
    """
    if provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        return HuggingFaceEmbeddings(model_name=model_name, encode_kwargs={"normalize_embeddings": True})
    if provider == "openai":
        from langchain_openai import OpenAIEmbeddings

        return OpenAIEmbeddings(model=model_name, api_key=api_key or None)
    raise ValueError(f"Unsupported embedding provider: {provider!r}")


class CachedEmbedder:
    """Turn text into fixed-length vectors, memoised per ``(model, text)``.

    Parameters
    ----------
    provider:
        Any LangChain :class:`~langchain_core.embeddings.Embeddings`.
    cache:
        Cache store consulted before every provider call.
    model_name:
        Model identifier; part of the cache key.
    batch_size:
        Maximum texts sent to the provider per call.  Larger batches are
        split and processed sequentially.
    batch_delay:
        Seconds to sleep between sub-batches (provider rate limits).
    ttl:
        Cache TTL for stored vectors.
    timeout:
        Per-call deadline in seconds; ``None`` disables it.
    """

    def __init__(
        self,
        provider: Embeddings,
        cache: CacheStore,
        *,
        model_name: str,
        batch_size: int = 16,
        batch_delay: float = 0.1,
        ttl: int | None = None,
        timeout: float | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._provider = provider
        self._cache = cache
        self.model_name = model_name
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._ttl = ttl
        self._timeout = timeout
        self.cache_hits = 0
        self.cache_misses = 0

    @property
    def stats(self) -> dict[str, int]:
        return {"cache_hits": self.cache_hits, "cache_misses": self.cache_misses}

    async def embed(self, text: str) -> list[float]:
        """Embed a single text (queries use this path too)."""
        vectors = await self._embed_sub_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts*, returning vectors in input order.

        A failure in any sub-batch fails the whole call.
        """
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            if start > 0 and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            batch = texts[start : start + self.batch_size]
            try:
                vectors.extend(await self._embed_sub_batch(batch))
            except UpstreamError:
                logger.error("Batch embedding failed for items %d-%d", start, start + len(batch))
                raise
            logger.debug("  embedded %d / %d", len(vectors), len(texts))
        return vectors

    async def embed_chunks(self, chunks: list[Chunk]) -> list[EmbeddedChunk]:
        logger.info("Embedding %d chunks with model=%s", len(chunks), self.model_name)
        vectors = await self.embed_batch([c.text for c in chunks])
        return [EmbeddedChunk(**c.model_dump(), vector=v) for c, v in zip(chunks, vectors)]

    # -- internals ------------------------------------------------------------

    async def _embed_sub_batch(self, texts: list[str]) -> list[list[float]]:
        keys = [cache_key("embedding", self.model_name, t) for t in texts]
        cached = await asyncio.gather(*(self._cache.get(k) for k in keys))

        results: list[list[float] | None] = list(cached)
        missing = [i for i, v in enumerate(results) if v is None]
        self.cache_hits += len(texts) - len(missing)
        self.cache_misses += len(missing)
        if not missing:
            logger.debug("Embedding cache hit for %d text(s)", len(texts))
            return results  # type: ignore[return-value]

        fresh = await self._call_provider([texts[i] for i in missing])
        if len(fresh) != len(missing):
            raise UpstreamError(f"Embedding provider returned {len(fresh)} vectors for {len(missing)} inputs")

        for i, vector in zip(missing, fresh):
            vector = [float(x) for x in vector]
            results[i] = vector
            await self._cache.set(keys[i], vector, self._ttl)
        return results  # type: ignore[return-value]

    async def _call_provider(self, texts: list[str]) -> list[list[float]]:
        try:
            if self._timeout is not None:
                return await asyncio.wait_for(self._provider.aembed_documents(texts), self._timeout)
            return await self._provider.aembed_documents(texts)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(f"Embedding provider timed out after {self._timeout}s") from exc
        except UpstreamError:
            raise
        except Exception as exc:
            raise UpstreamError(f"Embedding generation failed: {exc}") from exc
