"""Component wiring: build every service once and pass it by reference.

Process entry points (the FastAPI lifespan, the ingestion worker) call
:func:`build_components`; tests construct :class:`RagComponents` from fakes
or pass overrides.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial

from langchain_core.embeddings import Embeddings

from ragstream.cache.base import CacheStore
from ragstream.cache.memory import MemoryCacheStore
from ragstream.chat.generator import StreamingGenerator
from ragstream.chat.graph import build_ranking_graph
from ragstream.chat.llm import LlmFactory, get_llm
from ragstream.config import Settings
from ragstream.ingestion.embedder import CachedEmbedder, build_embeddings
from ragstream.ingestion.pipeline import IngestionPipeline
from ragstream.ingestion.queue import InMemoryJobQueue, JobQueue
from ragstream.retrieval.base import VectorStoreBase
from ragstream.retrieval.reranker import Reranker
from ragstream.retrieval.retriever import Retriever
from ragstream.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class RagComponents:
    """Everything a process needs, constructed once at start-up."""

    settings: Settings
    cache: CacheStore
    queue: JobQueue
    store: VectorStoreBase
    embedder: CachedEmbedder
    retriever: Retriever
    reranker: Reranker
    pipeline: IngestionPipeline
    generator: StreamingGenerator

    async def aclose(self) -> None:
        await self.queue.close()
        await self.cache.close()


def build_cache(settings: Settings) -> CacheStore:
    if settings.cache_backend == "redis":
        from ragstream.cache.redis_store import RedisCacheStore

        return RedisCacheStore.from_url(settings.redis_url, default_ttl=settings.cache_ttl_seconds)
    if settings.cache_backend == "memory":
        return MemoryCacheStore(default_ttl=settings.cache_ttl_seconds)
    raise ValueError(f"Unsupported cache backend: {settings.cache_backend!r}")


def build_queue(settings: Settings, policy: RetryPolicy) -> JobQueue:
    if settings.queue_backend == "redis":
        from ragstream.ingestion.redis_queue import RedisJobQueue

        return RedisJobQueue.from_url(settings.redis_url, prefix=settings.queue_prefix, default_policy=policy)
    if settings.queue_backend == "memory":
        return InMemoryJobQueue(default_policy=policy)
    raise ValueError(f"Unsupported queue backend: {settings.queue_backend!r}")


def build_components(
    settings: Settings,
    *,
    store: VectorStoreBase | None = None,
    embeddings: Embeddings | None = None,
    rerank_embeddings: Embeddings | None = None,
    llm_factory: LlmFactory | None = None,
    cache: CacheStore | None = None,
    queue: JobQueue | None = None,
) -> RagComponents:
    """Construct all components from *settings*; keyword overrides win.

    Nothing here opens a network connection: Redis clients connect lazily
    and the Chroma client is only created when no *store* is given.
    """
    policy = RetryPolicy(max_attempts=settings.job_attempts, base_delay=settings.job_backoff_seconds)
    cache = cache or build_cache(settings)
    queue = queue or build_queue(settings, policy)

    if store is None:
        from ragstream.retrieval.chroma_store import ChromaVectorStore

        store = ChromaVectorStore(
            settings.chroma_collection, host=settings.chroma_host, port=settings.chroma_port
        )

    if embeddings is None:
        embeddings = build_embeddings(
            settings.embedding_provider, settings.embedding_model, api_key=settings.openai_api_key
        )
    if rerank_embeddings is None:
        if settings.rerank_model == settings.embedding_model:
            rerank_embeddings = embeddings
        else:
            rerank_embeddings = build_embeddings(
                settings.embedding_provider, settings.rerank_model, api_key=settings.openai_api_key
            )

    if llm_factory is None:
        llm_factory = partial(
            get_llm,
            api_key=settings.openai_api_key,
            base_url=settings.llm_base_url,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout_seconds,
        )

    embedder = CachedEmbedder(
        embeddings,
        cache,
        model_name=settings.embedding_model,
        batch_size=settings.embed_batch_size,
        batch_delay=settings.embed_batch_delay_seconds,
        ttl=settings.cache_ttl_seconds,
        timeout=settings.llm_timeout_seconds,
    )
    retriever = Retriever(
        store, embedder, default_k=settings.search_k, score_threshold=settings.score_threshold
    )
    reranker = Reranker(
        rerank_embeddings,
        cache,
        top_k=settings.top_k,
        ttl=settings.cache_ttl_seconds,
        timeout=settings.llm_timeout_seconds,
    )
    pipeline = IngestionPipeline(
        queue,
        store,
        embedder,
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        policy=policy,
        parse_concurrency=settings.parse_concurrency,
        embed_concurrency=settings.embed_concurrency,
        upsert_concurrency=settings.upsert_concurrency,
        storage_dir=settings.storage_dir,
    )
    graph = build_ranking_graph(
        embedder,
        retriever,
        reranker,
        search_k=settings.search_k,
        score_threshold=settings.score_threshold,
        mmr_lambda=settings.mmr_lambda,
        top_k=settings.top_k,
        snippet_min_chars=settings.snippet_min_chars,
        snippet_max_chars=settings.snippet_max_chars,
        context_max_tokens=settings.context_max_tokens,
        chars_per_token=settings.chars_per_token,
    )
    generator = StreamingGenerator(
        graph,
        llm_factory,
        cache=cache,
        model_aliases=settings.model_aliases,
        max_history_turns=settings.max_history_turns,
        max_message_chars=settings.max_message_chars,
        max_history_messages=settings.max_history_messages,
        answer_ttl=settings.cache_ttl_seconds,
    )
    logger.info(
        "Components ready (cache=%s, queue=%s, store=%s)",
        type(cache).__name__, type(queue).__name__, type(store).__name__,
    )
    return RagComponents(
        settings=settings,
        cache=cache,
        queue=queue,
        store=store,
        embedder=embedder,
        retriever=retriever,
        reranker=reranker,
        pipeline=pipeline,
        generator=generator,
    )
