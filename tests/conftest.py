"""Shared pytest configuration and fixtures.

The fakes here stand in for the external collaborators (embedding
provider, chat model, vector index) so both pipelines run end to end
in-process.
"""

from __future__ import annotations

import hashlib
import math
import re
from typing import Any, Callable

import pytest
from langchain_core.embeddings import Embeddings
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage

from ragstream.cache.memory import MemoryCacheStore
from ragstream.ingestion.embedder import CachedEmbedder
from ragstream.ingestion.models import IndexPoint, PointPayload
from ragstream.retrieval.base import VectorStoreBase
from ragstream.retrieval.diversify import cosine_similarity
from ragstream.retrieval.models import MetadataFilter, RetrievedCandidate


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fake embedding provider ─────────────────────────────────────────────


class FakeEmbeddings(Embeddings):
    """Deterministic bag-of-words hashing embeddings.

    Identical texts get identical unit vectors; texts sharing words get
    positive cosine similarity.
    """

    def __init__(self, dim: int = 64) -> None:
        self.dim = dim
        self.calls: list[list[str]] = []

    def _vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dim
        for token in re.findall(r"\w+", text.lower()):
            vec[int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dim] += 1.0
        norm = math.sqrt(sum(x * x for x in vec))
        return [x / norm for x in vec] if norm else vec

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        self.calls.append([text])
        return self._vector(text)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> list[float]:
        return self.embed_query(text)


class FailingEmbeddings(Embeddings):
    """Provider that fails every call."""

    def __init__(self) -> None:
        self.calls = 0

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        raise RuntimeError("provider unavailable")

    def embed_query(self, text: str) -> list[float]:
        self.calls += 1
        raise RuntimeError("provider unavailable")

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> list[float]:
        return self.embed_query(text)


# ── Fake chat model ─────────────────────────────────────────────────────

DEFAULT_REPLY = "Employees get twenty vacation days [handbook.txt p.1]."


class FakeLlmFactory:
    """Returns a fresh scripted chat model per call and records the model ids."""

    def __init__(self, reply: str = DEFAULT_REPLY) -> None:
        self.reply = reply
        self.models: list[str] = []

    def __call__(self, model_name: str) -> GenericFakeChatModel:
        self.models.append(model_name)
        return GenericFakeChatModel(messages=iter([AIMessage(content=self.reply)]))


# ── Fake vector index ───────────────────────────────────────────────────


def _matches(payload: dict[str, Any], filters: list[MetadataFilter] | None) -> bool:
    for f in filters or []:
        value = payload.get(f.field)
        if f.operator == "eq" and value != f.value:
            return False
        if f.operator == "ne" and value == f.value:
            return False
        if f.operator == "in" and value not in f.value:
            return False
        if f.operator == "nin" and value in f.value:
            return False
    return True


class InMemoryVectorStore(VectorStoreBase):
    """Exact cosine search over a dict of points, upserted by id."""

    def __init__(self, collection_name: str = "test-collection") -> None:
        super().__init__(collection_name)
        self.points: dict[str, IndexPoint] = {}
        self.fail_search = False
        self.upsert_calls = 0

    def search(
        self,
        query_embedding: list[float],
        *,
        limit: int = 20,
        filters: list[MetadataFilter] | None = None,
        with_vectors: bool = True,
    ) -> list[dict[str, Any]]:
        if self.fail_search:
            raise ConnectionError("index unreachable")
        hits = []
        for point in self.points.values():
            payload = point.payload.model_dump()
            if not _matches(payload, filters):
                continue
            hits.append(
                {
                    "id": point.id,
                    "score": cosine_similarity(query_embedding, point.vector),
                    "payload": payload,
                    "vector": list(point.vector) if with_vectors else None,
                }
            )
        hits.sort(key=lambda h: h["score"], reverse=True)
        return hits[:limit]

    def upsert(self, points: list[IndexPoint]) -> int:
        self.upsert_calls += 1
        for point in points:
            self.points[point.id] = point
        return len(points)

    def delete_by_filter(self, filters: list[MetadataFilter]) -> None:
        doomed = [pid for pid, p in self.points.items() if _matches(p.payload.model_dump(), filters)]
        for pid in doomed:
            del self.points[pid]

    def collection_info(self) -> dict[str, Any]:
        return {"name": self.collection_name, "points_count": len(self.points)}

    def health_check(self) -> bool:
        return True

    def points_for(self, doc_id: str) -> list[IndexPoint]:
        return [p for p in self.points.values() if p.payload.doc_id == doc_id]


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def fake_embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture()
def memory_cache() -> MemoryCacheStore:
    return MemoryCacheStore(default_ttl=3600)


@pytest.fixture()
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture()
def embedder(fake_embeddings: FakeEmbeddings, memory_cache: MemoryCacheStore) -> CachedEmbedder:
    return CachedEmbedder(fake_embeddings, memory_cache, model_name="fake-model", batch_size=4, batch_delay=0)


@pytest.fixture()
def make_candidate() -> Callable[..., RetrievedCandidate]:
    """Factory for :class:`RetrievedCandidate` objects with sensible defaults."""

    def _make(
        point_id: str,
        score: float,
        *,
        doc_id: str = "doc-1",
        page: int = 1,
        text: str = "Some passage text.",
        title: str = "guide.md",
        vector: list[float] | None = None,
    ) -> RetrievedCandidate:
        return RetrievedCandidate(
            id=point_id,
            score=score,
            payload=PointPayload(
                doc_id=doc_id, chunk_id=f"{doc_id}_p{page}_c0", title=title, page=page, text=text
            ),
            vector=vector,
        )

    return _make
