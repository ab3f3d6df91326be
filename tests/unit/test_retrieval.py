"""Unit tests for the retrieval layer: models, Chroma store and Retriever."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from ragstream.errors import UpstreamError
from ragstream.ingestion.models import IndexPoint, PointPayload
from ragstream.retrieval.models import MetadataFilter, RetrievedCandidate, SourceCitation
from ragstream.retrieval.retriever import Retriever

from conftest import InMemoryVectorStore


def _payload(doc_id: str, page: int, text: str) -> PointPayload:
    return PointPayload(doc_id=doc_id, chunk_id=f"{doc_id}_p{page}_c0", title=f"{doc_id}.md", page=page, text=text)


# ── Fixtures ────────────────────────────────────────────────────────────

SAMPLE_HITS: list[dict[str, Any]] = [
    {"id": "p-1", "score": 0.92, "payload": _payload("guide", 7, "Chunks overlap by 180 characters.").model_dump()},
    {"id": "p-2", "score": 0.45, "payload": _payload("faq", 1, "Redis backs the job queues.").model_dump()},
    {"id": "p-3", "score": 0.05, "payload": _payload("misc", 2, "Unrelated text.").model_dump()},
]


class CannedStore(InMemoryVectorStore):
    """Returns canned hits in a scrambled order and records the call."""

    def __init__(self, hits: list[dict[str, Any]]) -> None:
        super().__init__()
        self._hits = hits
        self.last_call: dict[str, Any] = {}

    def search(self, query_embedding, *, limit=20, filters=None, with_vectors=True):  # noqa: ANN001, ANN201
        self.last_call = {"limit": limit, "filters": filters, "with_vectors": with_vectors}
        return list(reversed(self._hits))[:limit]


@pytest.fixture()
def canned_store() -> CannedStore:
    return CannedStore(SAMPLE_HITS)


# ── Model tests ─────────────────────────────────────────────────────────


class TestMetadataFilter:
    def test_equals_factory(self) -> None:
        f = MetadataFilter.equals("source", "a.md")
        assert f.field == "source"
        assert f.operator == "eq"
        assert f.value == "a.md"

    def test_not_equals_factory(self) -> None:
        assert MetadataFilter.not_equals("page", 3).operator == "ne"

    def test_one_of_factory(self) -> None:
        f = MetadataFilter.one_of("doc_id", ["a", "b"])
        assert f.operator == "in"
        assert f.value == ["a", "b"]

    def test_for_document(self) -> None:
        assert MetadataFilter.for_document("d1") == MetadataFilter.equals("doc_id", "d1")


class TestCandidateModels:
    def test_citation_format(self) -> None:
        assert _payload("guide", 7, "x").citation() == "[guide.md p.7]"

    def test_with_text_copies(self, make_candidate) -> None:  # noqa: ANN001
        original = make_candidate("a", 0.9, text="Long original text.")
        short = original.with_text("Short.")
        assert short.text == "Short."
        assert original.text == "Long original text."

    def test_source_from_candidate(self, make_candidate) -> None:  # noqa: ANN001
        source = SourceCitation.from_candidate(make_candidate("a", 0.8, page=4))
        assert source.model_dump() == {
            "title": "guide.md",
            "page": 4,
            "score": 0.8,
            "citation": "[guide.md p.4]",
        }


# ── Retriever tests ─────────────────────────────────────────────────────


class TestRetriever:
    @pytest.mark.asyncio
    async def test_threshold_and_ordering(self, canned_store: CannedStore) -> None:
        retriever = Retriever(canned_store, score_threshold=0.1)
        candidates = await retriever.retrieve([0.1, 0.2])

        assert [c.id for c in candidates] == ["p-1", "p-2"]
        assert all(isinstance(c, RetrievedCandidate) for c in candidates)
        assert candidates[0].payload.page == 7

    @pytest.mark.asyncio
    async def test_explicit_threshold_overrides_default(self, canned_store: CannedStore) -> None:
        retriever = Retriever(canned_store, score_threshold=0.1)
        candidates = await retriever.retrieve([0.1], score_threshold=0.5)
        assert [c.id for c in candidates] == ["p-1"]

    @pytest.mark.asyncio
    async def test_requests_vectors_and_forwards_filters(self, canned_store: CannedStore) -> None:
        retriever = Retriever(canned_store, default_k=7)
        filters = [MetadataFilter.for_document("guide")]
        await retriever.retrieve([0.1], filters=filters)

        assert canned_store.last_call == {"limit": 7, "filters": filters, "with_vectors": True}

    @pytest.mark.asyncio
    async def test_index_failure_is_upstream_error(self, vector_store: InMemoryVectorStore) -> None:
        vector_store.fail_search = True
        with pytest.raises(UpstreamError, match="Vector search failed"):
            await Retriever(vector_store).retrieve([1.0])

    @pytest.mark.asyncio
    async def test_empty_store_returns_empty(self, vector_store: InMemoryVectorStore) -> None:
        assert await Retriever(vector_store).retrieve([1.0, 0.0]) == []

    @pytest.mark.asyncio
    async def test_search_embeds_query(self, vector_store: InMemoryVectorStore, embedder) -> None:  # noqa: ANN001
        text = "Reindexing removes stale points first."
        vector = await embedder.embed(text)
        vector_store.upsert([IndexPoint(id="p-9", vector=vector, payload=_payload("ops", 3, text))])

        [hit] = await Retriever(vector_store, embedder).search(text)
        assert hit.id == "p-9"
        assert hit.score == pytest.approx(1.0)
        assert hit.vector == vector

    @pytest.mark.asyncio
    async def test_search_without_embedder(self, vector_store: InMemoryVectorStore) -> None:
        with pytest.raises(RuntimeError):
            await Retriever(vector_store).search("anything")


# ── Chroma backend tests ────────────────────────────────────────────────


class TestBuildChromaWhere:
    @pytest.fixture(autouse=True)
    def _skip_if_chroma_broken(self) -> None:
        """Skip if chromadb can't be imported in this environment."""
        try:
            from ragstream.retrieval.chroma_store import _build_chroma_where  # noqa: F401
        except Exception:
            pytest.skip("chromadb not importable in this environment")

    def test_single_filter(self) -> None:
        from ragstream.retrieval.chroma_store import _build_chroma_where

        assert _build_chroma_where([MetadataFilter.equals("doc_id", "d1")]) == {"doc_id": {"$eq": "d1"}}

    def test_multiple_filters_produce_and(self) -> None:
        from ragstream.retrieval.chroma_store import _build_chroma_where

        where = _build_chroma_where(
            [MetadataFilter.equals("doc_id", "d1"), MetadataFilter(field="page", operator="gte", value=5)]
        )
        assert where == {"$and": [{"doc_id": {"$eq": "d1"}}, {"page": {"$gte": 5}}]}

    def test_none_when_empty(self) -> None:
        from ragstream.retrieval.chroma_store import _build_chroma_where

        assert _build_chroma_where([]) is None

    def test_unsupported_operator_raises(self) -> None:
        from ragstream.retrieval.chroma_store import _build_chroma_where

        with pytest.raises(ValueError, match="Unsupported filter operator"):
            _build_chroma_where([MetadataFilter(field="x", operator="regex", value=".*")])


class TestChromaVectorStore:
    @pytest.fixture()
    def client(self) -> MagicMock:
        pytest.importorskip("chromadb")
        return MagicMock()

    def _store(self, client: MagicMock):  # noqa: ANN202
        from ragstream.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore("docs", client=client)

    def test_creates_cosine_collection(self, client: MagicMock) -> None:
        self._store(client)
        client.get_or_create_collection.assert_called_once_with("docs", metadata={"hnsw:space": "cosine"})

    def test_search_maps_distance_to_score(self, client: MagicMock) -> None:
        collection = client.get_or_create_collection.return_value
        collection.query.return_value = {
            "ids": [["p-1"]],
            "documents": [["Passage text."]],
            "metadatas": [[{"doc_id": "d1", "chunk_id": "d1_p2_c0", "page": 2, "title": "a.md"}]],
            "distances": [[0.25]],
            "embeddings": [[[0.6, 0.8]]],
        }
        [hit] = self._store(client).search([0.6, 0.8], limit=5, filters=[MetadataFilter.for_document("d1")])

        assert hit["id"] == "p-1"
        assert hit["score"] == pytest.approx(0.75)
        assert hit["payload"]["text"] == "Passage text."
        assert hit["vector"] == [0.6, 0.8]
        kwargs = collection.query.call_args.kwargs
        assert kwargs["where"] == {"doc_id": {"$eq": "d1"}}
        assert "embeddings" in kwargs["include"]

    def test_upsert_stores_text_as_document(self, client: MagicMock) -> None:
        collection = client.get_or_create_collection.return_value
        point = IndexPoint(id="p-1", vector=[1.0, 0.0], payload=_payload("d1", 1, "Body."))

        assert self._store(client).upsert([point]) == 1
        kwargs = collection.upsert.call_args.kwargs
        assert kwargs["documents"] == ["Body."]
        assert "text" not in kwargs["metadatas"][0]

    def test_delete_requires_filter(self, client: MagicMock) -> None:
        store = self._store(client)
        with pytest.raises(ValueError):
            store.delete_by_filter([])
        store.delete_by_filter([MetadataFilter.for_document("d1")])
        client.get_or_create_collection.return_value.delete.assert_called_once_with(
            where={"doc_id": {"$eq": "d1"}}
        )

    def test_collection_info_and_health(self, client: MagicMock) -> None:
        client.get_or_create_collection.return_value.count.return_value = 3
        client.heartbeat.side_effect = ConnectionError("down")
        store = self._store(client)

        assert store.collection_info()["points_count"] == 3
        assert store.health_check() is False
