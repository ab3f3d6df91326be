"""Domain models for retrieval candidates, filters and source citations."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from ragstream.ingestion.models import PointPayload


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries and deletes.

    Attributes
    ----------
    field:
        The payload key to filter on (e.g. ``"doc_id"``, ``"page"``).
    operator:
        Comparison operator: one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def not_equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)

    @classmethod
    def for_document(cls, doc_id: str) -> MetadataFilter:
        return cls.equals("doc_id", doc_id)


class RetrievedCandidate(BaseModel):
    """An index point scored against one query.

    ``vector`` is present when the store returned it (needed by MMR);
    ``rerank_score`` is filled in by the reranker.
    """

    id: str
    score: float
    payload: PointPayload
    vector: list[float] | None = None
    rerank_score: float | None = None

    @property
    def text(self) -> str:
        return self.payload.text

    @property
    def group_key(self) -> tuple[str, int]:
        """Logical passage identity used for deduplication."""
        return (self.payload.doc_id, self.payload.page)

    def with_text(self, text: str) -> RetrievedCandidate:
        return self.model_copy(update={"payload": self.payload.model_copy(update={"text": text})})


class SourceCitation(BaseModel):
    """A source shown to the user next to the answer."""

    title: str
    page: int
    score: float | None = None
    citation: str

    @classmethod
    def from_candidate(cls, candidate: RetrievedCandidate) -> SourceCitation:
        return cls(
            title=candidate.payload.title,
            page=candidate.payload.page,
            score=candidate.score,
            citation=candidate.payload.citation(),
        )
