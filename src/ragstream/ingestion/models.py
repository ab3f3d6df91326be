"""Document, chunk and index-point models shared by both pipelines."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

# Point ids are derived from the stable chunk identifier, so re-running the
# embed stage for the same parse yields the same ids and upserts stay idempotent.
_POINT_NAMESPACE = uuid.UUID("6f1c2e8a-7d0b-4f4e-9a55-3b8f3f1d2c77")


def point_id_for(chunk_id: str) -> str:
    return str(uuid.uuid5(_POINT_NAMESPACE, chunk_id))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Page(BaseModel):
    """One page (or logical section) of extracted text; ``page`` is 1-based."""

    page: int = Field(ge=1)
    text: str


class Document(BaseModel):
    """A parsed upload.

    Attributes
    ----------
    id:
        Opaque document identifier, stable across re-indexing.
    filename:
        Stored filename; used as the citation title.
    mime_type:
        MIME kind reported at upload.
    pages:
        Ordered pages.
    parsed_at:
        UTC timestamp of the parse.
    source:
        Origin tag (``"upload"`` for HTTP uploads).
    """

    id: str
    filename: str
    mime_type: str = "text/plain"
    pages: list[Page] = Field(default_factory=list)
    parsed_at: datetime = Field(default_factory=_utcnow)
    source: str = "upload"

    @property
    def total_chars(self) -> int:
        return sum(len(p.text) for p in self.pages)


class Chunk(BaseModel):
    """A bounded span of a page's text: the unit of embedding and retrieval."""

    id: str
    doc_id: str
    chunk_id: str
    chunk_index: int
    page: int
    text: str
    source: str
    title: str
    mime: str
    updated_at: datetime


class EmbeddedChunk(Chunk):
    vector: list[float]


class PointPayload(BaseModel):
    """Metadata persisted next to every vector."""

    doc_id: str
    chunk_id: str
    source: str = "upload"
    title: str = "unknown"
    page: int = 1
    text: str = ""
    mime: str = ""
    updated_at: str = ""

    def citation(self) -> str:
        """Human-readable ``[title p.page]`` reference."""
        return f"[{self.title} p.{self.page}]"


class IndexPoint(BaseModel):
    """The persisted vector + payload record; one per chunk, upserted by id."""

    id: str
    vector: list[float]
    payload: PointPayload

    @classmethod
    def from_embedded_chunk(cls, chunk: EmbeddedChunk) -> IndexPoint:
        return cls(
            id=chunk.id,
            vector=chunk.vector,
            payload=PointPayload(
                doc_id=chunk.doc_id,
                chunk_id=chunk.chunk_id,
                source=chunk.source,
                title=chunk.title,
                page=chunk.page,
                text=chunk.text,
                mime=chunk.mime,
                updated_at=chunk.updated_at.isoformat(),
            ),
        )


class DocumentState(str, Enum):
    """Per-document ingestion state machine."""

    QUEUED_PARSE = "queued_parse"
    PARSING = "parsing"
    QUEUED_EMBED = "queued_embed"
    EMBEDDING = "embedding"
    QUEUED_UPSERT = "queued_upsert"
    UPSERTING = "upserting"
    DONE = "done"
    FAILED = "failed"
