"""Abstract base class for vector-store backends.

Adding a new backend (Qdrant, Pinecone, Weaviate …) only requires
subclassing :class:`VectorStoreBase` and implementing the abstract
methods.  The rest of the retrieval and ingestion stack is
backend-agnostic.

Backends must upsert idempotently by point id and support exact-match
payload filters (``doc_id`` in particular, for re-indexing).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ragstream.ingestion.models import IndexPoint
from ragstream.retrieval.models import MetadataFilter


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def search(
        self,
        query_embedding: list[float],
        *,
        limit: int = 20,
        filters: list[MetadataFilter] | None = None,
        with_vectors: bool = True,
    ) -> list[dict[str, Any]]:
        """Return up to *limit* nearest points, most similar first.

        Each result dict **must** contain:

        * ``"id"`` – point identifier
        * ``"score"`` – similarity score (higher = more similar)
        * ``"payload"`` – the stored payload dict
        * ``"vector"`` – the stored vector, or ``None`` when not requested
        """
        ...

    @abstractmethod
    def upsert(self, points: list[IndexPoint]) -> int:
        """Insert or overwrite *points* by id; return the number written."""
        ...

    @abstractmethod
    def delete_by_filter(self, filters: list[MetadataFilter]) -> None:
        """Delete every point whose payload matches all *filters*."""
        ...

    @abstractmethod
    def collection_info(self) -> dict[str, Any]:
        """Return at least ``{"points_count": int}``."""
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...
