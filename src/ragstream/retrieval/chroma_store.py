"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import logging
from typing import Any

import chromadb

from ragstream.ingestion.models import IndexPoint
from ragstream.retrieval.base import VectorStoreBase
from ragstream.retrieval.models import MetadataFilter

logger = logging.getLogger(__name__)

_OP_MAP = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "nin": "$nin",
}


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _first_row(results: dict[str, Any], key: str) -> list[Any]:
    rows = results.get(key)
    if rows is None or len(rows) == 0:
        return []
    row = rows[0]
    return [] if row is None else list(row)


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store using cosine distance.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    client:
        Pre-built Chroma client (e.g. ``chromadb.EphemeralClient()``);
        overrides *host* / *port*.
    """

    def __init__(
        self,
        collection_name: str,
        *,
        host: str = "localhost",
        port: int = 8000,
        client: Any | None = None,
    ) -> None:
        super().__init__(collection_name)
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collection = self._client.get_or_create_collection(
            collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    # -- VectorStoreBase overrides --------------------------------------------

    def search(
        self,
        query_embedding: list[float],
        *,
        limit: int = 20,
        filters: list[MetadataFilter] | None = None,
        with_vectors: bool = True,
    ) -> list[dict[str, Any]]:
        include = ["documents", "metadatas", "distances"]
        if with_vectors:
            include.append("embeddings")

        results = self._collection.query(
            query_embeddings=[query_embedding],
            n_results=limit,
            where=_build_chroma_where(filters) if filters else None,
            include=include,
        )

        ids = _first_row(results, "ids")
        docs = _first_row(results, "documents")
        metas = _first_row(results, "metadatas")
        distances = _first_row(results, "distances")
        vectors = _first_row(results, "embeddings") if with_vectors else []

        hits: list[dict[str, Any]] = []
        for i, point_id in enumerate(ids):
            payload = dict(metas[i] or {}) if i < len(metas) else {}
            payload["text"] = (docs[i] if i < len(docs) else None) or payload.get("text", "")
            vector = [float(x) for x in vectors[i]] if i < len(vectors) and vectors[i] is not None else None
            hits.append(
                {
                    "id": point_id,
                    # Cosine space: distance = 1 - cosine similarity.
                    "score": 1.0 - float(distances[i]),
                    "payload": payload,
                    "vector": vector,
                }
            )
        return hits

    def upsert(self, points: list[IndexPoint]) -> int:
        if not points:
            return 0
        self._collection.upsert(
            ids=[p.id for p in points],
            embeddings=[p.vector for p in points],
            documents=[p.payload.text for p in points],
            # Chroma metadata values must be flat str/int/float/bool
            metadatas=[p.payload.model_dump(exclude={"text"}) for p in points],
        )
        return len(points)

    def delete_by_filter(self, filters: list[MetadataFilter]) -> None:
        where = _build_chroma_where(filters)
        if where is None:
            raise ValueError("Refusing to delete without a filter")
        self._collection.delete(where=where)
        logger.info("Deleted points from %s where %s", self.collection_name, where)

    def collection_info(self) -> dict[str, Any]:
        count = self._collection.count()
        return {"name": self.collection_name, "points_count": count, "vectors_count": count}

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
