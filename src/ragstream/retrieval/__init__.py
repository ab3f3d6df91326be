"""
Retrieval: vector search and the query-time ranking stages.

The vector store sits behind :class:`VectorStoreBase` so the query path
never needs to know which database backs the index.

Public surface
--------------
- :class:`Retriever`: similarity search with a score threshold.
- :func:`mmr`, :func:`deduplicate_by_page`, :func:`make_snippets`: ranking stages.
- :class:`Reranker`: second-pass relevance scoring with fallback.
- :func:`assemble_context`: citation lines under a length budget.
- :class:`VectorStoreBase`: abstract backend.
- ``ChromaVectorStore``: default Chroma backend (imported lazily).
"""

from ragstream.retrieval.base import VectorStoreBase
from ragstream.retrieval.context import AssembledContext, assemble_context
from ragstream.retrieval.dedup import deduplicate_by_page
from ragstream.retrieval.diversify import cosine_similarity, mmr
from ragstream.retrieval.models import MetadataFilter, RetrievedCandidate, SourceCitation
from ragstream.retrieval.reranker import Reranker
from ragstream.retrieval.retriever import Retriever
from ragstream.retrieval.snippets import make_snippets, window_text

__all__ = [
    "AssembledContext",
    "ChromaVectorStore",
    "MetadataFilter",
    "Reranker",
    "RetrievedCandidate",
    "Retriever",
    "SourceCitation",
    "VectorStoreBase",
    "assemble_context",
    "cosine_similarity",
    "deduplicate_by_page",
    "make_snippets",
    "mmr",
    "window_text",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from ragstream.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
