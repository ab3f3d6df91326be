"""Ranking state: the dict flowing through the query-time graph.

Each node reads what earlier nodes produced and returns only the keys it
adds.
"""

from __future__ import annotations

from typing import TypedDict

from ragstream.retrieval.models import RetrievedCandidate, SourceCitation


class RankingState(TypedDict, total=False):
    """Typed state of one ranking run.

    Attributes
    ----------
    query:
        The user's question.
    query_vector:
        Embedding of ``query``.
    retrieved:
        Vector-search hits above the score threshold, best first.
    diversified:
        ``retrieved`` re-ordered by MMR.
    deduplicated:
        One candidate per ``(doc_id, page)``.
    snippets:
        Candidates with display-bounded text.
    reranked:
        Final top-K after the second relevance pass.
    context:
        Citation lines under the length budget.
    sources:
        Unique citations of ``reranked``.
    """

    query: str
    query_vector: list[float]
    retrieved: list[RetrievedCandidate]
    diversified: list[RetrievedCandidate]
    deduplicated: list[RetrievedCandidate]
    snippets: list[RetrievedCandidate]
    reranked: list[RetrievedCandidate]
    context: str
    sources: list[SourceCitation]
