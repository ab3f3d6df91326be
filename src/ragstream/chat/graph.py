"""LangGraph definition of the query-time ranking chain.

    embed_query → retrieve → diversify → deduplicate → window → rerank → assemble

Every node is a thin async wrapper around one ranking stage, so the chain
can be streamed node by node (``stream_mode="updates"``) and each stage
stays testable on its own.
"""

from __future__ import annotations

from typing import Any

from langgraph.graph import END, StateGraph

from ragstream.chat.state import RankingState
from ragstream.ingestion.embedder import CachedEmbedder
from ragstream.retrieval.context import assemble_context
from ragstream.retrieval.dedup import deduplicate_by_page
from ragstream.retrieval.diversify import mmr
from ragstream.retrieval.reranker import Reranker
from ragstream.retrieval.retriever import Retriever
from ragstream.retrieval.snippets import make_snippets

NODES = ("embed_query", "retrieve", "diversify", "deduplicate", "window", "rerank", "assemble")


def build_ranking_graph(
    embedder: CachedEmbedder,
    retriever: Retriever,
    reranker: Reranker,
    *,
    search_k: int = 20,
    score_threshold: float = 0.1,
    mmr_lambda: float = 0.3,
    top_k: int = 6,
    snippet_min_chars: int = 400,
    snippet_max_chars: int = 800,
    context_max_tokens: int = 4000,
    chars_per_token: int = 4,
) -> Any:
    """Construct and compile the ranking graph.

    Returns
    -------
    CompiledGraph
        Ready for ``.ainvoke({"query": ...})`` or ``.astream(...)``; the
        final state holds ``context`` and ``sources``.
    """

    async def embed_query(state: RankingState) -> dict[str, Any]:
        return {"query_vector": await embedder.embed(state["query"])}

    async def retrieve(state: RankingState) -> dict[str, Any]:
        candidates = await retriever.retrieve(
            state["query_vector"], limit=search_k, score_threshold=score_threshold
        )
        return {"retrieved": candidates}

    async def diversify(state: RankingState) -> dict[str, Any]:
        return {"diversified": mmr(state["retrieved"], lambda_mult=mmr_lambda, limit=search_k)}

    async def deduplicate(state: RankingState) -> dict[str, Any]:
        return {"deduplicated": deduplicate_by_page(state["diversified"])}

    async def window(state: RankingState) -> dict[str, Any]:
        snippets = make_snippets(
            state["deduplicated"], min_chars=snippet_min_chars, max_chars=snippet_max_chars
        )
        return {"snippets": snippets}

    async def rerank(state: RankingState) -> dict[str, Any]:
        return {"reranked": await reranker.rerank(state["query"], state["snippets"], top_k)}

    async def assemble(state: RankingState) -> dict[str, Any]:
        assembled = assemble_context(
            state["reranked"], max_tokens=context_max_tokens, chars_per_token=chars_per_token
        )
        return {"context": assembled.text, "sources": assembled.sources}

    workflow = StateGraph(RankingState)
    for name, node in zip(NODES, (embed_query, retrieve, diversify, deduplicate, window, rerank, assemble)):
        workflow.add_node(name, node)

    workflow.set_entry_point(NODES[0])
    for current, following in zip(NODES, NODES[1:]):
        workflow.add_edge(current, following)
    workflow.add_edge(NODES[-1], END)

    return workflow.compile()
