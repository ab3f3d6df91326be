"""Context assembly: citation lines under a length budget."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from ragstream.retrieval.models import RetrievedCandidate, SourceCitation

logger = logging.getLogger(__name__)

_TERMINATORS = (".", "!", "?")


class AssembledContext(BaseModel):
    text: str
    sources: list[SourceCitation]


def format_line(candidate: RetrievedCandidate) -> str:
    p = candidate.payload
    return f"- [{p.title} p.{p.page}] {p.text}"


def truncate_context(text: str, budget_chars: int) -> str:
    """Cut *text* to *budget_chars*, preferring a sentence end in the last 20%."""
    if len(text) <= budget_chars:
        return text
    cut = text[:budget_chars]
    last = max(cut.rfind(t) for t in _TERMINATORS)
    if last > budget_chars * 0.8:
        cut = cut[: last + 1]
    logger.warning("Context truncated to %d chars (budget %d)", len(cut), budget_chars)
    return cut


def extract_sources(candidates: list[RetrievedCandidate]) -> list[SourceCitation]:
    """Unique citations in first-seen order."""
    seen: set[str] = set()
    sources: list[SourceCitation] = []
    for candidate in candidates:
        source = SourceCitation.from_candidate(candidate)
        if source.citation in seen:
            continue
        seen.add(source.citation)
        sources.append(source)
    return sources


def assemble_context(
    candidates: list[RetrievedCandidate],
    *,
    max_tokens: int = 4000,
    chars_per_token: int = 4,
) -> AssembledContext:
    """Join citation lines with blank lines and enforce the token budget.

    Token count is approximated as ``characters / chars_per_token``.
    """
    joined = "\n\n".join(format_line(c) for c in candidates)
    return AssembledContext(
        text=truncate_context(joined, max_tokens * chars_per_token),
        sources=extract_sources(candidates),
    )
