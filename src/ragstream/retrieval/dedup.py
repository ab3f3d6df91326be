"""Collapse candidates that point at the same logical passage."""

from __future__ import annotations

import logging

from ragstream.retrieval.models import RetrievedCandidate

logger = logging.getLogger(__name__)


def deduplicate_by_page(candidates: list[RetrievedCandidate]) -> list[RetrievedCandidate]:
    """Keep one candidate per ``(doc_id, page)``.

    The representative is the highest-scoring member of its group (the
    first one seen on a tie) and sits where the group first appeared.
    """
    kept: dict[tuple[str, int], RetrievedCandidate] = {}
    for candidate in candidates:
        key = candidate.group_key
        current = kept.get(key)
        if current is None or candidate.score > current.score:
            kept[key] = candidate

    deduped = list(kept.values())
    logger.debug("Deduplicated: %d -> %d candidates", len(candidates), len(deduped))
    return deduped
