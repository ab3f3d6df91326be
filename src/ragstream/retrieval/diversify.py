"""Maximal marginal relevance (MMR) re-ordering of retrieved candidates."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from ragstream.retrieval.models import RetrievedCandidate

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Cosine of the angle between *a* and *b*.

    Missing vectors, mismatched lengths and zero vectors all give ``0.0``.
    """
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def mmr(
    candidates: list[RetrievedCandidate],
    *,
    lambda_mult: float = 0.3,
    limit: int = 20,
) -> list[RetrievedCandidate]:
    """Greedy MMR selection.

    The highest-scoring candidate is picked first; every later pick
    maximises ``λ·score − (1−λ)·max_sim``, where ``max_sim`` is the
    largest cosine similarity to an already selected candidate.  Ties go
    to the candidate that came first in *candidates*.

    Candidates without a vector contribute ``max_sim = 0``: when the
    store returned no vectors at all the result is plain score order.
    That degradation is logged rather than silent.
    """
    if not 0.0 <= lambda_mult <= 1.0:
        raise ValueError(f"lambda_mult must be within [0, 1], got {lambda_mult}")
    if len(candidates) <= 1:
        return list(candidates)

    with_vectors = sum(1 for c in candidates if c.vector)
    if with_vectors < len(candidates):
        logger.info(
            "MMR: %d of %d candidates have no vector; diversity is ignored for them",
            len(candidates) - with_vectors, len(candidates),
        )

    pool = list(candidates)
    first = max(range(len(pool)), key=lambda i: (pool[i].score, -i))
    selected = [pool.pop(first)]

    while len(selected) < limit and pool:
        best_index = 0
        best_score = -math.inf
        for i, candidate in enumerate(pool):
            max_sim = max(cosine_similarity(candidate.vector, s.vector) for s in selected)
            score = lambda_mult * candidate.score - (1 - lambda_mult) * max_sim
            if score > best_score:
                best_score = score
                best_index = i
        selected.append(pool.pop(best_index))

    logger.debug("Applied MMR: %d -> %d candidates", len(candidates), len(selected))
    return selected
