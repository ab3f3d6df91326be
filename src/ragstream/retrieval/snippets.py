"""Bound passages to display-sized snippets."""

from __future__ import annotations

import re

from ragstream.retrieval.models import RetrievedCandidate

# A sentence ends at a run of terminators followed by whitespace.
_SENTENCE_END = re.compile(r"[.!?]+(?=\s)")


def window_text(text: str, min_chars: int = 400, max_chars: int = 800) -> str:
    """Return *text* cut down to at most *max_chars*.

    Texts no longer than *max_chars* come back unchanged.  Longer texts
    keep as many whole leading sentences as fit; the cut is always at a
    terminator that exists in the source.  If that leaves fewer than
    *min_chars* characters (say, the first sentence alone is too long),
    the text is hard-truncated at *max_chars* instead.
    """
    if min_chars > max_chars:
        raise ValueError("min_chars must not exceed max_chars")
    if len(text) <= max_chars:
        return text

    cut = 0
    for match in _SENTENCE_END.finditer(text):
        if match.end() > max_chars:
            break
        cut = match.end()

    snippet = text[:cut].strip()
    if not snippet or len(snippet) < min_chars:
        snippet = text[:max_chars].strip()
    return snippet


def make_snippets(
    candidates: list[RetrievedCandidate],
    *,
    min_chars: int = 400,
    max_chars: int = 800,
) -> list[RetrievedCandidate]:
    """Copy *candidates* with their passage text windowed."""
    return [c.with_text(window_text(c.text, min_chars, max_chars)) for c in candidates]
