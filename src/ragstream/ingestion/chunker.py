"""Text chunking with overlap and boundary-aware breaks."""

from __future__ import annotations

import logging

from ragstream.ingestion.models import Chunk, Document, point_id_for

logger = logging.getLogger(__name__)

# Characters that make a good break point, checked right-to-left inside a window.
_BREAK_CHARS = (".", "!", "?", "\n", " ")


def split_text(text: str, chunk_size: int = 1200, chunk_overlap: int = 180) -> list[str]:
    """Split *text* into overlapping, whitespace-trimmed passages.

    Each window spans at most *chunk_size* characters.  When the window
    does not reach the end of the text, it is shortened to the last
    sentence/paragraph/whitespace break strictly inside the window,
    provided that break lies past half of *chunk_size*; otherwise the
    window is cut at the hard limit.  The next window starts
    ``chunk_overlap`` characters before the previous end, and always at
    least one character after the previous start.

    Parameters
    ----------
    text:
        Raw page text.
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Number of overlapping characters between consecutive chunks.
        Values ``>= chunk_size`` are allowed; progress is still guaranteed.

    Returns
    -------
    list[str]
        Non-empty chunks in source order.  Deterministic for a given
        ``(text, chunk_size, chunk_overlap)``.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if chunk_overlap < 0:
        raise ValueError(f"chunk_overlap must be >= 0, got {chunk_overlap}")

    if len(text) <= chunk_size:
        stripped = text.strip()
        return [stripped] if stripped else []

    chunks: list[str] = []
    start = 0
    length = len(text)
    while start < length:
        end = min(start + chunk_size, length)

        if end < length:
            break_point = max(text.rfind(ch, start, end) for ch in _BREAK_CHARS)
            if break_point > start + chunk_size * 0.5:
                end = break_point + 1

        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)

        if end >= length:
            break
        start = max(start + 1, end - chunk_overlap)

    return chunks


def chunk_document(document: Document, chunk_size: int = 1200, chunk_overlap: int = 180) -> list[Chunk]:
    """Chunk every page of *document*.

    ``chunk_index`` runs across the whole document in page order, so it is
    strictly increasing within each page and ``chunk_id``
    (``{doc_id}_p{page}_c{index}``) is unique per document.
    """
    chunks: list[Chunk] = []
    index = 0
    for page in document.pages:
        for text in split_text(page.text, chunk_size, chunk_overlap):
            chunk_id = f"{document.id}_p{page.page}_c{index}"
            chunks.append(
                Chunk(
                    id=point_id_for(chunk_id),
                    doc_id=document.id,
                    chunk_id=chunk_id,
                    chunk_index=index,
                    page=page.page,
                    text=text,
                    source=document.source,
                    title=document.filename,
                    mime=document.mime_type,
                    updated_at=document.parsed_at,
                )
            )
            index += 1

    logger.info("Created %d chunks for document %s", len(chunks), document.filename)
    return chunks
