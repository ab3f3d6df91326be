"""Document loaders: turn an uploaded file into a paged :class:`Document`.

PDFs keep their physical pages.  DOCX and plain-text files have no
reliable page breaks, so they are split into logical sections instead
(blank-line runs for DOCX, horizontal rules for TXT/MD).
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path

from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader, TextLoader

from ragstream.errors import ValidationError
from ragstream.ingestion.models import Document, Page

logger = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = (
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "text/markdown",
)
SUPPORTED_EXTENSIONS = (".pdf", ".docx", ".txt", ".md")

_DOCX_SECTION_RE = re.compile(r"\n\s*\n\s*\n")
_TEXT_SECTION_RE = re.compile(r"\n\s*(?:---|===)\s*\n")


def is_supported(filename: str) -> bool:
    """Whether *filename* has an extension :func:`parse_file` can read."""
    return Path(filename).suffix.lower() in SUPPORTED_EXTENSIONS


def parse_file(path: str | Path, filename: str, mime_type: str, *, doc_id: str) -> Document:
    """Parse the file at *path* into a :class:`Document` with id *doc_id*.

    Raises
    ------
    ValidationError
        When the extension is not one of ``.pdf``, ``.docx``, ``.txt``, ``.md``.
    """
    ext = Path(filename).suffix.lower()
    logger.info("Parsing file: %s (%s)", filename, mime_type)

    if ext == ".pdf":
        pages = load_pdf(path)
    elif ext == ".docx":
        pages = load_docx(path)
    elif ext in (".txt", ".md"):
        pages = load_text(path)
    else:
        raise ValidationError(f"Unsupported file type: {ext or filename!r}")

    document = Document(id=doc_id, filename=filename, mime_type=mime_type, pages=pages)
    logger.info("Parsed %s: %d pages, %d characters", filename, len(pages), document.total_chars)
    return document


def load_pdf(path: str | Path) -> list[Page]:
    """One :class:`Page` per non-empty PDF page."""
    pages: list[Page] = []
    for i, doc in enumerate(PyPDFLoader(str(path)).load()):
        text = doc.page_content.strip()
        if not text:
            continue
        number = int(doc.metadata.get("page", i)) + 1
        pages.append(Page(page=number, text=text))
    return pages


def load_docx(path: str | Path) -> list[Page]:
    """Load a DOCX file and split it on runs of blank lines."""
    text = "\n".join(d.page_content for d in Docx2txtLoader(str(path)).load())
    return split_sections(text, _DOCX_SECTION_RE)


def load_text(path: str | Path) -> list[Page]:
    """Load a TXT / Markdown file and split it on horizontal rules."""
    text = "\n".join(d.page_content for d in TextLoader(str(path), encoding="utf-8").load())
    return split_sections(text, _TEXT_SECTION_RE)


def split_sections(text: str, separator: re.Pattern[str]) -> list[Page]:
    """Split *text* on *separator* into numbered pages, skipping empty sections."""
    pages: list[Page] = []
    for section in separator.split(text):
        trimmed = section.strip()
        if trimmed:
            pages.append(Page(page=len(pages) + 1, text=trimmed))
    if not pages and text.strip():
        pages.append(Page(page=1, text=text.strip()))
    return pages


def save_upload(data: bytes, original_name: str, storage_dir: str | Path) -> Path:
    """Write an uploaded file as ``{stem}_{millis}{ext}`` under *storage_dir*."""
    directory = Path(storage_dir)
    directory.mkdir(parents=True, exist_ok=True)
    name = Path(original_name).name
    stem, ext = Path(name).stem, Path(name).suffix
    target = directory / f"{stem}_{int(time.time() * 1000)}{ext}"
    target.write_bytes(data)
    logger.info("File saved: %s (%d bytes)", target.name, len(data))
    return target
