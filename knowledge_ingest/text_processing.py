"""Utilities for extracting and chunking knowledge document text.

The ingestion pipeline consumes Markdown, plain text, and PDFs.  Text formats
are read verbatim; PDFs go through PyMuPDF page extraction behind a size
guard so a single huge scan cannot stall a run.  Chunking is a pure function of
the text and the chunk geometry, which is what makes resuming a half-ingested
document safe: chunk N is the same slice on every run.
"""

from __future__ import annotations

import logging
import math
import os
import re
from pathlib import Path

import fitz  # PyMuPDF

from knowledge_ingest.models import TextChunk

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS: frozenset[str] = frozenset({".md", ".markdown", ".txt"})
PDF_EXTENSION = ".pdf"
MAX_TITLE_LENGTH = 100

_HEADING_MARKER = re.compile(r"^#+\s*")


def estimate_tokens(text: str) -> int:
    """Rough token count (1 token ~ 4 chars)."""
    return math.ceil(len(text) / 4)


def chunk_text(text: str, max_chars: int, overlap: int) -> list[TextChunk]:
    """Split text into fixed-size chunks that overlap by `overlap` characters.

    Each step backs up by the overlap but always advances at least one
    character, so an overlap >= max_chars still terminates.
    """
    if max_chars <= 0:
        raise ValueError(f"max_chars must be positive, got: {max_chars}")
    if overlap < 0:
        raise ValueError(f"overlap must be non-negative, got: {overlap}")

    chunks: list[TextChunk] = []
    text_length = len(text)
    start = 0

    while start < text_length:
        end = min(start + max_chars, text_length)
        piece = text[start:end]
        chunks.append(
            TextChunk(
                index=len(chunks),
                start_char=start,
                end_char=end,
                text=piece,
                tokens=estimate_tokens(piece),
            )
        )
        if end >= text_length:
            break
        start = max(end - overlap, start + 1)

    return chunks


def extract_title(text: str, filename: str) -> str:
    """First non-blank line minus Markdown heading markers, else the file stem."""
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        title = _HEADING_MARKER.sub("", stripped)[:MAX_TITLE_LENGTH]
        if title:
            return title
        break

    return Path(filename).stem


def extract_text(path: str, max_pdf_size_mb: float = 100, *, verbose: bool = False) -> str:
    """Extract raw text from a Markdown, text, or PDF source.

    Returns an empty string when the file cannot yield text (oversized or
    unreadable PDF, unsupported extension). Text files decode as UTF-8 with
    undecodable bytes replaced; OS read errors propagate so the caller
    records them against the file.
    """
    ext = Path(path).suffix.lower()
    if ext in TEXT_EXTENSIONS:
        with open(path, "r", encoding="utf-8", errors="replace") as handle:
            return handle.read()
    if ext == PDF_EXTENSION:
        return _extract_from_pdf(path, max_pdf_size_mb, verbose=verbose)

    logger.debug("Unsupported extension for %s", path)
    return ""


def _extract_from_pdf(path: str, max_pdf_size_mb: float, *, verbose: bool) -> str:
    """Concatenate per-page text, skipping files above the size threshold."""
    size_mb = os.path.getsize(path) / (1024 * 1024)
    if size_mb > max_pdf_size_mb:
        message = f"   ⏭️  PDF too large ({size_mb:.1f}MB > {max_pdf_size_mb:g}MB limit)"
        logger.info("Skipping oversized PDF %s (%.1f MB)", path, size_mb)
        if verbose:
            print(message)
        return ""

    if verbose:
        print(f"   📄 Extracting PDF ({size_mb:.1f}MB)...")

    try:
        pages: list[str] = []
        with fitz.open(path) as doc:
            for page in doc:
                pages.append(page.get_text("text") or "")
    except Exception as exc:
        logger.warning(
            "⚠️ PDF extraction failed for %s: %s: %s",
            os.path.basename(path),
            type(exc).__name__,
            exc,
        )
        logger.debug("Full traceback:", exc_info=True)
        if verbose:
            print(f"   ❌ PDF extraction failed: {exc}")
        return ""

    text = "\n".join(pages)
    if verbose:
        print(f"   ✅ Extracted {len(pages)} pages, {len(text)} chars")
    return text


__all__ = [
    "PDF_EXTENSION",
    "TEXT_EXTENSIONS",
    "chunk_text",
    "estimate_tokens",
    "extract_text",
    "extract_title",
]
