"""Directory traversal for knowledge sources.

Walks the source root depth-first in directory-listing order using an
explicit stack of open listings, so an early stop at `max_files` needs no
shared flag between nested calls.  Unreadable directories are skipped.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator

from knowledge_ingest.text_processing import PDF_EXTENSION, TEXT_EXTENSIONS

logger = logging.getLogger(__name__)


def supported_extensions(include_pdfs: bool = True) -> set[str]:
    """Extensions the scanner collects for the given PDF policy."""
    extensions = set(TEXT_EXTENSIONS)
    if include_pdfs:
        extensions.add(PDF_EXTENSION)
    return extensions


def _list_directory(path: str) -> Iterator[os.DirEntry[str]] | None:
    try:
        with os.scandir(path) as entries:
            return iter(list(entries))
    except OSError as exc:
        logger.debug("Skipping unreadable directory %s: %s", path, exc)
        return None


def scan_directory(
    root: str,
    max_files: int = 0,
    include_pdfs: bool = True,
) -> list[str]:
    """Return supported document paths under `root`, stopping at `max_files`.

    Order follows the directory listings and is not stable across runs or
    platforms. A missing root yields an empty list.
    """
    extensions = supported_extensions(include_pdfs)
    files: list[str] = []
    root = os.path.abspath(root)

    if os.path.isfile(root):
        if os.path.splitext(root)[1].lower() in extensions:
            files.append(root)
        return files

    top = _list_directory(root)
    if top is None:
        return files

    stack: list[Iterator[os.DirEntry[str]]] = [top]
    while stack:
        entry = next(stack[-1], None)
        if entry is None:
            _ = stack.pop()
            continue

        try:
            if entry.is_dir(follow_symlinks=False):
                listing = _list_directory(entry.path)
                if listing is not None:
                    stack.append(listing)
                continue
            if not entry.is_file(follow_symlinks=False):
                continue
        except OSError:
            continue

        ext = os.path.splitext(entry.name)[1].lower()
        if ext in extensions:
            files.append(entry.path)
            if max_files > 0 and len(files) >= max_files:
                break

    return files


__all__ = ["scan_directory", "supported_extensions"]
