"""
Knowledge document ingestion.

Scans a knowledge-base source directory, extracts text from Markdown, plain
text and PDF files, and stores content-addressed documents with overlapping
chunks for retrieval. Runs are resumable and idempotent.
"""

from knowledge_ingest import (
    cli,
    config,
    environment,
    file_filters,
    file_scanner,
    metadata_store,
    models,
    pipeline,
    progress,
    text_processing,
)
from knowledge_ingest.pipeline import ingest_knowledge

__all__ = [
    "config",
    "models",
    "file_filters",
    "metadata_store",
    "file_scanner",
    "text_processing",
    "pipeline",
    "progress",
    "cli",
    "environment",
    "ingest_knowledge",
]
