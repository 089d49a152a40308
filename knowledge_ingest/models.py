"""Typed records shared across the knowledge ingestion subsystem.

Documents and chunks are persisted by a `KnowledgeStore`; the orchestrator
only ever talks to that protocol so tests can hand it an in-memory SQLite
store while the CLI uses the on-disk one.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from knowledge_ingest import config


class IngestionStatus(str, Enum):
    """Lifecycle of a knowledge document, keyed by content fingerprint."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DocumentAction(str, Enum):
    """What the orchestrator does with a document it has just fingerprinted."""

    CREATE = "create"
    RESUME = "resume"
    RESTART = "restart"
    SKIP = "skip"


class IngestPhase(str, Enum):
    """Phase reported through the progress callback."""

    SCANNING = "scanning"
    PROCESSING = "processing"
    COMPLETE = "complete"


class TextChunk(BaseModel):
    """One fixed-size slice of a document's text, half-open `[start, end)`."""

    index: int = Field(ge=0, description="Zero-based position within the document")
    start_char: int = Field(ge=0)
    end_char: int = Field(gt=0)
    text: str
    tokens: int = Field(ge=0, description="Rough token estimate (chars / 4)")

    model_config = ConfigDict(frozen=True)


class DocumentMeta(BaseModel):
    filename: str
    size: int = Field(ge=0, description="Extracted text length in characters")
    extension: str


class DocumentRecord(BaseModel):
    """A persisted knowledge document row."""

    id: str
    source_path: str
    title: str | None = None
    content: str
    content_sha: str
    status: IngestionStatus
    chunks_expected: int | None = None
    chunks_created: int = 0
    error_message: str | None = None
    ingested_at: str | None = None
    meta: DocumentMeta | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_chunk_index: int | None = Field(
        default=None,
        description="Highest persisted chunk index, populated by fingerprint lookups",
    )

    model_config = ConfigDict(validate_assignment=True)


@runtime_checkable
class KnowledgeStore(Protocol):
    """Persistence operations the ingestion orchestrator depends on.

    Chunk inserts must be individually durable: a crash after inserting chunk
    N leaves chunks 0..N visible so the next run can resume at N + 1.
    """

    def find_by_content_sha(self, content_sha: str) -> DocumentRecord | None: ...

    def create_document(
        self,
        *,
        source_path: str,
        title: str,
        content: str,
        content_sha: str,
        meta: DocumentMeta,
    ) -> DocumentRecord: ...

    def delete_document(self, doc_id: str) -> None: ...

    def insert_chunk(self, doc_id: str, chunk: TextChunk) -> None: ...

    def complete_document(self, doc_id: str, chunk_count: int) -> None: ...

    def mark_failed(self, content_sha: str, message: str) -> int: ...


class IngestProgress(BaseModel):
    """Payload passed to the optional progress callback."""

    phase: IngestPhase
    current_file: str | None = None
    current_file_index: int | None = None
    total_files: int | None = None
    docs_processed: int = 0
    chunks_created: int = 0
    errors: int = 0

    model_config = ConfigDict(frozen=True)


ProgressCallback = Callable[[IngestProgress], None]


class KnowledgeIngestOptions(BaseModel):
    """Per-run options; CLI flags map onto these one-to-one."""

    verbose: bool = False
    quiet: bool = False
    plan: bool = False
    source_path: Optional[str] = Field(
        default=None, description="Directory (or single file) overriding the KB root"
    )
    max_documents: int = Field(default=0, ge=0, description="0 means unlimited")
    max_chars_per_chunk: int = Field(default=config.MAX_CHARS_PER_CHUNK, gt=0)
    overlap_chars: int = Field(default=config.OVERLAP_CHARS, ge=0)
    force_reprocess: bool = False
    resume_partial: bool = True
    skip_pdfs: bool = False
    max_pdf_size_mb: float = Field(default=config.MAX_PDF_SIZE_MB, gt=0)
    min_text_length: int = Field(default=config.MIN_TEXT_LENGTH, ge=0)
    crash_log_path: Optional[str] = None
    on_progress: Optional[ProgressCallback] = Field(default=None, exclude=True)

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")


class IngestResult(BaseModel):
    """Aggregate counts returned to the caller of an ingestion run."""

    files_scanned: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    files_resumed: int = 0
    docs_created: int = 0
    docs_updated: int = 0
    chunks_created: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class IngestionContext(BaseModel):
    """Validated container for the state shared by one ingestion run."""

    source_root: str
    store: KnowledgeStore
    owns_store: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")


__all__ = [
    "IngestionStatus",
    "DocumentAction",
    "IngestPhase",
    "TextChunk",
    "DocumentMeta",
    "DocumentRecord",
    "KnowledgeStore",
    "IngestProgress",
    "ProgressCallback",
    "KnowledgeIngestOptions",
    "IngestResult",
    "IngestionContext",
]
