"""SQLite-backed document/chunk persistence for knowledge ingestion.

Two tables: ``documents`` (one row per content fingerprint) and ``chunks``
(one row per overlapping slice).  Chunk inserts commit individually together
with the parent's ``chunks_created`` counter, so an interrupted run leaves a
well-defined highest chunk index for the next run to resume from.  Retrieval
and the admin UI read these tables directly; keep column names stable.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import Any, TypedDict, cast

import sqlite_utils
from sqlite_utils.db import NotFoundError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from knowledge_ingest import config
from knowledge_ingest.models import (
    DocumentMeta,
    DocumentRecord,
    IngestionStatus,
    TextChunk,
)

logger = logging.getLogger(__name__)

DOCUMENTS_TABLE = "documents"
CHUNKS_TABLE = "chunks"


class ChunkRecord(TypedDict):
    """Raw record layout persisted to SQLite for each chunk entry."""

    id: str
    doc_id: str
    chunk_index: int
    start_char: int
    end_char: int
    content: str
    tokens: int
    created_at: str


def _now() -> str:
    return datetime.now().isoformat()


_store_write_retry = retry(
    retry=retry_if_exception_type(sqlite3.OperationalError),
    stop=stop_after_attempt(config.STORE_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class SqliteKnowledgeStore:
    """Document/chunk store on a SQLite file, or in memory when no path is given."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        super().__init__()
        self.db_path = Path(db_path) if db_path is not None else None
        self._db: sqlite_utils.Database | None = None

    def __enter__(self) -> "SqliteKnowledgeStore":
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._db is not None

    @property
    def db(self) -> sqlite_utils.Database:
        if self._db is None:
            raise RuntimeError("Knowledge store is not open; call open() first")
        return self._db

    def open(self) -> None:
        """Connect and make sure the schema exists. Safe to call twice."""
        if self._db is not None:
            return
        if self.db_path is None:
            self._db = sqlite_utils.Database(memory=True)
        else:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = sqlite_utils.Database(str(self.db_path))
        self._ensure_schema()

    def close(self) -> None:
        if self._db is None:
            return
        self._db.close()
        self._db = None

    def _ensure_schema(self) -> None:
        db = self.db
        table_names = db.table_names()

        if DOCUMENTS_TABLE not in table_names:
            documents = db[DOCUMENTS_TABLE]
            _ = documents.create(
                {
                    "id": str,
                    "source_path": str,
                    "title": str,
                    "content": str,
                    "content_sha": str,
                    "status": str,
                    "chunks_expected": int,
                    "chunks_created": int,
                    "error_message": str,
                    "ingested_at": str,
                    "meta": str,
                    "created_at": str,
                    "updated_at": str,
                },
                pk="id",
                not_null={"source_path", "content", "content_sha", "status"},
                defaults={"chunks_created": 0, "status": IngestionStatus.PENDING.value},
            )
            # Fingerprint lookups drive every ingestion decision.
            _ = documents.create_index(["content_sha"])
            _ = documents.create_index(["status"])
            _ = documents.create_index(["source_path"])

        if CHUNKS_TABLE not in table_names:
            chunks = db[CHUNKS_TABLE]
            _ = chunks.create(
                {
                    "id": str,
                    "doc_id": str,
                    "chunk_index": int,
                    "start_char": int,
                    "end_char": int,
                    "content": str,
                    "tokens": int,
                    "created_at": str,
                },
                pk="id",
                not_null={"doc_id", "chunk_index", "start_char", "end_char", "content"},
                foreign_keys=[("doc_id", DOCUMENTS_TABLE, "id")],
            )
            _ = chunks.create_index(["doc_id", "chunk_index"], unique=True)

    def _row_to_document(self, row: Mapping[str, Any]) -> DocumentRecord:
        meta_raw = row.get("meta")
        meta = DocumentMeta(**json.loads(meta_raw)) if meta_raw else None
        return DocumentRecord(
            id=str(row["id"]),
            source_path=str(row["source_path"]),
            title=row.get("title"),
            content=str(row["content"]),
            content_sha=str(row["content_sha"]),
            status=IngestionStatus(row["status"]),
            chunks_expected=row.get("chunks_expected"),
            chunks_created=int(row.get("chunks_created") or 0),
            error_message=row.get("error_message"),
            ingested_at=row.get("ingested_at"),
            meta=meta,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _last_chunk_index(self, doc_id: str) -> int | None:
        row = self.db.execute(
            f"SELECT MAX(chunk_index) FROM [{CHUNKS_TABLE}] WHERE doc_id = ?",
            [doc_id],
        ).fetchone()
        if row is None or row[0] is None:
            return None
        return int(row[0])

    def find_by_content_sha(self, content_sha: str) -> DocumentRecord | None:
        """Look up a document by fingerprint, including its highest chunk index."""
        rows = cast(
            Iterable[Mapping[str, Any]],
            self.db[DOCUMENTS_TABLE].rows_where(
                "content_sha = ?", [content_sha], order_by="created_at", limit=1
            ),
        )
        for row in rows:
            record = self._row_to_document(row)
            record.last_chunk_index = self._last_chunk_index(record.id)
            return record
        return None

    def get_document(self, doc_id: str) -> DocumentRecord | None:
        try:
            row = self.db[DOCUMENTS_TABLE].get(doc_id)
        except NotFoundError:
            return None
        record = self._row_to_document(row)
        record.last_chunk_index = self._last_chunk_index(record.id)
        return record

    @_store_write_retry
    def create_document(
        self,
        *,
        source_path: str,
        title: str,
        content: str,
        content_sha: str,
        meta: DocumentMeta,
    ) -> DocumentRecord:
        """Insert a new document in IN_PROGRESS state."""
        now = _now()
        row: dict[str, Any] = {
            "id": uuid.uuid4().hex,
            "source_path": source_path,
            "title": title,
            "content": content,
            "content_sha": content_sha,
            "status": IngestionStatus.IN_PROGRESS.value,
            "chunks_expected": None,
            "chunks_created": 0,
            "error_message": None,
            "ingested_at": None,
            "meta": json.dumps(meta.model_dump()),
            "created_at": now,
            "updated_at": now,
        }
        _ = self.db[DOCUMENTS_TABLE].insert(row)
        return self._row_to_document(row)

    @_store_write_retry
    def delete_document(self, doc_id: str) -> None:
        """Remove a document and all of its chunks in one transaction."""
        db = self.db
        with db.conn:
            _ = db.execute(f"DELETE FROM [{CHUNKS_TABLE}] WHERE doc_id = ?", [doc_id])
            _ = db.execute(f"DELETE FROM [{DOCUMENTS_TABLE}] WHERE id = ?", [doc_id])

    @_store_write_retry
    def insert_chunk(self, doc_id: str, chunk: TextChunk) -> None:
        """Persist one chunk and bump the parent's created counter atomically."""
        db = self.db
        record: ChunkRecord = {
            "id": uuid.uuid4().hex,
            "doc_id": doc_id,
            "chunk_index": chunk.index,
            "start_char": chunk.start_char,
            "end_char": chunk.end_char,
            "content": chunk.text,
            "tokens": chunk.tokens,
            "created_at": _now(),
        }
        with db.conn:
            _ = db.execute(
                f"INSERT INTO [{CHUNKS_TABLE}] "
                "(id, doc_id, chunk_index, start_char, end_char, content, tokens, created_at) "
                "VALUES (:id, :doc_id, :chunk_index, :start_char, :end_char, :content, :tokens, :created_at)",
                cast(dict[str, Any], record),
            )
            _ = db.execute(
                f"UPDATE [{DOCUMENTS_TABLE}] SET chunks_created = chunks_created + 1, "
                "updated_at = ? WHERE id = ?",
                [record["created_at"], doc_id],
            )

    @_store_write_retry
    def complete_document(self, doc_id: str, chunk_count: int) -> None:
        now = _now()
        _ = self.db[DOCUMENTS_TABLE].update(
            doc_id,
            {
                "status": IngestionStatus.COMPLETED.value,
                "ingested_at": now,
                "chunks_expected": chunk_count,
                "chunks_created": chunk_count,
                "error_message": None,
                "updated_at": now,
            },
        )

    @_store_write_retry
    def mark_failed(self, content_sha: str, message: str) -> int:
        """Flag every document with this fingerprint FAILED; returns rows changed."""
        db = self.db
        with db.conn:
            cursor = db.execute(
                f"UPDATE [{DOCUMENTS_TABLE}] SET status = ?, error_message = ?, "
                "updated_at = ? WHERE content_sha = ?",
                [IngestionStatus.FAILED.value, message, _now(), content_sha],
            )
        return cursor.rowcount

    def list_chunks(self, doc_id: str) -> list[ChunkRecord]:
        """Chunks of a document in index order."""
        rows = cast(
            Iterable[Mapping[str, Any]],
            self.db[CHUNKS_TABLE].rows_where(
                "doc_id = ?", [doc_id], order_by="chunk_index"
            ),
        )
        return [
            ChunkRecord(
                id=str(row["id"]),
                doc_id=str(row["doc_id"]),
                chunk_index=int(row["chunk_index"]),
                start_char=int(row["start_char"]),
                end_char=int(row["end_char"]),
                content=str(row["content"]),
                tokens=int(row["tokens"] or 0),
                created_at=str(row["created_at"]),
            )
            for row in rows
        ]

    def list_documents(self) -> list[DocumentRecord]:
        rows = cast(
            Iterable[Mapping[str, Any]],
            self.db[DOCUMENTS_TABLE].rows_where(order_by="created_at"),
        )
        return [self._row_to_document(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        """Document counts keyed by status value (statuses with no rows omitted)."""
        cursor = self.db.execute(
            f"SELECT status, COUNT(*) FROM [{DOCUMENTS_TABLE}] GROUP BY status"
        )
        return {str(status): int(count) for status, count in cursor.fetchall()}


__all__ = ["ChunkRecord", "SqliteKnowledgeStore"]
