from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

import pytest

from knowledge_ingest import config
from knowledge_ingest.metadata_store import SqliteKnowledgeStore
from knowledge_ingest.models import (
    DocumentMeta,
    DocumentRecord,
    IngestionStatus,
    KnowledgeStore,
    TextChunk,
)
from knowledge_ingest.text_processing import chunk_text


def _create(store: SqliteKnowledgeStore, sha: str = "sha-1") -> DocumentRecord:
    return store.create_document(
        source_path="/kb/sources/knowledge/guide.md",
        title="Guide",
        content="x" * 400,
        content_sha=sha,
        meta=DocumentMeta(filename="guide.md", size=400, extension=".md"),
    )


def test_store_satisfies_protocol(store: SqliteKnowledgeStore) -> None:
    assert isinstance(store, KnowledgeStore)


def test_closed_store_raises() -> None:
    closed = SqliteKnowledgeStore()
    assert not closed.is_open
    with pytest.raises(RuntimeError):
        _ = closed.find_by_content_sha("nothing")


def test_create_document_starts_in_progress(store: SqliteKnowledgeStore) -> None:
    doc = _create(store)

    assert doc.status is IngestionStatus.IN_PROGRESS
    assert doc.chunks_created == 0
    assert doc.meta == DocumentMeta(filename="guide.md", size=400, extension=".md")

    found = store.find_by_content_sha("sha-1")
    assert found is not None
    assert found.id == doc.id
    assert found.title == "Guide"
    assert found.last_chunk_index is None
    assert store.find_by_content_sha("missing") is None


def test_insert_chunk_tracks_last_index_and_counter(store: SqliteKnowledgeStore) -> None:
    doc = _create(store)
    chunks = chunk_text("y" * 400, 150, 20)

    for chunk in chunks[:2]:
        store.insert_chunk(doc.id, chunk)

    found = store.find_by_content_sha("sha-1")
    assert found is not None
    assert found.last_chunk_index == 1
    assert found.chunks_created == 2
    assert [c["chunk_index"] for c in store.list_chunks(doc.id)] == [0, 1]


def test_duplicate_chunk_index_is_rejected(store: SqliteKnowledgeStore) -> None:
    doc = _create(store)
    chunk = TextChunk(index=0, start_char=0, end_char=5, text="hello", tokens=2)
    store.insert_chunk(doc.id, chunk)

    with pytest.raises(sqlite3.IntegrityError):
        store.insert_chunk(doc.id, chunk)

    assert len(store.list_chunks(doc.id)) == 1


def test_complete_document(store: SqliteKnowledgeStore) -> None:
    doc = _create(store)
    for chunk in chunk_text("z" * 300, 150, 0):
        store.insert_chunk(doc.id, chunk)

    store.complete_document(doc.id, 2)

    completed = store.get_document(doc.id)
    assert completed is not None
    assert completed.status is IngestionStatus.COMPLETED
    assert completed.chunks_expected == 2
    assert completed.chunks_created == 2
    assert completed.ingested_at is not None
    assert completed.error_message is None


def test_delete_document_removes_chunks(store: SqliteKnowledgeStore) -> None:
    doc = _create(store)
    store.insert_chunk(doc.id, TextChunk(index=0, start_char=0, end_char=3, text="abc", tokens=1))

    store.delete_document(doc.id)

    assert store.get_document(doc.id) is None
    assert store.list_chunks(doc.id) == []
    assert store.db.execute("SELECT COUNT(*) FROM chunks").fetchone()[0] == 0


def test_mark_failed_updates_all_matches(store: SqliteKnowledgeStore) -> None:
    doc = _create(store)

    assert store.mark_failed("sha-1", "boom") == 1
    assert store.mark_failed("unknown", "boom") == 0

    failed = store.get_document(doc.id)
    assert failed is not None
    assert failed.status is IngestionStatus.FAILED
    assert failed.error_message == "boom"


def test_count_by_status(store: SqliteKnowledgeStore) -> None:
    first = _create(store, "sha-1")
    _ = _create(store, "sha-2")
    store.complete_document(first.id, 0)

    assert store.count_by_status() == {"COMPLETED": 1, "IN_PROGRESS": 1}
    assert len(store.list_documents()) == 2


def test_file_store_persists_across_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "knowledge.db"

    with SqliteKnowledgeStore(db_path) as first:
        doc = _create(first)
        first.insert_chunk(doc.id, TextChunk(index=0, start_char=0, end_char=2, text="hi", tokens=1))

    assert db_path.exists()

    with SqliteKnowledgeStore(db_path) as second:
        found = second.find_by_content_sha("sha-1")
        assert found is not None
        assert found.id == doc.id
        assert found.last_chunk_index == 0


def _locked_chunk_inserts(
    store: SqliteKnowledgeStore, monkeypatch: pytest.MonkeyPatch, failures: int
) -> list[str]:
    """Make the first `failures` chunk INSERTs fail as if the database were locked."""
    real_execute = store.db.execute
    attempts: list[str] = []

    def execute(sql: str, parameters: Any = None) -> Any:
        if sql.startswith("INSERT INTO [chunks]"):
            attempts.append(sql)
            if len(attempts) <= failures:
                raise sqlite3.OperationalError("database is locked")
        return real_execute(sql, parameters)

    monkeypatch.setattr(store.db, "execute", execute)
    monkeypatch.setattr(SqliteKnowledgeStore.insert_chunk.retry, "sleep", lambda _: None)
    return attempts


def test_insert_chunk_retries_when_database_is_locked(
    store: SqliteKnowledgeStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    doc = _create(store)
    attempts = _locked_chunk_inserts(store, monkeypatch, failures=1)

    store.insert_chunk(doc.id, TextChunk(index=0, start_char=0, end_char=5, text="hello", tokens=2))

    assert len(attempts) == 2
    assert [c["chunk_index"] for c in store.list_chunks(doc.id)] == [0]
    found = store.get_document(doc.id)
    assert found is not None
    assert found.chunks_created == 1


def test_insert_chunk_gives_up_after_configured_attempts(
    store: SqliteKnowledgeStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    doc = _create(store)
    attempts = _locked_chunk_inserts(store, monkeypatch, failures=100)

    with pytest.raises(sqlite3.OperationalError):
        store.insert_chunk(
            doc.id, TextChunk(index=0, start_char=0, end_char=5, text="hello", tokens=2)
        )

    assert len(attempts) == config.STORE_RETRY_ATTEMPTS
    assert store.list_chunks(doc.id) == []
    found = store.get_document(doc.id)
    assert found is not None
    assert found.chunks_created == 0
