from __future__ import annotations

import string
from pathlib import Path
from typing import Callable, Iterator

import pytest

from knowledge_ingest.metadata_store import SqliteKnowledgeStore


@pytest.fixture
def store() -> Iterator[SqliteKnowledgeStore]:
    with SqliteKnowledgeStore() as knowledge_store:
        yield knowledge_store


@pytest.fixture
def kb_dir(tmp_path: Path) -> Path:
    root = tmp_path / "knowledge"
    root.mkdir()
    return root


@pytest.fixture
def make_text() -> Callable[..., str]:
    """Deterministic filler text of an exact length, varied by `seed`."""

    def _make(length: int, seed: str = "") -> str:
        alphabet = string.ascii_lowercase + " "
        body = seed + "".join(alphabet[i % len(alphabet)] for i in range(length))
        return body[:length]

    return _make
