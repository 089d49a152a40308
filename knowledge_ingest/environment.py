"""Knowledge-base layout and store construction for ingestion runs.

The knowledge-base root comes from ``HF_KB_PATH`` (or ``kb_path`` in
``settings.toml``); documents live in a fixed subdirectory beneath it unless
the caller passes an explicit source path.  The store is built here and handed
to the orchestrator inside an `IngestionContext`, so nothing downstream holds
a process-wide database handle.
"""

from __future__ import annotations

import gc
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from knowledge_ingest import config
from knowledge_ingest.metadata_store import SqliteKnowledgeStore
from knowledge_ingest.models import IngestionContext, KnowledgeStore

logger = logging.getLogger(__name__)

# Relative to the working directory when no knowledge-base root is configured.
DEFAULT_KB_ROOT = "../../knowledge"


def _expand_home(value: str) -> str:
    value = value.strip()
    if value == "~" or value.startswith("~/"):
        return os.path.expanduser(value)
    return value


def resolve_kb_root(kb_root: str | None = None) -> str:
    """Absolute knowledge-base root: explicit value, then HF_KB_PATH, then default."""
    env_value = os.environ.get(config.KB_PATH_ENV_VAR, "")
    base = (kb_root or "").strip() or env_value.strip() or config.KB_PATH.strip()
    if base:
        return str(Path(_expand_home(base)).resolve())
    return str((Path.cwd() / DEFAULT_KB_ROOT).resolve())


def resolve_source_root(source_path: str | None = None, kb_root: str | None = None) -> str:
    """Directory to scan: the override when given, else `<kb root>/<sources subdir>`."""
    if source_path and source_path.strip():
        return str(Path(_expand_home(source_path)).resolve())
    return str(Path(resolve_kb_root(kb_root)) / config.SOURCES_SUBDIR)


class EnvironmentManager:
    """Build the shared ingestion context and own the lifetime of its store."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        super().__init__()
        self._db_path = Path(db_path) if db_path is not None else config.DB_PATH

    @property
    def db_path(self) -> Path:
        return self._db_path

    def create_store(self) -> SqliteKnowledgeStore:
        return SqliteKnowledgeStore(self._db_path)

    def initialize(
        self,
        source_path: str | None = None,
        *,
        store: KnowledgeStore | None = None,
    ) -> IngestionContext:
        """Resolve the source root and attach a store.

        A store supplied by the caller is used as-is and left open afterwards;
        otherwise a SQLite store is created and opened here and the context
        records that the run owns it.
        """
        source_root = resolve_source_root(source_path)
        owns_store = store is None
        if store is None:
            sqlite_store = self.create_store()
            sqlite_store.open()
            logger.info("Opened knowledge store at %s", self._db_path)
            store = sqlite_store
        return IngestionContext(
            source_root=source_root,
            store=store,
            owns_store=owns_store,
        )

    def release(self, ctx: IngestionContext) -> None:
        """Close the context's store if this run opened it."""
        if ctx.owns_store and isinstance(ctx.store, SqliteKnowledgeStore):
            ctx.store.close()
            logger.info("Closed knowledge store at %s", self._db_path)

    @contextmanager
    def memory_guard(self) -> Iterator[None]:
        """Collect garbage after each document; PDF text can be large."""
        try:
            yield
        finally:
            _ = gc.collect()


__all__ = [
    "DEFAULT_KB_ROOT",
    "EnvironmentManager",
    "resolve_kb_root",
    "resolve_source_root",
]
