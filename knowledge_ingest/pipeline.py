"""Top-level orchestration for knowledge document ingestion.

Sequence per run: resolve the source root, scan it, then for each file
extract text, fingerprint it, look the fingerprint up in the store, decide
between create / resume / restart / skip, and persist chunks one at a time
before marking the document COMPLETED.  Everything is sequential on purpose:
the highest persisted chunk index is the resume point after a crash, which
only holds if chunk N is never written before chunk N - 1.

A failure inside one file is recorded in the run's error list and the
document is marked FAILED; it never aborts the batch.  Only failures outside
per-file work (setup, scanning) propagate to the caller.
"""

from __future__ import annotations

import logging
import os
import traceback
from pathlib import Path

from knowledge_ingest.environment import EnvironmentManager, resolve_source_root
from knowledge_ingest.file_filters import (
    calculate_content_hash,
    plan_document_action,
    should_skip_text,
)
from knowledge_ingest.file_scanner import scan_directory
from knowledge_ingest.models import (
    DocumentAction,
    DocumentMeta,
    IngestPhase,
    IngestProgress,
    IngestResult,
    IngestionContext,
    KnowledgeIngestOptions,
    KnowledgeStore,
)
from knowledge_ingest.progress import ConsoleSpinnerProgress
from knowledge_ingest.text_processing import chunk_text, extract_text, extract_title

logger = logging.getLogger(__name__)

MAX_SUMMARY_ERRORS = 5

# Log records already narrated to the operator; the CLI keeps them off stderr.
FILE_ONLY = {"console": False}


class KnowledgeIngestor:
    """Runs one ingestion pass over a source root against a knowledge store."""

    def __init__(
        self,
        ctx: IngestionContext,
        options: KnowledgeIngestOptions,
        *,
        env: EnvironmentManager | None = None,
        progress: ConsoleSpinnerProgress | None = None,
    ) -> None:
        super().__init__()
        self._ctx = ctx
        self._options = options
        self._env = env or EnvironmentManager()
        self._progress = progress if progress and progress.enabled else None
        self._store: KnowledgeStore = ctx.store
        self.result = IngestResult()

    def _emit_message(self, message: str) -> None:
        """Operator narration, suppressed in quiet mode."""
        if self._options.quiet:
            return
        if self._progress:
            self._progress.write_line(message)
        else:
            print(message)

    def _emit_verbose(self, message: str) -> None:
        if self._options.verbose:
            self._emit_message(message)

    def _emit_progress(
        self,
        phase: IngestPhase,
        *,
        current_file: str | None = None,
        current_file_index: int | None = None,
        total_files: int | None = None,
    ) -> None:
        payload = IngestProgress(
            phase=phase,
            current_file=current_file,
            current_file_index=current_file_index,
            total_files=total_files,
            docs_processed=self.result.files_processed,
            chunks_created=self.result.chunks_created,
            errors=len(self.result.errors),
        )
        if self._progress:
            self._progress.update(payload)
        if self._options.on_progress is not None:
            self._options.on_progress(payload)

    def _relative_path(self, path: str) -> str:
        root = self._ctx.source_root
        if path == root:
            return os.path.basename(path)
        if path.startswith(root):
            return path[len(root) :].lstrip(os.sep)
        return path

    def process_file(
        self,
        path: str,
        *,
        file_index: int,
        total_files: int,
    ) -> bool:
        """Ingest one file. Returns True when it counted toward the processed limit."""
        opts = self._options
        store = self._store
        relative_path = self._relative_path(path)
        content_hash: str | None = None

        try:
            self._emit_progress(
                IngestPhase.PROCESSING,
                current_file=relative_path,
                current_file_index=file_index,
                total_files=total_files,
            )
            self._emit_verbose(f"\n📄 Processing: {relative_path}")

            text = extract_text(
                path, opts.max_pdf_size_mb, verbose=opts.verbose and not opts.quiet
            )
            skip, reason = should_skip_text(text, opts.min_text_length)
            if skip:
                self._emit_verbose(f"   ⏭️  Skipping ({reason})")
                self.result.files_skipped += 1
                return False

            content_hash = calculate_content_hash(text)
            existing = store.find_by_content_sha(content_hash)
            if existing is not None:
                self._emit_verbose(
                    f"   🔍 Found existing doc (status: {existing.status.value})"
                )

            action, start_index, reason = plan_document_action(
                existing,
                force=opts.force_reprocess,
                resume=opts.resume_partial,
            )

            if action is DocumentAction.SKIP:
                self._emit_verbose(f"   ⏭️  Skipping ({reason})")
                self.result.files_skipped += 1
                return False

            doc = existing
            if action is DocumentAction.RESUME:
                self._emit_verbose(f"   ▶️  Resuming from chunk {start_index}")
                self.result.files_resumed += 1
            elif action is DocumentAction.RESTART and existing is not None:
                self._emit_verbose(f"   🗑️  Deleting existing doc, restarting ({reason})")
                store.delete_document(existing.id)
                doc = None

            if doc is None:
                filename = os.path.basename(path)
                title = extract_title(text, filename)
                doc = store.create_document(
                    source_path=path,
                    title=title,
                    content=text,
                    content_sha=content_hash,
                    meta=DocumentMeta(
                        filename=filename,
                        size=len(text),
                        extension=Path(path).suffix,
                    ),
                )
                self.result.docs_created += 1
                self._emit_verbose(f"   ✅ Created document ({doc.id})")
                self._emit_verbose(f"      Title: {title}")
                self._emit_verbose(f"      Size: {len(text)} chars")

            self.result.files_processed += 1

            all_chunks = chunk_text(text, opts.max_chars_per_chunk, opts.overlap_chars)
            pending = all_chunks[start_index:]
            if start_index > 0:
                self._emit_verbose(
                    f"   📦 Chunking: {len(pending)} new chunks ({start_index} already exist)"
                )
            else:
                self._emit_verbose(f"   📦 Chunking: {len(pending)} chunks")

            # One insert per chunk; a crash mid-loop leaves a clean resume point.
            for chunk in pending:
                store.insert_chunk(doc.id, chunk)
                self.result.chunks_created += 1

            store.complete_document(doc.id, len(all_chunks))
            self.result.docs_updated += 1
            self._emit_verbose(f"   ✅ Completed ({len(all_chunks)} total chunks)")

            self._emit_progress(
                IngestPhase.PROCESSING,
                current_file=relative_path,
                current_file_index=file_index,
                total_files=total_files,
            )
            return True

        except Exception as exc:
            error_msg = f"Error processing {path}: {type(exc).__name__}: {exc}"
            logger.error(error_msg, exc_info=True, extra=FILE_ONLY)
            self._emit_message(f"   ❌ {error_msg}")
            self.result.errors.append(error_msg)
            self._write_crash_log(path, exc)
            self._mark_failed(path, content_hash, str(exc))
            return False

    def _mark_failed(self, path: str, content_hash: str | None, message: str) -> None:
        """Best-effort FAILED flag; the original error is already recorded."""
        try:
            if content_hash is None:
                text = extract_text(path, self._options.max_pdf_size_mb)
                if not text:
                    return
                content_hash = calculate_content_hash(text)
            changed = self._store.mark_failed(content_hash, message)
            if changed:
                logger.info("Marked %d document(s) FAILED for %s", changed, path)
        except Exception as exc:
            logger.debug("Could not mark %s as failed: %s", path, exc)

    def _write_crash_log(self, path: str, exc: Exception) -> None:
        crash_log = self._options.crash_log_path
        if not crash_log:
            return
        try:
            with open(crash_log, "a", encoding="utf-8") as handle:
                _ = handle.write(f"\n{'=' * 60}\n")
                _ = handle.write(f"FAILED FILE: {path}\n")
                _ = handle.write(f"ERROR TYPE: {type(exc).__name__}\n")
                _ = handle.write(f"ERROR: {exc}\n")
                _ = handle.write("TRACEBACK:\n")
                _ = handle.write(
                    "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
                )
                _ = handle.write(f"\n{'=' * 60}\n")
        except OSError as log_exc:
            logger.warning("⚠️ Could not write crash log %s: %s", crash_log, log_exc)

    def run(self) -> IngestResult:
        """Scan the source root and process files until done or the limit is hit."""
        opts = self._options
        root = self._ctx.source_root

        self._emit_verbose(f"\n🔍 Scanning knowledge sources: {root}")
        if self._progress:
            self._progress.start(phase=IngestPhase.SCANNING)
        self._emit_progress(IngestPhase.SCANNING)

        files = scan_directory(root, opts.max_documents, not opts.skip_pdfs)
        self.result.files_scanned = len(files)
        logger.info("Scanned %s: %d candidate file(s)", root, len(files))

        self._emit_verbose(f"✅ Found {len(files)} document(s)")
        if opts.max_documents > 0:
            self._emit_verbose(f"⚠️  LIMIT: Processing max {opts.max_documents} documents")

        if not files:
            self._emit_message(f"⚠️  No documents found in {root}")
            self._emit_progress(IngestPhase.COMPLETE, total_files=0)
            return self.result

        processed_count = 0
        for file_index, path in enumerate(files, start=1):
            if opts.max_documents > 0 and processed_count >= opts.max_documents:
                self._emit_verbose(
                    f"\n⏹️  Reached limit of {opts.max_documents} documents, stopping"
                )
                break

            with self._env.memory_guard():
                if self.process_file(path, file_index=file_index, total_files=len(files)):
                    processed_count += 1

        self._emit_progress(IngestPhase.COMPLETE, total_files=len(files))
        return self.result


def print_plan(options: KnowledgeIngestOptions, source_root: str) -> None:
    """Describe what a run with these options would do, without doing it."""
    print("\n📋 KNOWLEDGE INGESTION PLAN\n")
    print("Steps:")
    print("1. Scan knowledge sources directory for documents")
    print(f"   - Source: {source_root}")
    if options.max_documents > 0:
        print(f"   - LIMIT: Process max {options.max_documents} documents")
    print("2. For each document:")
    print("   - Extract text (PDF, markdown, txt)")
    if options.skip_pdfs:
        print("   - SKIP PDFs: --skip-pdfs enabled")
    else:
        print(f"   - PDF max size: {options.max_pdf_size_mb:g} MB (larger files skipped)")
    print(f"   - Skip text shorter than {options.min_text_length} chars")
    print("   - Calculate content hash (SHA256)")
    print("   - Check ingestion status:")
    print("     * COMPLETED → " + ("delete and restart" if options.force_reprocess else "skip"))
    if options.resume_partial:
        print("     * IN_PROGRESS → resume chunking")
    else:
        print(
            "     * IN_PROGRESS → "
            + ("delete and restart" if options.force_reprocess else "skip")
        )
    print("     * FAILED → " + ("delete and restart" if options.force_reprocess else "skip"))
    print("     * Not exists → create new")
    if options.force_reprocess:
        print("   - FORCE MODE: Delete existing and reprocess all")
    print("   - Create/update document with status=IN_PROGRESS")
    print(
        f"   - Chunk document ({options.max_chars_per_chunk} chars, "
        f"{options.overlap_chars} overlap)"
    )
    print("   - Create chunk records one at a time")
    print("   - Update status=COMPLETED")
    print("\nEffects:")
    print(f"- Reads: {source_root}")
    print("- Writes: documents, chunks")
    print("\nRun without --plan to execute.\n")


def print_summary(result: IngestResult) -> None:
    """Emit final processing statistics."""
    print("\n✅ KNOWLEDGE INGESTION COMPLETE\n")
    print(f"Files scanned: {result.files_scanned}")
    print(f"Files processed: {result.files_processed}")
    print(f"Files resumed: {result.files_resumed}")
    print(f"Files skipped: {result.files_skipped}")
    print(f"Docs created: {result.docs_created}")
    print(f"Docs updated: {result.docs_updated}")
    print(f"Chunks created: {result.chunks_created}")
    if result.errors:
        print(f"\n⚠️  Errors: {len(result.errors)}")
        for error in result.errors[:MAX_SUMMARY_ERRORS]:
            print(f"   - {error}")
        if len(result.errors) > MAX_SUMMARY_ERRORS:
            print(f"   ... and {len(result.errors) - MAX_SUMMARY_ERRORS} more")


def ingest_knowledge(
    options: KnowledgeIngestOptions | None = None,
    *,
    store: KnowledgeStore | None = None,
    env: EnvironmentManager | None = None,
    progress: ConsoleSpinnerProgress | None = None,
) -> IngestResult:
    """Ingest knowledge documents into the store.

    High-level flow:
      1. Resolve the source root (explicit path, else HF_KB_PATH/sources/knowledge).
      2. In plan mode, print the steps and return an empty result.
      3. Scan, extract, fingerprint, decide, chunk, and persist each file.
      4. Print the summary (unless quiet) and return the aggregate counts.

    When no store is passed one is opened from configuration and closed
    before returning; a caller-supplied store stays open.
    """
    opts = options or KnowledgeIngestOptions()
    env_manager = env or EnvironmentManager()

    if opts.plan:
        print_plan(opts, resolve_source_root(opts.source_path))
        return IngestResult()

    ctx: IngestionContext | None = None
    ingestor: KnowledgeIngestor | None = None
    try:
        ctx = env_manager.initialize(opts.source_path, store=store)
        ingestor = KnowledgeIngestor(ctx, opts, env=env_manager, progress=progress)
        result = ingestor.run()
    except Exception as exc:
        logger.exception("Fatal error during knowledge ingestion", extra=FILE_ONLY)
        print(f"❌ Fatal error during knowledge ingestion: {type(exc).__name__}: {exc}")
        if ingestor is not None:
            ingestor.result.errors.append(str(exc))
        raise
    finally:
        if progress is not None:
            progress.stop()
        if ctx is not None:
            env_manager.release(ctx)

    if not opts.quiet:
        print_summary(result)
    return result


__all__ = [
    "KnowledgeIngestor",
    "ingest_knowledge",
    "print_plan",
    "print_summary",
]
