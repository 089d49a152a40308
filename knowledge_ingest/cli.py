import argparse
import logging
import sys
from io import TextIOWrapper
from pathlib import Path
from typing import Sequence, cast

from pydantic import ValidationError

from knowledge_ingest import config
from knowledge_ingest.environment import EnvironmentManager
from knowledge_ingest.models import KnowledgeIngestOptions
from knowledge_ingest.pipeline import ingest_knowledge
from knowledge_ingest.progress import ConsoleSpinnerProgress

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_REFUSED = 2


def _console_filter(record: logging.LogRecord) -> bool:
    return getattr(record, "console", True)


def configure_logging(verbose: bool = False) -> None:
    """Mirror ingestion logs to stderr and to the ingestion log file."""
    console = logging.StreamHandler()
    console.addFilter(_console_filter)
    handlers: list[logging.Handler] = [console]
    try:
        handlers.append(logging.FileHandler(config.INGESTION_LOG_FILE, encoding="utf-8"))
    except OSError as exc:
        print(f"⚠️ Cannot open log file {config.INGESTION_LOG_FILE}: {exc}")
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def validate_source_path(folder_path: str) -> bool:
    """Refuse source paths that would sweep the whole system or home directory.

    A path that does not exist is allowed: the scan simply finds nothing.
    """
    path = Path(folder_path).expanduser().resolve()
    home = Path.home().resolve()

    if path.parent == path:
        print(f"❌ Error: Cannot ingest filesystem root directory: {path}")
        print("   Please specify a specific folder (e.g., './knowledge')")
        return False

    if path == home:
        print(f"❌ Error: Cannot ingest home directory: {path}")
        print("   Please specify a specific document folder.")
        return False

    try:
        _ = home.relative_to(path)
    except ValueError:
        return True

    print(f"❌ Error: Path {path} contains your home directory")
    print("   Please specify a specific document folder.")
    return False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ingest knowledge documents (markdown, text, PDF) into the document/chunk store"
    )
    _ = parser.add_argument(
        "-v", "--verbose", action="store_true", help="Narrate every file and decision."
    )
    _ = parser.add_argument(
        "-q", "--quiet", action="store_true", help="Minimal output for background runs."
    )
    _ = parser.add_argument(
        "--plan",
        action="store_true",
        help="Print the steps that would run and exit without touching the store.",
    )
    _ = parser.add_argument(
        "--path",
        dest="source_path",
        help=f"File or directory to ingest (default: $HF_KB_PATH/{config.SOURCES_SUBDIR}).",
    )
    _ = parser.add_argument(
        "--max-documents",
        type=int,
        default=0,
        help="Process at most this many documents (0 = unlimited).",
    )
    _ = parser.add_argument(
        "--chunk-size",
        type=int,
        default=config.MAX_CHARS_PER_CHUNK,
        help="Maximum characters per chunk.",
    )
    _ = parser.add_argument(
        "--overlap",
        type=int,
        default=config.OVERLAP_CHARS,
        help="Characters shared between consecutive chunks.",
    )
    _ = parser.add_argument(
        "--force",
        action="store_true",
        help="Delete and reprocess documents even if already completed or failed.",
    )
    _ = parser.add_argument(
        "--no-resume",
        action="store_true",
        help="Do not resume documents left IN_PROGRESS by an interrupted run.",
    )
    _ = parser.add_argument(
        "--skip-pdfs", action="store_true", help="Ignore PDF files entirely."
    )
    _ = parser.add_argument(
        "--max-pdf-size",
        type=float,
        default=config.MAX_PDF_SIZE_MB,
        help="Skip PDFs larger than this many megabytes.",
    )
    _ = parser.add_argument(
        "--db",
        dest="db_path",
        help=f"SQLite store to write (default: {config.DB_PATH}).",
    )
    return parser


def options_from_args(args: argparse.Namespace) -> KnowledgeIngestOptions:
    return KnowledgeIngestOptions(
        verbose=args.verbose,
        quiet=args.quiet,
        plan=args.plan,
        source_path=args.source_path,
        max_documents=args.max_documents,
        max_chars_per_chunk=args.chunk_size,
        overlap_chars=args.overlap,
        force_reprocess=args.force,
        resume_partial=not args.no_resume,
        skip_pdfs=args.skip_pdfs,
        max_pdf_size_mb=args.max_pdf_size,
        crash_log_path=config.CRASH_LOG_FILE,
    )


def _parse(argv: Sequence[str] | None) -> tuple[argparse.Namespace, KnowledgeIngestOptions]:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        options = options_from_args(args)
    except ValidationError as exc:
        parser.error(f"invalid options: {exc}")
    return args, options


def execute(args: argparse.Namespace, options: KnowledgeIngestOptions) -> int:
    """Run ingestion for parsed arguments and return the process exit code."""
    if args.source_path and not validate_source_path(args.source_path):
        return EXIT_REFUSED

    crash_log_path = Path(config.CRASH_LOG_FILE)
    if not options.plan and crash_log_path.exists():
        # The crash log only ever describes the latest run.
        crash_log_path.unlink()
        if not options.quiet:
            print("🗑️  Cleared previous crash log")

    env = EnvironmentManager(args.db_path)
    progress = ConsoleSpinnerProgress(
        enabled=False if (options.verbose or options.quiet or options.plan) else None
    )

    try:
        result = ingest_knowledge(options, env=env, progress=progress)
    except Exception:
        # ingest_knowledge has already reported and logged it.
        return EXIT_ERRORS

    return EXIT_OK if result.ok else EXIT_ERRORS


def run(argv: Sequence[str] | None = None) -> int:
    """Parse arguments and run ingestion without touching logging setup."""
    args, options = _parse(argv)
    return execute(args, options)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point for knowledge ingestion."""
    cast(TextIOWrapper, sys.stdout).reconfigure(encoding="utf-8", errors="replace")
    args, options = _parse(argv)
    configure_logging(options.verbose)
    sys.exit(execute(args, options))


__all__ = [
    "build_parser",
    "configure_logging",
    "execute",
    "main",
    "options_from_args",
    "run",
    "validate_source_path",
]
