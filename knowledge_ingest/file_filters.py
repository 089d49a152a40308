import hashlib
import logging

from knowledge_ingest.models import DocumentAction, DocumentRecord, IngestionStatus

logger = logging.getLogger(__name__)


def calculate_content_hash(text: str) -> str:
    """SHA256 of the extracted text; identical text means the same document."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def should_skip_text(text: str, min_length: int) -> tuple[bool, str]:
    """Skip files whose extracted text is empty or too short to be useful."""
    if not text:
        return True, "empty text"
    if len(text) < min_length:
        return True, f"too short ({len(text)} < {min_length} chars)"
    return False, ""


def plan_document_action(
    existing: DocumentRecord | None,
    *,
    force: bool,
    resume: bool,
) -> tuple[DocumentAction, int, str]:
    """Decide what to do with a fingerprinted document.

    Returns ``(action, start_chunk_index, reason)``. Resuming an IN_PROGRESS
    document takes precedence over a forced restart.
    """
    if existing is None:
        return DocumentAction.CREATE, 0, "new document"

    status = existing.status
    logger.debug(
        "Planning %s (status=%s, force=%s, resume=%s)", existing.id, status.value, force, resume
    )

    if status is IngestionStatus.COMPLETED and not force:
        return DocumentAction.SKIP, 0, "already completed"

    if status is IngestionStatus.IN_PROGRESS and resume:
        last_index = existing.last_chunk_index
        start = last_index + 1 if last_index is not None else 0
        return DocumentAction.RESUME, start, f"resuming from chunk {start}"

    if force:
        return DocumentAction.RESTART, 0, f"force restart (status={status.value})"

    return DocumentAction.SKIP, 0, f"status={status.value}, not resuming"


__all__ = [
    "calculate_content_hash",
    "plan_document_action",
    "should_skip_text",
]
