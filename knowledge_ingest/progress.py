from __future__ import annotations

import itertools
import sys
import threading
import time
from typing import Optional, TextIO

from knowledge_ingest.models import IngestPhase, IngestProgress

_PHASE_MESSAGES: dict[IngestPhase, str] = {
    IngestPhase.SCANNING: "Scanning knowledge sources...",
    IngestPhase.PROCESSING: "Processing documents...",
    IngestPhase.COMPLETE: "Ingestion complete.",
}


def default_message(phase: IngestPhase) -> str:
    """Status text for a phase when the caller gives none."""
    return _PHASE_MESSAGES.get(phase, "Working...")


class ConsoleSpinnerProgress:
    """Single-line console spinner fed by `IngestProgress` payloads.

    A daemon thread redraws the line; every other method only swaps the
    latest payload under the lock. When disabled (non-TTY output, quiet or
    verbose runs) lines pass straight through to the stream.
    """

    FRAMES = "|/-\\"

    def __init__(
        self,
        *,
        enabled: Optional[bool] = None,
        interval: float = 0.12,
        stream: TextIO | None = None,
    ) -> None:
        super().__init__()
        self._stream = stream or sys.stdout
        self._enabled = self._stream.isatty() if enabled is None else enabled
        self._interval = max(interval, 0.05)
        self._lock = threading.Lock()
        self._halt = threading.Event()
        self._thread: threading.Thread | None = None
        self._latest = IngestProgress(phase=IngestPhase.SCANNING)
        self._message = "Preparing ingestion..."
        self._started_at = time.monotonic()
        self._drawn_width = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def is_active(self) -> bool:
        return self._thread is not None

    def start(self, *, phase: IngestPhase | None = None, message: str | None = None) -> None:
        if not self._enabled:
            return

        with self._lock:
            if phase is not None:
                self._latest = self._latest.model_copy(update={"phase": phase})
            self._message = message or (default_message(phase) if phase else self._message)
            if self._thread is not None:
                return
            self._started_at = time.monotonic()
            self._halt.clear()
            self._thread = threading.Thread(
                target=self._spin, daemon=True, name="ingestion-spinner"
            )
        self._thread.start()

    def update(self, progress: IngestProgress, message: str | None = None) -> None:
        """Replace the payload shown on the spinner line."""
        if not self._enabled:
            return

        if message is None and progress.phase is IngestPhase.PROCESSING and progress.current_file:
            message = f"Processing {progress.current_file}"

        with self._lock:
            self._latest = progress
            self._message = message or default_message(progress.phase)

    def write_line(self, text: str) -> None:
        """Print a full line above the spinner."""
        with self._lock:
            self._erase_locked()
            print(text, file=self._stream)
            _ = self._stream.flush()

    def stop(self, final_message: str | None = None) -> None:
        thread = self._thread
        if thread is not None:
            self._halt.set()
            thread.join()
            self._thread = None

        with self._lock:
            self._erase_locked()
            if final_message:
                print(final_message, file=self._stream)
            _ = self._stream.flush()

    def status_line(self, frame: str = "") -> str:
        """Render the current payload as one line of text."""
        with self._lock:
            progress = self._latest
            message = self._message.strip()
            elapsed = time.monotonic() - self._started_at

        parts = [frame] if frame else []
        if progress.total_files:
            index = min(max(progress.current_file_index or 0, 0), progress.total_files)
            parts.append(f"[{index}/{progress.total_files}]")
        parts.append(message)

        counters = [
            f"{label}={value}"
            for label, value in (
                ("docs", progress.docs_processed),
                ("chunks", progress.chunks_created),
                ("errors", progress.errors),
            )
            if value > 0
        ]
        if counters:
            parts.append("(" + " | ".join(counters) + ")")
        parts.append(f"{elapsed:.0f}s")
        return " ".join(parts)

    def _spin(self) -> None:
        for frame in itertools.cycle(self.FRAMES):
            line = self.status_line(frame)
            with self._lock:
                # Pad over any longer line left from the previous frame.
                _ = self._stream.write("\r" + line.ljust(self._drawn_width))
                _ = self._stream.flush()
                self._drawn_width = len(line)
            if self._halt.wait(self._interval):
                return

    def _erase_locked(self) -> None:
        if not self._drawn_width:
            return
        _ = self._stream.write("\r" + " " * self._drawn_width + "\r")
        self._drawn_width = 0


__all__ = ["ConsoleSpinnerProgress", "default_message"]
