# ======================================
# Config for knowledge ingestion
# Defaults match the admin app's knowledge-ingest job
# ======================================

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Settings file (optional). Values here override the defaults below.
SETTINGS_FILE: str = os.environ.get("KB_INGEST_SETTINGS", "settings.toml")

# Environment variable naming the knowledge-base root directory
KB_PATH_ENV_VAR: str = "HF_KB_PATH"


class IngestSettings(BaseModel):
    """Validated settings backing the module-level constants."""

    kb_path: str = Field(default="", description="Knowledge-base root directory")
    sources_subdir: str = Field(
        default="sources/knowledge",
        description="Directory under the knowledge-base root holding documents",
    )
    db_path: Path = Field(
        default=Path("knowledge.db"), description="SQLite document/chunk store"
    )
    max_chars_per_chunk: int = Field(default=1500, gt=0)
    overlap_chars: int = Field(default=200, ge=0)
    min_text_length: int = Field(default=100, ge=0)
    max_pdf_size_mb: float = Field(default=100, gt=0)
    store_retry_attempts: int = Field(default=3, ge=1)
    ingestion_log_file: str = Field(default="ingestion.log")
    crash_log_file: str = Field(default="crash_log.txt")

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @field_validator("db_path", mode="before")
    @classmethod
    def _convert_to_path(cls, v: Any) -> Path:
        if isinstance(v, str):
            return Path(v).expanduser()
        return v


def load_settings(settings_file: str | None = None) -> IngestSettings:
    """Read `settings.toml` (if present) and apply environment overrides."""
    path = Path(settings_file or SETTINGS_FILE)
    values: dict[str, Any] = {}
    if path.is_file():
        with open(path, "rb") as handle:
            raw = tomllib.load(handle)
        # Accept either a flat file or an [ingestion] table.
        section = raw.get("ingestion", raw)
        values = {str(key).lower(): value for key, value in section.items()}

    env_kb_path = os.environ.get(KB_PATH_ENV_VAR, "").strip()
    if env_kb_path:
        values["kb_path"] = env_kb_path

    return IngestSettings(**values)


CONFIG: IngestSettings = load_settings()

# Knowledge base layout
KB_PATH: str = CONFIG.kb_path
SOURCES_SUBDIR: str = CONFIG.sources_subdir
DB_PATH: Path = CONFIG.db_path

# Chunking
MAX_CHARS_PER_CHUNK: int = CONFIG.max_chars_per_chunk
OVERLAP_CHARS: int = CONFIG.overlap_chars
MIN_TEXT_LENGTH: int = CONFIG.min_text_length

# PDF processing
MAX_PDF_SIZE_MB: float = CONFIG.max_pdf_size_mb

# Store writes
STORE_RETRY_ATTEMPTS: int = CONFIG.store_retry_attempts

# File paths and logging
INGESTION_LOG_FILE: str = CONFIG.ingestion_log_file
CRASH_LOG_FILE: str = CONFIG.crash_log_file


def validate_config() -> None:
    """Validate configuration values at startup."""
    positive_int_configs = [
        ("MAX_CHARS_PER_CHUNK", MAX_CHARS_PER_CHUNK),
        ("STORE_RETRY_ATTEMPTS", STORE_RETRY_ATTEMPTS),
    ]

    for config_name, config_val in positive_int_configs:
        if not isinstance(config_val, int) or config_val <= 0:
            raise ValueError(
                f"{config_name} must be a positive integer, got: {config_val}"
            )

    non_negative_int_configs = [
        ("OVERLAP_CHARS", OVERLAP_CHARS),
        ("MIN_TEXT_LENGTH", MIN_TEXT_LENGTH),
    ]

    for config_name, config_val in non_negative_int_configs:
        if not isinstance(config_val, int) or config_val < 0:
            raise ValueError(
                f"{config_name} must be a non-negative integer, got: {config_val}"
            )

    if not isinstance(MAX_PDF_SIZE_MB, (int, float)) or MAX_PDF_SIZE_MB <= 0:
        raise ValueError(
            f"MAX_PDF_SIZE_MB must be a positive number, got: {MAX_PDF_SIZE_MB}"
        )

    string_configs = [
        ("SOURCES_SUBDIR", SOURCES_SUBDIR),
        ("INGESTION_LOG_FILE", INGESTION_LOG_FILE),
        ("CRASH_LOG_FILE", CRASH_LOG_FILE),
    ]

    for config_name, config_val in string_configs:
        if not isinstance(config_val, str) or not config_val.strip():
            raise ValueError(
                f"{config_name} must be a non-empty string, got: {config_val}"
            )


# Validate on import
validate_config()
