from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from knowledge_ingest import config


def test_defaults_without_settings_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv(config.KB_PATH_ENV_VAR, raising=False)

    settings = config.load_settings(str(tmp_path / "missing.toml"))

    assert settings.kb_path == ""
    assert settings.sources_subdir == "sources/knowledge"
    assert settings.max_chars_per_chunk == 1500
    assert settings.overlap_chars == 200
    assert settings.min_text_length == 100
    assert settings.max_pdf_size_mb == 100
    assert settings.db_path == Path("knowledge.db")


def test_settings_file_with_ingestion_table(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv(config.KB_PATH_ENV_VAR, raising=False)
    settings_file = tmp_path / "settings.toml"
    _ = settings_file.write_text(
        '[ingestion]\nMAX_CHARS_PER_CHUNK = 800\noverlap_chars = 40\ndb_path = "data/kb.db"\n',
        encoding="utf-8",
    )

    settings = config.load_settings(str(settings_file))

    assert settings.max_chars_per_chunk == 800
    assert settings.overlap_chars == 40
    assert settings.db_path == Path("data/kb.db")


def test_environment_overrides_kb_path(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    settings_file = tmp_path / "settings.toml"
    _ = settings_file.write_text('kb_path = "/from/file"\n', encoding="utf-8")
    monkeypatch.setenv(config.KB_PATH_ENV_VAR, "/from/env")

    assert config.load_settings(str(settings_file)).kb_path == "/from/env"


def test_invalid_settings_are_rejected(tmp_path: Path) -> None:
    settings_file = tmp_path / "settings.toml"
    _ = settings_file.write_text("max_chars_per_chunk = 0\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        _ = config.load_settings(str(settings_file))

    _ = settings_file.write_text("unknown_key = 1\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        _ = config.load_settings(str(settings_file))


def test_loaded_config_is_valid() -> None:
    config.validate_config()
