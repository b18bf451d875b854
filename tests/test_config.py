from __future__ import annotations

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from backend.app.config import AppSettings, load_settings
from backend.app.logging_config import LOG_FILE_NAME, configure_application_logging, resolve_log_level


def test_paths_default_under_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INKWELL_DATA_DIR", str(tmp_path / "data"))

    settings = load_settings()

    assert settings.data_dir == (tmp_path / "data").resolve()
    assert settings.db_path == (tmp_path / "data" / "entries.db").resolve()
    assert settings.log_dir == (tmp_path / "data" / "logs").resolve()
    assert settings.storage_backend == "sqlite"
    assert settings.site_hosts == ()
    assert settings.max_decode_passes == 8


def test_explicit_db_path_wins(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INKWELL_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("INKWELL_DB_PATH", str(tmp_path / "elsewhere" / "x.db"))

    settings = load_settings()

    assert settings.db_path == (tmp_path / "elsewhere" / "x.db").resolve()


def test_site_hosts_are_parsed_from_comma_separated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INKWELL_SITE_HOSTS", " Example.com, www.example.com/ ,,example.com")

    settings = load_settings()

    assert settings.site_hosts == ("example.com", "www.example.com")


def test_flags_and_backends_are_normalized(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INKWELL_STORAGE_BACKEND", " MEMORY ")
    monkeypatch.setenv("INKWELL_TELEMETRY_ENABLED", "off")
    monkeypatch.setenv("INKWELL_TELEMETRY_SINK", "None")
    monkeypatch.setenv("INKWELL_MAX_DECODE_PASSES", "0")

    settings = load_settings()

    assert settings.storage_backend == "memory"
    assert settings.telemetry_enabled is False
    assert settings.telemetry_sink == "none"
    assert settings.max_decode_passes == 1


def test_unknown_storage_backend_is_rejected() -> None:
    with pytest.raises(ValidationError):
        AppSettings(storage_backend="postgres")


def test_logging_writes_json_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INKWELL_DATA_DIR", str(tmp_path / "data"))
    settings = load_settings()

    log_file = configure_application_logging(settings)
    logging.getLogger("inkwell.tests").info("hello from tests value=%s", 42)
    for handler in logging.getLogger("inkwell").handlers:
        handler.flush()

    assert log_file == settings.log_dir / LOG_FILE_NAME
    contents = log_file.read_text(encoding="utf-8")
    assert '"event": "hello from tests value=42"' in contents


def test_resolve_log_level_falls_back_to_info() -> None:
    assert resolve_log_level("debug") == logging.DEBUG
    assert resolve_log_level("chatty") == logging.INFO
