from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import reset_cached_dependencies
from backend.app.main import create_app
from backend.app.repositories.database import Database
from backend.app.repositories.entry_repository import EntryRepository
from backend.app.repositories.sqlite_store import SqliteKeyValueStore
from backend.app.repositories.storage import InMemoryKeyValueStore, KeyValueStore
from backend.app.services.entry_service import EntryService
from backend.app.services.metadata import HeaderMetadataParser
from backend.app.services.renderer import MarkdownRenderer

SITE_HOSTS: tuple[str, ...] = ("example.com", "www.example.com")


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:  # pyright: ignore[reportUnusedFunction]
    for name in (
        "INKWELL_DATA_DIR",
        "INKWELL_SITE_HOSTS",
        "INKWELL_STORAGE_BACKEND",
        "INKWELL_TELEMETRY_ENABLED",
        "INKWELL_TELEMETRY_SINK",
        "INKWELL_MAX_DECODE_PASSES",
        "INKWELL_DB_PATH",
        "INKWELL_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)


def _build_service(
    store: KeyValueStore | None = None,
    *,
    site_hosts: tuple[str, ...] = SITE_HOSTS,
) -> EntryService:
    return EntryService(
        repository=EntryRepository(store if store is not None else InMemoryKeyValueStore()),
        renderer=MarkdownRenderer(),
        metadata_parser=HeaderMetadataParser(),
        site_hosts=site_hosts,
    )


@pytest.fixture
def service() -> EntryService:
    return _build_service()


@pytest.fixture
def make_service() -> Callable[..., EntryService]:
    return _build_service


@pytest.fixture
def sqlite_service(tmp_path: Path) -> EntryService:
    database = Database(tmp_path / "entries.db")
    database.initialize()
    return _build_service(SqliteKeyValueStore(database))


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("INKWELL_DATA_DIR", str(data_dir))
    monkeypatch.setenv("INKWELL_STORAGE_BACKEND", "sqlite")
    monkeypatch.setenv("INKWELL_SITE_HOSTS", ",".join(SITE_HOSTS))
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
