from __future__ import annotations

from functools import lru_cache

from backend.app.config import AppSettings, load_settings
from backend.app.repositories.database import Database
from backend.app.repositories.entry_repository import EntryRepository
from backend.app.repositories.sqlite_store import SqliteKeyValueStore
from backend.app.repositories.storage import InMemoryKeyValueStore, KeyValueStore
from backend.app.services.entry_service import EntryService
from backend.app.services.metadata import HeaderMetadataParser
from backend.app.services.renderer import MarkdownRenderer
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_store() -> KeyValueStore:
    settings = get_settings()
    if settings.storage_backend == "memory":
        return InMemoryKeyValueStore()

    database = Database(settings.db_path)
    database.initialize()
    return SqliteKeyValueStore(database)


@lru_cache(maxsize=1)
def get_entry_service() -> EntryService:
    settings = get_settings()
    return EntryService(
        repository=EntryRepository(get_store()),
        renderer=MarkdownRenderer(),
        metadata_parser=HeaderMetadataParser(),
        site_hosts=settings.site_hosts,
        max_decode_passes=settings.max_decode_passes,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_entry_service.cache_clear()
    get_store.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
