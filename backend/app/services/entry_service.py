from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from time import perf_counter

from backend.app.repositories.common import require_text, utc_now_iso
from backend.app.repositories.entry_repository import Entry, EntryRepository, PendingReconcile
from backend.app.services.backlink_index import (
    BacklinkIndexMaintainer,
    ReconcileReport,
    record_lock_key,
)
from backend.app.services.key_locks import KeyedLocks
from backend.app.services.link_extractor import extract_links
from backend.app.services.metadata import EntryMetadata, MetadataParser, url_from_path
from backend.app.services.renderer import Renderer
from backend.app.services.url_canonicalizer import (
    DEFAULT_MAX_DECODE_PASSES,
    canonicalize,
    normalize_lookup_key,
)
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("inkwell.entries")


@dataclass(frozen=True)
class BacklinkRef:
    url: str
    title: str
    entry_id: str


class EntryService:
    def __init__(
        self,
        *,
        repository: EntryRepository,
        renderer: Renderer,
        metadata_parser: MetadataParser,
        site_hosts: Iterable[str] = (),
        max_decode_passes: int = DEFAULT_MAX_DECODE_PASSES,
        locks: KeyedLocks | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._repository = repository
        self._renderer = renderer
        self._metadata_parser = metadata_parser
        self._site_hosts = frozenset(
            host.strip().lower() for host in site_hosts if host and host.strip()
        )
        self._max_decode_passes = max(1, max_decode_passes)
        self._locks = locks if locks is not None else KeyedLocks()
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._maintainer = BacklinkIndexMaintainer(
            repository=repository,
            locks=self._locks,
            telemetry=self._telemetry,
        )

    def get(self, blog_id: str, entry_id: str) -> Entry | None:
        return self._repository.get_entry(blog_id, entry_id)

    def get_by_url(self, blog_id: str, url: str) -> Entry | None:
        if not isinstance(url, str) or not url.strip():
            return None
        lookup_key = normalize_lookup_key(
            url,
            self._site_hosts,
            max_decode_passes=self._max_decode_passes,
        )
        return self._repository.find_active_by_url(blog_id, lookup_key)

    def list_entries(self, blog_id: str, *, include_deleted: bool = False) -> list[Entry]:
        return self._repository.list_entries(blog_id, include_deleted=include_deleted)

    def resolve_backlinks(self, blog_id: str, entry: Entry) -> list[BacklinkRef]:
        refs: list[BacklinkRef] = []
        for url in entry.backlinks:
            linker = self.get_by_url(blog_id, url)
            if linker is None:
                continue
            refs.append(BacklinkRef(url=url, title=linker.title, entry_id=linker.entry_id))
        return refs

    def set(self, blog_id: str, path: str, raw_content: str) -> Entry:
        clean_blog_id = require_text(blog_id, field_name="blog_id")
        entry_id = require_text(path, field_name="path")
        started_at = perf_counter()

        metadata = self._metadata_parser.parse(entry_id, raw_content or "")
        canonical_url = self._resolve_address(entry_id, metadata)
        html_text = self._renderer.render(metadata.body)
        outbound = tuple(
            extract_links(
                html_text,
                canonical_url,
                self._site_hosts,
                max_decode_passes=self._max_decode_passes,
            )
        )

        with self._locks.hold(_source_lock_key(clean_blog_id, entry_id)):
            previous, contributed = self._write_entry(
                clean_blog_id,
                entry_id,
                metadata=metadata,
                raw_content=raw_content or "",
                html_text=html_text,
                canonical_url=canonical_url,
                outbound=outbound,
            )

            stale_urls = tuple(url for url in contributed.urls if url != canonical_url)
            for url in stale_urls:
                self._release_url(clean_blog_id, url, entry_id)
            self._claim_url(clean_blog_id, canonical_url, entry_id)

            report = self._maintainer.reconcile(
                blog_id=clean_blog_id,
                entry_id=entry_id,
                previous_urls=contributed.urls,
                new_url=canonical_url,
                old_outbound=contributed.outbound,
                new_outbound=outbound,
                reapply=previous is not None and previous.pending is not None,
            )
            if (
                previous is None
                or previous.deleted
                or previous.pending is not None
                or previous.canonical_url != canonical_url
            ):
                self._maintainer.rebuild_backlinks(blog_id=clean_blog_id, entry_id=entry_id)
            stored = self._settle(clean_blog_id, entry_id)

        self._emit_write(
            "entry.set",
            blog_id=clean_blog_id,
            entry_id=entry_id,
            report=report,
            started_at=started_at,
            restored=previous is not None and previous.deleted,
            renamed=bool(stale_urls),
        )
        LOGGER.info(
            "entry stored blog_id=%s entry_id=%s url=%s outbound=%s backlinks=%s",
            clean_blog_id,
            entry_id,
            canonical_url,
            len(outbound),
            len(stored.backlinks),
        )
        return stored

    def drop(self, blog_id: str, path: str) -> bool:
        clean_blog_id = require_text(blog_id, field_name="blog_id")
        entry_id = require_text(path, field_name="path")
        started_at = perf_counter()

        with self._locks.hold(_source_lock_key(clean_blog_id, entry_id)):
            with self._locks.hold(record_lock_key(clean_blog_id, entry_id)):
                existing = self._repository.get_entry(clean_blog_id, entry_id)
                if existing is None or (existing.deleted and existing.pending is None):
                    return False
                contributed = existing.contributions()
                self._repository.put_entry(
                    replace(
                        existing,
                        deleted=True,
                        backlinks=(),
                        pending=contributed,
                        updated_at=utc_now_iso(),
                    )
                )

            for url in contributed.urls:
                self._release_url(clean_blog_id, url, entry_id)
            report = self._maintainer.retract_all(
                blog_id=clean_blog_id,
                entry_id=entry_id,
                urls=contributed.urls,
                outbound=contributed.outbound,
            )
            self._settle(clean_blog_id, entry_id)

        self._emit_write(
            "entry.drop",
            blog_id=clean_blog_id,
            entry_id=entry_id,
            report=report,
            started_at=started_at,
        )
        LOGGER.info(
            "entry dropped blog_id=%s entry_id=%s url=%s retracted=%s",
            clean_blog_id,
            entry_id,
            existing.canonical_url,
            report.backlinks_removed,
        )
        return True

    def _resolve_address(self, path: str, metadata: EntryMetadata) -> str:
        if metadata.explicit_url is not None:
            explicit = canonicalize(
                metadata.explicit_url,
                self._site_hosts,
                max_decode_passes=self._max_decode_passes,
            )
            if isinstance(explicit, str):
                return explicit
            LOGGER.warning(
                "ignoring non-internal address override path=%s override=%s",
                path,
                metadata.explicit_url,
            )
        derived = canonicalize(
            url_from_path(path),
            max_decode_passes=self._max_decode_passes,
        )
        assert isinstance(derived, str)
        return derived

    def _write_entry(
        self,
        blog_id: str,
        entry_id: str,
        *,
        metadata: EntryMetadata,
        raw_content: str,
        html_text: str,
        canonical_url: str,
        outbound: tuple[str, ...],
    ) -> tuple[Entry | None, PendingReconcile]:
        """Store the new revision, marked with everything reconciliation must still settle."""
        timestamp = utc_now_iso()
        with self._locks.hold(record_lock_key(blog_id, entry_id)):
            previous = self._repository.get_entry(blog_id, entry_id)
            contributed = previous.contributions() if previous is not None else PendingReconcile()
            pending = contributed.merged(urls=(canonical_url,), outbound=outbound)
            if previous is None:
                entry = Entry(
                    entry_id=entry_id,
                    blog_id=blog_id,
                    path=entry_id,
                    canonical_url=canonical_url,
                    title=metadata.title,
                    content=raw_content,
                    html=html_text,
                    metadata=dict(metadata.fields),
                    outbound_links=outbound,
                    pending=pending,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
            else:
                keeps_address = previous.is_active and previous.canonical_url == canonical_url
                entry = replace(
                    previous,
                    canonical_url=canonical_url,
                    title=metadata.title,
                    content=raw_content,
                    html=html_text,
                    metadata=dict(metadata.fields),
                    outbound_links=outbound,
                    pending=pending,
                    backlinks=previous.backlinks if keeps_address else (),
                    deleted=False,
                    updated_at=timestamp,
                )
            self._repository.put_entry(entry)
        return previous, contributed

    def _settle(self, blog_id: str, entry_id: str) -> Entry:
        with self._locks.hold(record_lock_key(blog_id, entry_id)):
            current = self._repository.get_entry(blog_id, entry_id)
            if current is None:
                raise LookupError(f"entry vanished during write: {entry_id}")
            if current.pending is None:
                return current
            settled = replace(current, pending=None)
            self._repository.put_entry(settled)
        return settled

    def _claim_url(self, blog_id: str, canonical_url: str, entry_id: str) -> None:
        with self._locks.hold(_url_lock_key(blog_id, canonical_url)):
            owner = self._repository.get_url_owner(blog_id, canonical_url)
            if owner == entry_id:
                return
            if owner is not None:
                LOGGER.warning(
                    "address taken over blog_id=%s url=%s previous_owner=%s new_owner=%s",
                    blog_id,
                    canonical_url,
                    owner,
                    entry_id,
                )
            self._repository.set_url_owner(blog_id, canonical_url, entry_id)

    def _release_url(self, blog_id: str, canonical_url: str, entry_id: str) -> None:
        with self._locks.hold(_url_lock_key(blog_id, canonical_url)):
            self._repository.release_url(blog_id, canonical_url, entry_id)

    def _emit_write(
        self,
        event_name: str,
        *,
        blog_id: str,
        entry_id: str,
        report: ReconcileReport,
        started_at: float,
        **extra: bool,
    ) -> None:
        self._telemetry.emit(
            event_name,
            blog_id=blog_id,
            entry_id=entry_id,
            targets_touched=report.targets_touched,
            backlinks_added=report.backlinks_added,
            backlinks_removed=report.backlinks_removed,
            unresolved_targets=len(report.unresolved_targets),
            duration_ms=int((perf_counter() - started_at) * 1000),
            **extra,
        )


def _source_lock_key(blog_id: str, entry_id: str) -> tuple[str, str, str]:
    return ("source", blog_id, entry_id)


def _url_lock_key(blog_id: str, canonical_url: str) -> tuple[str, str, str]:
    return ("url", blog_id, canonical_url)
