from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, cast
from urllib.parse import quote

from backend.app.repositories.storage import KeyValueStore, StorageError


@dataclass(frozen=True)
class PendingReconcile:
    """Addresses and targets an unfinished write may already have touched."""

    urls: tuple[str, ...] = ()
    outbound: tuple[str, ...] = ()

    def merged(self, *, urls: tuple[str, ...], outbound: tuple[str, ...]) -> PendingReconcile:
        return PendingReconcile(
            urls=tuple(dict.fromkeys((*self.urls, *urls))),
            outbound=tuple(dict.fromkeys((*self.outbound, *outbound))),
        )


@dataclass(frozen=True)
class Entry:
    entry_id: str
    blog_id: str
    path: str
    canonical_url: str
    title: str
    content: str
    html: str
    created_at: str
    updated_at: str
    metadata: dict[str, str] = field(default_factory=dict)
    backlinks: tuple[str, ...] = ()
    outbound_links: tuple[str, ...] = ()
    deleted: bool = False
    pending: PendingReconcile | None = None

    @property
    def is_active(self) -> bool:
        return not self.deleted

    def contributions(self) -> PendingReconcile:
        """What this entry may currently have written into other entries' backlinks."""
        if self.pending is not None:
            return self.pending
        if self.deleted:
            return PendingReconcile()
        return PendingReconcile(urls=(self.canonical_url,), outbound=self.outbound_links)

    def with_backlink(self, url: str) -> Entry:
        if url in self.backlinks:
            return self
        return replace(self, backlinks=(*self.backlinks, url))

    def without_backlink(self, url: str) -> Entry:
        if url not in self.backlinks:
            return self
        return replace(self, backlinks=tuple(item for item in self.backlinks if item != url))


class EntryRepository:
    """Entry records and the canonical URL index, scoped per blog."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get_entry(self, blog_id: str, entry_id: str) -> Entry | None:
        key = _entry_key(blog_id, entry_id)
        raw = self._store.get(key)
        if raw is None:
            return None
        return _entry_from_json(raw, key=key)

    def put_entry(self, entry: Entry) -> None:
        self._store.put(_entry_key(entry.blog_id, entry.entry_id), _entry_to_json(entry))

    def list_entries(self, blog_id: str, *, include_deleted: bool = False) -> list[Entry]:
        entries: list[Entry] = []
        for key in self._store.list_keys(_entry_prefix(blog_id)):
            raw = self._store.get(key)
            if raw is None:
                continue
            entry = _entry_from_json(raw, key=key)
            if entry.deleted and not include_deleted:
                continue
            entries.append(entry)
        return entries

    def get_url_owner(self, blog_id: str, canonical_url: str) -> str | None:
        return self._store.get(_url_key(blog_id, canonical_url))

    def set_url_owner(self, blog_id: str, canonical_url: str, entry_id: str) -> None:
        self._store.put(_url_key(blog_id, canonical_url), entry_id)

    def release_url(self, blog_id: str, canonical_url: str, entry_id: str) -> bool:
        key = _url_key(blog_id, canonical_url)
        if self._store.get(key) != entry_id:
            return False
        self._store.delete(key)
        return True

    def find_active_by_url(self, blog_id: str, canonical_url: str) -> Entry | None:
        entry_id = self.get_url_owner(blog_id, canonical_url)
        if entry_id is None:
            return None
        entry = self.get_entry(blog_id, entry_id)
        if entry is None or entry.deleted or entry.canonical_url != canonical_url:
            return None
        return entry


def _blog_prefix(blog_id: str) -> str:
    return f"blog:{quote(blog_id, safe='')}:"


def _entry_prefix(blog_id: str) -> str:
    return f"{_blog_prefix(blog_id)}entry:"


def _entry_key(blog_id: str, entry_id: str) -> str:
    return f"{_entry_prefix(blog_id)}{entry_id}"


def _url_key(blog_id: str, canonical_url: str) -> str:
    return f"{_blog_prefix(blog_id)}url:{canonical_url}"


def _entry_to_json(entry: Entry) -> str:
    payload = {
        "entry_id": entry.entry_id,
        "blog_id": entry.blog_id,
        "path": entry.path,
        "canonical_url": entry.canonical_url,
        "title": entry.title,
        "content": entry.content,
        "html": entry.html,
        "metadata": entry.metadata,
        "backlinks": list(entry.backlinks),
        "outbound_links": list(entry.outbound_links),
        "deleted": entry.deleted,
        "pending": _pending_to_payload(entry.pending),
        "created_at": entry.created_at,
        "updated_at": entry.updated_at,
    }
    return json.dumps(payload, sort_keys=True, ensure_ascii=False)


def _entry_from_json(raw: str, *, key: str) -> Entry:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StorageError(f"corrupt entry record at {key!r}", key=key) from exc
    if not isinstance(parsed, dict):
        raise StorageError(f"entry record at {key!r} is not an object", key=key)
    record = cast(dict[str, Any], parsed)

    try:
        return Entry(
            entry_id=str(record["entry_id"]),
            blog_id=str(record["blog_id"]),
            path=str(record["path"]),
            canonical_url=str(record["canonical_url"]),
            title=str(record.get("title") or ""),
            content=str(record.get("content") or ""),
            html=str(record.get("html") or ""),
            metadata=_str_dict(record.get("metadata")),
            backlinks=_distinct_strings(record.get("backlinks")),
            outbound_links=_distinct_strings(record.get("outbound_links")),
            deleted=bool(record.get("deleted", False)),
            pending=_pending_from_payload(record.get("pending")),
            created_at=str(record.get("created_at") or ""),
            updated_at=str(record.get("updated_at") or ""),
        )
    except KeyError as exc:
        raise StorageError(f"entry record at {key!r} is missing {exc.args[0]!r}", key=key) from exc


def _distinct_strings(raw: object) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    values: list[str] = []
    for item in cast(list[object], raw):
        if isinstance(item, str) and item not in values:
            values.append(item)
    return tuple(values)


def _str_dict(raw: object) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    output: dict[str, str] = {}
    for key, value in cast(dict[object, object], raw).items():
        output[str(key)] = str(value)
    return output


def _pending_to_payload(pending: PendingReconcile | None) -> dict[str, list[str]] | None:
    if pending is None:
        return None
    return {"urls": list(pending.urls), "outbound": list(pending.outbound)}


def _pending_from_payload(raw: object) -> PendingReconcile | None:
    if not isinstance(raw, dict):
        return None
    payload = cast(dict[str, object], raw)
    return PendingReconcile(
        urls=_distinct_strings(payload.get("urls")),
        outbound=_distinct_strings(payload.get("outbound")),
    )
