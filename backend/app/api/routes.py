from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.dependencies import get_entry_service
from backend.app.models.entry_contracts import (
    BacklinkRefResponse,
    DropResponse,
    EntryResponse,
    EntryWriteRequest,
)
from backend.app.repositories.entry_repository import Entry
from backend.app.repositories.storage import StorageError
from backend.app.services.entry_service import EntryService

LOGGER = logging.getLogger("inkwell.api")

router = APIRouter()


@contextmanager
def _entry_context(blog_id: str, entry_ref: str | None = None) -> Iterator[None]:
    context_tokens = bind_contextvars(blog_id=blog_id, entry_ref=entry_ref)
    try:
        yield
    except StorageError as exc:
        LOGGER.error("storage unavailable blog_id=%s key=%s", blog_id, exc.key)
        raise HTTPException(status_code=503, detail="Entry storage is unavailable.") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        reset_contextvars(**context_tokens)


def _require_entry(entry: Entry | None, *, detail: str) -> Entry:
    if entry is None:
        raise HTTPException(status_code=404, detail=detail)
    return entry


@router.put(
    "/blogs/{blog_id}/entries",
    response_model=EntryResponse,
    tags=["entries"],
    operation_id="entry_set",
)
def set_entry(
    blog_id: str,
    request: EntryWriteRequest,
    service: Annotated[EntryService, Depends(get_entry_service)],
) -> EntryResponse:
    with _entry_context(blog_id, request.path):
        entry = service.set(blog_id, request.path, request.content)
    return EntryResponse.from_entry(entry)


@router.delete(
    "/blogs/{blog_id}/entries",
    response_model=DropResponse,
    tags=["entries"],
    operation_id="entry_drop",
)
def drop_entry(
    blog_id: str,
    path: Annotated[str, Query(min_length=1, max_length=1024)],
    service: Annotated[EntryService, Depends(get_entry_service)],
) -> DropResponse:
    with _entry_context(blog_id, path):
        dropped = service.drop(blog_id, path)
    return DropResponse(dropped=dropped)


@router.get(
    "/blogs/{blog_id}/entries",
    response_model=list[EntryResponse],
    tags=["entries"],
    operation_id="entry_list",
)
def list_entries(
    blog_id: str,
    service: Annotated[EntryService, Depends(get_entry_service)],
    include_deleted: bool = False,
) -> list[EntryResponse]:
    with _entry_context(blog_id):
        entries = service.list_entries(blog_id, include_deleted=include_deleted)
    return [EntryResponse.from_entry(entry) for entry in entries]


@router.get(
    "/blogs/{blog_id}/entries/by-id",
    response_model=EntryResponse,
    tags=["entries"],
    operation_id="entry_get",
)
def get_entry(
    blog_id: str,
    entry_id: Annotated[str, Query(min_length=1, max_length=1024)],
    service: Annotated[EntryService, Depends(get_entry_service)],
) -> EntryResponse:
    with _entry_context(blog_id, entry_id):
        entry = service.get(blog_id, entry_id)
    return EntryResponse.from_entry(_require_entry(entry, detail="Entry not found."))


@router.get(
    "/blogs/{blog_id}/resolve",
    response_model=EntryResponse,
    tags=["entries"],
    operation_id="entry_resolve",
)
def resolve_entry(
    blog_id: str,
    url: Annotated[str, Query(max_length=4096)],
    service: Annotated[EntryService, Depends(get_entry_service)],
) -> EntryResponse:
    with _entry_context(blog_id, url):
        entry = service.get_by_url(blog_id, url)
    return EntryResponse.from_entry(
        _require_entry(entry, detail="No published entry at this address.")
    )


@router.get(
    "/blogs/{blog_id}/backlinks",
    response_model=list[BacklinkRefResponse],
    tags=["backlinks"],
    operation_id="backlinks_list",
)
def list_backlinks(
    blog_id: str,
    url: Annotated[str, Query(max_length=4096)],
    service: Annotated[EntryService, Depends(get_entry_service)],
) -> list[BacklinkRefResponse]:
    with _entry_context(blog_id, url):
        target = _require_entry(
            service.get_by_url(blog_id, url),
            detail="No published entry at this address.",
        )
        refs = service.resolve_backlinks(blog_id, target)
    return [BacklinkRefResponse.from_ref(ref) for ref in refs]
