from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.app.repositories.common import normalize_optional_text
from backend.app.repositories.entry_repository import Entry
from backend.app.services.entry_service import BacklinkRef


def _default_metadata() -> dict[str, str]:
    return {}


def _default_urls() -> list[str]:
    return []


class EntryWriteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = Field(min_length=1, max_length=1024)
    content: str = Field(default="", max_length=2_000_000)

    @field_validator("path", mode="before")
    @classmethod
    def _normalize_path(cls, value: object) -> str:
        normalized = normalize_optional_text(value)
        if normalized is None:
            raise ValueError("path must be a non-empty string")
        if any(ord(character) < 32 for character in normalized):
            raise ValueError("path contains control characters")
        return normalized


class EntryResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entry_id: str
    blog_id: str
    path: str
    url: str
    title: str
    html: str
    created_at: str
    updated_at: str
    deleted: bool
    metadata: dict[str, str] = Field(default_factory=_default_metadata)
    backlinks: list[str] = Field(default_factory=_default_urls)
    outbound_links: list[str] = Field(default_factory=_default_urls)

    @classmethod
    def from_entry(cls, entry: Entry) -> EntryResponse:
        return cls(
            entry_id=entry.entry_id,
            blog_id=entry.blog_id,
            path=entry.path,
            url=entry.canonical_url,
            title=entry.title,
            html=entry.html,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
            deleted=entry.deleted,
            metadata=dict(entry.metadata),
            backlinks=list(entry.backlinks),
            outbound_links=list(entry.outbound_links),
        )


class BacklinkRefResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    title: str
    entry_id: str

    @classmethod
    def from_ref(cls, ref: BacklinkRef) -> BacklinkRefResponse:
        return cls(url=ref.url, title=ref.title, entry_id=ref.entry_id)


class DropResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    dropped: bool
