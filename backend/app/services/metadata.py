from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Protocol

from backend.app.repositories.common import normalize_optional_text

_HEADER_LINE_PATTERN = re.compile(r"^([A-Za-z][\w \-]{0,39}):(?:[ \t]+(.*))?$")
_HEADING_PATTERN = re.compile(r"^#{1,6}\s+(.+?)\s*#*\s*$")
_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:")
_EXPLICIT_URL_KEYS: tuple[str, ...] = ("link", "permalink")


@dataclass(frozen=True)
class EntryMetadata:
    explicit_url: str | None
    title: str
    body: str
    fields: dict[str, str] = field(default_factory=dict)


class MetadataParser(Protocol):
    def parse(self, path: str, raw_content: str) -> EntryMetadata:
        ...


class HeaderMetadataParser:
    """Reads a leading ``Key: value`` block or a ``---`` front matter block.

    ``Link:`` / ``Permalink:`` become the explicit address override. Without a
    ``Title:`` the first markdown heading or the file name is used.
    """

    def parse(self, path: str, raw_content: str) -> EntryMetadata:
        text = (raw_content or "").replace("\r\n", "\n")
        fields, body = _split_front_matter(text)
        if fields is None:
            fields, body = _split_header_lines(text)

        explicit_url: str | None = None
        for key in _EXPLICIT_URL_KEYS:
            explicit_url = _normalize_explicit_url(fields.get(key))
            if explicit_url is not None:
                break

        title = (
            normalize_optional_text(fields.get("title"))
            or _first_heading(body)
            or _title_from_path(path)
        )
        return EntryMetadata(explicit_url=explicit_url, title=title, body=body, fields=fields)


def url_from_path(path: str) -> str:
    """Default address for a source file: ``/Posts/My Post.txt`` -> ``/posts/my-post``."""
    posix = PurePosixPath("/" + path.strip().lstrip("/"))
    without_suffix = posix.with_suffix("") if posix.suffix else posix
    return url_from_name(str(without_suffix))


def url_from_name(name: str) -> str:
    cleaned = re.sub(r"\s+", "-", name.strip()).lower()
    if not cleaned.startswith("/"):
        cleaned = f"/{cleaned}"
    return cleaned


def _split_front_matter(text: str) -> tuple[dict[str, str] | None, str]:
    if not text.startswith("---\n"):
        return None, text

    parts = text[len("---\n") :].split("\n---\n", maxsplit=1)
    if len(parts) != 2:
        return None, text

    block, remainder = parts
    fields: dict[str, str] = {}
    for line in block.splitlines():
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        fields[key.strip().lower()] = value.strip()
    return fields, remainder.lstrip("\n")


def _split_header_lines(text: str) -> tuple[dict[str, str], str]:
    lines = text.split("\n")
    fields: dict[str, str] = {}
    consumed = 0
    for line in lines:
        if not line.strip():
            if fields:
                consumed += 1
            break
        match = _HEADER_LINE_PATTERN.match(line)
        if match is None:
            break
        fields[match.group(1).strip().lower()] = (match.group(2) or "").strip()
        consumed += 1
    return fields, "\n".join(lines[consumed:])


def _normalize_explicit_url(value: str | None) -> str | None:
    normalized = normalize_optional_text(value)
    if normalized is None:
        return None
    if normalized.startswith("/") or _SCHEME_PATTERN.match(normalized):
        return normalized
    return f"/{normalized}"


def _first_heading(body: str) -> str | None:
    for line in body.splitlines():
        match = _HEADING_PATTERN.match(line.strip())
        if match is not None:
            return normalize_optional_text(match.group(1))
    return None


def _title_from_path(path: str) -> str:
    stem = PurePosixPath(path.strip() or "untitled").stem
    words = re.split(r"[-_\s]+", stem)
    cleaned = " ".join(word for word in words if word)
    return cleaned or "Untitled"
