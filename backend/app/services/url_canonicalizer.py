"""Reduce href-like strings to the internal identity used for entry lookup.

Two strings name the same entry when they canonicalize to the same key:

* scheme/host are dropped only for the site's own hosts, anything else is
  external;
* query and fragment suffixes are ignored;
* percent-encoding is decoded until stable (double-encoded hrefs such as
  ``/a%2520b`` produced by some converters resolve like ``/a b``);
* the result is NFC-normalized.

Case and trailing slashes are significant.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Final
from urllib.parse import unquote_to_bytes, urlsplit

DEFAULT_MAX_DECODE_PASSES: Final = 8

_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:")
_MALFORMED_ESCAPE_PATTERN = re.compile(r"%(?![0-9A-Fa-f]{2})")
# Escapes that would reintroduce a query or fragment delimiter once decoded.
_PRESERVED_ESCAPE_PATTERN = re.compile(r"%(?:23|3[Ff])")
_SITE_SCHEMES: frozenset[str] = frozenset({"http", "https"})


class LinkTarget(Enum):
    NOT_INTERNAL = "not_internal"


NOT_INTERNAL: Final = LinkTarget.NOT_INTERNAL


@dataclass(frozen=True)
class DecodeResult:
    value: str
    succeeded: bool
    passes: int


def decode_best_effort(value: str, *, max_passes: int = DEFAULT_MAX_DECODE_PASSES) -> DecodeResult:
    """Percent-decode ``value`` until it stops changing.

    A pass that hits a malformed escape or invalid UTF-8 ends decoding and the
    last good string is returned with ``succeeded=False``.
    """
    current = value
    passes = 0
    while passes < max(1, max_passes):
        decoded = _decode_once(current)
        if decoded is None:
            return DecodeResult(value=current, succeeded=False, passes=passes)
        if decoded == current:
            return DecodeResult(value=current, succeeded=True, passes=passes)
        current = decoded
        passes += 1
    return DecodeResult(value=current, succeeded=True, passes=passes)


def canonicalize(
    raw: str,
    site_hosts: Iterable[str] = (),
    *,
    max_decode_passes: int = DEFAULT_MAX_DECODE_PASSES,
) -> str | LinkTarget:
    path = _internal_path(raw, _normalize_hosts(site_hosts))
    if path is None:
        return NOT_INTERNAL

    path = _strip_query_and_fragment(path)
    decoded = decode_best_effort(path, max_passes=max_decode_passes)
    return unicodedata.normalize("NFC", decoded.value)


def is_internal(value: str | LinkTarget) -> bool:
    return isinstance(value, str)


def normalize_lookup_key(
    url: str,
    site_hosts: Iterable[str] = (),
    *,
    max_decode_passes: int = DEFAULT_MAX_DECODE_PASSES,
) -> str:
    """Lookup key for resolver input that may not be a well-formed internal href.

    Internal input gets the full canonical form. Anything else is only decoded
    and normalized so a miss stays a miss instead of raising.
    """
    canonical = canonicalize(url, site_hosts, max_decode_passes=max_decode_passes)
    if isinstance(canonical, str):
        return canonical
    decoded = decode_best_effort(url.strip(), max_passes=max_decode_passes)
    return unicodedata.normalize("NFC", decoded.value)


def _decode_once(value: str) -> str | None:
    if "%" not in value:
        return value
    if _MALFORMED_ESCAPE_PATTERN.search(value):
        return None

    segments = _PRESERVED_ESCAPE_PATTERN.split(value)
    kept = [escape.upper() for escape in _PRESERVED_ESCAPE_PATTERN.findall(value)]
    decoded_segments: list[str] = []
    for segment in segments:
        try:
            decoded_segments.append(unquote_to_bytes(segment).decode("utf-8"))
        except UnicodeDecodeError:
            return None

    parts = [decoded_segments[0]]
    for escape, segment in zip(kept, decoded_segments[1:], strict=True):
        parts.append(escape)
        parts.append(segment)
    return "".join(parts)


def _internal_path(raw: str, site_hosts: frozenset[str]) -> str | None:
    if not isinstance(raw, str):
        return None
    candidate = raw.strip()
    if not candidate:
        return None

    if candidate.startswith("//"):
        return _own_host_path(f"https:{candidate}", site_hosts)
    if _SCHEME_PATTERN.match(candidate):
        return _own_host_path(candidate, site_hosts)
    if candidate.startswith("/"):
        return candidate
    return None


def _own_host_path(absolute_url: str, site_hosts: frozenset[str]) -> str | None:
    if not site_hosts:
        return None
    parts = urlsplit(absolute_url)
    if parts.scheme.lower() not in _SITE_SCHEMES:
        return None
    try:
        host = (parts.hostname or "").lower()
        port = parts.port
    except ValueError:
        return None
    netloc = f"{host}:{port}" if port is not None else host
    if host not in site_hosts and netloc not in site_hosts:
        return None
    return parts.path or "/"


def _strip_query_and_fragment(path: str) -> str:
    for delimiter in ("#", "?"):
        index = path.find(delimiter)
        if index != -1:
            path = path[:index]
    return path


def _normalize_hosts(site_hosts: Iterable[str]) -> frozenset[str]:
    return frozenset(host.strip().lower() for host in site_hosts if host and host.strip())
