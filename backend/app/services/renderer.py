from __future__ import annotations

import html
import re
from typing import Protocol

import markdown as md

from backend.app.services.metadata import url_from_name

WIKILINK_PATTERN = re.compile(r"\[\[([^\[\]]+)\]\]")
_MARKDOWN_EXTENSIONS: tuple[str, ...] = ("fenced_code", "tables")


class Renderer(Protocol):
    def render(self, source: str) -> str:
        ...


class MarkdownRenderer:
    """Markdown to HTML with ``[[target]]`` / ``[[target|label]]`` wiki links.

    Raw HTML in the source passes through untouched so hand-written anchors
    reach the link extractor as written.
    """

    def __init__(self, *, extensions: tuple[str, ...] = _MARKDOWN_EXTENSIONS) -> None:
        self._extensions = list(extensions)

    def render(self, source: str) -> str:
        with_anchors = wikilinks_to_html(source or "")
        return md.markdown(with_anchors, extensions=self._extensions)


def wikilinks_to_html(markdown_text: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        inner = (match.group(1) or "").strip()
        if not inner:
            return ""

        if "|" in inner:
            target_raw, label_raw = inner.split("|", 1)
            target_raw = target_raw.strip()
            label_raw = label_raw.strip() or target_raw
        else:
            target_raw = inner
            label_raw = inner

        target, _, fragment = target_raw.partition("#")
        href = url_from_name(target) if target.strip() else ""
        if fragment:
            href = f"{href}#{fragment.strip()}"
        label = html.escape(label_raw, quote=False)
        return f'<a href="{html.escape(href, quote=True)}">{label}</a>'

    return WIKILINK_PATTERN.sub(_replace, markdown_text)
