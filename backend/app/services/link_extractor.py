from __future__ import annotations

from collections.abc import Iterable
from html.parser import HTMLParser

from backend.app.services.url_canonicalizer import DEFAULT_MAX_DECODE_PASSES, canonicalize


class _HrefCollector(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.hrefs: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        for name, value in attrs:
            if name.lower() == "href" and value is not None:
                self.hrefs.append(value)
                return


def collect_hrefs(html_text: str) -> list[str]:
    parser = _HrefCollector()
    parser.feed(html_text or "")
    parser.close()
    return parser.hrefs


def extract_links(
    html_text: str,
    self_url: str | None,
    site_hosts: Iterable[str] = (),
    *,
    max_decode_passes: int = DEFAULT_MAX_DECODE_PASSES,
) -> list[str]:
    """Internal targets referenced by rendered markup, in first-seen order.

    External hrefs and links back to ``self_url`` are dropped.
    """
    hosts = frozenset(host.strip().lower() for host in site_hosts if host.strip())
    targets: list[str] = []
    seen: set[str] = set()
    for href in collect_hrefs(html_text):
        target = canonicalize(href, hosts, max_decode_passes=max_decode_passes)
        if not isinstance(target, str):
            continue
        if target == self_url or target in seen:
            continue
        seen.add(target)
        targets.append(target)
    return targets
