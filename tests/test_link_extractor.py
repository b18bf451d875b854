from __future__ import annotations

from backend.app.services.link_extractor import collect_hrefs, extract_links
from backend.app.services.renderer import MarkdownRenderer

SITE = ("example.com",)


def test_extracts_every_href_bearing_element_in_order() -> None:
    html_text = (
        '<p><a href="/first">one</a> <a href="/second">two</a></p>'
        '<map><area href="/area-target" alt="x"></map>'
        '<link rel="alternate" href="/feed">'
    )
    assert extract_links(html_text, "/self", SITE) == [
        "/first",
        "/second",
        "/area-target",
        "/feed",
    ]


def test_dedupes_across_link_syntaxes() -> None:
    markup = MarkdownRenderer().render(
        "See [the target](/target), [[target]] and "
        '<a href="/target#details">again</a> or <a href="https://example.com/target?x=1">abs</a>.'
    )
    assert extract_links(markup, "/linker", SITE) == ["/target"]


def test_drops_external_and_relative_links() -> None:
    html_text = (
        '<a href="https://elsewhere.org/target">ext</a>'
        '<a href="mailto:me@example.com">mail</a>'
        '<a href="relative">rel</a>'
        '<a href="#top">frag</a>'
        '<a href="/target">int</a>'
    )
    assert extract_links(html_text, "/linker", SITE) == ["/target"]


def test_self_links_are_dropped_after_canonicalization() -> None:
    html_text = '<a href="/r%C3%A9sum%C3%A9#intro">me</a><a href="/other">other</a>'
    assert extract_links(html_text, "/résumé") == ["/other"]


def test_anchor_without_href_is_ignored() -> None:
    assert collect_hrefs('<a name="top">x</a><a href="">empty</a>') == [""]
    assert extract_links('<a name="top">x</a><a href="">empty</a>', None) == []


def test_html_entities_in_href_are_unescaped() -> None:
    html_text = '<a href="/q&amp;a">q and a</a>'
    assert extract_links(html_text, None) == ["/q&a"]


def test_trailing_slash_and_case_variants_are_distinct_targets() -> None:
    html_text = '<a href="/target">a</a><a href="/target/">b</a><a href="/Target">c</a>'
    assert extract_links(html_text, None) == ["/target", "/target/", "/Target"]
