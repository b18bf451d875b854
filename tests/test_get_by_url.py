from __future__ import annotations

import unicodedata

import pytest

from backend.app.services.entry_service import EntryService

BLOG = "blog"


@pytest.fixture
def populated(service: EntryService) -> EntryService:
    service.set(BLOG, "resume.txt", "Link: /résumé\n\nCV")
    service.set(BLOG, "space.txt", "Link: /a b\n\nspace")
    service.set(BLOG, "percent.txt", "Link: /100%\n\npercent")
    return service


@pytest.mark.parametrize(
    "url",
    [
        "/résumé",
        "/r%C3%A9sum%C3%A9",
        "/r%25C3%25A9sum%25C3%25A9",
        "/résumé#contact",
        "/résumé?utm=x",
        "  /résumé ",
        "https://example.com/r%C3%A9sum%C3%A9",
    ],
)
def test_encoding_variants_resolve(populated: EntryService, url: str) -> None:
    entry = populated.get_by_url(BLOG, url)
    assert entry is not None
    assert entry.entry_id == "resume.txt"


def test_decomposed_unicode_resolves(populated: EntryService) -> None:
    entry = populated.get_by_url(BLOG, unicodedata.normalize("NFD", "/résumé"))
    assert entry is not None


@pytest.mark.parametrize("url", ["/a b", "/a%20b", "/a%2520b"])
def test_double_encoding_variants_resolve(populated: EntryService, url: str) -> None:
    entry = populated.get_by_url(BLOG, url)
    assert entry is not None
    assert entry.entry_id == "space.txt"


def test_malformed_escape_is_looked_up_verbatim(populated: EntryService) -> None:
    entry = populated.get_by_url(BLOG, "/100%")
    assert entry is not None
    assert entry.entry_id == "percent.txt"


@pytest.mark.parametrize(
    "url",
    [
        "",
        "   ",
        "/résumé/",
        "/Résumé",
        "/missing",
        "/bad%E9",
        "%%%",
        "https://elsewhere.org/résumé",
        "mailto:someone@example.com",
    ],
)
def test_misses_return_none(populated: EntryService, url: str) -> None:
    assert populated.get_by_url(BLOG, url) is None


def test_deleted_entries_are_not_resolvable(populated: EntryService) -> None:
    populated.drop(BLOG, "resume.txt")
    assert populated.get_by_url(BLOG, "/résumé") is None
    assert populated.get(BLOG, "resume.txt") is not None
