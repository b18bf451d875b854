from __future__ import annotations

import unicodedata

import pytest

from backend.app.services.url_canonicalizer import (
    NOT_INTERNAL,
    canonicalize,
    decode_best_effort,
    is_internal,
    normalize_lookup_key,
)

SITE = ("example.com",)


@pytest.mark.parametrize(
    ("raw", "matches"),
    [
        ("/r%C3%A9sum%C3%A9", True),
        ("/résumé", True),
        ("/résumé#section", True),
        ("/résumé?x=1", True),
        ("/résumé/", False),
        ("/Résumé", False),
        ("https://elsewhere.org/résumé", False),
        ("/other#résumé", False),
    ],
)
def test_canonical_key_equivalence_for_resume(raw: str, matches: bool) -> None:
    assert (canonicalize(raw, SITE) == "/résumé") is matches


def test_double_encoded_space_shares_one_key() -> None:
    keys = {canonicalize(raw) for raw in ("/a%2520b", "/a%20b", "/a b")}
    assert keys == {"/a b"}


@pytest.mark.parametrize(
    "raw",
    [
        "mailto:someone@example.com",
        "tel:+40123456",
        "javascript:alert(1)",
        "https://elsewhere.org/target",
        "//elsewhere.org/target",
        "ftp://example.com/target",
        "relative/path",
        "#anchor-only",
        "?q=1",
        "",
        "   ",
    ],
)
def test_non_internal_inputs_are_rejected(raw: str) -> None:
    result = canonicalize(raw, SITE)
    assert result is NOT_INTERNAL
    assert is_internal(result) is False


def test_own_host_absolute_links_are_internal() -> None:
    assert canonicalize("https://example.com/target", SITE) == "/target"
    assert canonicalize("HTTP://EXAMPLE.COM/target?ref=1", SITE) == "/target"
    assert canonicalize("//example.com/target#top", SITE) == "/target"
    assert canonicalize("https://example.com", SITE) == "/"


def test_absolute_links_are_external_without_site_hosts() -> None:
    assert canonicalize("https://example.com/target") is NOT_INTERNAL


def test_surrounding_whitespace_is_trimmed() -> None:
    assert canonicalize("  /target \n") == "/target"


def test_case_and_trailing_slash_are_significant() -> None:
    assert canonicalize("/Target") != canonicalize("/target")
    assert canonicalize("/target/") != canonicalize("/target")


def test_result_is_nfc_normalized() -> None:
    decomposed = unicodedata.normalize("NFD", "/résumé")
    assert decomposed != "/résumé"
    assert canonicalize(decomposed) == "/résumé"


@pytest.mark.parametrize(
    "raw",
    [
        "/r%C3%A9sum%C3%A9",
        "/a%2520b",
        "/c%2523sharp",
        "/what%253F",
        "/100%",
        "/bad%E9byte",
        "/über-uns",
        "https://example.com/gr%C3%BC%C3%9Fe?x=1",
    ],
)
def test_canonicalize_is_idempotent(raw: str) -> None:
    once = canonicalize(raw, SITE)
    assert isinstance(once, str)
    assert canonicalize(once, SITE) == once


def test_encoded_fragment_and_query_delimiters_stay_encoded() -> None:
    assert canonicalize("/c%23") == "/c%23"
    assert canonicalize("/c%2523") == "/c%23"
    assert canonicalize("/why%3f") == "/why%3F"


def test_malformed_escape_keeps_last_good_value() -> None:
    assert canonicalize("/100%") == "/100%"
    assert canonicalize("/50%zz") == "/50%zz"
    # First pass succeeds, second meets a lone "%".
    assert canonicalize("/a%25b") == "/a%b"


def test_invalid_utf8_escape_keeps_raw_value() -> None:
    assert canonicalize("/caf%E9") == "/caf%E9"


def test_decode_best_effort_reports_failure() -> None:
    result = decode_best_effort("/a%2520b%")
    assert result.succeeded is False
    assert result.value == "/a%2520b%"
    assert result.passes == 0

    stable = decode_best_effort("/a%2520b")
    assert stable.succeeded is True
    assert stable.value == "/a b"
    assert stable.passes == 2


def test_decode_best_effort_respects_pass_limit() -> None:
    result = decode_best_effort("/a%252520b", max_passes=1)
    assert result.value == "/a%2520b"
    assert result.passes == 1


def test_normalize_lookup_key_tolerates_non_internal_input() -> None:
    assert normalize_lookup_key("/r%C3%A9sum%C3%A9") == "/résumé"
    assert normalize_lookup_key("https://elsewhere.org/a%20b") == "https://elsewhere.org/a b"
    assert normalize_lookup_key("%%%") == "%%%"
