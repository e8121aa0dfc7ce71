"""Tests for splitting load-context tags off cache keys."""

from __future__ import annotations

import pytest

from firefox_cache2 import split_key


def test_split_documented_example() -> None:
    assert split_key("p,b,i1,example:key") == ("example:key", ["p", "b", "i1"])


def test_leading_colon_is_dropped_after_tags() -> None:
    assert split_key("a,:https://example.com/") == ("https://example.com/", ["a"])


def test_key_without_tags_is_unchanged() -> None:
    assert split_key("https://example.com/") == ("https://example.com/", [])
    assert split_key(":https://example.com/") == ("https://example.com/", [])


def test_only_one_leading_colon_is_dropped() -> None:
    assert split_key("a,::x") == (":x", ["a"])


def test_origin_attributes_tag() -> None:
    raw = "O^privateBrowsingId=1&partitionKey=%28https%2Cexample.org%29,a,:https://cdn.example.org/app.js"

    key, tags = split_key(raw)

    assert tags == ["O^privateBrowsingId=1&partitionKey=%28https%2Cexample.org%29", "a"]
    assert key == "https://cdn.example.org/app.js"


def test_escaped_commas_stay_inside_a_tag() -> None:
    key, tags = split_key("~x,,y,:http://example.com/")

    assert tags == ["~x,,y"]
    assert key == "http://example.com/"


def test_flag_letter_wins_over_longer_token() -> None:
    # "a" alone is a complete tag, so the ",," is not swallowed into it
    assert split_key("a,,b,:k") == ("k", ["a", ",b"])


def test_id_tag_stops_at_first_comma() -> None:
    assert split_key("i1,,x,:k") == ("k", ["i1", ",x"])


def test_greedy_tag_backs_off_to_last_comma() -> None:
    # no single comma follows the run, so the match ends before the last ",,"
    assert split_key("~x,,y,,") == (",", ["~x,,y"])


@pytest.mark.parametrize(
    "raw",
    [
        "",
        ":",
        "p",
        "pb",
        "\x01,http://example.com/",
        ":a,b,c",
        "no tags here",
    ],
)
def test_malformed_prefixes_never_raise(raw: str) -> None:
    key, tags = split_key(raw)

    assert isinstance(key, str)
    assert isinstance(tags, list)


def test_non_printable_first_character_stops_scan() -> None:
    assert split_key("\x01,http://example.com/") == ("\x01,http://example.com/", [])


def test_colon_never_starts_a_tag() -> None:
    assert split_key(":a,b,c") == ("a,b,c", [])


@pytest.mark.parametrize(
    "raw",
    [
        "p,b,i1,example:key",
        "a,:https://example.com/",
        "O^userContextId=2,p,a,:http://example.com/?q=1,2",
        "~x,,y,:http://example.com/",
        "https://example.com/",
    ],
)
def test_tags_and_key_rebuild_raw_key(raw: str) -> None:
    key, tags = split_key(raw)
    had_colon = raw[len(",".join(tags)) + (1 if tags else 0):].startswith(":")

    rebuilt = ",".join(tags + [(":" if had_colon else "") + key])

    assert rebuilt == raw
