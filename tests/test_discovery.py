"""Tests for locating profiles and decoding whole entries directories."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

import firefox_cache2
from firefox_cache2 import base_dir, base_dirs, entries_dir, entry_paths, iter_entries, profile_dirs


@pytest.fixture
def cache_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    xdg = tmp_path / "xdg-cache"
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CACHE_HOME", str(xdg))
    return xdg / "mozilla" / "firefox"


def test_base_dirs_honour_xdg_cache_home(cache_home: Path) -> None:
    assert base_dirs()[0] == cache_home


def test_base_dirs_default_to_home_cache(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("XDG_CACHE_HOME", raising=False)

    assert base_dirs() == [
        tmp_path / ".cache" / "mozilla" / "firefox",
        tmp_path / "Library" / "Caches" / "Firefox" / "Profiles",
    ]


def test_no_base_dir(cache_home: Path) -> None:
    assert base_dir() is None
    assert profile_dirs() == []
    assert entries_dir("default") is None


def test_profiles_are_found_by_glob(cache_home: Path) -> None:
    release = cache_home / "x1y2z3.default-release"
    other = cache_home / "a9b8c7.work"
    for profile in (release, other):
        (profile / "cache2" / "entries").mkdir(parents=True)
    (cache_home / "not-a-profile").mkdir()

    assert base_dir() == cache_home
    assert profile_dirs() == [other, release]
    assert profile_dirs("default-release") == [release]
    assert entries_dir("work") == other / "cache2" / "entries"
    assert entries_dir("missing") is None


def test_entry_paths_lists_files_only(tmp_path: Path) -> None:
    (tmp_path / "B").write_bytes(b"")
    (tmp_path / "A").write_bytes(b"")
    (tmp_path / "doomed").mkdir()

    assert entry_paths(tmp_path) == [tmp_path / "A", tmp_path / "B"]


def test_iter_entries_skips_bad_files(make_entry, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    good = make_entry(name="GOOD", body=b"ok", raw_key=b":http://example.com/")
    (good.parent / "BAD").write_bytes(b"\x00\x00\xff\xff")

    with caplog.at_level(logging.WARNING, logger=firefox_cache2.__name__):
        entries = list(iter_entries(good.parent))

    assert [entry.path for entry in entries] == [good]
    assert "BAD" in caplog.text
