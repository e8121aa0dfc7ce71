"""Shared pytest fixtures for cache2 entry files."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from builders import build_entry_bytes


@pytest.fixture
def make_entry(tmp_path: Path) -> Callable[..., Path]:
    """Return a factory writing a cache2 entry file under ``tmp_path/entries``."""
    entries = tmp_path / "entries"
    entries.mkdir(exist_ok=True)
    counter = {"n": 0}

    def _make(name: str | None = None, **kwargs) -> Path:
        counter["n"] += 1
        path = entries / (name or f"{counter['n']:040X}")
        path.write_bytes(build_entry_bytes(**kwargs))
        return path

    return _make
