"""Shared fixtures for CLI tests."""

from __future__ import annotations

import pytest

from lorebase.cli.common import console


@pytest.fixture(autouse=True)
def _wide_console(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep rich tables and panels from wrapping values the tests look for."""
    monkeypatch.setattr(console, "width", 200)
