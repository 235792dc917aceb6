"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from colloquy.ai.ai_types import Turn


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("COLLOQUY_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def three_exchanges() -> list[Turn]:
    return [
        Turn.user("u01"),
        Turn.assistant("a01"),
        Turn.user("u02"),
        Turn.assistant("a02"),
        Turn.user("u03"),
        Turn.assistant("a03"),
    ]
