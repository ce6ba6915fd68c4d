"""Unit tests for project-wide constants."""

from __future__ import annotations

import importlib

import pytest

import toolbox_subtitles.utils.constant as constant


def test_overrides_are_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Typed constants should pick up environment overrides on import."""
    monkeypatch.setenv("MAX_CONCURRENCY", "7")
    monkeypatch.setenv("ALLOW_PARTIAL_SUCCESS", "false")
    monkeypatch.setenv("SOURCE_LANGUAGE_CODE", "EN")

    reloaded = importlib.reload(constant)

    assert reloaded.MAX_CONCURRENCY == 7
    assert reloaded.ALLOW_PARTIAL_SUCCESS is False
    assert reloaded.SOURCE_LANGUAGE_CODE == "en"

    monkeypatch.undo()
    importlib.reload(constant)
