"""Unit tests for siteintel.__version__."""

from __future__ import annotations

import importlib
import importlib.metadata
import tomllib
from importlib.metadata import PackageNotFoundError
from pathlib import Path

import pytest

import siteintel

PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


def test_installed_version_matches_pyproject() -> None:
    if siteintel.__version__ == "0.0.0+unknown":
        pytest.skip("siteintel is not installed")

    project = tomllib.loads(PYPROJECT.read_text(encoding="utf-8"))["project"]
    assert siteintel.__version__ == project["version"]


def test_missing_metadata_falls_back_with_warning(monkeypatch: pytest.MonkeyPatch) -> None:
    def not_installed(name: str) -> str:
        raise PackageNotFoundError(name)

    monkeypatch.setattr(importlib.metadata, "version", not_installed)
    try:
        with pytest.warns(RuntimeWarning, match="'siteintel' not found"):
            reloaded = importlib.reload(siteintel)
        assert reloaded.__version__ == "0.0.0+unknown"
    finally:
        monkeypatch.undo()
        importlib.reload(siteintel)
