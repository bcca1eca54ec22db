"""Pytest fixtures for modsync tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from modsync.application.run_context import RunContext
from modsync.infrastructure.console import Console

from .util import FIXED_NOW


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch):
    """Keep developer environment overrides out of the tests."""
    for name in ("MODSYNC_SOURCE_DIR", "MODSYNC_CACHE_DIR", "MODSYNC_REGISTRY", "MODSYNC_FOLDER"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def builtin_dir(tmp_path: Path) -> Path:
    path = tmp_path / "builtin"
    path.mkdir()
    return path


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def run_context(project_dir: Path) -> RunContext:
    return RunContext(
        project_dir=project_dir,
        install_dir=project_dir / "_modsync",
        folder_name="_modsync",
        console=Console(quiet=True),
        now=lambda: FIXED_NOW,
    )
