"""Pytest configuration and fixtures."""
from __future__ import annotations

import pathlib
from collections.abc import Iterator

import pytest

from agrb.config import get_settings
from tests.fake_git import FakeGit
from tests.git_helpers import init_repo


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Point the global config dir at a temp dir and drop cached settings."""
    monkeypatch.setenv("AGRB_CONFIG_DIR", str(tmp_path / "agrb-config"))
    monkeypatch.delenv("AGRB_REPO_ROOT", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def git_repo(tmp_path: pathlib.Path) -> pathlib.Path:
    """A real repository: ``main`` with one commit, ``feature`` checked out."""
    return init_repo(tmp_path / "repo")
