from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))
    # Keep test runs out of ~/.issuesync/logs
    os.environ.setdefault("ISSUESYNC_LOG_DISABLE_FILE", "1")


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point HOME at a temp dir so user config and logs never leak in."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(home / ".gitconfig"))
    for key in list(os.environ):
        if key.startswith("ISSUESYNC_") and key != "ISSUESYNC_LOG_DISABLE_FILE":
            monkeypatch.delenv(key, raising=False)
    return home


@pytest.fixture
def remote_repo(tmp_path):
    """Bare remote seeded with a main branch."""
    from issuesync.testing import seed_remote_with_main

    path = tmp_path / "remote.git"
    seed_remote_with_main(path)
    return path


@pytest.fixture
def make_replica(tmp_path, remote_repo):
    """Factory: clone the remote into a new replica directory."""
    from issuesync.testing import clone_replica

    def _make(name: str):
        return clone_replica(remote_repo, tmp_path / name, name=name.capitalize())

    return _make
