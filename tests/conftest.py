"""Shared fixtures: throwaway git repositories and isolated config."""

import os
import shutil
import subprocess
from pathlib import Path

import pytest

from gitwatcher.config import WatcherConfig


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git_cmd():
    """The git helper, for tests that shape a repository further."""
    return git


@pytest.fixture
def isolated_git(monkeypatch):
    """Keep the user's global/system git config out of the tests."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")


@pytest.fixture
def repo(tmp_path, isolated_git) -> Path:
    """A repository on ``main`` with one commit touching README.md."""
    path = tmp_path / "repo"
    path.mkdir()
    git(path, "init", "-q")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    (path / "README.md").write_text("hello\n")
    git(path, "add", "README.md")
    git(path, "commit", "-q", "-m", "initial")
    return path


@pytest.fixture
def bare_remote(tmp_path, repo) -> Path:
    """A bare repository wired up as ``origin`` of ``repo``, with main pushed."""
    remote = tmp_path / "remote.git"
    git(tmp_path, "init", "-q", "--bare", str(remote))
    git(repo, "remote", "add", "origin", str(remote))
    git(repo, "push", "-q", "origin", "main")
    return remote


@pytest.fixture
def config(tmp_path, monkeypatch) -> WatcherConfig:
    for var in list(os.environ):
        if var.startswith("GITWATCHER_"):
            monkeypatch.delenv(var, raising=False)
    return WatcherConfig(
        _env_file=None,
        state_file=tmp_path / "state" / "config.json",
        log_dir=tmp_path / "logs",
        lock_dir=tmp_path / "lock",
    )
