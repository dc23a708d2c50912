"""Shared pytest fixtures for worksync tests."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

GitRunner = Callable[..., str]


@pytest.fixture(autouse=True)
def isolated_git_config(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the user's global git configuration out of every test."""
    config = tmp_path_factory.mktemp("gitconfig") / "config"
    config.write_text("")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.delenv("WORKSYNC_TOKEN", raising=False)


@pytest.fixture
def git() -> GitRunner:
    """Run a git command in a directory and return its stdout."""

    env = dict(os.environ)
    env.update(
        GIT_AUTHOR_NAME="Tester",
        GIT_AUTHOR_EMAIL="tester@example.com",
        GIT_COMMITTER_NAME="Tester",
        GIT_COMMITTER_EMAIL="tester@example.com",
    )

    def run(cwd: Path, *args: str) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            env=env,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()

    return run


@pytest.fixture
def bare_remote(tmp_path: Path, git: GitRunner) -> Path:
    """Create an empty bare repository whose default branch is main."""
    remote = tmp_path / "remote.git"
    remote.mkdir()
    git(remote, "init", "--bare", "--quiet")
    git(remote, "symbolic-ref", "HEAD", "refs/heads/main")
    return remote


@pytest.fixture
def seeded_remote(tmp_path: Path, bare_remote: Path, git: GitRunner) -> Path:
    """Bare repository with one commit on main containing README.md."""
    seed = tmp_path / "seed"
    seed.mkdir()
    git(seed, "init", "--quiet")
    git(seed, "symbolic-ref", "HEAD", "refs/heads/main")
    (seed / "README.md").write_text("# Project\n")
    git(seed, "add", "-A")
    git(seed, "commit", "--quiet", "-m", "Initial commit")
    git(seed, "remote", "add", "origin", str(bare_remote))
    git(seed, "push", "--quiet", "origin", "main")
    return bare_remote


@pytest.fixture
def clone_remote(tmp_path: Path, git: GitRunner) -> Callable[[Path, str], Path]:
    """Clone a remote into a new directory under tmp_path (an outside collaborator)."""

    def clone(remote: Path, name: str) -> Path:
        target = tmp_path / name
        git(tmp_path, "clone", "--quiet", str(remote), name)
        return target

    return clone
