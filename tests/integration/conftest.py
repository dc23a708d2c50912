"""Pytest fixtures for integration tests.

These tests run the real engine (watchdog observer, git subprocesses)
against bare repositories on the local file system.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from worksync.core.config import EngineSettings, SyncPolicy
from worksync.sync.engine import SyncEngine

PolicyFactory = Callable[..., SyncPolicy]


@pytest.fixture
def engine() -> Generator[SyncEngine, None, None]:
    """Engine with a short debounce so auto-commit triggers quickly."""
    settings = EngineSettings(
        debounce_seconds=0.3,
        max_debounce_seconds=2.0,
        auto_commit_threshold=5,
        command_timeout=30.0,
        network_timeout=30.0,
    )
    with SyncEngine(settings=settings) as engine:
        yield engine


@pytest.fixture
def make_policy(tmp_path: Path) -> PolicyFactory:
    """Build a policy for a fresh workspace directory under tmp_path."""

    def make(name: str, remote: Path, **kwargs: Any) -> SyncPolicy:
        workspace = tmp_path / name
        workspace.mkdir()
        kwargs.setdefault("auto_pull", False)
        return SyncPolicy(
            workspace_path=workspace,
            repository_url=str(remote),
            author_name=f"{name} bot",
            author_email=f"{name}@example.com",
            **kwargs,
        )

    return make
