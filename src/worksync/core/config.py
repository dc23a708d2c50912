"""Shared configuration classes for worksync.

This module defines configuration classes used by both the engine and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BRANCH = "main"
DEFAULT_PULL_INTERVAL = 30


@dataclass(frozen=True)
class SyncPolicy:
    """Per-workspace sync policy captured at initialization.

    Policies are immutable. Switching branches produces a new policy
    with ``dataclasses.replace``.

    Attributes:
        workspace_path: Root directory of the working copy.
        repository_url: Remote location (https URL, ssh URL or local path).
        branch: Tracked branch for pulls and pushes.
        credential: Opaque bearer token. Held in memory only, never persisted.
        auto_commit: Commit automatically once enough changes accumulate.
        auto_pull: Pull from the remote on a periodic timer.
        pull_interval_seconds: Seconds between periodic pulls (>= 1).
        collaboration_mode: Flag remote changes that overlap uncommitted
            local edits as conflicts instead of letting git merge them.
        commit_message_template: Optional message template. Supports the
            ``{summary}``, ``{timestamp}``, ``{branch}`` and ``{handle}``
            placeholders.
        author_name: Commit identity used when the repository has none.
        author_email: Commit identity used when the repository has none.
    """

    workspace_path: Path
    repository_url: str = ""
    branch: str = DEFAULT_BRANCH
    credential: str | None = field(default=None, repr=False)
    auto_commit: bool = True
    auto_pull: bool = True
    pull_interval_seconds: int = DEFAULT_PULL_INTERVAL
    collaboration_mode: bool = False
    commit_message_template: str | None = None
    author_name: str = "worksync"
    author_email: str = "worksync@localhost"

    def __post_init__(self) -> None:
        """Normalize the workspace path and validate intervals."""
        object.__setattr__(self, "workspace_path", Path(self.workspace_path).expanduser())
        if not self.branch or not self.branch.strip():
            raise ValueError("branch must not be empty")
        if self.pull_interval_seconds < 1:
            raise ValueError(
                f"pull_interval_seconds must be >= 1, got {self.pull_interval_seconds}"
            )

    @property
    def watches_files(self) -> bool:
        """Whether a file watcher is useful for this policy."""
        return self.auto_commit

    @property
    def needs_worker(self) -> bool:
        """Whether a background worker is needed for this policy."""
        return self.auto_commit or self.auto_pull


@dataclass
class EngineSettings:
    """Process-wide tuning for the sync engine.

    Attributes:
        debounce_seconds: Quiet period before a batch counts as settled.
        max_debounce_seconds: Upper bound on how long continuous activity
            can postpone settling.
        auto_commit_threshold: Distinct changed paths that force a commit.
        max_queue_size: Capacity of the watcher-to-aggregator channel.
        command_timeout: Timeout for local git commands in seconds.
        network_timeout: Timeout for fetch/pull/push/clone in seconds.
        stop_join_timeout: How long stop() waits for an idle worker thread.
        reinit_wait_seconds: How long re-initialization waits for the
            previous controller's in-flight git operation.
    """

    debounce_seconds: float = 1.0
    max_debounce_seconds: float = 10.0
    auto_commit_threshold: int = 5
    max_queue_size: int = 10000
    command_timeout: float = 60.0
    network_timeout: float = 120.0
    stop_join_timeout: float = 5.0
    reinit_wait_seconds: float = 30.0

    def __post_init__(self) -> None:
        """Validate that all limits are positive."""
        for name in (
            "debounce_seconds",
            "max_debounce_seconds",
            "command_timeout",
            "network_timeout",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.auto_commit_threshold < 1:
            raise ValueError("auto_commit_threshold must be >= 1")
        if self.max_debounce_seconds < self.debounce_seconds:
            self.max_debounce_seconds = self.debounce_seconds
