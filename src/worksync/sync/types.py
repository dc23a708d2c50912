"""Shared types and dataclasses for workspace synchronization.

This module provides:
- SyncError and its subclasses: the engine's error taxonomy
- ChangeKind, FileChange, PendingChange: change observation types
- SyncStatus: point-in-time status snapshot of a workspace
- BranchListing: result of listing branches
- Type aliases for callbacks
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from worksync.core.types import ControllerState


class SyncError(Exception):
    """Base exception for sync errors."""


class InvalidWorkspaceError(SyncError):
    """Workspace path is missing or cannot become a repository."""


class AuthConfigurationError(SyncError):
    """Credential is malformed or was rejected by the remote."""


class WorkspaceNotFoundError(SyncError):
    """Operation referenced an unknown or stopped workspace handle."""

    def __init__(self, handle: str) -> None:
        self.handle = handle
        super().__init__(f"Workspace not found or not initialized: {handle}")


class GitError(SyncError):
    """A git invocation exited non-zero.

    Attributes:
        command: Argument list that was executed (credential-free).
        stderr: Raw diagnostic text reported by git.
    """

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command
        self.stderr = stderr

    def __str__(self) -> str:
        message = super().__str__()
        if self.stderr:
            return f"{message}: {self.stderr}"
        return message


class MergeConflictError(GitError):
    """Git reported a merge conflict or a non-fast-forward rejection.

    The working tree is left exactly as git left it.
    """


class GitTimeoutError(GitError):
    """A git invocation did not finish within its timeout."""


# =============================================================================
# Change observation types
# =============================================================================


class ChangeKind(str, Enum):
    """Kind of file system change."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class FileChange:
    """A raw file system event as reported by the watcher."""

    path: Path
    kind: ChangeKind
    is_directory: bool = False
    timestamp: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class PendingChange:
    """One coalesced, not-yet-committed change in a workspace.

    Attributes:
        relative_path: Path relative to the workspace root, forward slashes.
        kind: Latest observed kind for this path.
        observed_at: Monotonic timestamp of the latest observation.
    """

    relative_path: str
    kind: ChangeKind
    observed_at: float


# =============================================================================
# Status types
# =============================================================================


@dataclass(frozen=True)
class SyncStatus:
    """Point-in-time status of a workspace.

    Snapshots are immutable; the controller replaces its snapshot as a
    whole so readers never observe a partial update.
    """

    handle: str
    active: bool = False
    state: ControllerState = ControllerState.UNINITIALIZED
    branch: str = ""
    last_sync_time: datetime | None = None
    last_commit_hash: str = ""
    pending_change_count: int = 0
    conflict_detected: bool = False
    last_error: str | None = None

    def to_dict(self) -> dict[str, str | int | bool | None]:
        """Convert to a JSON-ready dictionary."""
        data = asdict(self)
        data["state"] = self.state.value
        data["last_sync_time"] = (
            self.last_sync_time.isoformat() if self.last_sync_time else None
        )
        return data


@dataclass(frozen=True)
class BranchListing:
    """Branches of a workspace repository."""

    current: str
    local: list[str] = field(default_factory=list)
    remote: list[str] = field(default_factory=list)


# Type alias for status listeners registered on a controller
StatusCallback = Callable[[SyncStatus], None]

# Type alias for status listeners registered on the engine
WorkspaceStatusCallback = Callable[[str, SyncStatus], None]
