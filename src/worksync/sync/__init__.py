"""Workspace synchronization engine.

Architecture:
    ChangeWatcher → ChangeAggregator → SyncController → GitOperator

Components:
- **ChangeWatcher**: Recursive watchdog observer producing raw FileChange events
- **ChangeAggregator**: Filters, coalesces and debounces events; fires the
  auto-commit threshold once a settled batch is large enough
- **GitOperator**: Synchronous git facade with typed failures
- **SyncController**: Per-workspace state machine (auto-commit, periodic pull,
  branch operations, status)
- **WorkspaceRegistry**: Handle → controller directory
- **SyncEngine**: Public control surface keyed by workspace handle

All public symbols are re-exported here.
"""

from worksync.sync.aggregator import ChangeAggregator
from worksync.sync.controller import SyncController, format_summary
from worksync.sync.engine import SyncEngine
from worksync.sync.git import GitCommand, GitOperator, GitResult
from worksync.sync.ignore import DEFAULT_IGNORE_PATTERNS, IgnorePatterns
from worksync.sync.registry import WorkspaceRegistry
from worksync.sync.types import (
    AuthConfigurationError,
    BranchListing,
    ChangeKind,
    FileChange,
    GitError,
    GitTimeoutError,
    InvalidWorkspaceError,
    MergeConflictError,
    PendingChange,
    StatusCallback,
    SyncError,
    SyncStatus,
    WorkspaceNotFoundError,
    WorkspaceStatusCallback,
)
from worksync.sync.watcher import ChangeWatcher

__all__ = [
    # Errors
    "AuthConfigurationError",
    "GitError",
    "GitTimeoutError",
    "InvalidWorkspaceError",
    "MergeConflictError",
    "SyncError",
    "WorkspaceNotFoundError",
    # Types
    "BranchListing",
    "ChangeKind",
    "FileChange",
    "PendingChange",
    "StatusCallback",
    "SyncStatus",
    "WorkspaceStatusCallback",
    # Components
    "ChangeAggregator",
    "ChangeWatcher",
    "DEFAULT_IGNORE_PATTERNS",
    "GitCommand",
    "GitOperator",
    "GitResult",
    "IgnorePatterns",
    "SyncController",
    "SyncEngine",
    "WorkspaceRegistry",
    "format_summary",
]
