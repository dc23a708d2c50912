"""Public control surface of the workspace synchronization engine.

This module provides:
- SyncEngine: Initializes, drives and stops workspace controllers by handle

| Operation        | Result                        | Raises                                   |
|------------------|-------------------------------|------------------------------------------|
| initialize       | SyncStatus                    | InvalidWorkspaceError, AuthConfigurationError |
| commit_and_sync  | commit hash or None (no-op)   | MergeConflictError, WorkspaceNotFoundError, GitError |
| sync_with_remote | True if merged, False if no-op | MergeConflictError, WorkspaceNotFoundError, GitError |
| create_branch    | None                          | WorkspaceNotFoundError, GitError         |
| switch_branch    | None                          | WorkspaceNotFoundError, GitError         |
| list_branches    | BranchListing                 | WorkspaceNotFoundError                   |
| get_status       | SyncStatus                    | WorkspaceNotFoundError                   |
| reset_conflict   | SyncStatus                    | WorkspaceNotFoundError                   |
| stop             | None (idempotent)             |                                          |

The engine exposes no HTTP; a surrounding application maps its own
endpoints onto these methods.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from types import TracebackType

from worksync.core.config import EngineSettings, SyncPolicy
from worksync.sync.controller import SyncController
from worksync.sync.registry import WorkspaceRegistry
from worksync.sync.types import (
    BranchListing,
    SyncStatus,
    WorkspaceStatusCallback,
)

logger = logging.getLogger(__name__)


class SyncEngine:
    """Owns the workspace registry and exposes the per-handle operations.

    Usage:
        with SyncEngine() as engine:
            engine.initialize("w1", policy)
            engine.commit_and_sync("w1", "Save work")
            print(engine.get_status("w1"))
        # every workspace is stopped on exit
    """

    def __init__(
        self,
        registry: WorkspaceRegistry | None = None,
        settings: EngineSettings | None = None,
        controller_factory: Callable[..., SyncController] = SyncController,
    ) -> None:
        """Initialize the engine.

        Args:
            registry: Registry to use (a fresh one by default).
            settings: Engine tuning passed to every controller.
            controller_factory: Builds controllers (overridable for tests).
        """
        self._registry = registry or WorkspaceRegistry()
        self._settings = settings or EngineSettings()
        self._controller_factory = controller_factory
        self._listeners: list[WorkspaceStatusCallback] = []

    @property
    def registry(self) -> WorkspaceRegistry:
        """Registry of active workspaces."""
        return self._registry

    @property
    def settings(self) -> EngineSettings:
        """Engine tuning."""
        return self._settings

    def add_status_listener(self, callback: WorkspaceStatusCallback) -> None:
        """Register ``callback(handle, status)`` for every workspace's status changes."""
        self._listeners.append(callback)

    def _notify(self, handle: str, status: SyncStatus) -> None:
        for listener in list(self._listeners):
            try:
                listener(handle, status)
            except Exception:
                logger.exception("Status listener failed for %s", handle)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, handle: str, policy: SyncPolicy) -> SyncStatus:
        """Start synchronizing a workspace.

        Re-initializing an active handle stops the previous controller,
        waits (bounded by ``reinit_wait_seconds``) for its in-flight git
        operation, and replaces it.

        Returns:
            The initial status snapshot.

        Raises:
            InvalidWorkspaceError: Path missing or unusable.
            AuthConfigurationError: Credential malformed or rejected.
        """
        with self._registry.locked(handle):
            previous = self._registry.find(handle)
            if previous is not None:
                logger.info("Re-initializing workspace %s; replacing active controller", handle)
                self._retire(previous)

            controller = self._controller_factory(
                handle,
                policy,
                settings=self._settings,
            )
            controller.set_on_status_change(lambda status: self._notify(handle, status))
            status = controller.initialize()
            self._registry.add(controller)
            return status

    def _retire(self, controller: SyncController) -> None:
        controller.stop()
        if not controller.wait_idle(timeout=self._settings.reinit_wait_seconds):
            logger.warning(
                "Previous controller for %s still busy after %.0fs; replacing anyway",
                controller.handle,
                self._settings.reinit_wait_seconds,
            )
        self._registry.remove(controller.handle)

    def stop(self, handle: str) -> None:
        """Stop a workspace. Unknown or already stopped handles are a no-op."""
        with self._registry.locked(handle):
            controller = self._registry.remove(handle)
            if controller is None:
                logger.debug("Stop requested for unknown workspace %s", handle)
                return
            controller.stop()

    def stop_all(self) -> None:
        """Stop every workspace (process shutdown)."""
        for handle in self._registry.handles():
            self.stop(handle)

    def __enter__(self) -> SyncEngine:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop_all()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def commit_and_sync(self, handle: str, message: str | None = None) -> str | None:
        """Pull, commit all changes and push. Returns the commit hash or None."""
        return self._registry.get(handle).commit_and_sync(message)

    def sync_with_remote(self, handle: str) -> bool:
        """Fetch and pull remote changes. Returns True if anything was merged."""
        return self._registry.get(handle).sync_with_remote()

    def create_branch(self, handle: str, name: str) -> None:
        """Create, switch to and publish a branch."""
        self._registry.get(handle).create_branch(name)

    def switch_branch(self, handle: str, name: str) -> None:
        """Switch the workspace to an existing branch."""
        self._registry.get(handle).switch_branch(name)

    def list_branches(self, handle: str) -> BranchListing:
        """List current, local and remote branches."""
        return self._registry.get(handle).list_branches()

    def get_status(self, handle: str) -> SyncStatus:
        """Current status snapshot."""
        return self._registry.get(handle).get_status()

    def reset_conflict(self, handle: str) -> SyncStatus:
        """Clear the conflict latch after manual resolution."""
        return self._registry.get(handle).reset_conflict()
