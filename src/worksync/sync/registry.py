"""Directory of active workspace controllers.

This module provides:
- WorkspaceRegistry: Thread-safe mapping from workspace handle to SyncController

The registry is an explicit object owned by SyncEngine rather than
process-wide state, so its lifetime and concurrent access can be tested
in isolation.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from worksync.sync.types import WorkspaceNotFoundError

if TYPE_CHECKING:
    from worksync.sync.controller import SyncController

logger = logging.getLogger(__name__)


@dataclass
class _HandleLock:
    """Lifecycle lock for one handle and the number of callers using it."""

    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class WorkspaceRegistry:
    """Mapping of workspace handles to their live controllers."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._controllers: dict[str, SyncController] = {}
        self._handle_locks: dict[str, _HandleLock] = {}

    @contextlib.contextmanager
    def locked(self, handle: str) -> Iterator[None]:
        """Serialize lifecycle changes for one handle.

        Different handles get different locks, so initializing one
        workspace never waits on another. A handle's lock is discarded
        once no caller holds or waits on it.
        """
        with self._lock:
            entry = self._handle_locks.get(handle)
            if entry is None:
                entry = _HandleLock()
                self._handle_locks[handle] = entry
            entry.users += 1

        try:
            with entry.lock:
                yield
        finally:
            with self._lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._handle_locks[handle]

    def get(self, handle: str) -> SyncController:
        """Get the controller for a handle.

        Raises:
            WorkspaceNotFoundError: If the handle is unknown.
        """
        with self._lock:
            controller = self._controllers.get(handle)
        if controller is None:
            raise WorkspaceNotFoundError(handle)
        return controller

    def find(self, handle: str) -> SyncController | None:
        """Get the controller for a handle, or None."""
        with self._lock:
            return self._controllers.get(handle)

    def add(self, controller: SyncController) -> SyncController | None:
        """Register a controller under its handle.

        Returns:
            The controller previously registered under that handle, if any.
        """
        with self._lock:
            previous = self._controllers.get(controller.handle)
            self._controllers[controller.handle] = controller
        logger.debug("Registered workspace %s", controller.handle)
        return previous

    def remove(self, handle: str) -> SyncController | None:
        """Unregister a handle.

        Returns:
            The removed controller, or None if the handle was unknown.
        """
        with self._lock:
            controller = self._controllers.pop(handle, None)
        if controller is not None:
            logger.debug("Unregistered workspace %s", handle)
        return controller

    def handles(self) -> list[str]:
        """Registered handles."""
        with self._lock:
            return list(self._controllers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._controllers)

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._controllers
