"""Shared types for worksync.

This module defines enums used by both the engine and the CLI.
"""

from __future__ import annotations

from enum import Enum


class ControllerState(str, Enum):
    """Lifecycle state of a workspace controller.

    Used by SyncController to track its lifecycle and reported to
    callers through SyncStatus snapshots.
    """

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    STOPPING = "stopping"
    STOPPED = "stopped"
