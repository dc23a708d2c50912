"""File system watcher for workspace change detection.

This module provides:
- ChangeWatcher: Recursively watches a workspace using watchdog
- ChangeEventHandler: Translates watchdog events into FileChange objects

The watcher performs no filtering and no debouncing. Every event is handed
to the ``on_event`` callback in the order the OS reports it; the callback
is expected to return immediately (see ChangeAggregator.submit).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from worksync.sync.types import ChangeKind, FileChange

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[FileChange], None]


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


class ChangeEventHandler(FileSystemEventHandler):
    """Event handler that forwards every event as a FileChange."""

    def __init__(self, on_event: ChangeCallback) -> None:
        super().__init__()
        self._on_event = on_event

    def _emit(self, path: str | bytes, kind: ChangeKind, is_directory: bool) -> None:
        change = FileChange(
            path=Path(_decode(path)),
            kind=kind,
            is_directory=is_directory,
            timestamp=time.monotonic(),
        )
        try:
            self._on_event(change)
        except Exception:
            # Consumer errors must not reach the observer thread
            logger.exception("Change consumer failed for %s", change.path)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        self._emit(
            event.src_path,
            ChangeKind.ADDED,
            isinstance(event, DirCreatedEvent),
        )

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event."""
        self._emit(
            event.src_path,
            ChangeKind.MODIFIED,
            isinstance(event, DirModifiedEvent),
        )

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle deleted event."""
        self._emit(
            event.src_path,
            ChangeKind.DELETED,
            isinstance(event, DirDeletedEvent),
        )

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event as a delete of the source plus an add of the destination."""
        is_directory = isinstance(event, DirMovedEvent)
        self._emit(event.src_path, ChangeKind.DELETED, is_directory)
        self._emit(event.dest_path, ChangeKind.ADDED, is_directory)


class ChangeWatcher:
    """Recursively watches a workspace directory for changes."""

    def __init__(self, watch_path: Path, on_event: ChangeCallback) -> None:
        """Initialize the watcher.

        Args:
            watch_path: Directory to watch.
            on_event: Called for each raw event. Must not block.

        Raises:
            ValueError: If watch_path is not a directory.
        """
        self._watch_path = Path(watch_path).resolve()
        if not self._watch_path.is_dir():
            raise ValueError(f"Watch path must be a directory: {watch_path}")

        self._handler = ChangeEventHandler(on_event)
        self._observer: BaseObserver | None = None
        self._running = False

    @property
    def watch_path(self) -> Path:
        """Get the watched directory path."""
        return self._watch_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    def start(self) -> None:
        """Start watching for changes."""
        if self._running:
            return

        self._observer = Observer()
        self._observer.schedule(self._handler, str(self._watch_path), recursive=True)
        self._observer.daemon = True
        self._observer.start()
        self._running = True
        logger.debug("Watching %s", self._watch_path)

    def close(self) -> None:
        """Stop watching and release OS watch resources. Safe to call repeatedly."""
        if not self._running or self._observer is None:
            return

        self._running = False
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._observer = None
        logger.debug("Stopped watching %s", self._watch_path)

    def __enter__(self) -> ChangeWatcher:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()
