"""Change aggregation with debouncing and an auto-commit threshold.

This module provides:
- ChangeAggregator: Filters, coalesces and debounces raw watcher events

Raw events arrive through ``submit`` into a bounded queue and are consumed
by a single aggregator thread, so the watcher's notification thread never
waits on downstream work. Each accepted event:

1. Is rejected if it is a directory event, lies outside the workspace or
   matches the fixed ignore policy.
2. Replaces any pending change for the same relative path (last write wins).
3. Re-arms the debounce timer.

Once no events arrive for ``debounce_seconds`` (or continuous activity has
lasted ``max_delay_seconds``) the batch is settled. Pending paths the
working tree no longer has uncommitted (for example files written by a
pull) are then dropped. If the settled batch holds at least ``threshold``
distinct paths the threshold callback fires once; it stays disarmed until
the batch is drained at commit time or the failed commit re-arms it.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from pathlib import Path

from worksync.sync.ignore import IgnorePatterns
from worksync.sync.types import FileChange, PendingChange

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 10.0
DEFAULT_THRESHOLD = 5
DEFAULT_MAX_QUEUE_SIZE = 10000


class ChangeAggregator:
    """Accumulates a debounced, coalesced batch of pending changes."""

    def __init__(
        self,
        root_path: Path,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS,
        threshold: int = DEFAULT_THRESHOLD,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        ignore_patterns: IgnorePatterns | None = None,
        on_pending_changed: Callable[[int], None] | None = None,
        on_settled: Callable[[int], None] | None = None,
        on_threshold: Callable[[], None] | None = None,
        dirty_paths: Callable[[], set[str] | None] | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            root_path: Workspace root; pending paths are relative to it.
            debounce_seconds: Quiet period before a batch is settled.
            max_delay_seconds: Longest time continuous activity may delay settling.
            threshold: Distinct pending paths that trigger on_threshold.
            max_queue_size: Capacity of the raw event channel.
            ignore_patterns: Ignore policy (defaults to the fixed policy).
            on_pending_changed: Called with the new batch size whenever it changes.
                Invoked while the aggregator lock is held.
            on_settled: Called with the batch size when a batch settles.
            on_threshold: Called when a settled batch reaches the threshold.
            dirty_paths: Returns the paths the working tree still has
                uncommitted, or None to skip the check. Pending paths outside
                it are dropped when the batch settles.
        """
        self._root = Path(root_path).resolve()
        self._debounce = debounce_seconds
        self._max_delay = max(max_delay_seconds, debounce_seconds)
        self._threshold = threshold
        self._ignore = ignore_patterns or IgnorePatterns()

        self._on_pending_changed = on_pending_changed
        self._on_settled = on_settled
        self._on_threshold = on_threshold
        self._dirty_paths = dirty_paths

        self._channel: queue.Queue[FileChange] = queue.Queue(maxsize=max_queue_size)
        self._dropped = 0

        # Pending changes keyed by relative path, in first-seen order
        self._pending: dict[str, PendingChange] = {}
        self._lock = threading.RLock()
        self._timer: threading.Timer | None = None
        self._first_unsettled_at: float | None = None
        self._settled = True
        self._threshold_armed = True

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def root_path(self) -> Path:
        """Workspace root."""
        return self._root

    @property
    def dropped_events(self) -> int:
        """Number of raw events dropped because the channel was full."""
        return self._dropped

    @property
    def is_running(self) -> bool:
        """Whether the consumer thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Channel
    # ------------------------------------------------------------------

    def submit(self, change: FileChange) -> bool:
        """Hand a raw event to the aggregator without blocking.

        Returns:
            True if queued, False if the channel was full and the event dropped.
        """
        try:
            self._channel.put_nowait(change)
        except queue.Full:
            self._dropped += 1
            logger.warning(
                "Change channel full, dropping event for %s (%d dropped so far)",
                change.path,
                self._dropped,
            )
            return False
        return True

    def start(self) -> None:
        """Start the consumer thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"ChangeAggregator[{self._root.name}]",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the consumer thread and cancel the debounce timer.

        Events still in the channel are discarded; the pending batch is kept.
        """
        self._stop_event.set()
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None

        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        """Consumer loop."""
        logger.debug("Aggregator loop started for %s", self._root)

        while not self._stop_event.is_set():
            try:
                change = self._channel.get(timeout=0.1)
            except queue.Empty:
                continue

            try:
                self.ingest(change)
            except Exception:
                logger.exception("Error ingesting change for %s", change.path)

        logger.debug("Aggregator loop ended for %s", self._root)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def ingest(self, change: FileChange) -> bool:
        """Fold one raw event into the pending batch.

        Args:
            change: Raw watcher event.

        Returns:
            True if the event was accepted, False if it was filtered out.
        """
        if change.is_directory:
            return False

        if self._ignore.should_ignore(change.path, self._root):
            return False

        rel_path = str(change.path.relative_to(self._root)).replace("\\", "/")

        with self._lock:
            before = len(self._pending)
            self._pending[rel_path] = PendingChange(
                relative_path=rel_path,
                kind=change.kind,
                observed_at=change.timestamp,
            )
            count = len(self._pending)

            if self._settled:
                self._settled = False
                self._first_unsettled_at = time.monotonic()
            self._schedule_settle()

            if count != before:
                self._notify_pending(count)

        logger.debug("Pending %s %s (%d pending)", change.kind.value, rel_path, count)
        return True

    def _schedule_settle(self) -> None:
        """(Re)start the debounce timer. Caller holds the lock."""
        if self._stop_event.is_set():
            return

        if self._timer:
            self._timer.cancel()

        delay = self._debounce
        if self._first_unsettled_at is not None:
            remaining = self._first_unsettled_at + self._max_delay - time.monotonic()
            delay = max(0.0, min(delay, remaining))

        self._timer = threading.Timer(delay, self._settle)
        self._timer.daemon = True
        self._timer.start()

    def _settle(self) -> None:
        """Mark the batch settled and fire callbacks."""
        with self._lock:
            if self._settled:
                return
            self._timer = None
            self._settled = True
            self._first_unsettled_at = None
            snapshot = dict(self._pending)

        if snapshot and self._dirty_paths:
            self._reconcile(snapshot, self._dirty_paths)

        with self._lock:
            if not self._settled:
                # New events arrived while reconciling; the next settle handles them
                return
            count = len(self._pending)
            fire = self._threshold_armed and count >= self._threshold
            if fire:
                self._threshold_armed = False

        logger.debug("Batch settled with %d pending changes", count)

        if self._on_settled:
            try:
                self._on_settled(count)
            except Exception:
                logger.exception("Settled callback failed")

        if fire and self._on_threshold:
            logger.info(
                "Auto-commit threshold reached (%d >= %d) for %s",
                count,
                self._threshold,
                self._root,
            )
            try:
                self._on_threshold()
            except Exception:
                logger.exception("Threshold callback failed")

    def _reconcile(
        self,
        snapshot: dict[str, PendingChange],
        dirty_paths: Callable[[], set[str] | None],
    ) -> None:
        """Drop pending paths the working tree no longer has uncommitted.

        Files written by a pull or merge reach the watcher like local
        edits but leave nothing to commit. Entries updated since the
        snapshot are kept.
        """
        try:
            dirty = dirty_paths()
        except Exception:
            logger.exception("Could not read working tree state for %s", self._root)
            return
        if dirty is None:
            return

        with self._lock:
            stale = [
                rel_path
                for rel_path, change in snapshot.items()
                if rel_path not in dirty and self._pending.get(rel_path) is change
            ]
            for rel_path in stale:
                del self._pending[rel_path]
            if stale:
                logger.debug("Dropped %d pending paths with nothing to commit", len(stale))
                self._notify_pending(len(self._pending))

    def _notify_pending(self, count: int) -> None:
        if self._on_pending_changed:
            try:
                self._on_pending_changed(count)
            except Exception:
                logger.exception("Pending-count callback failed")

    def pending_count(self) -> int:
        """Number of distinct pending paths."""
        with self._lock:
            return len(self._pending)

    def is_settled(self) -> bool:
        """Whether the quiet period has elapsed since the last event."""
        with self._lock:
            return self._settled

    def is_threshold_armed(self) -> bool:
        """Whether the next settled batch may fire the threshold callback."""
        with self._lock:
            return self._threshold_armed

    def rearm_threshold(self) -> None:
        """Allow the next settled batch to fire the threshold again.

        Used when a triggered commit failed before draining the batch.
        """
        with self._lock:
            self._threshold_armed = True

    def drain_batch(self) -> list[PendingChange]:
        """Atomically return and clear the pending batch.

        Draining re-arms the auto-commit threshold.
        """
        with self._lock:
            batch = list(self._pending.values())
            self._pending.clear()
            self._threshold_armed = True
            if batch:
                self._notify_pending(0)
            return batch
