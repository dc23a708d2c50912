"""Per-workspace sync controller.

This module provides:
- SyncController: Lifecycle and policy state machine for one workspace

The controller wires a ChangeWatcher and ChangeAggregator to a GitOperator
and owns the workspace's SyncStatus:

    ChangeWatcher ──submit──► ChangeAggregator ──threshold──► worker thread
                                                               │
    caller ──commit_and_sync / sync_with_remote / branches──► git lock ──► GitOperator
                                                               ▲
    periodic timer (auto_pull) ──tick─────────────────────────┘

States:
    UNINITIALIZED → INITIALIZING → ACTIVE → STOPPING → STOPPED

All git calls for a workspace funnel through one re-entrant lock, so a
manual commit never interleaves with a background pull. A merge conflict
or rejected push latches ``conflict_detected``; while latched, periodic
ticks only fetch. The latch is cleared by a successful pull or push, a
branch switch, or reset_conflict().
"""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
import time
from collections import Counter
from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from worksync.core.config import EngineSettings, SyncPolicy
from worksync.core.types import ControllerState
from worksync.sync.aggregator import ChangeAggregator
from worksync.sync.git import GitOperator
from worksync.sync.types import (
    BranchListing,
    ChangeKind,
    GitError,
    InvalidWorkspaceError,
    MergeConflictError,
    StatusCallback,
    SyncError,
    SyncStatus,
    WorkspaceNotFoundError,
)
from worksync.sync.watcher import ChangeWatcher

logger = logging.getLogger(__name__)

_COMMIT_JOB = "commit"
_TICK_JOB = "tick"


class _TemplateValues(dict[str, str]):
    """format_map mapping that leaves unknown placeholders untouched."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def format_summary(summary: Counter[ChangeKind]) -> str:
    """Render a change summary such as ``"6 added, 1 deleted"``."""
    parts = [f"{summary[kind]} {kind.value}" for kind in ChangeKind if summary[kind]]
    return ", ".join(parts) if parts else "no changes"


class SyncController:
    """Keeps one workspace synchronized with its remote.

    Usage:
        controller = SyncController("w1", policy)
        controller.initialize()
        controller.commit_and_sync("Manual save")
        status = controller.get_status()
        controller.stop()
    """

    def __init__(
        self,
        handle: str,
        policy: SyncPolicy,
        *,
        settings: EngineSettings | None = None,
        git_factory: Callable[..., GitOperator] = GitOperator,
        watcher_factory: Callable[..., ChangeWatcher] = ChangeWatcher,
    ) -> None:
        """Initialize the controller.

        Args:
            handle: Caller-chosen workspace identifier.
            policy: Sync policy for this workspace.
            settings: Engine tuning (debounce, thresholds, timeouts).
            git_factory: Builds the GitOperator (overridable for tests).
            watcher_factory: Builds the ChangeWatcher (overridable for tests).
        """
        self._handle = handle
        self._policy = policy
        self._settings = settings or EngineSettings()
        self._watcher_factory = watcher_factory

        self._git = git_factory(
            policy.workspace_path,
            policy.repository_url,
            command_timeout=self._settings.command_timeout,
            network_timeout=self._settings.network_timeout,
        )

        self._watcher: ChangeWatcher | None = None
        self._aggregator: ChangeAggregator | None = None

        # Serializes every git call for this workspace
        self._git_lock = threading.RLock()
        self._idle = threading.Condition()
        self._busy = 0

        self._status_lock = threading.Lock()
        self._status = SyncStatus(handle=handle, branch=policy.branch)
        self._listeners: list[StatusCallback] = []

        self._lifecycle_lock = threading.Lock()
        self._state = ControllerState.UNINITIALIZED
        self._stop_event = threading.Event()
        self._jobs: queue.Queue[str | None] = queue.Queue()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def handle(self) -> str:
        """Workspace handle."""
        return self._handle

    @property
    def policy(self) -> SyncPolicy:
        """Current policy (tracks branch switches)."""
        return self._policy

    @property
    def state(self) -> ControllerState:
        """Lifecycle state."""
        return self._state

    @property
    def aggregator(self) -> ChangeAggregator | None:
        """Change aggregator, when the policy watches files."""
        return self._aggregator

    @property
    def is_running(self) -> bool:
        """Whether any background activity is still alive."""
        worker_alive = self._thread is not None and self._thread.is_alive()
        watcher_alive = self._watcher is not None and self._watcher.is_running
        aggregator_alive = self._aggregator is not None and self._aggregator.is_running
        return worker_alive or watcher_alive or aggregator_alive

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> SyncStatus:
        """Current status snapshot."""
        with self._status_lock:
            return self._status

    def set_on_status_change(self, callback: StatusCallback) -> None:
        """Register a listener called with every new status snapshot."""
        self._listeners.append(callback)

    def _update_status(self, **changes: Any) -> SyncStatus:
        """Replace the snapshot as a whole and notify listeners."""
        with self._status_lock:
            self._status = replace(self._status, **changes)
            snapshot = self._status

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Status listener failed for %s", self._handle)

        return snapshot

    def _record_failure(self, error: GitError) -> None:
        """Fold a git failure into status; conflicts latch."""
        if isinstance(error, MergeConflictError):
            self._update_status(conflict_detected=True, last_error=str(error))
        else:
            self._update_status(last_error=str(error))

    def _record_success(self, **changes: Any) -> None:
        self._update_status(
            last_sync_time=datetime.now(timezone.utc),
            conflict_detected=False,
            last_error=None,
            **changes,
        )

    def reset_conflict(self) -> SyncStatus:
        """Explicitly clear the conflict latch and last error."""
        self._require_active()
        logger.info("Conflict flag reset for %s", self._handle)
        return self._update_status(conflict_detected=False, last_error=None)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _require_active(self) -> None:
        if self._state != ControllerState.ACTIVE:
            raise WorkspaceNotFoundError(self._handle)

    def initialize(self) -> SyncStatus:
        """Prepare the repository and start background activity.

        Returns:
            The initial status snapshot.

        Raises:
            InvalidWorkspaceError: Path missing or not usable as a repository.
            AuthConfigurationError: Credential malformed or rejected.
        """
        with self._lifecycle_lock:
            if self._state != ControllerState.UNINITIALIZED:
                raise SyncError(f"Workspace {self._handle} already initialized")
            self._state = ControllerState.INITIALIZING

        policy = self._policy
        logger.info("Initializing sync for workspace %s at %s", self._handle, policy.workspace_path)
        self._update_status(state=ControllerState.INITIALIZING)

        try:
            if not policy.workspace_path.exists():
                raise InvalidWorkspaceError(
                    f"Workspace path does not exist: {policy.workspace_path}"
                )

            self._git.configure_remote_auth(policy.credential)

            with self._exclusive():
                self._git.ensure_repository(
                    policy.branch,
                    author_name=policy.author_name,
                    author_email=policy.author_email,
                )
                self._git.verify_remote_access()
                head = self._git.head_commit()

            if policy.watches_files:
                self._start_watching()
            if policy.needs_worker:
                self._start_worker()
        except Exception as e:
            logger.error("Failed to initialize sync for workspace %s: %s", self._handle, e)
            self._teardown()
            self._state = ControllerState.STOPPED
            self._update_status(active=False, state=ControllerState.STOPPED)
            raise

        self._state = ControllerState.ACTIVE
        status = self._update_status(
            active=True,
            state=ControllerState.ACTIVE,
            branch=policy.branch,
            last_commit_hash=head,
        )
        logger.info(
            "Sync initialized for workspace %s (auto_commit=%s, auto_pull=%s every %ds)",
            self._handle,
            policy.auto_commit,
            policy.auto_pull,
            policy.pull_interval_seconds,
        )
        return status

    def _start_watching(self) -> None:
        settings = self._settings
        self._aggregator = ChangeAggregator(
            self._policy.workspace_path,
            debounce_seconds=settings.debounce_seconds,
            max_delay_seconds=settings.max_debounce_seconds,
            threshold=settings.auto_commit_threshold,
            max_queue_size=settings.max_queue_size,
            on_pending_changed=self._on_pending_changed,
            on_threshold=self._on_threshold,
            dirty_paths=self._uncommitted_paths,
        )
        self._aggregator.start()
        self._watcher = self._watcher_factory(
            self._policy.workspace_path,
            self._aggregator.submit,
        )
        self._watcher.start()

    def _start_worker(self) -> None:
        self._thread = threading.Thread(
            target=self._run,
            name=f"SyncController[{self._handle}]",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop background activity. Idempotent.

        Cancels the periodic timer and closes the watcher. An in-flight git
        call is not interrupted; it finishes on its own and no new
        background work starts afterwards.
        """
        with self._lifecycle_lock:
            if self._state in (ControllerState.STOPPING, ControllerState.STOPPED):
                return
            self._state = ControllerState.STOPPING

        logger.info("Stopping sync for workspace %s", self._handle)
        self._teardown()
        self._state = ControllerState.STOPPED
        self._update_status(active=False, state=ControllerState.STOPPED)
        logger.info("Sync stopped for workspace %s", self._handle)

    def _teardown(self) -> None:
        """Release watcher, aggregator and worker."""
        self._stop_event.set()

        if self._watcher:
            self._watcher.close()
        if self._aggregator:
            self._aggregator.stop(timeout=self._settings.stop_join_timeout)

        self._jobs.put(None)
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            if self._busy:
                logger.info(
                    "Git operation in flight for %s; worker will exit when it completes",
                    self._handle,
                )
            else:
                thread.join(timeout=self._settings.stop_join_timeout)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no git operation is in flight.

        Returns:
            True if idle, False if the timeout expired first.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._busy == 0, timeout=timeout)

    @contextlib.contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold the workspace git lock and track in-flight work."""
        with self._git_lock:
            with self._idle:
                self._busy += 1
            try:
                yield
            finally:
                with self._idle:
                    self._busy -= 1
                    self._idle.notify_all()

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _on_pending_changed(self, count: int) -> None:
        self._update_status(pending_change_count=count)

    def _on_threshold(self) -> None:
        if not self._stop_event.is_set():
            self._jobs.put(_COMMIT_JOB)

    def _uncommitted_paths(self) -> set[str] | None:
        """Working tree paths with something to commit, read under the git lock."""
        with self._exclusive():
            if self._stop_event.is_set():
                return None
            return self._git.dirty_paths()

    def _run(self) -> None:
        """Worker loop: serves commit jobs and periodic ticks."""
        policy = self._policy
        interval = policy.pull_interval_seconds if policy.auto_pull else None
        next_tick = time.monotonic() + interval if interval else None

        logger.debug("Worker started for %s", self._handle)

        while not self._stop_event.is_set():
            timeout = None if next_tick is None else max(0.0, next_tick - time.monotonic())
            try:
                job = self._jobs.get(timeout=timeout)
            except queue.Empty:
                job = _TICK_JOB

            if job is None or self._stop_event.is_set():
                break

            if job == _TICK_JOB and interval:
                next_tick = time.monotonic() + interval

            try:
                self._run_job(job)
            except Exception:
                logger.exception("Background %s failed for %s", job, self._handle)

        logger.debug("Worker ended for %s", self._handle)

    def _run_job(self, job: str) -> None:
        if job == _COMMIT_JOB:
            self._auto_commit()
        elif job == _TICK_JOB:
            self.periodic_tick()

    def _auto_commit(self) -> None:
        with self._exclusive():
            if self._stop_event.is_set():
                return
            try:
                self._commit_and_sync_locked(None)
            except GitError as e:
                logger.error("Auto-commit failed for %s: %s", self._handle, e)
                # The batch was not drained; let the next settled batch retry
                if self._aggregator:
                    self._aggregator.rearm_threshold()

    def periodic_tick(self) -> None:
        """One periodic sync attempt.

        While a conflict is latched the tick only fetches, so resolution
        can be observed without repeatedly failing pulls. Failures are
        recorded in status, never raised.
        """
        with self._exclusive():
            if self._stop_event.is_set():
                return

            if self.get_status().conflict_detected:
                try:
                    self._git.fetch()
                except GitError as e:
                    logger.warning("Fetch failed for %s: %s", self._handle, e)
                logger.info(
                    "Conflict unresolved for %s; skipping automatic pull", self._handle
                )
                return

            try:
                self._sync_locked()
            except GitError as e:
                logger.error("Periodic sync failed for %s: %s", self._handle, e)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def commit_and_sync(self, message: str | None = None) -> str | None:
        """Pull, commit everything and push.

        Args:
            message: Commit message; defaults to the policy template or a
                generated summary.

        Returns:
            The new commit hash, or None if there was nothing to commit.

        Raises:
            WorkspaceNotFoundError: Controller is not active.
            MergeConflictError: Pull conflicted or push was rejected.
            GitError: Any other git failure.
        """
        self._require_active()
        with self._exclusive():
            return self._commit_and_sync_locked(message)

    def _commit_and_sync_locked(self, message: str | None) -> str | None:
        git = self._git
        branch = self._policy.branch
        logger.info("Starting commit and sync for workspace %s", self._handle)

        try:
            git.fetch()
            pulled = git.pull(branch)
            # Drain before staging so edits seen in between stay pending
            self._drain_pending()
            git.stage_all()

            if not git.has_staged_changes():
                logger.info("No changes to commit for workspace %s", self._handle)
                if git.has_unpushed_commits(branch):
                    logger.info("Pushing earlier local commits for workspace %s", self._handle)
                    git.push(branch, set_upstream=True)
                elif not pulled:
                    return None
                self._record_success(last_commit_hash=git.head_commit())
                return None

            commit_message = self._commit_message(message, git.staged_summary())
            sha = git.commit(commit_message)
            self._update_status(last_commit_hash=sha)
            git.push(branch, set_upstream=True)
        except GitError as e:
            self._record_failure(e)
            raise

        self._record_success(last_commit_hash=sha)
        logger.info("Successfully synced workspace %s at %s", self._handle, sha[:12])
        return sha

    def _drain_pending(self) -> None:
        if self._aggregator:
            batch = self._aggregator.drain_batch()
            logger.debug("Drained %d pending changes for %s", len(batch), self._handle)

    def _commit_message(self, message: str | None, summary: Counter[ChangeKind]) -> str:
        if message:
            return message

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        summary_text = format_summary(summary)
        template = self._policy.commit_message_template
        if template:
            values = _TemplateValues(
                summary=summary_text,
                timestamp=timestamp,
                branch=self._policy.branch,
                handle=self._handle,
            )
            try:
                return template.format_map(values)
            except (AttributeError, IndexError, KeyError, ValueError):
                logger.warning("Invalid commit message template for %s; using it verbatim", self._handle)
                return template

        return f"Auto-sync: {summary_text} ({timestamp})"

    def sync_with_remote(self) -> bool:
        """Fetch and pull remote changes.

        Returns:
            True if remote changes were merged, False if already up to date.

        Raises:
            WorkspaceNotFoundError: Controller is not active.
            MergeConflictError: Pull conflicted, or in collaboration mode the
                remote changes overlap uncommitted local edits.
            GitError: Any other git failure.
        """
        self._require_active()
        with self._exclusive():
            return self._sync_locked()

    def _sync_locked(self) -> bool:
        git = self._git
        branch = self._policy.branch
        logger.info("Syncing workspace %s with remote", self._handle)

        try:
            git.fetch()
            head = git.head_commit()
            remote = git.remote_commit(branch)

            if not remote or head == remote or (head and git.is_ancestor(remote, head)):
                logger.debug("Workspace %s already up to date with remote", self._handle)
                self._record_success()
                return False

            logger.info("Remote changes detected for workspace %s", self._handle)

            if self._policy.collaboration_mode:
                overlap = sorted(git.changed_paths(head, remote) & git.dirty_paths())
                if overlap:
                    shown = ", ".join(overlap[:10])
                    raise MergeConflictError(
                        "Remote changes overlap uncommitted local edits",
                        stderr=shown,
                    )

            git.pull(branch)
        except GitError as e:
            self._record_failure(e)
            raise

        self._record_success(last_commit_hash=git.head_commit())
        logger.info("Successfully pulled remote changes for workspace %s", self._handle)
        return True

    def create_branch(self, name: str) -> None:
        """Create a branch from HEAD, switch to it and publish it.

        Subsequent auto-commit and auto-pull target the new branch.

        Raises:
            WorkspaceNotFoundError: Controller is not active.
            GitError: Invalid name or git failure.
        """
        self._require_active()
        with self._exclusive():
            self._git.create_branch(name)
            self._track_branch(name)
            if self._policy.repository_url:
                self._git.push(name, set_upstream=True)
        logger.info("Created and switched to branch %s for workspace %s", name, self._handle)

    def switch_branch(self, name: str) -> None:
        """Switch to an existing local or remote branch.

        Raises:
            WorkspaceNotFoundError: Controller is not active.
            GitError: Unknown branch or checkout failure.
        """
        self._require_active()
        with self._exclusive():
            self._git.switch_branch(name)
            self._track_branch(name)
        logger.info("Switched to branch %s for workspace %s", name, self._handle)

    def _track_branch(self, name: str) -> None:
        self._policy = replace(self._policy, branch=name)
        self._update_status(
            branch=name,
            last_commit_hash=self._git.head_commit(),
            conflict_detected=False,
            last_error=None,
        )

    def list_branches(self) -> BranchListing:
        """List current, local and remote branches.

        Raises:
            WorkspaceNotFoundError: Controller is not active.
        """
        self._require_active()
        with self._exclusive():
            return self._git.list_branches()
