"""Tests for the file system watcher and ignore patterns."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from tests.helpers import wait_for
from worksync.sync.ignore import DEFAULT_IGNORE_PATTERNS, IgnorePatterns
from worksync.sync.types import ChangeKind, FileChange
from worksync.sync.watcher import ChangeEventHandler, ChangeWatcher


class TestIgnorePatterns:
    """Tests for ignore pattern matching."""

    def test_git_directory_ignored(self, tmp_path: Path) -> None:
        """Should ignore .git and everything below it."""
        ignore = IgnorePatterns()

        assert ignore.should_ignore(tmp_path / ".git", tmp_path) is True
        assert ignore.should_ignore(tmp_path / ".git" / "objects" / "ab" / "cdef", tmp_path) is True

    def test_nested_dependency_directory(self, tmp_path: Path) -> None:
        """Directory patterns should match at any depth."""
        ignore = IgnorePatterns()

        assert ignore.should_ignore(tmp_path / "frontend" / "node_modules" / "a.js", tmp_path) is True

    def test_build_output_ignored(self, tmp_path: Path) -> None:
        """Should ignore build and dist output."""
        ignore = IgnorePatterns()

        assert ignore.should_ignore(tmp_path / "dist" / "app.js", tmp_path) is True
        assert ignore.should_ignore(tmp_path / "build" / "lib" / "x.o", tmp_path) is True

    def test_os_metadata_ignored(self, tmp_path: Path) -> None:
        """Should ignore OS metadata files anywhere."""
        ignore = IgnorePatterns()

        assert ignore.should_ignore(tmp_path / ".DS_Store", tmp_path) is True
        assert ignore.should_ignore(tmp_path / "docs" / "Thumbs.db", tmp_path) is True

    def test_temporary_files_ignored(self, tmp_path: Path) -> None:
        """Should ignore temp, swap and log files."""
        ignore = IgnorePatterns()

        for name in ("file.tmp", "server.log", ".main.py.swp", "notes.txt~"):
            assert ignore.should_ignore(tmp_path / name, tmp_path) is True, name

    def test_normal_files_not_ignored(self, tmp_path: Path) -> None:
        """Should keep ordinary source files."""
        ignore = IgnorePatterns()

        for rel in ("README.md", "src/app.py", "docs/build.md", "distribution/x.txt"):
            assert ignore.should_ignore(tmp_path / rel, tmp_path) is False, rel

    def test_outside_base_ignored(self, tmp_path: Path) -> None:
        """Paths outside the workspace should be ignored."""
        ignore = IgnorePatterns()
        base = tmp_path / "workspace"

        assert ignore.should_ignore(tmp_path / "elsewhere.txt", base) is True

    def test_custom_patterns_extend_defaults(self, tmp_path: Path) -> None:
        """Custom patterns should be added to the defaults."""
        ignore = IgnorePatterns(["*.bak", "secrets/"])

        assert ignore.should_ignore(tmp_path / "db.bak", tmp_path) is True
        assert ignore.should_ignore(tmp_path / "secrets" / "key.pem", tmp_path) is True
        assert ignore.should_ignore(tmp_path / ".git" / "HEAD", tmp_path) is True
        assert ignore.patterns[: len(DEFAULT_IGNORE_PATTERNS)] == DEFAULT_IGNORE_PATTERNS

    def test_root_itself_not_ignored(self) -> None:
        """An empty relative path should not match."""
        assert IgnorePatterns().matches("") is False


class TestChangeEventHandler:
    """Tests for translating watchdog events."""

    @pytest.fixture
    def received(self) -> list[FileChange]:
        return []

    @pytest.fixture
    def handler(self, received: list[FileChange]) -> ChangeEventHandler:
        return ChangeEventHandler(received.append)

    def test_created(self, handler: ChangeEventHandler, received: list[FileChange]) -> None:
        """Created events should become ADDED changes."""
        handler.dispatch(FileCreatedEvent("/ws/a.txt"))

        assert len(received) == 1
        assert received[0].path == Path("/ws/a.txt")
        assert received[0].kind == ChangeKind.ADDED
        assert received[0].is_directory is False

    def test_modified(self, handler: ChangeEventHandler, received: list[FileChange]) -> None:
        """Modified events should become MODIFIED changes."""
        handler.dispatch(FileModifiedEvent("/ws/a.txt"))

        assert received[0].kind == ChangeKind.MODIFIED

    def test_deleted(self, handler: ChangeEventHandler, received: list[FileChange]) -> None:
        """Deleted events should become DELETED changes."""
        handler.dispatch(FileDeletedEvent("/ws/a.txt"))

        assert received[0].kind == ChangeKind.DELETED

    def test_moved_is_delete_plus_add(self, handler: ChangeEventHandler, received: list[FileChange]) -> None:
        """A move should produce a delete of the source and an add of the destination."""
        handler.dispatch(FileMovedEvent("/ws/old.txt", "/ws/new.txt"))

        assert [(c.path, c.kind) for c in received] == [
            (Path("/ws/old.txt"), ChangeKind.DELETED),
            (Path("/ws/new.txt"), ChangeKind.ADDED),
        ]

    def test_directory_flag(self, handler: ChangeEventHandler, received: list[FileChange]) -> None:
        """Directory events should be flagged so the aggregator can drop them."""
        handler.dispatch(DirCreatedEvent("/ws/src"))

        assert received[0].is_directory is True

    def test_consumer_error_contained(self) -> None:
        """A failing consumer should not raise into the observer."""

        def broken(change: FileChange) -> None:
            raise RuntimeError("consumer bug")

        handler = ChangeEventHandler(broken)

        handler.dispatch(FileCreatedEvent("/ws/a.txt"))


class TestChangeWatcher:
    """Tests for ChangeWatcher."""

    @pytest.fixture
    def watch_dir(self, tmp_path: Path) -> Path:
        """Create a watch directory."""
        watch = tmp_path / "workspace"
        watch.mkdir()
        return watch

    def test_create_watcher(self, watch_dir: Path) -> None:
        """Should resolve the path and start stopped."""
        watcher = ChangeWatcher(watch_dir, lambda change: None)

        assert watcher.watch_path == watch_dir.resolve()
        assert watcher.is_running is False

    def test_requires_directory(self, tmp_path: Path) -> None:
        """Should raise if the path is not a directory."""
        file_path = tmp_path / "file.txt"
        file_path.touch()

        with pytest.raises(ValueError, match="must be a directory"):
            ChangeWatcher(file_path, lambda change: None)

    def test_start_close(self, watch_dir: Path) -> None:
        """Should start and close cleanly, and close twice safely."""
        watcher = ChangeWatcher(watch_dir, lambda change: None)

        watcher.start()
        assert watcher.is_running is True

        watcher.close()
        watcher.close()
        assert watcher.is_running is False

    def test_context_manager(self, watch_dir: Path) -> None:
        """Should work as a context manager."""
        with ChangeWatcher(watch_dir, lambda change: None) as watcher:
            assert watcher.is_running is True
        assert watcher.is_running is False

    def test_detects_nested_file_creation(self, watch_dir: Path) -> None:
        """Should report files created in subdirectories."""
        received: list[FileChange] = []
        lock = threading.Lock()

        def on_event(change: FileChange) -> None:
            with lock:
                received.append(change)

        nested = watch_dir / "src" / "pkg"
        nested.mkdir(parents=True)
        target = nested / "module.py"

        with ChangeWatcher(watch_dir, on_event):
            target.write_text("print('hi')\n")

            def seen() -> bool:
                with lock:
                    return any(
                        c.path.name == "module.py" and not c.is_directory for c in received
                    )

            assert wait_for(seen, timeout=5.0)

    def test_detects_deletion(self, watch_dir: Path) -> None:
        """Should report deleted files."""
        received: list[FileChange] = []
        target = watch_dir / "gone.txt"
        target.write_text("bye")

        with ChangeWatcher(watch_dir, received.append):
            target.unlink()
            assert wait_for(
                lambda: any(
                    c.path.name == "gone.txt" and c.kind == ChangeKind.DELETED for c in list(received)
                ),
                timeout=5.0,
            )
