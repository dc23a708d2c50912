"""Tests for the workspace registry."""

from __future__ import annotations

import threading
from typing import cast

import pytest

from worksync.sync.controller import SyncController
from worksync.sync.registry import WorkspaceRegistry
from worksync.sync.types import WorkspaceNotFoundError


class StubController:
    """Just enough of a controller for the registry."""

    def __init__(self, handle: str) -> None:
        self.handle = handle


def stub(handle: str) -> SyncController:
    return cast(SyncController, StubController(handle))


class TestWorkspaceRegistry:
    """Tests for WorkspaceRegistry."""

    def test_add_and_get(self) -> None:
        """Should return the registered controller."""
        registry = WorkspaceRegistry()
        controller = stub("w1")

        assert registry.add(controller) is None
        assert registry.get("w1") is controller
        assert "w1" in registry
        assert len(registry) == 1

    def test_get_unknown(self) -> None:
        """Should raise WorkspaceNotFoundError for unknown handles."""
        registry = WorkspaceRegistry()

        with pytest.raises(WorkspaceNotFoundError) as exc_info:
            registry.get("nope")

        assert exc_info.value.handle == "nope"
        assert registry.find("nope") is None

    def test_add_replaces(self) -> None:
        """Adding under an existing handle should return the previous controller."""
        registry = WorkspaceRegistry()
        first, second = stub("w1"), stub("w1")
        registry.add(first)

        assert registry.add(second) is first
        assert registry.get("w1") is second

    def test_remove(self) -> None:
        """Should unregister and return the controller; unknown handles return None."""
        registry = WorkspaceRegistry()
        controller = stub("w1")
        registry.add(controller)

        assert registry.remove("w1") is controller
        assert registry.remove("w1") is None
        assert registry.handles() == []

    def test_handles(self) -> None:
        """Should list registered handles."""
        registry = WorkspaceRegistry()
        for handle in ("a", "b", "c"):
            registry.add(stub(handle))

        assert sorted(registry.handles()) == ["a", "b", "c"]

    def test_same_handle_serialized(self) -> None:
        """A second caller for the same handle should wait for the first."""
        registry = WorkspaceRegistry()
        entered = threading.Event()
        release = threading.Event()
        order: list[str] = []

        def first() -> None:
            with registry.locked("a"):
                entered.set()
                release.wait(timeout=5.0)
                order.append("first")

        def second() -> None:
            with registry.locked("a"):
                order.append("second")

        t1 = threading.Thread(target=first)
        t1.start()
        assert entered.wait(timeout=5.0)
        t2 = threading.Thread(target=second)
        t2.start()
        t2.join(timeout=0.2)
        assert order == []

        release.set()
        t1.join(timeout=5.0)
        t2.join(timeout=5.0)
        assert order == ["first", "second"]

    def test_other_handle_not_blocked(self) -> None:
        """Holding one handle's lock should not block another handle."""
        registry = WorkspaceRegistry()
        done = threading.Event()

        def other() -> None:
            with registry.locked("b"):
                done.set()

        with registry.locked("a"):
            thread = threading.Thread(target=other)
            thread.start()
            assert done.wait(timeout=5.0)
        thread.join(timeout=5.0)

    def test_locks_released_when_unused(self) -> None:
        """Handle locks should not accumulate once nobody uses them."""
        registry = WorkspaceRegistry()

        for i in range(20):
            with registry.locked(f"gone-{i}"):
                with registry.locked(f"gone-{i}"):
                    pass

        assert registry._handle_locks == {}

    def test_concurrent_adds(self) -> None:
        """Concurrent registration of distinct handles should keep every entry."""
        registry = WorkspaceRegistry()

        def register(i: int) -> None:
            registry.add(stub(f"w{i}"))

        threads = [threading.Thread(target=register, args=(i,)) for i in range(50)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 50
