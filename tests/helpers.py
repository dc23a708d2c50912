"""Helpers shared by worksync tests."""

from __future__ import annotations

import shutil
import time
from collections.abc import Callable

import pytest

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll until predicate() is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
