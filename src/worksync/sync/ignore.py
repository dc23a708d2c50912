"""Ignore patterns for workspace change detection.

This module provides:
- IgnorePatterns: gitignore-style matching of workspace paths
- DEFAULT_IGNORE_PATTERNS: the fixed ignore policy

Directory patterns end with ``/`` and match that directory at any depth,
together with everything below it. Other patterns match either the file
name or the whole relative path.
"""

from __future__ import annotations

import fnmatch
from pathlib import Path

DEFAULT_IGNORE_PATTERNS = [
    # Version control
    ".git/",
    # Build output
    "build/",
    "dist/",
    "out/",
    "target/",
    ".next/",
    ".nuxt/",
    # Dependencies
    "node_modules/",
    ".venv/",
    "venv/",
    "vendor/",
    # OS metadata
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",
    # Caches and temporary files
    "__pycache__/",
    ".cache/",
    ".pytest_cache/",
    "coverage/",
    ".nyc_output/",
    "*.tmp",
    "*.temp",
    "*.swp",
    "*.swo",
    "*~",
    "*.log",
]


class IgnorePatterns:
    """Handles ignore pattern matching for workspace paths."""

    def __init__(self, patterns: list[str] | None = None) -> None:
        """Initialize with patterns.

        Args:
            patterns: Extra gitignore-style patterns on top of the defaults.
        """
        self._patterns = list(DEFAULT_IGNORE_PATTERNS)
        if patterns:
            self._patterns.extend(patterns)

    @property
    def patterns(self) -> list[str]:
        """Patterns in effect."""
        return list(self._patterns)

    def matches(self, rel_path: str) -> bool:
        """Check a relative, forward-slash path against the patterns."""
        parts = [p for p in rel_path.split("/") if p]
        if not parts:
            return False
        name = parts[-1]

        for pattern in self._patterns:
            if pattern.endswith("/"):
                dir_pattern = pattern[:-1]
                # Any component, including the path itself, names the directory
                if any(fnmatch.fnmatchcase(part, dir_pattern) for part in parts):
                    return True
            elif fnmatch.fnmatchcase(name, pattern) or fnmatch.fnmatchcase(
                "/".join(parts), pattern
            ):
                return True

        return False

    def should_ignore(self, path: Path, base_path: Path) -> bool:
        """Check if a path should be ignored.

        Args:
            path: Absolute path to check.
            base_path: Workspace root.

        Returns:
            True if the path should be ignored. Paths outside the
            workspace root are always ignored.
        """
        try:
            rel_path = path.relative_to(base_path)
        except ValueError:
            return True

        return self.matches(str(rel_path).replace("\\", "/"))
