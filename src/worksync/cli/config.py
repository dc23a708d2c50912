"""Configuration utilities for the worksync CLI.

Workspace profiles are stored in ``config.json`` under the config
directory. Credentials are never stored; they come from ``--token`` or
the ``WORKSYNC_TOKEN`` environment variable.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from worksync.core.config import DEFAULT_BRANCH, DEFAULT_PULL_INTERVAL, SyncPolicy

CONFIG_DIR_ENV = "WORKSYNC_CONFIG_DIR"

PROFILE_KEYS = (
    "workspace_path",
    "repository_url",
    "branch",
    "auto_commit",
    "auto_pull",
    "pull_interval_seconds",
    "collaboration_mode",
    "commit_message_template",
)


def get_config_dir() -> Path:
    """Get the configuration directory for worksync.

    Returns:
        Path from $WORKSYNC_CONFIG_DIR, or ~/.worksync.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".worksync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_workspace_profile(handle: str) -> dict[str, Any] | None:
    """Get a saved workspace profile by handle."""
    workspaces = load_config().get("workspaces", {})
    profile = workspaces.get(handle)
    return dict(profile) if profile else None


def save_workspace_profile(handle: str, profile: dict[str, Any]) -> None:
    """Save a workspace profile, dropping any key that is not a profile field."""
    config = load_config()
    workspaces = config.setdefault("workspaces", {})
    workspaces[handle] = {key: profile[key] for key in PROFILE_KEYS if key in profile}
    save_config(config)


def policy_from_profile(
    profile: dict[str, Any],
    credential: str | None = None,
    **overrides: Any,
) -> SyncPolicy:
    """Build a SyncPolicy from a saved profile.

    Args:
        profile: Saved profile.
        credential: Access token supplied at run time.
        **overrides: Policy fields that replace profile values.

    Raises:
        ValueError: If the profile has no workspace path or invalid values.
    """
    if not profile.get("workspace_path"):
        raise ValueError("Workspace profile has no workspace_path")

    values: dict[str, Any] = {
        "workspace_path": Path(profile["workspace_path"]),
        "repository_url": profile.get("repository_url", ""),
        "branch": profile.get("branch", DEFAULT_BRANCH),
        "auto_commit": bool(profile.get("auto_commit", True)),
        "auto_pull": bool(profile.get("auto_pull", True)),
        "pull_interval_seconds": int(profile.get("pull_interval_seconds", DEFAULT_PULL_INTERVAL)),
        "collaboration_mode": bool(profile.get("collaboration_mode", False)),
        "commit_message_template": profile.get("commit_message_template"),
        "credential": credential,
    }
    values.update(overrides)
    return SyncPolicy(**values)
