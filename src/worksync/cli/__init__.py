"""Command-line interface for worksync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- add: Save a workspace profile
- list: Show saved workspace profiles
- watch: Synchronize a workspace continuously
- commit: Commit and push local changes once
- pull: Pull remote changes once
- status: Print workspace status
- branches: List branches
- branch: Switch to or create a branch
"""

from __future__ import annotations

import logging
import sys

import click

from worksync.cli.config import (
    get_config_dir,
    get_config_file,
    get_workspace_profile,
    load_config,
    policy_from_profile,
    save_config,
    save_workspace_profile,
)
from worksync.cli.sync import branch, branches, commit, pull, status, watch
from worksync.cli.workspace import add, list_workspaces

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False) -> None:
    """Configure the worksync logger to write to stderr.

    Args:
        verbose: Log at DEBUG instead of WARNING.
    """
    root_logger = logging.getLogger("worksync")
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root_logger.propagate = False


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.version_option(package_name="worksync")
def cli(verbose: bool) -> None:
    """worksync - keep a workspace in sync with its Git remote."""
    setup_logging(verbose)


# Workspace commands
cli.add_command(add)
cli.add_command(list_workspaces)

# Sync commands
cli.add_command(watch)
cli.add_command(commit)
cli.add_command(pull)
cli.add_command(status)

# Branch commands
cli.add_command(branches)
cli.add_command(branch)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    "setup_logging",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_workspace_profile",
    "load_config",
    "policy_from_profile",
    "save_config",
    "save_workspace_profile",
]
