"""Sync commands for the worksync CLI.

Commands:
- watch: Run the engine for a workspace until interrupted
- commit: Commit and push local changes once
- pull: Pull remote changes once
- status: Print the workspace status as JSON
- branches: List branches
- branch: Switch to (or create) a branch
"""

from __future__ import annotations

import json
import sys
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import click

from worksync.cli.config import get_workspace_profile, policy_from_profile, save_workspace_profile
from worksync.core.config import SyncPolicy
from worksync.sync import SyncEngine, SyncError, SyncStatus

token_option = click.option(
    "--token",
    envvar="WORKSYNC_TOKEN",
    default=None,
    help="Access token for the remote (or set WORKSYNC_TOKEN).",
)


def _load_policy(handle: str, token: str | None, **overrides: Any) -> SyncPolicy:
    profile = get_workspace_profile(handle)
    if profile is None:
        click.echo(f"Error: Unknown workspace {handle}. Run 'worksync add' first.", err=True)
        sys.exit(1)
    try:
        return policy_from_profile(profile, credential=token, **overrides)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@contextmanager
def _one_shot(handle: str, token: str | None) -> Iterator[SyncEngine]:
    """Initialize a workspace with background activity disabled."""
    policy = _load_policy(handle, token, auto_commit=False, auto_pull=False)
    with SyncEngine() as engine:
        try:
            engine.initialize(handle, policy)
        except SyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        yield engine


def _run_one_shot(handle: str, token: str | None, action: Callable[[SyncEngine], None]) -> None:
    with _one_shot(handle, token) as engine:
        try:
            action(engine)
        except SyncError as e:
            click.echo(f"Error: {e}", err=True)
            status = engine.get_status(handle)
            if status.conflict_detected:
                click.echo("Conflict detected: resolve manually, then run 'worksync pull'.", err=True)
            sys.exit(1)


def format_status(status: SyncStatus) -> str:
    """One-line human-readable status."""
    commit = status.last_commit_hash[:12] or "(none)"
    line = (
        f"[{status.handle}] {status.state.value} on {status.branch or '?'} "
        f"at {commit}, {status.pending_change_count} pending"
    )
    if status.conflict_detected:
        line += ", CONFLICT"
    if status.last_error:
        line += f" - {status.last_error}"
    return line


@click.command()
@click.argument("handle")
@token_option
def watch(handle: str, token: str | None) -> None:
    """Synchronize HANDLE continuously until interrupted."""
    policy = _load_policy(handle, token)
    stop_event = threading.Event()
    last_line: dict[str, str] = {}

    def on_status(changed: str, status: SyncStatus) -> None:
        line = format_status(status)
        if last_line.get(changed) != line:
            last_line[changed] = line
            click.echo(line)

    with SyncEngine() as engine:
        engine.add_status_listener(on_status)
        try:
            engine.initialize(handle, policy)
        except SyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        click.echo(f"Watching {policy.workspace_path} (Ctrl+C to stop)")
        try:
            while not stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            click.echo("\nStopping...")


@click.command()
@click.argument("handle")
@click.option("--message", "-m", default=None, help="Commit message.")
@token_option
def commit(handle: str, message: str | None, token: str | None) -> None:
    """Pull, commit all changes in HANDLE and push."""

    def action(engine: SyncEngine) -> None:
        sha = engine.commit_and_sync(handle, message)
        if sha:
            click.echo(f"Committed {sha[:12]}")
        else:
            click.echo("No changes to commit")

    _run_one_shot(handle, token, action)


@click.command()
@click.argument("handle")
@token_option
def pull(handle: str, token: str | None) -> None:
    """Fetch and merge remote changes into HANDLE."""

    def action(engine: SyncEngine) -> None:
        if engine.sync_with_remote(handle):
            click.echo(f"Pulled remote changes ({engine.get_status(handle).last_commit_hash[:12]})")
        else:
            click.echo("Already up to date")

    _run_one_shot(handle, token, action)


@click.command()
@click.argument("handle")
@token_option
def status(handle: str, token: str | None) -> None:
    """Print the status of HANDLE as JSON."""

    def action(engine: SyncEngine) -> None:
        click.echo(json.dumps(engine.get_status(handle).to_dict(), indent=2))

    _run_one_shot(handle, token, action)


@click.command()
@click.argument("handle")
@token_option
def branches(handle: str, token: str | None) -> None:
    """List the branches of HANDLE."""

    def action(engine: SyncEngine) -> None:
        listing = engine.list_branches(handle)
        for name in listing.local:
            marker = "*" if name == listing.current else " "
            click.echo(f"{marker} {name}")
        for name in listing.remote:
            click.echo(f"  remotes/{name}")

    _run_one_shot(handle, token, action)


@click.command()
@click.argument("handle")
@click.argument("name")
@click.option("--create", "-c", is_flag=True, help="Create the branch and publish it.")
@token_option
def branch(handle: str, name: str, create: bool, token: str | None) -> None:
    """Switch HANDLE to branch NAME (or create it with --create).

    The saved profile then tracks NAME.
    """

    def action(engine: SyncEngine) -> None:
        if create:
            engine.create_branch(handle, name)
            click.echo(f"Created and switched to {name}")
        else:
            engine.switch_branch(handle, name)
            click.echo(f"Switched to {name}")

        profile = get_workspace_profile(handle) or {}
        profile["branch"] = name
        save_workspace_profile(handle, profile)

    _run_one_shot(handle, token, action)
