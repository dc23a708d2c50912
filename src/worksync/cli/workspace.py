"""Workspace profile commands for the worksync CLI.

Commands:
- add: Save a workspace profile
- list: Show saved workspace profiles
"""

from __future__ import annotations

from pathlib import Path

import click

from worksync.cli.config import load_config, save_workspace_profile
from worksync.core.config import DEFAULT_BRANCH, DEFAULT_PULL_INTERVAL


@click.command()
@click.argument("handle")
@click.argument(
    "path",
    type=click.Path(file_okay=False, path_type=Path),
)
@click.option("--url", "repository_url", default="", help="Remote repository URL.")
@click.option("--branch", default=DEFAULT_BRANCH, show_default=True, help="Tracked branch.")
@click.option("--no-auto-commit", is_flag=True, help="Never commit automatically.")
@click.option("--no-auto-pull", is_flag=True, help="Never pull on a timer.")
@click.option(
    "--interval",
    type=click.IntRange(min=1),
    default=DEFAULT_PULL_INTERVAL,
    show_default=True,
    help="Seconds between periodic pulls.",
)
@click.option("--collaboration", is_flag=True, help="Flag remote edits that overlap local ones.")
@click.option("--message-template", default=None, help="Commit message template.")
def add(
    handle: str,
    path: Path,
    repository_url: str,
    branch: str,
    no_auto_commit: bool,
    no_auto_pull: bool,
    interval: int,
    collaboration: bool,
    message_template: str | None,
) -> None:
    """Save a workspace profile under HANDLE for the directory PATH."""
    save_workspace_profile(
        handle,
        {
            "workspace_path": str(path.expanduser().resolve()),
            "repository_url": repository_url,
            "branch": branch,
            "auto_commit": not no_auto_commit,
            "auto_pull": not no_auto_pull,
            "pull_interval_seconds": interval,
            "collaboration_mode": collaboration,
            "commit_message_template": message_template,
        },
    )
    click.echo(f"Saved workspace {handle} -> {path}")


@click.command(name="list")
def list_workspaces() -> None:
    """Show saved workspace profiles."""
    workspaces = load_config().get("workspaces", {})
    if not workspaces:
        click.echo("No workspaces configured. Run 'worksync add' first.")
        return

    for handle, profile in sorted(workspaces.items()):
        url = profile.get("repository_url") or "(no remote)"
        click.echo(
            f"{handle}: {profile.get('workspace_path')} "
            f"[{profile.get('branch', DEFAULT_BRANCH)}] {url}"
        )
