"""Git hook commands for pgbranch CLI."""

from pathlib import Path
from typing import Optional

import typer

from pgbranch.cli.utils import (
    console,
    get_branch_manager,
    get_config_with_data,
    report_error,
    report_switch,
)
from pgbranch.core.git import GitRepository, VcsEvent
from pgbranch.errors import PgBranchError

app = typer.Typer(help="Git hook management commands", invoke_without_command=True)


@app.callback()
def callback(ctx: typer.Context):
    """Install or remove the Git hooks that switch database branches."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


def _open_repository() -> GitRepository:
    try:
        return GitRepository(Path.cwd())
    except PgBranchError as e:
        report_error(e)
        raise typer.Exit(1)


@app.command(name="install")
def install():
    """Install the post-checkout and post-merge hooks."""
    repo = _open_repository()

    try:
        written = repo.install_hooks()
    except (PgBranchError, OSError) as e:
        report_error(e)
        raise typer.Exit(1)

    if not written:
        console.print(
            "[yellow]⚠️  No hooks installed; existing hooks were not written by pgbranch[/yellow]"
        )
        raise typer.Exit(1)

    for path in written:
        console.print(f"[green]✅ Installed {path}[/green]")


@app.command(name="uninstall")
def uninstall():
    """Remove the hooks installed by pgbranch."""
    repo = _open_repository()

    try:
        removed = repo.uninstall_hooks()
    except (PgBranchError, OSError) as e:
        report_error(e)
        raise typer.Exit(1)

    if not removed:
        console.print("[yellow]No pgbranch hooks found[/yellow]")
        return

    for path in removed:
        console.print(f"[green]✅ Removed {path}[/green]")


def git_hook(
    event: VcsEvent = typer.Argument(
        VcsEvent.POST_CHECKOUT, help="Hook that fired (post-checkout or post-merge)"
    ),
    branch: Optional[str] = typer.Option(
        None, "--branch", "-b", help="Branch to handle (default: the checked-out branch)"
    ),
):
    """Entry point for the installed Git hooks."""
    config, config_data = get_config_with_data()

    try:
        if branch is None:
            branch = GitRepository(Path.cwd()).current_branch()
        manager = get_branch_manager(config, config_data)
        result = manager.handle_vcs_event(branch, event)
    except PgBranchError as e:
        report_error(e)
        raise typer.Exit(1)

    if result is not None:
        report_switch(result)
