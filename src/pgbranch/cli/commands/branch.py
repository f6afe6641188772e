"""Branch management commands for pgbranch CLI."""

from typing import List, Optional

import typer
from rich.prompt import Prompt
from rich.table import Table as RichTable

from pgbranch.cli.utils import (
    console,
    get_branch_manager,
    report_error,
    report_evictions,
    report_pipeline,
    report_switch,
)
from pgbranch.errors import PgBranchError
from pgbranch.models import BranchCandidate


def create(
    name: str = typer.Argument(..., help="Name of the branch to create"),
    switch: bool = typer.Option(
        False, "--switch", help="Switch to the new branch after creation"
    ),
):
    """Create a database branch from the template database."""
    manager = get_branch_manager()

    try:
        # With --switch the post-commands run once, as part of the switch
        result = manager.create(name, run_post_commands=not switch)
        console.print(
            f"[green]✅ Database branch '{result.branch.name}' uses {result.db_name}[/green]"
        )
        report_evictions(result)

        if switch:
            report_switch(manager.switch(name))
        else:
            report_pipeline(result, kept="new database")
    except PgBranchError as e:
        report_error(e)
        raise typer.Exit(1)


def list_branches():
    """List database branches."""
    manager = get_branch_manager()

    try:
        candidates = manager.list_candidates()
        records = {r.name: r for r in manager.list_branches()}
    except PgBranchError as e:
        report_error(e)
        raise typer.Exit(1)

    table = RichTable(title="Database branches")
    table.add_column("Branch", style="cyan")
    table.add_column("Database", style="yellow")
    table.add_column("Current", style="green")
    table.add_column("Created", style="dim")
    table.add_column("Last switched", style="dim")

    for candidate in candidates:
        is_current = "✓" if candidate.is_current else ""
        if candidate.is_template:
            table.add_row(
                f"{manager.config.git.main_branch} (template)",
                candidate.db_name,
                is_current,
                "-",
                "-",
            )
            continue

        record = records[candidate.name]
        last = record.last_switched_at
        table.add_row(
            record.name,
            record.db_name,
            is_current,
            record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            last.strftime("%Y-%m-%d %H:%M:%S") if last else "-",
        )

    console.print(table)


def _pick_branch(candidates: List[BranchCandidate]) -> BranchCandidate:
    """Ask the user to pick a branch from a numbered list."""
    for index, candidate in enumerate(candidates, start=1):
        marker = " [green]★[/green]" if candidate.is_current else ""
        console.print(f"  [cyan]{index}[/cyan]. {candidate.label}{marker}")

    default = next(
        (str(i) for i, c in enumerate(candidates, start=1) if c.is_current), "1"
    )
    choice = Prompt.ask(
        "Select a database branch",
        choices=[str(i) for i in range(1, len(candidates) + 1)],
        default=default,
        console=console,
    )
    return candidates[int(choice) - 1]


def switch(
    name: Optional[str] = typer.Argument(
        None, help="Branch to switch to (omit for an interactive picker)"
    ),
    template: bool = typer.Option(
        False, "--template", "-t", help="Switch to the template database"
    ),
):
    """Switch the active database branch."""
    manager = get_branch_manager()

    try:
        if template:
            target = None
        elif name is not None:
            target = name
        else:
            picked = _pick_branch(manager.list_candidates())
            target = picked.name
        result = manager.switch(target)
    except PgBranchError as e:
        report_error(e)
        raise typer.Exit(1)

    report_switch(result)


def delete(
    name: str = typer.Argument(..., help="Name of the branch to delete"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Force deletion without confirmation"
    ),
):
    """Drop a database branch."""
    manager = get_branch_manager()

    if not force:
        confirm = typer.confirm(f"Are you sure you want to drop the database for '{name}'?")
        if not confirm:
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

    try:
        record = manager.delete(name)
        console.print(f"[green]✅ Deleted database branch '{name}' ({record.db_name})[/green]")
    except PgBranchError as e:
        report_error(e)
        raise typer.Exit(1)


def cleanup(
    max_count: Optional[int] = typer.Option(
        None, "--max-count", "-m", min=0, help="Branches to keep (default: behavior.max_branches)"
    ),
):
    """Forget vanished databases, then drop the oldest beyond the retention limit."""
    manager = get_branch_manager()

    try:
        stale = manager.reconcile()
        evicted = manager.cleanup(max_count)
    except PgBranchError as e:
        report_error(e)
        raise typer.Exit(1)

    for record in stale:
        console.print(
            f"[yellow]🧹 Forgot {record.name}: {record.db_name} no longer exists[/yellow]"
        )

    if not stale and not evicted:
        console.print("[green]✅ Nothing to clean up[/green]")
        return

    for record in evicted:
        console.print(f"[yellow]🧹 Dropped {record.name} ({record.db_name})[/yellow]")
    if evicted:
        console.print(f"[green]✅ Cleaned up {len(evicted)} database branch(es)[/green]")
