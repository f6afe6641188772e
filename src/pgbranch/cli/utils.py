"""Utility functions for CLI commands."""

import logging
import os
from pathlib import Path
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table as RichTable

from pgbranch.config import Config, ProjectConfig
from pgbranch.core.driver import PostgresDriver
from pgbranch.core.post_commands import PipelineResult, StepStatus
from pgbranch.core.state import StateStore
from pgbranch.errors import PgBranchError
from pgbranch.managers.branch import BranchManager, BranchResult

console = Console()
err_console = Console(stderr=True)

LOG_ENV_VAR = "PGBRANCH_LOG"


def configure_logging(verbose: bool = False) -> None:
    """Route library logging through rich on stderr.

    The level comes from --verbose or PGBRANCH_LOG (default WARNING).
    """
    level_name = "DEBUG" if verbose else os.environ.get(LOG_ENV_VAR, "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def report_error(error: BaseException) -> None:
    """Print an error followed by its causal chain."""
    console.print(f"[red]❌ {escape(str(error))}[/red]")
    cause = error.__cause__
    while cause is not None:
        console.print(f"[red]   caused by: {escape(str(cause))}[/red]")
        cause = cause.__cause__


def get_config_with_data() -> Tuple[Config, ProjectConfig]:
    """Get config and load data from current directory.

    Returns:
        tuple: (config, config_data)
    """
    config = Config()
    try:
        config_data = config.load()
    except PgBranchError as e:
        report_error(e)
        raise typer.Exit(1)

    return config, config_data


def password_prompt(message: str) -> str:
    return typer.prompt(message, hide_input=True)


def get_driver(config_data: ProjectConfig) -> PostgresDriver:
    return PostgresDriver(config_data.database, password_prompt=password_prompt)


def get_branch_manager(
    config: Optional[Config] = None, config_data: Optional[ProjectConfig] = None
) -> BranchManager:
    """Build a BranchManager for the project in the current directory."""
    if config is None or config_data is None:
        config, config_data = get_config_with_data()

    project_root = Path(config.project_root)
    return BranchManager(
        config_data,
        get_driver(config_data),
        StateStore(project_root),
        working_dir=project_root,
    )


def print_pipeline(pipeline: PipelineResult) -> None:
    """Show the post-command trace."""
    if not pipeline.outcomes:
        return

    table = RichTable(title="Post-commands")
    table.add_column("#", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Detail", style="dim")

    styles = {
        StepStatus.SUCCEEDED: "[green]✓ succeeded[/green]",
        StepStatus.SKIPPED: "[yellow]- skipped[/yellow]",
        StepStatus.FAILED: "[red]✗ failed[/red]",
    }
    for outcome in pipeline.outcomes:
        status = styles[outcome.status]
        if outcome.status is StepStatus.FAILED and outcome.tolerated:
            status = "[yellow]✗ failed (ignored)[/yellow]"
        detail = outcome.detail.splitlines()[0] if outcome.detail else ""
        table.add_row(str(outcome.index), escape(outcome.name), status, escape(detail))

    console.print(table)


def report_evictions(result: BranchResult) -> None:
    for record in result.evicted:
        console.print(f"[yellow]🧹 Evicted old database branch: {record.name}[/yellow]")


def report_pipeline(result: BranchResult, kept: str) -> None:
    """Print the post-command trace and exit non-zero if the pipeline failed."""
    print_pipeline(result.pipeline)

    try:
        result.raise_for_failure()
    except PgBranchError as e:
        report_error(e)
        console.print(
            f"[yellow]💡 The {kept} was kept; fix the failing post-command "
            f"and run 'pgbranch test-post-commands' to retry it.[/yellow]"
        )
        raise typer.Exit(1)


def report_switch(result: BranchResult) -> None:
    """Print the outcome of a switch and exit non-zero if the pipeline failed."""
    if result.created:
        console.print(f"[green]✅ Created database branch: {result.db_name}[/green]")
    report_evictions(result)

    if result.is_template:
        console.print(f"[green]✅ Switched to template database: {result.db_name}[/green]")
    else:
        console.print(
            f"[green]✅ Switched to database branch: {result.branch.name} "
            f"({result.db_name})[/green]"
        )

    report_pipeline(result, kept="database switch")
