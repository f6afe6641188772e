"""Read-only inspection and dry-run commands for pgbranch CLI."""

from typing import Callable, List, Tuple

import typer
import yaml
from rich.markup import escape
from rich.table import Table as RichTable

from pgbranch.cli.utils import (
    console,
    get_branch_manager,
    get_config_with_data,
    get_driver,
    print_pipeline,
    report_error,
)
from pgbranch.config import Config
from pgbranch.core.driver import PostgresDriver
from pgbranch.core.git import GitRepository
from pgbranch.core.state import StateStore
from pgbranch.errors import PgBranchError
from pgbranch.managers.branch import BranchManager
from pgbranch.utils.template import TEMPLATE_VARIABLES

EXAMPLE_BRANCH = "feature/example-branch"


def show_config():
    """Show the effective configuration (password masked)."""
    config, config_data = get_config_with_data()

    console.print(f"[dim]# {config.config_path}[/dim]")
    document = config_data.to_document(mask_password=True)
    console.print(
        yaml.safe_dump(document, sort_keys=False, default_flow_style=False),
        markup=False,
    )


def check():
    """Check configuration, connectivity, privileges and Git hooks."""
    results: List[Tuple[str, bool, str, bool]] = []

    def record(name: str, ok: bool, detail: str, hard: bool = True) -> None:
        results.append((name, ok, detail, hard))

    config = Config()
    try:
        config_data = config.load()
        record("Configuration", True, str(config.config_path))
    except PgBranchError as e:
        record("Configuration", False, str(e))
        _print_checks(results)
        raise typer.Exit(1)

    pattern = config_data.git.auto_create_branch_filter
    record("Branch filter", True, pattern or "(none, all branches accepted)")

    driver = get_driver(config_data)
    db = config_data.database
    try:
        driver.check_connection()
        record("Connection", True, f"{db.user}@{db.host}:{db.port}")
    except PgBranchError as e:
        record("Connection", False, str(e))
    else:
        try:
            template_ok = driver.exists(db.template_database)
            record(
                "Template database",
                template_ok,
                db.template_database if template_ok else f"{db.template_database} not found",
            )
            can_create = driver.can_create_databases()
            record(
                "CREATEDB privilege",
                can_create,
                "granted" if can_create else f"role '{db.user}' cannot create databases",
            )
        except PgBranchError as e:
            record("Template database", False, str(e))
        else:
            _check_branch_databases(driver, config, record)

    try:
        repo = GitRepository(config.project_root)
        record("Git repository", True, str(repo.root), hard=False)
        installed = repo.hooks_installed()
        record(
            "Git hooks",
            installed,
            "installed" if installed else "not installed (run 'pgbranch hooks install')",
            hard=False,
        )
    except PgBranchError as e:
        record("Git repository", False, str(e), hard=False)

    _print_checks(results)

    if any(not ok and hard for _, ok, _, hard in results):
        raise typer.Exit(1)


def _check_branch_databases(
    driver: PostgresDriver, config: Config, record: Callable[..., None]
) -> None:
    """Compare the recorded branch databases with what the server has."""
    try:
        branches = StateStore(config.project_root).load().ordered()
        on_server = set(driver.list_databases())
    except PgBranchError as e:
        record("Branch databases", False, str(e), hard=False)
        return

    missing = [b.db_name for b in branches if b.db_name not in on_server]
    if missing:
        record(
            "Branch databases",
            False,
            f"missing: {', '.join(missing)} (run 'pgbranch cleanup' to forget them)",
            hard=False,
        )
    else:
        record("Branch databases", True, f"{len(branches)} tracked, all present", hard=False)


def _print_checks(results: List[Tuple[str, bool, str, bool]]) -> None:
    table = RichTable(title="pgbranch check")
    table.add_column("Check", style="cyan")
    table.add_column("Status")
    table.add_column("Detail", style="dim")

    for name, ok, detail, hard in results:
        if ok:
            status = "[green]✓[/green]"
        elif hard:
            status = "[red]✗[/red]"
        else:
            status = "[yellow]![/yellow]"
        table.add_row(name, status, detail)

    console.print(table)


def templates(
    branch: str = typer.Argument(
        EXAMPLE_BRANCH, help="Branch to bind the variables for"
    ),
):
    """Show the template variables post-commands can use."""
    manager = get_branch_manager()
    variables = manager.template_variables(branch)

    table = RichTable(title=f"Template variables for '{branch}'")
    table.add_column("Variable", style="cyan")
    table.add_column("Value", style="green")

    for name in TEMPLATE_VARIABLES:
        value = variables.get(name)
        if name == "db_password" and value is not None:
            value = "********"
        table.add_row(
            f"{{{name}}}", escape(value) if value is not None else "[dim](unset)[/dim]"
        )

    console.print(table)


def _dry_run_manager() -> BranchManager:
    config, config_data = get_config_with_data()
    manager = get_branch_manager(config, config_data)
    if not config_data.post_commands:
        console.print("[yellow]No post-commands configured[/yellow]")
    return manager


def try_post_commands(
    branch: str = typer.Argument(..., help="Branch to run the post-commands for"),
):
    """Run the post-commands for a branch without switching to it."""
    manager = _dry_run_manager()

    try:
        pipeline = manager.dry_run_post_commands(branch)
    except PgBranchError as e:
        report_error(e)
        raise typer.Exit(1)

    print_pipeline(pipeline)
    if not pipeline.ok:
        report_error(pipeline.fatal_outcome.error)
        raise typer.Exit(1)
    console.print("[green]✅ Post-commands completed[/green]")


def try_switch(
    branch: str = typer.Argument(..., help="Branch to simulate switching to"),
):
    """Show what switching to a branch would do, then run its post-commands."""
    manager = _dry_run_manager()

    try:
        result = manager.dry_run_switch(branch)
    except PgBranchError as e:
        report_error(e)
        raise typer.Exit(1)

    if result.is_template:
        console.print(f"Would switch to template database: [cyan]{result.db_name}[/cyan]")
    elif result.created:
        console.print(
            f"Would create [cyan]{result.db_name}[/cyan] from "
            f"[cyan]{manager.template_database}[/cyan] and switch to it"
        )
    else:
        console.print(f"Would switch to existing database: [cyan]{result.db_name}[/cyan]")

    print_pipeline(result.pipeline)
    if not result.pipeline.ok:
        report_error(result.pipeline.fatal_outcome.error)
        raise typer.Exit(1)
