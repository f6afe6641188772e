"""Main CLI entry point for pgbranch."""

from pathlib import Path
from typing import Optional

import typer

from pgbranch.cli.commands import branch, diagnostics, hooks
from pgbranch.cli.utils import configure_logging, console

app = typer.Typer(
    name="pgbranch",
    help="pgbranch - PostgreSQL database branches that follow your Git branches",
    add_completion=False,
    invoke_without_command=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug logging (or set PGBRANCH_LOG)"
    ),
):
    """
    pgbranch - PostgreSQL database branches that follow your Git branches
    """
    configure_logging(verbose)

    if ctx.invoked_subcommand is None:
        # No subcommand was invoked, show help
        print(ctx.get_help())
        raise typer.Exit(0)


# Hook management lives in its own group
app.add_typer(hooks.app, name="hooks", help="Git hook management commands")

# Branch commands are top-level
app.command(name="create")(branch.create)
app.command(name="list")(branch.list_branches)
app.command(name="switch")(branch.switch)
app.command(name="delete")(branch.delete)
app.command(name="cleanup")(branch.cleanup)
app.command(name="git-hook")(hooks.git_hook)

app.command(name="config")(diagnostics.show_config)
app.command(name="check")(diagnostics.check)
app.command(name="templates")(diagnostics.templates)
app.command(name="test-post-commands")(diagnostics.try_post_commands)
app.command(name="test-switch")(diagnostics.try_switch)


@app.command()
def init(
    path: Optional[Path] = typer.Argument(
        None, help="Directory to initialize project in (default: current directory)"
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration file"
    ),
    main_branch: Optional[str] = typer.Option(
        None, "--main-branch", "-m", help="Main Git branch (default: detected)"
    ),
):
    """Initialize pgbranch in a project."""
    from pgbranch.config import Config, DEFAULT_CONFIG_FILENAME

    project_path = path or Path.cwd()
    config = Config(project_path)

    try:
        config_data = config.init_project(force=force, main_branch=main_branch)
    except FileExistsError:
        console.print(
            f"[red]❌ Configuration already exists in {project_path} "
            f"(use --force to overwrite)[/red]"
        )
        raise typer.Exit(1)

    console.print(
        f"[green]✅ Initialized pgbranch in {project_path / DEFAULT_CONFIG_FILENAME}[/green]"
    )
    console.print(
        f"[cyan]   Main branch: {config_data.git.main_branch}, "
        f"template database: {config_data.database.template_database}[/cyan]"
    )
    console.print("[dim]   Run 'pgbranch hooks install' to switch databases on checkout[/dim]")


@app.command()
def version():
    """Show pgbranch version."""
    from pgbranch import __version__

    typer.echo(f"pgbranch version {__version__}")


if __name__ == "__main__":
    app()
