"""Taskpilot CLI entry point."""

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console

from taskpilot.api.cli.commands import executions, run, settings
from taskpilot.config.settings import load_settings
from taskpilot.infrastructure.logging import setup_logging

app = typer.Typer(
    name="taskpilot",
    help="Taskpilot - Supervise AI coding agent executions",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

# Register command groups
app.add_typer(run.app, name="run", help="Run the agent against a task")
app.add_typer(executions.app, name="executions", help="Execution management")
app.add_typer(settings.app, name="settings", help="Tool approval settings")


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Agent API base URL"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config file"),
):
    """Taskpilot CLI."""
    load_dotenv()
    client_settings = load_settings(config)
    if base_url:
        client_settings.base_url = base_url
    debug = debug or client_settings.debug
    setup_logging(debug=debug, level=client_settings.log_level)

    # Store global options in context for subcommands
    ctx.obj = {"settings": client_settings, "debug": debug}


@app.command()
def version():
    """Show Taskpilot version."""
    from taskpilot import __version__

    console.print(f"[bold blue]Taskpilot[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
