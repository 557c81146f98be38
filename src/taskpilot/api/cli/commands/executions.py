"""Executions command - Inspect and control existing executions."""

import asyncio
from typing import Optional

import typer

from taskpilot.api.cli.output_formatter import TaskpilotConsole
from taskpilot.application.session import ExecutionSession
from taskpilot.core.domain.errors import TaskpilotError
from taskpilot.core.domain.models import ExecutionStatus
from taskpilot.infrastructure.http.agent_client import AgentApiClient

app = typer.Typer(help="Execution management")


def _console(ctx: typer.Context) -> TaskpilotConsole:
    return TaskpilotConsole(debug=(ctx.obj or {}).get("debug", False))


async def _attach(settings, execution_id: str) -> ExecutionSession:
    async with AgentApiClient.from_settings(settings) as client:
        return await ExecutionSession.attach_to(client, execution_id)


@app.command("show")
def show_execution(
    ctx: typer.Context,
    execution_id: str = typer.Argument(..., help="Execution ID"),
):
    """Show status, actions and pending question of an execution."""
    tp_console = _console(ctx)
    try:
        session = asyncio.run(_attach(ctx.obj["settings"], execution_id))
    except TaskpilotError as e:
        tp_console.print_error(str(e))
        raise typer.Exit(1)

    tp_console.console.print(f"\n[bold]Execution:[/bold] {execution_id}")
    tp_console.console.print(f"[bold]Status:[/bold] {tp_console.format_status(session.status)}")
    if session.error:
        tp_console.print_error(f"Error: {session.error}")
    if len(session.actions):
        tp_console.print_actions(session.actions.all(), session.gate)
    else:
        tp_console.print_system_message("No actions", "info")
    if session.pending_question is not None:
        tp_console.print_question(session.pending_question)


@app.command("questions")
def list_questions(
    ctx: typer.Context,
    execution_id: str = typer.Argument(..., help="Execution ID"),
):
    """List the pending questions of an execution."""
    tp_console = _console(ctx)

    async def fetch():
        async with AgentApiClient.from_settings(ctx.obj["settings"]) as client:
            return await client.get_pending_questions(execution_id)

    try:
        questions = asyncio.run(fetch())
    except TaskpilotError as e:
        tp_console.print_error(str(e))
        raise typer.Exit(1)

    if not questions:
        tp_console.print_system_message("No pending questions", "info")
    for question in questions:
        tp_console.print_question(question)


@app.command("cancel")
def cancel_execution(
    ctx: typer.Context,
    execution_id: str = typer.Argument(..., help="Execution ID"),
):
    """Cancel a running execution."""
    tp_console = _console(ctx)

    async def cancel():
        async with AgentApiClient.from_settings(ctx.obj["settings"]) as client:
            session = await ExecutionSession.attach_to(client, execution_id)
            await session.cancel()

    try:
        asyncio.run(cancel())
    except TaskpilotError as e:
        tp_console.print_error(f"Failed to cancel: {e}")
        raise typer.Exit(1)

    tp_console.print_success(f"Execution {execution_id} cancelled")


@app.command("list")
def list_executions(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project ID"),
    status: Optional[ExecutionStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum number of executions"),
    offset: int = typer.Option(0, "--offset", help="Executions to skip"),
):
    """List the executions of a project."""
    tp_console = _console(ctx)

    async def fetch():
        async with AgentApiClient.from_settings(ctx.obj["settings"]) as client:
            return await client.list_executions(project_id, status=status, limit=limit, offset=offset)

    try:
        executions = asyncio.run(fetch())
    except TaskpilotError as e:
        tp_console.print_error(str(e))
        raise typer.Exit(1)

    if not executions:
        tp_console.print_system_message("No executions found", "info")
        return
    tp_console.print_executions(executions)


@app.command("stats")
def execution_stats(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project ID"),
):
    """Show execution statistics of a project."""
    tp_console = _console(ctx)

    async def fetch():
        async with AgentApiClient.from_settings(ctx.obj["settings"]) as client:
            return await client.get_execution_stats(project_id)

    try:
        stats = asyncio.run(fetch())
    except TaskpilotError as e:
        tp_console.print_error(str(e))
        raise typer.Exit(1)

    tp_console.print_execution_stats(stats)
