"""Settings command - Per-project tool approval settings."""

import asyncio

import typer

from taskpilot.api.cli.output_formatter import TaskpilotConsole
from taskpilot.core.domain.approval import ToolApprovalSettings
from taskpilot.core.domain.errors import TaskpilotError
from taskpilot.core.domain.models import ActionType
from taskpilot.infrastructure.http.agent_client import AgentApiClient

app = typer.Typer(help="Tool approval settings")

TRUE_VALUES = {"true", "yes", "on", "1"}
FALSE_VALUES = {"false", "no", "off", "0"}


def _parse_flag(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise typer.BadParameter(f"Expected true/false, got '{value}'")


def _parse_tool(value: str) -> ActionType:
    try:
        return ActionType(value)
    except ValueError:
        choices = ", ".join(t.value for t in ActionType)
        raise typer.BadParameter(f"Unknown tool '{value}'. Choose from: {choices}")


@app.command("show")
def show_settings(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project ID"),
):
    """Show which tools require approval for a project."""
    tp_console = TaskpilotConsole(debug=(ctx.obj or {}).get("debug", False))

    async def fetch():
        async with AgentApiClient.from_settings(ctx.obj["settings"]) as client:
            return await client.get_tool_approval_settings(project_id)

    try:
        settings = asyncio.run(fetch())
    except TaskpilotError as e:
        tp_console.print_error(str(e))
        raise typer.Exit(1)

    tp_console.print_settings(settings)


@app.command("set")
def set_setting(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project ID"),
    tool: str = typer.Argument(..., help="Tool name, e.g. writeFile"),
    required: str = typer.Argument(..., help="true/false"),
):
    """Change whether one tool requires approval."""
    action_type = _parse_tool(tool)
    flag = _parse_flag(required)
    tp_console = TaskpilotConsole(debug=(ctx.obj or {}).get("debug", False))

    async def update():
        async with AgentApiClient.from_settings(ctx.obj["settings"]) as client:
            current = await client.get_tool_approval_settings(project_id)
            updated = current.with_flag(action_type, flag)
            await client.update_tool_approval_settings(project_id, updated)
            return updated

    try:
        settings = asyncio.run(update())
    except TaskpilotError as e:
        tp_console.print_error(str(e))
        raise typer.Exit(1)

    tp_console.print_success(
        f"{action_type.value} {'requires' if flag else 'does not require'} approval"
    )
    tp_console.print_settings(settings)


@app.command("reset")
def reset_settings(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project ID"),
):
    """Restore the default approval settings."""
    tp_console = TaskpilotConsole(debug=(ctx.obj or {}).get("debug", False))
    defaults = ToolApprovalSettings.defaults()

    async def update():
        async with AgentApiClient.from_settings(ctx.obj["settings"]) as client:
            await client.update_tool_approval_settings(project_id, defaults)

    try:
        asyncio.run(update())
    except TaskpilotError as e:
        tp_console.print_error(str(e))
        raise typer.Exit(1)

    tp_console.print_success("Tool approval settings reset to defaults")
    tp_console.print_settings(defaults)
