"""Run command - Supervise an agent execution for a task."""

import asyncio

import typer

from taskpilot.api.cli.output_formatter import TaskpilotConsole
from taskpilot.application.session import ExecutionSession
from taskpilot.core.domain.errors import TaskpilotError
from taskpilot.core.domain.models import ExecutionStatus
from taskpilot.infrastructure.http.agent_client import AgentApiClient

app = typer.Typer(help="Run the agent against a task")


@app.command("task")
def run_task(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project ID"),
    task_id: str = typer.Argument(..., help="Task ID"),
    auto_approve_safe: bool = typer.Option(
        False,
        "--auto-approve-safe",
        help="Approve proposals whose tool is configured not to require approval",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Approve every proposed action without asking"),
):
    """Start the agent on a task and walk it through approvals and questions.

    Examples:
        # Review every proposal interactively
        taskpilot run task proj-1 task-42

        # Let read-only tools through, review the rest
        taskpilot run task proj-1 task-42 --auto-approve-safe
    """
    obj = ctx.obj or {}
    settings = obj["settings"]
    tp_console = TaskpilotConsole(debug=obj.get("debug", False))

    tp_console.print_banner()
    tp_console.print_system_message(f"Project: {project_id}  Task: {task_id}", "info")
    tp_console.print_divider()

    session = asyncio.run(
        _supervise(settings, project_id, task_id, tp_console, auto_approve_safe, yes)
    )

    tp_console.print_divider()
    tp_console.print_agent_message(session.transcript)
    if session.status == ExecutionStatus.COMPLETED:
        tp_console.print_success("Execution completed!")
    elif session.status == ExecutionStatus.FAILED:
        tp_console.print_error(f"Execution failed: {session.error}")
        raise typer.Exit(1)
    else:
        tp_console.print_system_message(
            f"Execution {session.execution_id} is {session.status.value}", "info"
        )


async def _supervise(
    settings,
    project_id: str,
    task_id: str,
    tp_console: TaskpilotConsole,
    auto_approve_safe: bool,
    yes: bool,
) -> ExecutionSession:
    async with AgentApiClient.from_settings(settings) as client:
        session = ExecutionSession(
            client,
            project_id=project_id,
            task_id=task_id,
            listeners=[tp_console.render_update],
            max_malformed_frames=settings.max_malformed_frames,
        )
        await session.start()

        try:
            while not session.is_terminal:
                question = session.pending_question
                if question is not None:
                    answer = typer.prompt("Your answer")
                    await session.questions.answer_and_resume(question.id, answer)
                    continue

                if session.status != ExecutionStatus.AWAITING_APPROVAL:
                    break

                await _review(session, tp_console, auto_approve_safe, yes)
                if not session.can_execute_approved:
                    tp_console.print_warning("No approved actions to execute")
                    break
                await session.execute_approved()
        except TaskpilotError as e:
            tp_console.print_error(str(e))

        return session


async def _review(
    session: ExecutionSession,
    tp_console: TaskpilotConsole,
    auto_approve_safe: bool,
    yes: bool,
) -> None:
    if auto_approve_safe:
        approved = await session.approve_auto_eligible()
        if approved:
            tp_console.print_system_message(f"Auto-approved {len(approved)} action(s)", "info")

    proposed = session.proposed_actions
    if not proposed:
        return

    tp_console.print_actions(proposed, session.gate, title="Proposed actions")
    if yes or typer.confirm("Approve all proposed actions?", default=False):
        await session.approve_all()
        return

    approve_ids: list[str] = []
    reject_ids: list[str] = []
    for action in proposed:
        tp_console.print_action_detail(action)
        if typer.confirm(f"Approve {action.describe()}?", default=False):
            approve_ids.append(action.id)
        else:
            reject_ids.append(action.id)
    if approve_ids:
        await session.approve(approve_ids)
    if reject_ids:
        await session.reject(reject_ids)
