"""
Console output for the Taskpilot CLI.
"""

from typing import Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table

from taskpilot.application.observability import SessionUpdate
from taskpilot.core.domain.approval import ApprovalGate, ToolApprovalSettings, risk_level
from taskpilot.core.domain.models import Action, ActionType, ExecutionStatus, Question
from taskpilot.infrastructure.http.agent_client import ExecutionStats, ExecutionSummary

STATUS_STYLES = {
    ExecutionStatus.PENDING: "white",
    ExecutionStatus.ANALYZING: "blue",
    ExecutionStatus.AWAITING_APPROVAL: "yellow",
    ExecutionStatus.AWAITING_QUESTION: "magenta",
    ExecutionStatus.EXECUTING: "purple",
    ExecutionStatus.COMPLETED: "green",
    ExecutionStatus.FAILED: "red",
    ExecutionStatus.CANCELLED: "bright_black",
}

RISK_STYLES = {"LOW": "green", "MEDIUM": "yellow", "HIGH": "red"}

MESSAGE_STYLES = {
    "system": "bold cyan",
    "info": "cyan",
    "success": "green",
    "warning": "yellow",
    "error": "bold red",
}


class TaskpilotConsole:
    """Rich console wrapper used by all commands."""

    def __init__(self, debug: bool = False, console: Optional[Console] = None):
        self.debug = debug
        self.console = console or Console()

    def print_banner(self) -> None:
        self.console.print(
            Panel.fit("[bold blue]Taskpilot[/bold blue] - supervised agent executions", border_style="blue")
        )

    def print_divider(self) -> None:
        self.console.print(Rule(style="bright_black"))

    def print_system_message(self, message: str, kind: str = "system") -> None:
        self.console.print(f"[{MESSAGE_STYLES.get(kind, 'white')}]{message}[/]")

    def print_success(self, message: str) -> None:
        self.print_system_message(message, "success")

    def print_warning(self, message: str) -> None:
        self.print_system_message(message, "warning")

    def print_error(self, message: str) -> None:
        self.print_system_message(message, "error")

    def print_debug(self, message: str) -> None:
        if self.debug:
            self.console.print(f"[bright_black]{message}[/bright_black]")

    def print_agent_message(self, message: str) -> None:
        if message.strip():
            self.console.print(Panel(message, title="Agent", border_style="cyan"))

    def format_status(self, status: ExecutionStatus) -> str:
        return f"[{STATUS_STYLES[status]}]{status.value.replace('_', ' ')}[/]"

    def render_update(self, update: SessionUpdate) -> None:
        """Session listener: print updates as they arrive."""
        d = update.details
        if update.event_type == "status":
            self.console.print(f"[bold]Status:[/bold] {self.format_status(ExecutionStatus(d['status']))}")
        elif update.event_type == "action":
            self.console.print(f"  [cyan]•[/cyan] {update.message}")
        elif update.event_type == "text":
            if self.debug:
                self.console.print(update.message, end="", style="bright_black")
        elif update.event_type == "reasoning":
            self.print_debug(f"[{d['step_type']}] {d['content']}")
        elif update.event_type == "question":
            self.console.print(Panel(d["question"], title="Question", border_style="magenta"))
        elif update.event_type == "executing":
            self.console.print(f"  [purple]>[/purple] {update.message}")
        elif update.event_type == "action_complete":
            style = "green" if d["success"] else "red"
            suffix = f": {d['error']}" if d.get("error") else ""
            self.console.print(f"  [{style}]{update.message}{suffix}[/]")
        elif update.event_type == "error":
            self.print_error(f"Error: {update.message}")
        elif update.event_type == "task_completed":
            self.print_success("Task marked as completed")
        elif update.event_type == "command":
            self.print_debug(update.message)

    def print_actions(self, actions: Iterable[Action], gate: Optional[ApprovalGate] = None, title: str = "Actions") -> None:
        table = Table(title=title)
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Type", style="white")
        table.add_column("Target", style="white")
        table.add_column("Status", style="white")
        table.add_column("Risk", style="white")
        if gate is not None:
            table.add_column("Sign-off", style="white")

        for action in actions:
            risk = risk_level(action.type).value
            target = action.params.get("path") or action.params.get("command") or action.params.get("summary") or ""
            row = [
                action.id,
                action.type.value,
                str(target),
                action.status.value,
                f"[{RISK_STYLES[risk]}]{risk}[/]",
            ]
            if gate is not None:
                row.append("required" if gate.requires_approval(action.type) else "auto")
            table.add_row(*row)

        self.console.print(table)

    def print_action_detail(self, action: Action) -> None:
        params = action.params
        if action.type == ActionType.WRITE_FILE:
            body = params.get("content", "")
        elif action.type == ActionType.EDIT_FILE:
            body = f"- {params.get('search', '')}\n+ {params.get('replace', '')}"
        elif action.type == ActionType.EXECUTE_COMMAND:
            body = f"$ {params.get('command', '')}\n{params.get('description', '')}"
        elif action.type == ActionType.COMPLETE_TASK:
            body = params.get("summary", "")
        else:
            body = str(params.get("path", ""))
        self.console.print(Panel(body or "(empty)", title=action.describe(), border_style="yellow"))

    def print_question(self, question: Question) -> None:
        body = question.question
        if question.context:
            body += f"\n\n[bright_black]{question.context}[/bright_black]"
        self.console.print(Panel(body, title=f"Question {question.id}", border_style="magenta"))

    def print_settings(self, settings: ToolApprovalSettings) -> None:
        table = Table(title="Tool Approval Settings")
        table.add_column("Tool", style="cyan")
        table.add_column("Requires approval", style="white")
        table.add_column("Risk", style="white")
        for action_type, required in settings.resolved().items():
            risk = risk_level(action_type).value
            table.add_row(
                action_type.value,
                "[yellow]yes[/yellow]" if required else "[green]no[/green]",
                f"[{RISK_STYLES[risk]}]{risk}[/]",
            )
        self.console.print(table)

    def print_executions(self, executions: Iterable[ExecutionSummary]) -> None:
        table = Table(title="Executions")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Task", style="white")
        table.add_column("Status", style="white")
        table.add_column("Started", style="white")
        table.add_column("Actions", style="white", justify="right")
        table.add_column("Error", style="red")
        for execution in executions:
            actions = str(execution.actions_count)
            if execution.failed_actions_count:
                actions += f" ([red]{execution.failed_actions_count} failed[/red])"
            table.add_row(
                execution.execution_id,
                execution.task_title or execution.task_id or "",
                self.format_status(execution.status),
                execution.created_at or "",
                actions,
                execution.error_message or "",
            )
        self.console.print(table)

    def print_execution_stats(self, stats: ExecutionStats) -> None:
        lines = [
            f"[bold]Total:[/bold] {stats.total_executions}",
            f"[green]Completed:[/green] {stats.completed_executions}",
            f"[red]Failed:[/red] {stats.failed_executions}",
        ]
        if stats.avg_duration:
            lines.append(f"[bold]Average duration:[/bold] {format_duration(stats.avg_duration)}")
        self.console.print(Panel("\n".join(lines), title="Execution Stats", border_style="blue"))


def format_duration(ms: float) -> str:
    if ms < 1000:
        return f"{ms:.0f}ms"
    if ms < 60000:
        return f"{ms / 1000:.1f}s"
    return f"{ms / 60000:.1f}m"
