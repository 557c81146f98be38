"""
Core Domain Models

This module defines the data models mirrored by the client for one agent
execution:
- ExecutionStatus: lifecycle of the execution as a whole
- Action: one proposed operation and its lifecycle
- Question: a clarification request that suspends the execution
- ReasoningStep: one entry of the agent's observable reasoning log

The server owns the ground truth; these models are the local mirror that
the ExecutionSession keeps consistent with the event streams.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ExecutionStatus(str, Enum):
    """Status of an agent execution."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    AWAITING_APPROVAL = "awaiting_approval"
    AWAITING_QUESTION = "awaiting_question"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_EXECUTION_STATUSES


TERMINAL_EXECUTION_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


class ActionType(str, Enum):
    """Closed set of operations the agent can propose."""

    READ_FILE = "readFile"
    WRITE_FILE = "writeFile"
    EDIT_FILE = "editFile"
    DELETE_FILE = "deleteFile"
    LIST_DIRECTORY = "listDirectory"
    EXECUTE_COMMAND = "executeCommand"
    COMPLETE_TASK = "completeTask"

    @property
    def is_file_mutating(self) -> bool:
        return self in FILE_MUTATING_ACTION_TYPES


FILE_MUTATING_ACTION_TYPES = frozenset(
    {ActionType.WRITE_FILE, ActionType.EDIT_FILE, ActionType.DELETE_FILE}
)


class ActionStatus(str, Enum):
    """Lifecycle status of a single action."""

    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_ACTION_STATUSES


TERMINAL_ACTION_STATUSES = frozenset(
    {ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.REJECTED}
)

# Forward-only transition table. Nothing runs without approval; actions the
# server ran on its own arrive as new ids already in a terminal status.
ACTION_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PROPOSED: frozenset({ActionStatus.APPROVED, ActionStatus.REJECTED}),
    ActionStatus.APPROVED: frozenset({ActionStatus.EXECUTING}),
    ActionStatus.EXECUTING: frozenset({ActionStatus.COMPLETED, ActionStatus.FAILED}),
    ActionStatus.COMPLETED: frozenset(),
    ActionStatus.FAILED: frozenset(),
    ActionStatus.REJECTED: frozenset(),
}


class ReasoningStepType(str, Enum):
    """Kind of entry in the agent's reasoning log."""

    THINKING = "thinking"
    PLANNING = "planning"
    DECISION = "decision"
    OBSERVATION = "observation"
    REFLECTION = "reflection"


@dataclass
class ActionResult:
    """
    Outcome of an executed action.

    Attributes:
        success: Whether the operation succeeded
        output: Output text (file content, command stdout, listing)
        error: Error text for failed operations
    """

    success: bool
    output: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.output is not None:
            data["output"] = self.output
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class Action:
    """
    One operation proposed by the agent.

    The type and params are fixed once the action is first seen; only the
    status and result change afterwards, and only forward along
    ACTION_TRANSITIONS.

    Attributes:
        id: Stable server-assigned identifier
        type: Operation kind
        params: Type-specific payload, e.g. {"path": ..., "content": ...}
        status: Current lifecycle status
        result: Outcome once the action ran (if any)
    """

    id: str
    type: ActionType
    params: dict[str, Any] = field(default_factory=dict)
    status: ActionStatus = ActionStatus.PROPOSED
    result: Optional[ActionResult] = None

    @property
    def is_file_mutating(self) -> bool:
        return self.type.is_file_mutating

    @property
    def path(self) -> Optional[str]:
        return self.params.get("path")

    def describe(self) -> str:
        """Short human-readable label for logs and listings."""
        if self.type == ActionType.WRITE_FILE:
            return f"write {self.path}"
        if self.type == ActionType.EDIT_FILE:
            return f"edit {self.path}"
        if self.type == ActionType.DELETE_FILE:
            return f"delete {self.path}"
        if self.type == ActionType.READ_FILE:
            return f"read {self.path}"
        if self.type == ActionType.LIST_DIRECTORY:
            return f"list {self.path}"
        if self.type == ActionType.EXECUTE_COMMAND:
            return f"run `{self.params.get('command', '')}`"
        return "complete task"


@dataclass
class Question:
    """A pending clarification request from the agent."""

    id: str
    question: str
    context: Optional[str] = None


@dataclass
class ReasoningStep:
    """One entry of the append-only reasoning log."""

    id: str
    type: ReasoningStepType
    content: str
    timestamp: Optional[str] = None
