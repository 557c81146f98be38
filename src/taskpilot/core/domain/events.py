"""
Protocol Events

Typed schemas for the frames carried by the agent event streams. Each
frame on the wire is an ``event: <name>`` line followed by a
``data: <json>`` line; the event name is the discriminant that selects one
of the models below, and the JSON payload is validated against it before
the event is dispatched.

Two vocabularies exist:
- START_VOCABULARY: start and resume streams (analysis turns)
- EXECUTE_VOCABULARY: the execute-approved stream
"""

from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from taskpilot.core.domain.models import (
    ActionResult,
    ActionStatus,
    ActionType,
    ExecutionStatus,
    ReasoningStep,
    ReasoningStepType,
)


class ProtocolEvent(BaseModel):
    """Base class for all stream events."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    event_name: ClassVar[str] = ""


class ActionResultPayload(BaseModel):
    """Wire shape of an action result. ``success`` may be omitted."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    success: Optional[bool] = None
    output: Optional[str] = None
    error: Optional[str] = None

    def to_result(self, success: Optional[bool] = None) -> ActionResult:
        """Build the domain result, letting an explicit flag fill a missing one."""
        if self.success is not None:
            resolved = self.success
        elif success is not None:
            resolved = success
        else:
            resolved = self.error is None
        return ActionResult(success=resolved, output=self.output, error=self.error)


class StatusEvent(ProtocolEvent):
    """Execution status changed. The start stream also carries the execution id."""

    event_name: ClassVar[str] = "status"

    status: ExecutionStatus
    execution_id: Optional[str] = Field(default=None, alias="executionId")


class ActionEvent(ProtocolEvent):
    """An action was proposed or its status/result changed."""

    event_name: ClassVar[str] = "action"

    id: str
    type: ActionType
    params: dict[str, Any] = Field(default_factory=dict)
    status: ActionStatus
    result: Optional[ActionResultPayload] = None


class TextEvent(ProtocolEvent):
    """Streamed natural-language output of the agent."""

    event_name: ClassVar[str] = "text"

    content: str


class ReasoningStepPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    type: ReasoningStepType
    content: str
    timestamp: Optional[Any] = None

    def to_step(self) -> ReasoningStep:
        timestamp = None if self.timestamp is None else str(self.timestamp)
        return ReasoningStep(
            id=self.id, type=self.type, content=self.content, timestamp=timestamp
        )


class ReasoningEvent(ProtocolEvent):
    """A structured reasoning step."""

    event_name: ClassVar[str] = "reasoning"

    step: ReasoningStepPayload


class QuestionEvent(ProtocolEvent):
    """The agent asks a clarifying question and suspends."""

    event_name: ClassVar[str] = "question"

    id: str
    question: str
    context: Optional[str] = None


class ErrorEvent(ProtocolEvent):
    """The agent or executor failed; terminal for the execution."""

    event_name: ClassVar[str] = "error"

    error: str
    execution_id: Optional[str] = Field(default=None, alias="executionId")


class DoneEvent(ProtocolEvent):
    """Normal end of an analysis turn."""

    event_name: ClassVar[str] = "done"

    execution_id: Optional[str] = Field(default=None, alias="executionId")


class ExecutingEvent(ProtocolEvent):
    """An approved action started running."""

    event_name: ClassVar[str] = "executing"

    action_id: str = Field(alias="actionId")


class ActionCompleteEvent(ProtocolEvent):
    """An action finished running."""

    event_name: ClassVar[str] = "actionComplete"

    action_id: str = Field(alias="actionId")
    success: bool
    result: Optional[ActionResultPayload] = None


class TaskCompletedEvent(ProtocolEvent):
    """The underlying task record changed server-side and must be reloaded."""

    event_name: ClassVar[str] = "taskCompleted"

    task_id: Optional[str] = Field(default=None, alias="taskId")


StartPhaseEvent = Union[
    StatusEvent,
    ActionEvent,
    TextEvent,
    ReasoningEvent,
    QuestionEvent,
    ErrorEvent,
    DoneEvent,
]

ExecutePhaseEvent = Union[
    StatusEvent,
    ExecutingEvent,
    ActionCompleteEvent,
    TaskCompletedEvent,
    ErrorEvent,
]


def _vocabulary(*models: type[ProtocolEvent]) -> dict[str, type[ProtocolEvent]]:
    return {model.event_name: model for model in models}


START_VOCABULARY = _vocabulary(
    StatusEvent,
    ActionEvent,
    TextEvent,
    ReasoningEvent,
    QuestionEvent,
    ErrorEvent,
    DoneEvent,
)

RESUME_VOCABULARY = START_VOCABULARY

EXECUTE_VOCABULARY = _vocabulary(
    StatusEvent,
    ExecutingEvent,
    ActionCompleteEvent,
    TaskCompletedEvent,
    ErrorEvent,
)
