"""
Application Layer - Execution Session Controller

The ExecutionSession is the client-side state machine of one agent
execution. It consumes decoded protocol events, keeps the Action Registry
and the pending Question consistent with them, and issues the commands
that move an execution forward:

- start: open the start stream and mirror the analysis turn
- approve / reject / approve_all: two-phase commit of action decisions
- execute_approved: open the execute stream for approved actions
- cancel: optimistic cancellation with compensation on failure
- attach: hydrate from an existing execution's server record
- questions.answer / questions.resume: see QuestionCoordinator

Status lifecycle::

    pending -> analyzing -> {awaiting_approval, awaiting_question, executing}
            -> {completed, failed, cancelled}

Exactly one event stream may be consumed per session at a time. Events
are applied synchronously in arrival order. Transport and protocol
failures of a stream end up in the session state (``failed`` plus the
error message); nothing is retried automatically.
"""

from contextlib import aclosing, contextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Iterable, Mapping, Optional

import structlog

from taskpilot.application.observability import (
    SessionListener,
    SessionUpdate,
    UpdateEmitter,
)
from taskpilot.application.questions import QuestionCoordinator
from taskpilot.core.domain.action_registry import ActionRegistry
from taskpilot.core.domain.approval import ApprovalGate, ToolApprovalSettings
from taskpilot.core.domain.errors import (
    ProtocolError,
    SessionStateError,
    StreamBusyError,
    TaskpilotError,
    TransportError,
)
from taskpilot.core.domain.events import (
    EXECUTE_VOCABULARY,
    RESUME_VOCABULARY,
    START_VOCABULARY,
    ActionCompleteEvent,
    ActionEvent,
    DoneEvent,
    ErrorEvent,
    ExecutingEvent,
    ProtocolEvent,
    QuestionEvent,
    ReasoningEvent,
    StatusEvent,
    TaskCompletedEvent,
    TextEvent,
)
from taskpilot.core.domain.models import (
    Action,
    ActionResult,
    ActionStatus,
    ExecutionStatus,
    Question,
    ReasoningStep,
)
from taskpilot.infrastructure.streaming.decoder import FrameDecoder

logger = structlog.get_logger()


class ExecutionSession:
    """Client-side controller of one agent execution.

    The session exclusively owns its ActionRegistry. Observers subscribe
    through listeners and never influence the state machine.

    Example:
        >>> session = ExecutionSession(client, project_id="p1", task_id="t1")
        >>> await session.start()
        >>> if session.status == ExecutionStatus.AWAITING_APPROVAL:
        ...     await session.approve_all()
        ...     await session.execute_approved()
    """

    def __init__(
        self,
        client,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        approval_settings: Optional[ToolApprovalSettings] = None,
        listeners: Optional[list[SessionListener]] = None,
        on_task_completed: Optional[Callable[[SessionUpdate], None]] = None,
        max_malformed_frames: Optional[int] = None,
    ):
        """
        Args:
            client: AgentApiClient (or any object with the same interface)
            project_id: Project owning the task (needed for start and settings)
            task_id: Task to run the agent against (needed for start)
            execution_id: Existing execution to attach to
            approval_settings: Tool approval settings; fetched on start if omitted
            listeners: Callables receiving every SessionUpdate
            on_task_completed: Called when the executor reports the task record changed
            max_malformed_frames: Per-stream malformed frame limit (None = unlimited)
        """
        self.client = client
        self.project_id = project_id
        self.task_id = task_id
        self.max_malformed_frames = max_malformed_frames
        self.gate = ApprovalGate(approval_settings)
        self._settings_provided = approval_settings is not None
        self.updates = UpdateEmitter(listeners)
        if on_task_completed is not None:
            self.updates.add(_only("task_completed", on_task_completed))
        self.questions = QuestionCoordinator(self)
        self._active_stream: Optional[str] = None
        self._handlers: dict[type, Callable] = {
            StatusEvent: self._on_status,
            ActionEvent: self._on_action,
            TextEvent: self._on_text,
            ReasoningEvent: self._on_reasoning,
            QuestionEvent: self._on_question,
            ErrorEvent: self._on_error,
            DoneEvent: self._on_done,
            ExecutingEvent: self._on_executing,
            ActionCompleteEvent: self._on_action_complete,
            TaskCompletedEvent: self._on_task_completed,
        }
        self._reset(execution_id)

    def _reset(self, execution_id: Optional[str] = None) -> None:
        self.execution_id = execution_id
        self.status = ExecutionStatus.PENDING
        self.error: Optional[str] = None
        self.actions = ActionRegistry(execution_id)
        self.pending_question: Optional[Question] = None
        self.reasoning: list[ReasoningStep] = []
        self._transcript: list[str] = []
        self.last_stream_done = False
        self._stream_finished = False
        self.logger = logger.bind(
            component="execution_session",
            project_id=self.project_id,
            task_id=self.task_id,
            execution_id=execution_id,
        )

    @classmethod
    async def attach_to(cls, client, execution_id: str, **kwargs) -> "ExecutionSession":
        """Create a session for an existing execution and hydrate it."""
        session = cls(client, execution_id=execution_id, **kwargs)
        await session.attach()
        return session

    # Observable state

    @property
    def transcript(self) -> str:
        return "".join(self._transcript)

    @property
    def is_streaming(self) -> bool:
        return self._active_stream is not None

    @property
    def active_stream(self) -> Optional[str]:
        return self._active_stream

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def proposed_actions(self) -> list[Action]:
        return self.actions.by_status(ActionStatus.PROPOSED)

    @property
    def approved_actions(self) -> list[Action]:
        return self.actions.by_status(ActionStatus.APPROVED)

    def actions_requiring_approval(self) -> list[Action]:
        """Proposed actions whose tool needs human sign-off."""
        return self.gate.needs_sign_off(self.proposed_actions)

    def auto_approvable_actions(self) -> list[Action]:
        """Proposed actions whose tool is configured to run without sign-off."""
        return self.gate.auto_eligible(self.proposed_actions)

    @property
    def can_approve(self) -> bool:
        return (
            self.status == ExecutionStatus.AWAITING_APPROVAL
            and not self.is_streaming
            and bool(self.proposed_actions)
        )

    @property
    def can_execute_approved(self) -> bool:
        return (
            self.status == ExecutionStatus.AWAITING_APPROVAL
            and not self.is_streaming
            and bool(self.approved_actions)
        )

    def add_listener(self, listener: SessionListener) -> None:
        self.updates.add(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        self.updates.remove(listener)

    # Commands

    async def start(self) -> None:
        """Start a new execution for the task and consume its start stream.

        Local state is reset first. Transport failures end up as a
        ``failed`` status with the error message.
        """
        if self.project_id is None or self.task_id is None:
            raise SessionStateError("project_id and task_id are required to start an execution")

        with self._claim_stream("start"):
            self._reset()
            self._command("start", "Starting agent execution...")
            if not await self._load_approval_settings():
                return
            await self._consume(
                "start",
                self.client.start_execution(self.project_id, self.task_id),
                START_VOCABULARY,
            )

    async def execute_approved(self) -> None:
        """Run all approved actions and consume the execute stream."""
        with self._claim_stream("execute"):
            execution_id = self.require_execution("execute approved actions")
            if self.status != ExecutionStatus.AWAITING_APPROVAL:
                raise SessionStateError(
                    f"Execution is not awaiting approval (status: {self.status.value})"
                )
            approved = self.approved_actions
            if not approved:
                raise SessionStateError("No approved actions to execute")

            self._command("execute", f"Executing {len(approved)} approved action(s)")
            await self._consume(
                "execute", self.client.execute_approved(execution_id), EXECUTE_VOCABULARY
            )

    async def approve(self, action_ids: Iterable[str]) -> list[str]:
        """Approve proposed actions. Returns the ids that were approved."""
        return await self._decide(action_ids, ActionStatus.APPROVED)

    async def reject(self, action_ids: Iterable[str]) -> list[str]:
        """Reject proposed actions. Returns the ids that were rejected."""
        return await self._decide(action_ids, ActionStatus.REJECTED)

    async def approve_all(self) -> list[str]:
        return await self.approve(self.actions.ids_with_status(ActionStatus.PROPOSED))

    async def approve_auto_eligible(self) -> list[str]:
        """Approve the proposed actions whose tool does not require sign-off."""
        return await self.approve([a.id for a in self.auto_approvable_actions()])

    async def cancel(self) -> None:
        """Cancel the execution.

        The local status becomes ``cancelled`` immediately; if the server
        call fails the previous status is restored and the error re-raised.
        An open stream is not interrupted; it ends on its own.
        """
        execution_id = self.require_execution("cancel")
        if self.status.is_terminal:
            raise SessionStateError(f"Cannot cancel {self.status.value} execution")

        previous = self.status
        self._set_status(ExecutionStatus.CANCELLED)
        try:
            await self.client.cancel_execution(execution_id)
        except TaskpilotError as e:
            if self.status == ExecutionStatus.CANCELLED:
                self.status = previous
                self.actions.thaw()
                self.updates.emit(
                    "status",
                    f"Status: {previous.value}",
                    status=previous.value,
                    previous=ExecutionStatus.CANCELLED.value,
                    reverted=True,
                )
            self.logger.error("session.cancel.failed", error=str(e), restored=previous.value)
            raise
        self._command("cancel", "Execution cancelled")

    async def attach(self) -> None:
        """Load the execution's current server record into the session."""
        execution_id = self.require_execution("attach")
        if self.is_streaming:
            raise StreamBusyError(f"Cannot attach while the {self._active_stream} stream is open")

        snapshot = await self.client.get_execution(execution_id)
        questions: list[Question] = []
        if not snapshot.status.is_terminal:
            questions = await self.client.get_pending_questions(execution_id)

        self.project_id = self.project_id or snapshot.project_id
        self.task_id = self.task_id or snapshot.task_id
        self.actions.thaw()
        self.actions.load(snapshot.actions)
        self.status = snapshot.status
        self.error = snapshot.error_message
        self.pending_question = questions[0] if questions else None
        if self.pending_question is not None and not self.status.is_terminal:
            self.status = ExecutionStatus.AWAITING_QUESTION
        if self.status.is_terminal:
            self.actions.freeze()

        self.logger.info(
            "session.attached",
            status=self.status.value,
            actions=len(self.actions),
            pending_question=self.pending_question is not None,
        )
        self._command("attach", f"Attached to execution {execution_id}")

    # Stream handling

    @contextmanager
    def _claim_stream(self, phase: str):
        if self._active_stream is not None:
            raise StreamBusyError(
                f"Cannot open the {phase} stream while the {self._active_stream} stream is open"
            )
        self._active_stream = phase
        try:
            yield
        finally:
            self._active_stream = None

    async def _consume(
        self,
        phase: str,
        stream: AsyncContextManager[AsyncIterator[bytes]],
        vocabulary: Mapping[str, type[ProtocolEvent]],
    ) -> None:
        decoder = FrameDecoder(vocabulary, max_malformed_frames=self.max_malformed_frames)
        self._stream_finished = False
        self.last_stream_done = False
        applied = 0

        self.logger.info("session.stream.opened", phase=phase)
        try:
            async with stream as chunks, aclosing(decoder.decode(chunks)) as events:
                async for event in events:
                    applied += 1
                    self.apply_event(event)
                    if self._stream_finished:
                        break
            # An error event stops reading early; drop whatever is still buffered.
            decoder.close()
        except (TransportError, ProtocolError) as e:
            self.logger.error(
                "session.stream.failed",
                phase=phase,
                error=str(e),
                error_type=type(e).__name__,
                events=applied,
            )
            self._fail(str(e))
            return

        self.logger.info(
            "session.stream.closed",
            phase=phase,
            events=applied,
            malformed_frames=decoder.malformed_frames,
            status=self.status.value,
        )

    def apply_event(self, event: ProtocolEvent) -> None:
        """Apply one decoded event to the session state."""
        handler = self._handlers.get(type(event))
        if handler is None:
            self.logger.debug("session.event.unhandled", event_type=type(event).__name__)
            return
        handler(event)

    def _on_status(self, event: StatusEvent) -> None:
        if event.execution_id and self.execution_id is None:
            self._bind_execution(event.execution_id)
        self._set_status(event.status)

    def _on_action(self, event: ActionEvent) -> None:
        if self.pending_question is not None:
            self.logger.warning(
                "session.action.rejected", action_id=event.id, reason="question_pending"
            )
            return

        result = event.result.to_result() if event.result is not None else None
        if not self.actions.upsert(event.id, event.type, event.params, event.status, result):
            return

        action = self.actions.get(event.id)
        self.updates.emit(
            "action",
            f"{action.describe()} [{action.status.value}]",
            action_id=action.id,
            type=action.type.value,
            params=action.params,
            status=action.status.value,
            result=action.result.to_dict() if action.result else None,
        )

    def _on_text(self, event: TextEvent) -> None:
        self._transcript.append(event.content)
        self.updates.emit("text", event.content, content=event.content)

    def _on_reasoning(self, event: ReasoningEvent) -> None:
        step = event.step.to_step()
        self.reasoning.append(step)
        self.updates.emit(
            "reasoning",
            step.content,
            step_id=step.id,
            step_type=step.type.value,
            content=step.content,
            timestamp=step.timestamp,
        )

    def _on_question(self, event: QuestionEvent) -> None:
        pending = self.pending_question
        if pending is not None:
            if pending.id != event.id:
                self.logger.warning(
                    "session.question.rejected",
                    question_id=event.id,
                    pending_question_id=pending.id,
                    reason="question_pending",
                )
            return
        if self.status.is_terminal:
            self.logger.warning(
                "session.question.rejected", question_id=event.id, reason=self.status.value
            )
            return

        self.pending_question = Question(id=event.id, question=event.question, context=event.context)
        self.logger.info("session.question.pending", question_id=event.id)
        self._set_status(ExecutionStatus.AWAITING_QUESTION)
        self.updates.emit(
            "question",
            event.question,
            question_id=event.id,
            question=event.question,
            context=event.context,
        )

    def _on_error(self, event: ErrorEvent) -> None:
        self._fail(event.error)
        # Terminal regardless of whether the server closes the stream.
        self._stream_finished = True

    def _on_done(self, event: DoneEvent) -> None:
        self.last_stream_done = True
        self.updates.emit("done", "Agent finished this turn", status=self.status.value)

    def _on_executing(self, event: ExecutingEvent) -> None:
        if self.actions.transition(event.action_id, ActionStatus.EXECUTING):
            self.updates.emit(
                "executing", f"Executing action {event.action_id}", action_id=event.action_id
            )

    def _on_action_complete(self, event: ActionCompleteEvent) -> None:
        status = ActionStatus.COMPLETED if event.success else ActionStatus.FAILED
        if event.result is not None:
            result = event.result.to_result(success=event.success)
        else:
            result = ActionResult(success=event.success)
        if self.actions.transition(event.action_id, status, result):
            self.updates.emit(
                "action_complete",
                f"Action {event.action_id} {status.value}",
                action_id=event.action_id,
                success=event.success,
                output=result.output,
                error=result.error,
            )

    def _on_task_completed(self, event: TaskCompletedEvent) -> None:
        # Side channel only: the task record changed server-side.
        self.updates.emit("task_completed", "Task record updated", task_id=event.task_id or self.task_id)

    # State helpers

    def _set_status(self, status: ExecutionStatus) -> bool:
        current = self.status
        if status == current:
            return True
        if current.is_terminal:
            self.logger.info(
                "session.status.ignored", status=status.value, reason=f"already_{current.value}"
            )
            return False
        if (
            self.pending_question is not None
            and not status.is_terminal
            and status != ExecutionStatus.AWAITING_QUESTION
        ):
            self.logger.info("session.status.ignored", status=status.value, reason="question_pending")
            return False

        self.status = status
        if status.is_terminal:
            self.actions.freeze()
        self.logger.info("session.status.changed", from_status=current.value, to_status=status.value)
        self.updates.emit(
            "status", f"Status: {status.value}", status=status.value, previous=current.value
        )
        return True

    def _fail(self, message: str) -> None:
        self.error = message
        self._set_status(ExecutionStatus.FAILED)
        self.updates.emit("error", message, error=message)

    def _bind_execution(self, execution_id: str) -> None:
        self.execution_id = execution_id
        self.actions.bind_execution(execution_id)
        self.logger = self.logger.bind(execution_id=execution_id)

    def require_execution(self, operation: str) -> str:
        """Current execution id.

        Raises:
            SessionStateError: No execution has been started or attached
        """
        if self.execution_id is None:
            raise SessionStateError(f"Cannot {operation}: no execution has been started")
        return self.execution_id

    def _command(self, command: str, message: str, **details) -> None:
        self.updates.emit("command", message, command=command, **details)

    async def _load_approval_settings(self) -> bool:
        """Read the project's tool approval settings once per session start."""
        if self._settings_provided:
            return True
        try:
            self.gate = ApprovalGate(await self.client.get_tool_approval_settings(self.project_id))
        except TransportError as e:
            self.logger.error("session.settings.failed", error=str(e))
            self._fail(f"Failed to load tool approval settings: {e}")
            return False
        return True

    async def _decide(self, action_ids: Iterable[str], decision: ActionStatus) -> list[str]:
        execution_id = self.require_execution(f"mark actions {decision.value}")
        if self.status.is_terminal:
            raise SessionStateError(f"Execution is {self.status.value}")

        eligible: list[str] = []
        for action_id in dict.fromkeys(action_ids):
            action = self.actions.get(action_id)
            if action is None or action.status != ActionStatus.PROPOSED:
                self.logger.info(
                    "session.decision.skipped",
                    action_id=action_id,
                    decision=decision.value,
                    status=action.status.value if action else None,
                )
                continue
            eligible.append(action_id)
        if not eligible:
            return []

        # Phase 1: optimistic local transition.
        applied = [a for a in eligible if self.actions.transition(a, decision)]

        # Phase 2: server call; compensate on failure.
        try:
            await self.client.update_action_status(execution_id, applied, decision.value)
        except TaskpilotError as e:
            for action_id in applied:
                self.actions.revert(action_id, expected=decision, restore=ActionStatus.PROPOSED)
            self.logger.error(
                "session.decision.reverted",
                decision=decision.value,
                action_ids=applied,
                error=str(e),
            )
            self._command(
                "decision_reverted",
                f"Could not mark {len(applied)} action(s) {decision.value}: {e}",
                decision=decision.value,
                action_ids=applied,
            )
            raise

        self.logger.info("session.decision.applied", decision=decision.value, action_ids=applied)
        self._command(
            "decision",
            f"{len(applied)} action(s) {decision.value}",
            decision=decision.value,
            action_ids=applied,
        )
        return applied

    # Question seam, driven by QuestionCoordinator

    def mark_question_answered(self, question: Question, response: str) -> None:
        """Record that the server accepted the answer and leave awaiting_question."""
        self.pending_question = None
        self.logger.info("session.question.answered", question_id=question.id)
        self._command(
            "answer",
            f"Answered: {response[:50]}",
            question_id=question.id,
            response=response,
        )
        self._set_status(ExecutionStatus.ANALYZING)

    async def open_resume_stream(self, execution_id: str) -> None:
        """Consume the resume stream against the same registry.

        A failed execution is reopened first; completed and cancelled ones
        cannot be resumed.

        Raises:
            StreamBusyError: Another stream of this session is open
            SessionStateError: The execution is completed or cancelled
        """
        with self._claim_stream("resume"):
            if self.status in (ExecutionStatus.COMPLETED, ExecutionStatus.CANCELLED):
                raise SessionStateError(f"Cannot resume {self.status.value} execution")
            if self.status == ExecutionStatus.FAILED:
                self._reopen()
            self._command("resume", "Resuming agent execution...")
            await self._consume(
                "resume", self.client.resume_execution(execution_id), RESUME_VOCABULARY
            )

    def _reopen(self) -> None:
        """Explicit caller retry after a failure: clear the error and accept events again."""
        previous_error = self.error
        self.error = None
        self.status = ExecutionStatus.ANALYZING
        self.actions.thaw()
        self.logger.info("session.reopened", previous_error=previous_error)
        self.updates.emit(
            "status",
            f"Status: {self.status.value}",
            status=self.status.value,
            previous=ExecutionStatus.FAILED.value,
        )


def _only(event_type: str, callback: Callable[[SessionUpdate], None]) -> SessionListener:
    def listener(update: SessionUpdate) -> None:
        if update.event_type == event_type:
            callback(update)

    listener.__name__ = getattr(callback, "__name__", "task_completed_callback")
    return listener
