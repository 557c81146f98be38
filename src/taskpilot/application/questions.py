"""
Question/Resume Coordinator

Manages the suspend point created when the agent asks a clarifying
question. The protocol is strictly ordered:

1. answer(): the answer is sent; the pending question is cleared locally
   only after the server accepted it. A failed answer leaves the question
   in place so the caller can retry.
2. resume(): refused while a question is still pending. Opens a new
   stream that the session handles exactly like the start stream.
"""

from typing import TYPE_CHECKING

import structlog

from taskpilot.core.domain.errors import QuestionError, SessionStateError, TaskpilotError

if TYPE_CHECKING:
    from taskpilot.application.session import ExecutionSession

logger = structlog.get_logger()


class QuestionCoordinator:
    """Answer/resume protocol for one ExecutionSession."""

    def __init__(self, session: "ExecutionSession"):
        self.session = session
        self.logger = logger.bind(component="question_coordinator")

    async def answer(self, execution_id: str, question_id: str, response_text: str) -> None:
        """Submit an answer to the pending question.

        Args:
            execution_id: Execution the question belongs to
            question_id: Id of the pending question
            response_text: Free-text answer (must not be blank)

        Raises:
            QuestionError: No such pending question, or a blank answer
            TransportError: The server call failed; the question stays pending
        """
        self._check_execution(execution_id)
        pending = self.session.pending_question
        if pending is None:
            raise QuestionError("No question is pending")
        if pending.id != question_id:
            raise QuestionError(
                f"Question {question_id} is not the pending question ({pending.id})"
            )
        text = response_text.strip()
        if not text:
            raise QuestionError("Answer must not be empty")

        try:
            await self.session.client.answer_question(execution_id, question_id, text)
        except TaskpilotError as e:
            self.logger.error(
                "question.answer.failed",
                execution_id=execution_id,
                question_id=question_id,
                error=str(e),
            )
            raise

        self.logger.info("question.answer.sent", execution_id=execution_id, question_id=question_id)
        self.session.mark_question_answered(pending, text)

    async def resume(self, execution_id: str) -> None:
        """Continue the execution after the question was answered.

        Raises:
            QuestionError: A question is still pending
            StreamBusyError: Another stream of this session is still open
        """
        self._check_execution(execution_id)
        if self.session.pending_question is not None:
            raise QuestionError("Answer the pending question before resuming")

        self.logger.info("question.resume", execution_id=execution_id)
        await self.session.open_resume_stream(execution_id)

    async def answer_and_resume(self, question_id: str, response_text: str) -> None:
        """Answer the pending question, then resume the execution."""
        execution_id = self.session.require_execution("answer a question")
        await self.answer(execution_id, question_id, response_text)
        await self.resume(execution_id)

    def _check_execution(self, execution_id: str) -> None:
        current = self.session.execution_id
        if current is None:
            raise SessionStateError("No execution has been started")
        if current != execution_id:
            raise SessionStateError(
                f"Execution {execution_id} does not belong to this session ({current})"
            )
