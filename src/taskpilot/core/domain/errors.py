"""
Error taxonomy for the execution client.

Transport and protocol errors raised while a stream is being consumed are
converted by the ExecutionSession into a terminal ``failed`` status.
Command methods (approve, cancel, answer, ...) raise them to the caller.
"""

from typing import Optional


class TaskpilotError(Exception):
    """Base class for all client errors."""


class TransportError(TaskpilotError):
    """Network-level failure: connection error, read error or non-2xx response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ApiError(TransportError):
    """The server answered with a non-2xx status."""


class ProtocolError(TaskpilotError):
    """The event stream violated the wire protocol beyond the tolerated limit."""


class SessionStateError(TaskpilotError):
    """A command was issued in a state that does not allow it."""


class StreamBusyError(SessionStateError):
    """A second event stream was opened while one is still being consumed."""


class QuestionError(SessionStateError):
    """Answer or resume was attempted out of order."""
