"""
Session observability.

An ExecutionSession reports everything it applies as SessionUpdate objects
to registered listeners (CLI renderers, activity logs, tests). Listeners
observe only: a failing listener is logged and never changes the state
machine.
"""

import itertools
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger()


@dataclass
class SessionUpdate:
    """One observable change of an execution session.

    Attributes:
        timestamp: When the update was emitted
        event_type: Kind of update (status, action, text, reasoning, question,
            error, done, executing, action_complete, task_completed, command)
        message: Human-readable description
        details: Structured data about the update
    """

    timestamp: datetime
    event_type: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


SessionListener = Callable[[SessionUpdate], None]


class UpdateEmitter:
    """Fan-out of SessionUpdates to listeners."""

    def __init__(self, listeners: Optional[list[SessionListener]] = None):
        self._listeners: list[SessionListener] = list(listeners or [])

    def add(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event_type: str, message: str, **details: Any) -> SessionUpdate:
        update = SessionUpdate(
            timestamp=datetime.now(), event_type=event_type, message=message, details=details
        )
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception as e:
                logger.warning(
                    "session.listener.failed",
                    listener=getattr(listener, "__name__", type(listener).__name__),
                    event_type=event_type,
                    error=str(e),
                )
        return update


@dataclass
class ActivityLogEntry:
    id: int
    timestamp: datetime
    type: str
    message: str
    details: Optional[str] = None


class ActivityLog:
    """Bounded, human-readable log of what happened in a session.

    Register an instance as a session listener.
    """

    def __init__(self, max_entries: int = 500):
        self.entries: deque[ActivityLogEntry] = deque(maxlen=max_entries)
        self._ids = itertools.count(1)

    def __call__(self, update: SessionUpdate) -> None:
        entry = self._entry_for(update)
        if entry is not None:
            entry_type, message, details = entry
            self.entries.append(
                ActivityLogEntry(
                    id=next(self._ids),
                    timestamp=update.timestamp,
                    type=entry_type,
                    message=message,
                    details=details,
                )
            )

    def clear(self) -> None:
        self.entries.clear()

    def messages(self) -> list[str]:
        return [entry.message for entry in self.entries]

    def _entry_for(self, update: SessionUpdate) -> Optional[tuple[str, str, Optional[str]]]:
        d = update.details
        if update.event_type == "status":
            return "status", f"Status: {d['status'].replace('_', ' ')}", None
        if update.event_type == "action":
            return self._action_entry(d)
        if update.event_type == "text":
            content = d.get("content", "")
            if content.strip():
                return "text", "Agent thinking...", content
            return None
        if update.event_type == "reasoning":
            return "text", f"[{d['step_type'].upper()}] {d['content'][:50]}", None
        if update.event_type == "question":
            return "question", f"Question: {d['question']}", d.get("context")
        if update.event_type == "error":
            return "error", f"Error: {d['error']}", None
        if update.event_type == "done":
            return "status", "Agent finished analyzing", None
        if update.event_type == "action_complete":
            outcome = "completed" if d["success"] else "failed"
            return "action", f"Action {d['action_id']} {outcome}", d.get("error")
        if update.event_type == "task_completed":
            return "status", "Task marked as completed", None
        if update.event_type == "command":
            return "status", update.message, None
        return None

    @staticmethod
    def _action_entry(d: dict[str, Any]) -> Optional[tuple[str, str, Optional[str]]]:
        action_type = d["type"]
        params = d.get("params") or {}
        status = d["status"]
        if status == "proposed":
            labels = {
                "writeFile": f"Proposing to write: {params.get('path')}",
                "editFile": f"Proposing to edit: {params.get('path')}",
                "deleteFile": f"Proposing to delete: {params.get('path')}",
                "executeCommand": f"Proposing command: {params.get('command')}",
                "completeTask": "Proposing to complete task",
            }
            return "action", labels.get(action_type, f"Action: {action_type}"), None
        if status == "completed":
            output = (d.get("result") or {}).get("output") or ""
            if action_type == "readFile":
                return "read", f"Read file: {params.get('path')} ({len(output)} chars)", None
            if action_type == "listDirectory":
                items = len(output.split("\n")) if output else 0
                return "list", f"Listed directory: {params.get('path')} ({items} items)", None
        return None
