"""Tests for session update fan-out and the activity log."""

from datetime import datetime

from taskpilot.application.observability import ActivityLog, SessionUpdate, UpdateEmitter


def update(event_type, message="", **details):
    return SessionUpdate(timestamp=datetime.now(), event_type=event_type, message=message, details=details)


def test_emitter_isolates_failing_listeners():
    received = []

    def broken(update):
        raise ValueError("boom")

    emitter = UpdateEmitter([broken, received.append])
    emitted = emitter.emit("text", "hello", content="hello")

    assert received == [emitted]
    assert emitted.details == {"content": "hello"}


def test_emitter_remove():
    received = []
    emitter = UpdateEmitter()
    emitter.add(received.append)
    emitter.remove(received.append)

    emitter.emit("done", "finished")

    assert received == []


def test_activity_log_messages():
    log = ActivityLog()

    log(update("status", status="awaiting_approval"))
    log(update("action", type="deleteFile", params={"path": "old.py"}, status="proposed"))
    log(
        update(
            "action",
            type="listDirectory",
            params={"path": "src"},
            status="completed",
            result={"success": True, "output": "a.py\nb.py\nc.py"},
        )
    )
    log(update("action", type="readFile", params={"path": "a.py"}, status="completed", result={"output": "12345"}))
    log(update("text", content="   "))
    log(update("reasoning", step_type="planning", content="Plan the refactor"))
    log(update("error", error="Model timeout"))

    assert log.messages() == [
        "Status: awaiting approval",
        "Proposing to delete: old.py",
        "Listed directory: src (3 items)",
        "Read file: a.py (5 chars)",
        "[PLANNING] Plan the refactor",
        "Error: Model timeout",
    ]
    assert [e.id for e in log.entries] == [1, 2, 3, 4, 5, 6]


def test_activity_log_is_bounded():
    log = ActivityLog(max_entries=2)
    for status in ["analyzing", "awaiting_approval", "executing"]:
        log(update("status", status=status))

    assert log.messages() == ["Status: awaiting approval", "Status: executing"]
