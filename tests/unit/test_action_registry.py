"""
Unit Tests for ActionRegistry

Tests deduplication, forward-only transitions, freezing and the derived
views used by the approval UI.
"""

import copy

import pytest

from taskpilot.core.domain.action_registry import ActionRegistry
from taskpilot.core.domain.models import Action, ActionResult, ActionStatus, ActionType

PATH_TO = {
    ActionStatus.APPROVED: [ActionStatus.APPROVED],
    ActionStatus.REJECTED: [ActionStatus.REJECTED],
    ActionStatus.EXECUTING: [ActionStatus.APPROVED, ActionStatus.EXECUTING],
    ActionStatus.COMPLETED: [ActionStatus.APPROVED, ActionStatus.EXECUTING, ActionStatus.COMPLETED],
    ActionStatus.FAILED: [ActionStatus.APPROVED, ActionStatus.EXECUTING, ActionStatus.FAILED],
}


@pytest.fixture
def registry():
    return ActionRegistry("exec-1")


def propose(registry, action_id="a1", action_type=ActionType.WRITE_FILE, **params):
    params = params or {"path": "app.py", "content": "print('hi')"}
    assert registry.upsert(action_id, action_type, params, ActionStatus.PROPOSED)
    return registry.get(action_id)


def advance(registry, action_id, status, result=None):
    """Walk a proposed action along the allowed path to ``status``."""
    *steps, last = PATH_TO[status]
    for step in steps:
        assert registry.transition(action_id, step)
    assert registry.transition(action_id, last, result)


def test_upsert_creates_action(registry):
    action = propose(registry)

    assert len(registry) == 1
    assert "a1" in registry
    assert action.type == ActionType.WRITE_FILE
    assert action.status == ActionStatus.PROPOSED
    assert action.result is None


def test_second_event_merges_status_and_keeps_params(registry):
    """Test a later event for the same id only moves the status forward."""
    propose(registry)

    assert registry.upsert("a1", ActionType.WRITE_FILE, {"path": "other.py"}, ActionStatus.APPROVED)

    action = registry.get("a1")
    assert len(registry) == 1
    assert action.status == ActionStatus.APPROVED
    assert action.params == {"path": "app.py", "content": "print('hi')"}


def test_type_is_immutable(registry):
    propose(registry)

    registry.upsert("a1", ActionType.DELETE_FILE, {}, ActionStatus.APPROVED)

    assert registry.get("a1").type == ActionType.WRITE_FILE


def test_redelivery_is_idempotent(registry):
    """Test re-applying the same event leaves the registry unchanged."""
    propose(registry)
    result = ActionResult(success=True, output="ok")
    for status in (ActionStatus.APPROVED, ActionStatus.EXECUTING):
        registry.upsert("a1", ActionType.WRITE_FILE, {}, status)
    registry.upsert("a1", ActionType.WRITE_FILE, {}, ActionStatus.COMPLETED, result)
    snapshot = copy.deepcopy(registry.get("a1"))

    assert registry.upsert("a1", ActionType.WRITE_FILE, {}, ActionStatus.COMPLETED, result)
    assert registry.get("a1") == snapshot


@pytest.mark.parametrize(
    "terminal", [ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.REJECTED]
)
def test_terminal_status_never_regresses(registry, terminal):
    propose(registry)
    advance(registry, "a1", terminal)

    assert not registry.upsert("a1", ActionType.WRITE_FILE, {}, ActionStatus.PROPOSED)
    assert not registry.transition("a1", ActionStatus.EXECUTING)
    assert registry.get("a1").status == terminal


def test_approved_cannot_go_back_to_proposed(registry):
    propose(registry)
    registry.transition("a1", ActionStatus.APPROVED)

    assert not registry.transition("a1", ActionStatus.PROPOSED)
    assert registry.get("a1").status == ActionStatus.APPROVED


@pytest.mark.parametrize(
    "status", [ActionStatus.EXECUTING, ActionStatus.COMPLETED, ActionStatus.FAILED]
)
def test_unapproved_action_cannot_run(registry, status):
    """Test a proposed action never reaches executing or a result without approval."""
    propose(registry, "d1", ActionType.DELETE_FILE, path="old.py")

    assert not registry.transition("d1", status)
    assert not registry.upsert("d1", ActionType.DELETE_FILE, {}, status)
    assert registry.get("d1").status == ActionStatus.PROPOSED


@pytest.mark.parametrize("status", [ActionStatus.COMPLETED, ActionStatus.FAILED])
def test_approved_action_must_execute_first(registry, status):
    propose(registry)
    registry.transition("a1", ActionStatus.APPROVED)

    assert not registry.transition("a1", status)
    assert registry.get("a1").status == ActionStatus.APPROVED


def test_status_and_result_change_together(registry):
    propose(registry)
    advance(registry, "a1", ActionStatus.EXECUTING)

    assert registry.transition(
        "a1", ActionStatus.FAILED, ActionResult(success=False, error="permission denied")
    )

    action = registry.get("a1")
    assert action.status == ActionStatus.FAILED
    assert action.result.error == "permission denied"
    assert action.result.success is False


def test_rejected_transition_keeps_result(registry):
    propose(registry)
    advance(registry, "a1", ActionStatus.COMPLETED, ActionResult(success=True, output="done"))

    registry.transition("a1", ActionStatus.FAILED, ActionResult(success=False, error="late"))

    assert registry.get("a1").result.output == "done"


def test_action_reported_already_completed_is_created_completed(registry):
    """Test a read the server ran on its own arrives as a new, completed action."""
    result = ActionResult(success=True, output="# Hi")

    assert registry.upsert(
        "r1", ActionType.READ_FILE, {"path": "README.md"}, ActionStatus.COMPLETED, result
    )

    action = registry.get("r1")
    assert action.status == ActionStatus.COMPLETED
    assert action.result.output == "# Hi"


def test_transition_of_unknown_action_is_rejected(registry):
    assert not registry.transition("ghost", ActionStatus.EXECUTING)
    assert "ghost" not in registry


def test_frozen_registry_rejects_everything(registry):
    propose(registry)
    registry.freeze()

    assert registry.frozen
    assert not registry.upsert("a2", ActionType.READ_FILE, {}, ActionStatus.PROPOSED)
    assert not registry.transition("a1", ActionStatus.APPROVED)
    assert len(registry) == 1
    assert registry.get("a1").status == ActionStatus.PROPOSED

    registry.thaw()
    assert registry.transition("a1", ActionStatus.APPROVED)


def test_revert_only_when_still_expected(registry):
    """Test compensation does not overwrite a newer server state."""
    propose(registry, "a1")
    propose(registry, "a2")
    registry.transition("a1", ActionStatus.APPROVED)
    advance(registry, "a2", ActionStatus.EXECUTING)

    assert registry.revert("a1", expected=ActionStatus.APPROVED, restore=ActionStatus.PROPOSED)
    assert not registry.revert("a2", expected=ActionStatus.APPROVED, restore=ActionStatus.PROPOSED)
    assert registry.get("a1").status == ActionStatus.PROPOSED
    assert registry.get("a2").status == ActionStatus.EXECUTING


def test_views(registry):
    propose(registry, "w1", ActionType.WRITE_FILE, path="a.py")
    propose(registry, "d1", ActionType.DELETE_FILE, path="old.py")
    propose(registry, "c1", ActionType.EXECUTE_COMMAND, command="pytest")
    registry.upsert(
        "r1", ActionType.READ_FILE, {"path": "b.py"}, ActionStatus.COMPLETED, ActionResult(success=True)
    )
    registry.transition("d1", ActionStatus.APPROVED)

    assert [a.id for a in registry.all()] == ["w1", "d1", "c1", "r1"]
    assert registry.ids_with_status(ActionStatus.PROPOSED) == ["w1", "c1"]
    assert [a.id for a in registry.by_status(ActionStatus.APPROVED, ActionStatus.COMPLETED)] == [
        "d1",
        "r1",
    ]
    assert [a.id for a in registry.file_actions()] == ["w1", "d1"]
    assert [a.id for a in registry.non_file_actions()] == ["c1", "r1"]
    assert registry.has_file_actions()
    assert registry.status_counts() == {"proposed": 2, "approved": 1, "completed": 1}


def test_load_replaces_contents(registry):
    propose(registry)

    registry.load([Action(id="s1", type=ActionType.EDIT_FILE, params={"path": "x"})])

    assert [a.id for a in registry] == ["s1"]
