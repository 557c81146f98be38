"""
Action Registry

The authoritative, deduplicated mapping of action id to action state for a
single execution.

Rules enforced here:
- An action is created the first time its id is seen; type and params are
  immutable afterwards.
- Status moves forward only (see ACTION_TRANSITIONS). Terminal statuses
  never change. Regressions are rejected and logged, never raised, so a
  misbehaving stream cannot abort the decode loop.
- Status and result of one update are applied together.
- Once frozen (execution reached a terminal status) nothing changes.
"""

from typing import Any, Iterable, Iterator, Optional

import structlog

from taskpilot.core.domain.models import (
    ACTION_TRANSITIONS,
    Action,
    ActionResult,
    ActionStatus,
    ActionType,
)

logger = structlog.get_logger()


class ActionRegistry:
    """Ordered registry of the actions of one execution.

    Owned by exactly one ExecutionSession; never shared across executions.
    """

    def __init__(self, execution_id: Optional[str] = None):
        self._actions: dict[str, Action] = {}
        self._frozen = False
        self.logger = logger.bind(component="action_registry", execution_id=execution_id)

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[Action]:
        return iter(list(self._actions.values()))

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._actions

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Stop accepting mutations (execution reached a terminal status)."""
        if not self._frozen:
            self._frozen = True
            self.logger.debug("registry.frozen", actions=len(self._actions))

    def thaw(self) -> None:
        """Accept mutations again. Only an explicit caller command reopens a session."""
        if self._frozen:
            self._frozen = False
            self.logger.debug("registry.thawed")

    def bind_execution(self, execution_id: str) -> None:
        self.logger = self.logger.bind(execution_id=execution_id)

    def get(self, action_id: str) -> Optional[Action]:
        return self._actions.get(action_id)

    def upsert(
        self,
        action_id: str,
        action_type: ActionType,
        params: Optional[dict[str, Any]],
        status: ActionStatus,
        result: Optional[ActionResult] = None,
    ) -> bool:
        """Insert an unseen action or merge status/result into a known one.

        Args:
            action_id: Server-assigned action id
            action_type: Operation kind (ignored for known ids)
            params: Operation payload (ignored for known ids)
            status: Reported status
            result: Reported result, replaces the stored one when applied

        Returns:
            True if the registry changed or already matched, False if the
            update was rejected.
        """
        if self._frozen:
            self.logger.warning("registry.mutation.rejected", action_id=action_id, reason="frozen")
            return False

        existing = self._actions.get(action_id)
        if existing is None:
            self._actions[action_id] = Action(
                id=action_id,
                type=action_type,
                params=dict(params or {}),
                status=status,
                result=result,
            )
            self.logger.debug(
                "registry.action.created",
                action_id=action_id,
                action_type=action_type.value,
                status=status.value,
            )
            return True

        if existing.type != action_type:
            self.logger.warning(
                "registry.action.type_mismatch",
                action_id=action_id,
                stored=existing.type.value,
                reported=action_type.value,
            )

        return self._apply(existing, status, result, replace_result=True)

    def transition(
        self,
        action_id: str,
        status: ActionStatus,
        result: Optional[ActionResult] = None,
    ) -> bool:
        """Move a known action to a new status.

        Unknown ids are rejected: only proposals create actions.
        """
        if self._frozen:
            self.logger.warning("registry.mutation.rejected", action_id=action_id, reason="frozen")
            return False

        existing = self._actions.get(action_id)
        if existing is None:
            self.logger.warning(
                "registry.mutation.rejected",
                action_id=action_id,
                status=status.value,
                reason="unknown_action",
            )
            return False

        return self._apply(existing, status, result, replace_result=result is not None)

    def revert(self, action_id: str, expected: ActionStatus, restore: ActionStatus) -> bool:
        """Compensate an optimistic transition.

        Restores ``restore`` only if the action is still in ``expected``;
        if the server already moved it on, the newer state wins.
        """
        action = self._actions.get(action_id)
        if action is None or action.status != expected:
            return False
        action.status = restore
        self.logger.info(
            "registry.transition.reverted",
            action_id=action_id,
            from_status=expected.value,
            to_status=restore.value,
        )
        return True

    def _apply(
        self,
        action: Action,
        status: ActionStatus,
        result: Optional[ActionResult],
        replace_result: bool,
    ) -> bool:
        if status == action.status:
            # Re-delivery of the same status. Terminal actions never change.
            if replace_result and not action.status.is_terminal:
                action.result = result
            return True

        if status not in ACTION_TRANSITIONS[action.status]:
            self.logger.warning(
                "registry.transition.rejected",
                action_id=action.id,
                from_status=action.status.value,
                to_status=status.value,
            )
            return False

        action.status = status
        if replace_result:
            action.result = result
        self.logger.debug(
            "registry.transition.applied", action_id=action.id, status=status.value
        )
        return True

    # Derived views

    def all(self) -> list[Action]:
        return list(self._actions.values())

    def by_status(self, *statuses: ActionStatus) -> list[Action]:
        wanted = set(statuses)
        return [a for a in self._actions.values() if a.status in wanted]

    def ids_with_status(self, status: ActionStatus) -> list[str]:
        return [a.id for a in self._actions.values() if a.status == status]

    def file_actions(self) -> list[Action]:
        """Actions that change files (write, edit, delete)."""
        return [a for a in self._actions.values() if a.is_file_mutating]

    def non_file_actions(self) -> list[Action]:
        """Reads, listings, commands and task completion."""
        return [a for a in self._actions.values() if not a.is_file_mutating]

    def has_file_actions(self) -> bool:
        return any(a.is_file_mutating for a in self._actions.values())

    def status_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for action in self._actions.values():
            counts[action.status.value] = counts.get(action.status.value, 0) + 1
        return counts

    def load(self, actions: Iterable[Action]) -> None:
        """Replace the contents with a server snapshot."""
        self._actions = {action.id: action for action in actions}
        self.logger.debug("registry.loaded", actions=len(self._actions))
