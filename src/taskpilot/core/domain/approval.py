"""
Approval Gate

Per-tool policy deciding whether a proposed action needs human sign-off
before it may be executed. The gate is advisory: it resolves settings and
classifies actions, but never changes an action's status. Moving an
action from ``proposed`` to ``approved`` always takes an explicit approve
call.
"""

from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from taskpilot.core.domain.models import Action, ActionType


class ApprovalRiskLevel(str, Enum):
    """How much damage an action type can do if approved blindly."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


DEFAULT_TOOL_APPROVAL: dict[ActionType, bool] = {
    ActionType.READ_FILE: False,
    ActionType.LIST_DIRECTORY: False,
    ActionType.WRITE_FILE: True,
    ActionType.EDIT_FILE: True,
    ActionType.DELETE_FILE: True,
    ActionType.EXECUTE_COMMAND: True,
    ActionType.COMPLETE_TASK: False,
}

RISK_LEVELS: dict[ActionType, ApprovalRiskLevel] = {
    ActionType.READ_FILE: ApprovalRiskLevel.LOW,
    ActionType.LIST_DIRECTORY: ApprovalRiskLevel.LOW,
    ActionType.COMPLETE_TASK: ApprovalRiskLevel.LOW,
    ActionType.WRITE_FILE: ApprovalRiskLevel.MEDIUM,
    ActionType.EDIT_FILE: ApprovalRiskLevel.MEDIUM,
    ActionType.DELETE_FILE: ApprovalRiskLevel.HIGH,
    ActionType.EXECUTE_COMMAND: ApprovalRiskLevel.HIGH,
}


class ToolApprovalSettings(BaseModel):
    """Per-project "requires approval" flags, keyed on the wire by action type.

    A field left as None falls back to DEFAULT_TOOL_APPROVAL.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    read_file: Optional[bool] = Field(default=None, alias="readFile")
    list_directory: Optional[bool] = Field(default=None, alias="listDirectory")
    write_file: Optional[bool] = Field(default=None, alias="writeFile")
    edit_file: Optional[bool] = Field(default=None, alias="editFile")
    delete_file: Optional[bool] = Field(default=None, alias="deleteFile")
    execute_command: Optional[bool] = Field(default=None, alias="executeCommand")
    complete_task: Optional[bool] = Field(default=None, alias="completeTask")

    @classmethod
    def defaults(cls) -> "ToolApprovalSettings":
        return cls.model_validate({t.value: flag for t, flag in DEFAULT_TOOL_APPROVAL.items()})

    def get(self, action_type: ActionType) -> Optional[bool]:
        return getattr(self, _field_name(action_type))

    def with_flag(self, action_type: ActionType, required: bool) -> "ToolApprovalSettings":
        return self.model_copy(update={_field_name(action_type): required})

    def resolved(self) -> dict[ActionType, bool]:
        """Every action type with its effective flag."""
        return {t: requires_approval(t, self) for t in ActionType}

    def to_wire(self) -> dict[str, bool]:
        """Wire payload, with defaults filled in for unset tools."""
        return {t.value: flag for t, flag in self.resolved().items()}


def _field_name(action_type: ActionType) -> str:
    name = action_type.value
    return "".join("_" + c.lower() if c.isupper() else c for c in name)


def requires_approval(
    action_type: ActionType, settings: Optional[ToolApprovalSettings] = None
) -> bool:
    """Whether actions of this type need human sign-off.

    Pure lookup: the project setting if present, else the built-in default.
    """
    if settings is not None:
        flag = settings.get(action_type)
        if flag is not None:
            return flag
    return DEFAULT_TOOL_APPROVAL[action_type]


def risk_level(action_type: ActionType) -> ApprovalRiskLevel:
    return RISK_LEVELS[action_type]


class ApprovalGate:
    """Resolves approval settings for one session."""

    def __init__(self, settings: Optional[ToolApprovalSettings] = None):
        self.settings = settings or ToolApprovalSettings()

    def requires_approval(self, action_type: ActionType) -> bool:
        return requires_approval(action_type, self.settings)

    def needs_sign_off(self, actions: Iterable[Action]) -> list[Action]:
        return [a for a in actions if self.requires_approval(a.type)]

    def auto_eligible(self, actions: Iterable[Action]) -> list[Action]:
        """Actions a caller may approve without asking a human."""
        return [a for a in actions if not self.requires_approval(a.type)]
