"""
Action vocabulary and the orchestrator's input/output envelopes.

The action envelope (type, target, id, reason, confidence, date) is validated
strictly; ``data`` and ``changes`` stay opaque key/value payloads.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .entities import Interaction, RelatedEntities
from .policy import Policy


class ActionType(str, Enum):
    """Closed set of operations the orchestrator may propose."""
    UPDATE_ENTITY = "update_entity"
    CREATE_ENTITY = "create_entity"
    CREATE_TASK = "create_task"
    CREATE_AI_DRAFT = "create_ai_draft"
    CREATE_MEETING = "create_meeting"
    NOTIFY_USER = "notify_user"
    LOG_ACTION = "log_action"
    SUGGEST = "suggest"


class ActionTarget(str, Enum):
    """CRM collection an action applies to."""
    COMPANIES = "companies"
    CONTACTS = "contacts"
    DEALS = "deals"
    EMAILS = "emails"
    TASKS = "tasks"
    AI_DRAFTS = "ai_drafts"
    MEETINGS = "meetings"
    NOTIFICATIONS = "notifications"
    HISTORY = "history"


class Action(BaseModel):
    """One atomic, typed unit of proposed CRM work."""

    model_config = ConfigDict(extra="ignore")

    type: ActionType
    target: ActionTarget
    id: Optional[str] = Field(default=None, description="Entity being updated (update_entity only)")
    data: Optional[Dict[str, Any]] = Field(default=None, description="Payload for create_* actions")
    changes: Optional[Dict[str, Any]] = Field(default=None, description="Payload for update_* actions")
    reason: str = Field(..., description="Human-readable justification for the audit trail")
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    date: Optional[str] = Field(default=None, description="ISO UTC time for scheduled items")

    def payload_fields(self) -> List[str]:
        """Field names touched by this action across ``changes`` and ``data``."""
        fields: List[str] = []
        for payload in (self.changes, self.data):
            if payload:
                fields.extend(str(key) for key in payload.keys())
        return fields

    def payload_value(self, key: str) -> Any:
        """Look a key up in ``changes`` first, then ``data``."""
        for payload in (self.changes, self.data):
            if payload and key in payload:
                return payload[key]
        return None


class ActionDecision(BaseModel):
    """Policy annotation for the action at the same index in the output."""
    index: int
    auto_eligible: bool = False
    review_reasons: List[str] = Field(default_factory=list)
    suggested_probability: Optional[float] = Field(
        default=None,
        description="Advisory deal probability for a stage change",
    )
    followup_due: Optional[datetime] = None


class OrchestratorInput(BaseModel):
    """Everything the engine needs for one orchestration call."""
    interaction: Interaction
    related_entities: RelatedEntities = Field(default_factory=RelatedEntities)
    policy: Policy = Field(default_factory=Policy)


class OrchestratorOutput(BaseModel):
    """The engine's only return type. ``actions`` is never null."""
    actions: List[Action] = Field(default_factory=list)
    decisions: List[ActionDecision] = Field(default_factory=list)

    def auto_eligible_actions(self) -> List[Action]:
        eligible = {d.index for d in self.decisions if d.auto_eligible}
        return [a for i, a in enumerate(self.actions) if i in eligible]

    def review_actions(self) -> List[Action]:
        eligible = {d.index for d in self.decisions if d.auto_eligible}
        return [a for i, a in enumerate(self.actions) if i not in eligible]


class CandidateOutput(BaseModel):
    """
    Shape the generation backend must return: an object with an ``actions``
    array. Entries are left unchecked here, including non-object ones; the
    validator drops them one by one.
    """
    actions: List[Any] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _coerce_envelope(cls, value: Any) -> Any:
        # Models sometimes answer with a bare array or a null list.
        if isinstance(value, list):
            return {"actions": value}
        if isinstance(value, dict) and value.get("actions") is None:
            return {**value, "actions": []}
        return value


def action_schema_for_prompt() -> Dict[str, Any]:
    """JSON schema of the strict output shape, embedded in the instructions."""
    item = Action.model_json_schema()
    defs = item.pop("$defs", {})
    schema: Dict[str, Any] = {
        "type": "object",
        "properties": {
            "actions": {
                "type": "array",
                "items": item,
            }
        },
        "required": ["actions"],
    }
    if defs:
        schema["$defs"] = defs
    return schema


class GenerationRequest(BaseModel):
    """System instructions plus the serialized context for one backend call."""
    system: str
    user: str
