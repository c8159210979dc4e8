"""Data models shared by the orchestrator, the generation client and the API."""

from .actions import (
    Action,
    ActionDecision,
    ActionTarget,
    ActionType,
    CandidateOutput,
    GenerationRequest,
    OrchestratorInput,
    OrchestratorOutput,
    action_schema_for_prompt,
)
from .entities import (
    EntityRecord,
    Interaction,
    InteractionDirection,
    InteractionSource,
    NamedEntity,
    RelatedEntities,
)
from .policy import BusinessHours, Policy, create_default_policy

__all__ = [
    "Action",
    "ActionDecision",
    "ActionTarget",
    "ActionType",
    "BusinessHours",
    "CandidateOutput",
    "GenerationRequest",
    "EntityRecord",
    "Interaction",
    "InteractionDirection",
    "InteractionSource",
    "NamedEntity",
    "OrchestratorInput",
    "OrchestratorOutput",
    "Policy",
    "RelatedEntities",
    "action_schema_for_prompt",
    "create_default_policy",
]
