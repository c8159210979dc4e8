"""
Orchestrator for CRM interactions.

Turns an email, call transcript, meeting note or free text into a validated
list of proposed CRM actions:
- validator: closed action vocabulary, per-entry normalization
- policy: auto-apply decisions, stage probabilities, follow-up scheduling
- prompts: deterministic request composition
- engine: the orchestration state machine
- ingestion: free-text adapter and naive entity resolution
"""

from corchcrm.orchestrator.engine import (
    EngineState,
    OrchestrationEngine,
    fallback_output,
)
from corchcrm.orchestrator.ingestion import (
    build_text_input,
    orchestrate_text,
    resolve_entity,
)
from corchcrm.orchestrator.policy import (
    PolicyEvaluation,
    evaluate_actions,
    followup_due,
    is_auto_eligible,
    suggest_probability,
)
from corchcrm.orchestrator.prompts import GenerationRequest, SYSTEM_PROMPT, compose_request
from corchcrm.orchestrator.validator import (
    ValidationResult,
    validate_actions,
    validate_actions_with_report,
)

__all__ = [
    # Engine
    "EngineState",
    "OrchestrationEngine",
    "fallback_output",
    # Ingestion
    "build_text_input",
    "orchestrate_text",
    "resolve_entity",
    # Policy
    "PolicyEvaluation",
    "evaluate_actions",
    "followup_due",
    "is_auto_eligible",
    "suggest_probability",
    # Prompts
    "GenerationRequest",
    "SYSTEM_PROMPT",
    "compose_request",
    # Validator
    "ValidationResult",
    "validate_actions",
    "validate_actions_with_report",
]
