"""
Prompt composition for the orchestrator.

``compose_request`` turns an interaction, its related entities and the policy
into the exact request sent to the generation backend. Identical input always
produces byte-identical output: the instruction text is a module constant and
the context is serialized with sorted keys.
"""

import json
import re
from typing import Any, Dict, Optional

from corchcrm.schemas.actions import (
    ActionTarget,
    ActionType,
    GenerationRequest,
    action_schema_for_prompt,
)
from corchcrm.schemas.entities import Interaction, RelatedEntities
from corchcrm.schemas.policy import Policy


def _build_system_prompt() -> str:
    action_types = ", ".join(member.value for member in ActionType)
    targets = ", ".join(member.value for member in ActionTarget)
    schema = json.dumps(action_schema_for_prompt(), sort_keys=True, indent=2)
    return f"""You are CorchCRM's Orchestrator AI.
Output ONLY a JSON object with an "actions" array. No extra text.

Entities (targets): {targets}.
Actions (types): {action_types}.

Rules:
- Prefer small, atomic actions: one change per action.
- Use update_entity with "id" and "changes" for existing records; use create_* with "data" for new ones.
- Each action must include a concise "reason".
- Include "confidence" (0..1) for every decision.
- If you are unsure, use "suggest" instead of changing data.
- Log every entity change with a matching "log_action" on "history".
- Use ISO-8601 UTC times for "date" and any date fields.
- If nothing in the interaction warrants a change, return {{"actions": []}}.

Output schema:
{schema}
"""


SYSTEM_PROMPT = _build_system_prompt()


_SECRET_WORDS = {
    "password", "passwd", "secret", "token", "apikey", "auth",
    "authorization", "credential", "credentials",
}
_SECRET_PAIRS = {("api", "key"), ("private", "key"), ("client", "secret")}
_KEY_TOKEN = re.compile(r"[A-Z]?[a-z0-9]+|[A-Z]+(?![a-z])")


def _is_secret_key(key: str) -> bool:
    """Whether a key names a credential, matching whole words only."""
    words = [word.lower() for word in _KEY_TOKEN.findall(key)]
    if any(word in _SECRET_WORDS for word in words):
        return True
    return any(pair in _SECRET_PAIRS for pair in zip(words, words[1:]))


def _strip_secrets(value: Any) -> Any:
    """Drop credential-like keys anywhere in a nested structure."""
    if isinstance(value, dict):
        return {
            key: _strip_secrets(item)
            for key, item in value.items()
            if not _is_secret_key(str(key)) and item is not None
        }
    if isinstance(value, (list, tuple)):
        return [_strip_secrets(item) for item in value]
    return value


def _interaction_context(interaction: Interaction) -> Dict[str, Any]:
    return interaction.model_dump(mode="json", by_alias=True, exclude_none=True)


def _entities_context(related: RelatedEntities) -> Dict[str, Any]:
    return _strip_secrets(related.model_dump(mode="json", exclude_none=True))


def _policy_context(policy: Policy) -> Dict[str, Any]:
    context = policy.model_dump(mode="json", exclude_none=True, exclude_defaults=True)
    if "always_review_fields" in context:
        context["always_review_fields"] = sorted(context["always_review_fields"])
    return _strip_secrets(context)


def compose_request(
    interaction: Interaction,
    related_entities: Optional[RelatedEntities] = None,
    policy: Optional[Policy] = None,
) -> GenerationRequest:
    """Serialize one orchestration call into a generation request.

    Args:
        interaction: The communication event to analyze
        related_entities: Optional CRM context
        policy: Optional automation policy, shown to the model for context

    Returns:
        GenerationRequest with the fixed system prompt and JSON context
    """
    context = {
        "interaction": _interaction_context(interaction),
        "related_entities": _entities_context(related_entities or RelatedEntities()),
        "policy": _policy_context(policy or Policy()),
    }
    user = (
        "Interaction, related entities and policy:\n"
        + json.dumps(context, sort_keys=True, indent=2, ensure_ascii=False)
        + "\n\nReturn JSON strictly matching the output schema."
    )
    return GenerationRequest(system=SYSTEM_PROMPT, user=user)
