"""
Validation and normalization of candidate action lists.

Whatever the generation backend produced is funnelled through
``validate_actions`` before anything downstream sees it. The function is
total: malformed entries are dropped and counted, never raised.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from corchcrm.schemas.actions import Action, ActionTarget, ActionType

_ACTION_TYPES = {member.value for member in ActionType}
_ACTION_TARGETS = {member.value for member in ActionTarget}


@dataclass
class ValidationResult:
    """Validated actions plus how many candidate entries were discarded."""
    actions: List[Action] = field(default_factory=list)
    dropped: int = 0
    drop_reasons: List[str] = field(default_factory=list)


def synthesize_reason(action_type: str, target: str) -> str:
    return f"Proposed {action_type} on {target}"


def _enum_value(value: Any, allowed: set) -> Optional[str]:
    if isinstance(value, (ActionType, ActionTarget)):
        return value.value
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if normalized in allowed else None


def _coerce_confidence(value: Any) -> Optional[float]:
    """Clamp into [0, 1]; anything non-numeric yields None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    if math.isnan(number):
        return None
    return min(1.0, max(0.0, number))


def _coerce_id(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, int):
        # str() refuses ints past the interpreter's digit limit
        try:
            return str(value)
        except ValueError:
            return None
    return None


def _normalize_entry(entry: Any) -> tuple[Optional[Dict[str, Any]], str]:
    """Return the normalized envelope, or None and the reason for dropping."""
    if isinstance(entry, Action):
        entry = entry.model_dump()
    if not isinstance(entry, dict):
        return None, "not_an_object"

    action_type = _enum_value(entry.get("type"), _ACTION_TYPES)
    if action_type is None:
        return None, "unknown_type"
    target = _enum_value(entry.get("target"), _ACTION_TARGETS)
    if target is None:
        return None, "unknown_target"

    reason = entry.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        reason = synthesize_reason(action_type, target)

    normalized: Dict[str, Any] = {
        "type": action_type,
        "target": target,
        "reason": reason,
        "id": _coerce_id(entry.get("id")),
        "confidence": _coerce_confidence(entry.get("confidence")),
    }
    for key in ("data", "changes"):
        payload = entry.get(key)
        if isinstance(payload, dict):
            normalized[key] = payload
    date = entry.get("date")
    if isinstance(date, str) and date.strip():
        normalized["date"] = date.strip()
    return normalized, ""


def _candidate_entries(candidate: Any) -> List[Any]:
    if isinstance(candidate, dict):
        candidate = candidate.get("actions")
    elif hasattr(candidate, "actions"):
        candidate = getattr(candidate, "actions")
    if isinstance(candidate, (list, tuple)):
        return list(candidate)
    return []


def validate_actions_with_report(candidate: Any) -> ValidationResult:
    """Validate a candidate action list and report what was discarded.

    Args:
        candidate: A list of action-like mappings, an object with an
            ``actions`` list, or any other value (treated as empty)

    Returns:
        ValidationResult whose ``actions`` are all well-formed
    """
    result = ValidationResult()
    for entry in _candidate_entries(candidate):
        normalized, reason = _normalize_entry(entry)
        if normalized is None:
            result.dropped += 1
            result.drop_reasons.append(reason)
            continue
        try:
            result.actions.append(Action.model_validate(normalized))
        except ValidationError:
            result.dropped += 1
            result.drop_reasons.append("invalid_envelope")
    return result


def validate_actions(candidate: Any) -> List[Action]:
    """Validate a candidate action list, silently dropping bad entries."""
    return validate_actions_with_report(candidate).actions
