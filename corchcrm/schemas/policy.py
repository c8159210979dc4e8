"""
Policy schema for the orchestrator.
Captures the user's automation settings: auto-apply threshold, fields that
always need a human, follow-up cadence per deal stage and business hours.
"""

from datetime import time
from typing import Any, Dict, List, Optional, Set
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
import structlog

logger = structlog.get_logger()

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


class BusinessHours(BaseModel):
    """Window in which proposed timestamps may fall."""
    start: time = Field(default=time(9, 0), description="Local opening time (HH:MM)")
    end: time = Field(default=time(18, 0), description="Local closing time (HH:MM)")
    days: List[str] = Field(
        default_factory=lambda: ["Mon", "Tue", "Wed", "Thu", "Fri"],
        description="Allowed weekdays (Mon..Sun)",
    )

    @field_validator("days")
    @classmethod
    def _normalize_days(cls, value: List[str]) -> List[str]:
        normalized = []
        for day in value:
            short = str(day).strip()[:3].title()
            if short not in WEEKDAYS:
                raise ValueError(f"Unknown weekday: {day!r}")
            if short not in normalized:
                normalized.append(short)
        if not normalized:
            raise ValueError("At least one weekday is required")
        return sorted(normalized, key=WEEKDAYS.index)

    @model_validator(mode="after")
    def _check_window(self) -> "BusinessHours":
        if self.end <= self.start:
            raise ValueError("Business hours must end after they start")
        return self

    @property
    def weekdays(self) -> Set[int]:
        """Allowed days as ``datetime.weekday()`` numbers."""
        return {WEEKDAYS.index(day) for day in self.days}


class Policy(BaseModel):
    """
    Caller-supplied tuning parameters. Every field is optional; an unset
    field disables the behavior it drives.
    """
    auto_apply_threshold: Optional[float] = Field(
        default=None, ge=0, le=1,
        description="Minimum confidence for an action to be auto-eligible",
    )
    always_review_fields: Set[str] = Field(
        default_factory=set,
        description="Payload fields that always require human review",
    )
    followup_days_by_stage: Dict[str, int] = Field(
        default_factory=dict,
        description="Days until follow-up, keyed by deal stage",
    )
    business_hours: Optional[BusinessHours] = None
    allow_stage_auto_move: bool = Field(
        default=True,
        description="Whether stage changes may ever be auto-applied",
    )
    stage_probabilities: Dict[str, float] = Field(
        default_factory=dict,
        description="Deal probability (0-100) per stage, overriding the defaults",
    )
    timezone: str = Field(default="UTC", description="IANA zone for business hours")

    @field_validator("followup_days_by_stage")
    @classmethod
    def _check_days(cls, value: Dict[str, int]) -> Dict[str, int]:
        if any(days < 0 for days in value.values()):
            raise ValueError("Follow-up days must be non-negative")
        return value

    @field_validator("stage_probabilities")
    @classmethod
    def _check_probabilities(cls, value: Dict[str, float]) -> Dict[str, float]:
        if any(p < 0 or p > 100 for p in value.values()):
            raise ValueError("Stage probabilities must be within 0-100")
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value!r}") from e
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_raw(cls, raw: Any) -> "Policy":
        """Build a policy field by field, dropping anything malformed.

        Args:
            raw: A mapping (typically request JSON), a Policy, or anything else

        Returns:
            A Policy in which every invalid field is left at its default
        """
        if isinstance(raw, Policy):
            return raw
        if not isinstance(raw, dict):
            if raw is not None:
                logger.warning("policy_ignored", reason="not_a_mapping", received=type(raw).__name__)
            return cls()

        accepted: Dict[str, Any] = {}
        for name in cls.model_fields:
            if name not in raw or raw[name] is None:
                continue
            try:
                cls.model_validate({name: raw[name]})
            except ValidationError as e:
                logger.warning(
                    "policy_field_disabled",
                    field=name,
                    errors=e.error_count(),
                )
                continue
            accepted[name] = raw[name]

        return cls.model_validate(accepted)


def create_default_policy() -> Policy:
    """Policy matching the out-of-the-box automation settings."""
    return Policy(
        auto_apply_threshold=0.8,
        followup_days_by_stage={"prospect": 3, "negotiation": 5},
        business_hours=BusinessHours(),
        allow_stage_auto_move=True,
    )
