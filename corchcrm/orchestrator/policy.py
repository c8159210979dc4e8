"""
Policy evaluation for validated actions.

Decides which actions are eligible for automatic application and which need a
human, and derives advisory side-outputs for deal stage changes: a probability
consistent with the new stage and a follow-up due date that respects business
hours. The evaluator never mutates the actions it is given.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from corchcrm.schemas.actions import Action, ActionDecision, ActionTarget, ActionType
from corchcrm.schemas.entities import EntityRecord, RelatedEntities
from corchcrm.schemas.policy import BusinessHours, Policy

logger = structlog.get_logger()

# Default pipeline probabilities (percent). Later stages never score lower
# than earlier ones, except terminal lost stages.
DEFAULT_STAGE_PROBABILITIES: Dict[str, float] = {
    "lead": 10,
    "prospect": 10,
    "contacted": 20,
    "discovery": 25,
    "qualified": 30,
    "proposal": 50,
    "negotiation": 70,
    "won": 100,
    "closed won": 100,
    "retention": 100,
    "lost": 0,
    "closed lost": 0,
}

LOST_STAGES = {"lost", "closed lost"}


def normalize_stage(stage: str) -> str:
    return " ".join(str(stage).replace("_", " ").replace("-", " ").lower().split())


@dataclass
class PolicyEvaluation:
    """Result of evaluating a list of actions against a policy."""
    actions: List[Action] = field(default_factory=list)
    decisions: List[ActionDecision] = field(default_factory=list)
    companions: List[Action] = field(default_factory=list)

    def partition(self) -> Tuple[List[Action], List[Action]]:
        """Split actions into (auto_eligible, needs_review)."""
        auto: List[Action] = []
        review: List[Action] = []
        for action, decision in zip(self.actions, self.decisions):
            (auto if decision.auto_eligible else review).append(action)
        return auto, review


# =============================================================================
# Auto-apply decision
# =============================================================================

def _stage_change(action: Action) -> Optional[str]:
    if action.target != ActionTarget.DEALS:
        return None
    stage = action.payload_value("stage")
    if isinstance(stage, str) and stage.strip():
        return stage.strip()
    return None


def review_reasons(action: Action, policy: Policy) -> List[str]:
    """Every reason the action cannot be auto-applied; empty means eligible."""
    reasons: List[str] = []

    if action.type == ActionType.SUGGEST:
        reasons.append("suggestions always require review")

    threshold = policy.auto_apply_threshold
    if threshold is None:
        reasons.append("auto-apply is disabled")
    elif action.confidence is None:
        reasons.append("no confidence reported")
    elif action.confidence < threshold:
        reasons.append(
            f"confidence {action.confidence:.2f} is below threshold {threshold:.2f}"
        )

    for name in action.payload_fields():
        if name in policy.always_review_fields:
            reasons.append(f"field '{name}' always requires review")

    if not policy.allow_stage_auto_move and _stage_change(action) is not None:
        reasons.append("deal stage changes require review")

    return reasons


def is_auto_eligible(action: Action, policy: Policy) -> bool:
    return not review_reasons(action, policy)


# =============================================================================
# Stage side-outputs
# =============================================================================

def suggest_probability(
    stage: str,
    policy: Policy,
    current: Optional[float] = None,
    current_stage: Optional[str] = None,
) -> Optional[float]:
    """Probability consistent with ``stage``; None when the stage is unknown.

    The current deal probability acts as a floor unless the deal moves to a
    lower-ranked stage or to a lost stage.
    """
    table = dict(DEFAULT_STAGE_PROBABILITIES)
    table.update({normalize_stage(k): v for k, v in policy.stage_probabilities.items()})

    key = normalize_stage(stage)
    if key not in table:
        return None
    probability = float(table[key])
    if key in LOST_STAGES:
        return probability
    if current_stage is not None:
        previous = table.get(normalize_stage(current_stage))
        if previous is not None and probability < float(previous):
            return probability
    if current is not None and current > probability:
        return float(current)
    return probability


def roll_into_business_hours(moment: datetime, hours: BusinessHours, tz) -> datetime:
    """Move ``moment`` forward to the next instant inside the business window."""
    local = moment.astimezone(tz)
    allowed = hours.weekdays
    for _ in range(8):
        if local.weekday() in allowed:
            if local.time() < hours.start:
                return local.replace(
                    hour=hours.start.hour, minute=hours.start.minute, second=0, microsecond=0
                )
            if local.time() < hours.end:
                return local
        local = (local + timedelta(days=1)).replace(
            hour=hours.start.hour, minute=hours.start.minute, second=0, microsecond=0
        )
    return local


def followup_due(stage: str, policy: Policy, now: datetime) -> Optional[datetime]:
    """Suggested follow-up time for a deal entering ``stage``, in UTC."""
    days_by_stage = {normalize_stage(k): v for k, v in policy.followup_days_by_stage.items()}
    days = days_by_stage.get(normalize_stage(stage))
    if days is None:
        return None
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    try:
        due = now + timedelta(days=days)
        if policy.business_hours is not None:
            due = roll_into_business_hours(due, policy.business_hours, policy.tzinfo)
        return due.astimezone(timezone.utc)
    except OverflowError:
        logger.warning("followup_out_of_range", stage=stage, days=days)
        return None


def format_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _current_deal(action: Action, related: Optional[RelatedEntities]) -> Optional[EntityRecord]:
    deal = related.deal if related else None
    if deal is None:
        return None
    if action.id is not None and deal.id is not None and action.id != deal.id:
        return None
    return deal


def _followup_task(action: Action, stage: str, due: datetime, related: Optional[RelatedEntities]) -> Action:
    deal = related.deal if related else None
    deal_id = action.id or (deal.id if deal else None)
    label = (deal.display_name if deal else None) or deal_id or "deal"
    due_iso = format_utc(due)
    data = {
        "title": f"Follow up on {label} ({stage})",
        "due_date": due_iso,
    }
    if deal_id:
        data["deal_id"] = deal_id
    return Action(
        type=ActionType.CREATE_TASK,
        target=ActionTarget.TASKS,
        data=data,
        date=due_iso,
        reason=f"Scheduled follow-up after deal moved to '{stage}'",
    )


# =============================================================================
# Entry point
# =============================================================================

def evaluate_actions(
    actions: Sequence[Action],
    policy: Optional[Policy] = None,
    related: Optional[RelatedEntities] = None,
    now: Optional[datetime] = None,
    include_companions: bool = True,
) -> PolicyEvaluation:
    """Annotate actions with auto-apply decisions and stage side-outputs.

    Args:
        actions: Validated actions, left untouched
        policy: Caller policy; None behaves like an empty policy
        related: Context entities, used for the current deal probability
        now: Anchor for follow-up dates (defaults to the current UTC time)
        include_companions: Whether follow-up tasks are appended to the result

    Returns:
        PolicyEvaluation with one decision per returned action
    """
    policy = policy or Policy()
    now = now or datetime.now(timezone.utc)
    evaluation = PolicyEvaluation()

    for index, action in enumerate(actions):
        decision = ActionDecision(
            index=index,
            auto_eligible=is_auto_eligible(action, policy),
            review_reasons=review_reasons(action, policy),
        )
        stage = _stage_change(action)
        if stage is not None:
            deal = _current_deal(action, related)
            decision.suggested_probability = suggest_probability(
                stage,
                policy,
                current=deal.probability if deal else None,
                current_stage=deal.stage if deal else None,
            )
            due = followup_due(stage, policy, now)
            if due is not None:
                decision.followup_due = due
                evaluation.companions.append(_followup_task(action, stage, due, related))
        evaluation.actions.append(action)
        evaluation.decisions.append(decision)

    if include_companions:
        for companion in evaluation.companions:
            index = len(evaluation.actions)
            evaluation.actions.append(companion)
            evaluation.decisions.append(
                ActionDecision(
                    index=index,
                    auto_eligible=is_auto_eligible(companion, policy),
                    review_reasons=review_reasons(companion, policy),
                )
            )

    logger.debug(
        "policy_evaluated",
        actions=len(evaluation.actions),
        auto_eligible=sum(1 for d in evaluation.decisions if d.auto_eligible),
        companions=len(evaluation.companions),
    )
    return evaluation
