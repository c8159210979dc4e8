"""
Tests for policy parsing and the auto-apply / stage side-output evaluator.
"""

from datetime import datetime, time, timezone

from corchcrm.orchestrator.policy import (
    evaluate_actions,
    followup_due,
    is_auto_eligible,
    review_reasons,
    suggest_probability,
)
from corchcrm.schemas.actions import Action, ActionTarget, ActionType
from corchcrm.schemas.entities import EntityRecord, RelatedEntities
from corchcrm.schemas.policy import BusinessHours, Policy, create_default_policy


def _update(confidence=None, **changes) -> Action:
    return Action(
        type=ActionType.UPDATE_ENTITY,
        target=ActionTarget.DEALS,
        id="d1",
        changes=changes or {"amount": 1000},
        reason="test",
        confidence=confidence,
    )


# =============================================================================
# Policy parsing
# =============================================================================

class TestPolicyParsing:
    """Malformed policy fields are disabled rather than rejected."""

    def test_default_policy(self):
        policy = create_default_policy()
        assert policy.auto_apply_threshold == 0.8
        assert policy.followup_days_by_stage == {"prospect": 3, "negotiation": 5}
        assert policy.business_hours.start == time(9, 0)
        assert policy.business_hours.end == time(18, 0)
        assert policy.business_hours.days == ["Mon", "Tue", "Wed", "Thu", "Fri"]

    def test_malformed_fields_are_dropped(self):
        policy = Policy.from_raw({
            "auto_apply_threshold": "high",
            "always_review_fields": ["amount", "close_date"],
            "business_hours": {"start": "18:00", "end": "09:00"},
            "followup_days_by_stage": {"prospect": -1},
        })
        assert policy.auto_apply_threshold is None
        assert policy.always_review_fields == {"amount", "close_date"}
        assert policy.business_hours is None
        assert policy.followup_days_by_stage == {}

    def test_out_of_range_threshold_disables_auto_apply(self):
        assert Policy.from_raw({"auto_apply_threshold": 80}).auto_apply_threshold is None
        assert Policy.from_raw({"auto_apply_threshold": 0.6}).auto_apply_threshold == 0.6

    def test_non_mapping_yields_empty_policy(self):
        assert Policy.from_raw("strict") == Policy()
        assert Policy.from_raw(None) == Policy()

    def test_business_hours_days_are_normalized(self):
        hours = BusinessHours(days=["friday", "mon", "Mon"])
        assert hours.days == ["Mon", "Fri"]
        assert hours.weekdays == {0, 4}

    def test_unknown_timezone_is_dropped(self):
        assert Policy.from_raw({"timezone": "Mars/Olympus"}).timezone == "UTC"


# =============================================================================
# Auto-apply decision
# =============================================================================

class TestAutoApply:
    """Threshold, always-review fields and suggestion handling."""

    def test_threshold_comparison(self):
        policy = Policy(auto_apply_threshold=0.85)
        assert is_auto_eligible(_update(0.9), policy)
        assert is_auto_eligible(_update(0.85), policy)
        assert not is_auto_eligible(_update(0.8), policy)
        assert not is_auto_eligible(_update(None), policy)

    def test_always_review_field_overrides_confidence(self):
        policy = Policy(auto_apply_threshold=0.5, always_review_fields={"amount"})
        action = _update(0.99, amount=40000)
        assert not is_auto_eligible(action, policy)
        assert review_reasons(action, policy) == ["field 'amount' always requires review"]

    def test_always_review_applies_to_data_too(self):
        policy = Policy(auto_apply_threshold=0.5, always_review_fields={"email"})
        action = Action(
            type=ActionType.CREATE_ENTITY,
            target=ActionTarget.CONTACTS,
            data={"name": "Ana", "email": "ana@acme.com"},
            reason="new contact",
            confidence=0.95,
        )
        assert not is_auto_eligible(action, policy)

    def test_suggestions_are_never_eligible(self):
        policy = Policy(auto_apply_threshold=0.0)
        action = Action(type=ActionType.SUGGEST, target=ActionTarget.DEALS, reason="maybe", confidence=1.0)
        assert not is_auto_eligible(action, policy)
        assert "suggestions always require review" in review_reasons(action, policy)

    def test_no_threshold_means_nothing_is_eligible(self):
        policy = Policy()
        assert not is_auto_eligible(_update(1.0), policy)
        assert review_reasons(_update(1.0), policy) == ["auto-apply is disabled"]

    def test_stage_auto_move_can_be_disabled(self):
        policy = Policy(auto_apply_threshold=0.5, allow_stage_auto_move=False)
        assert not is_auto_eligible(_update(0.9, stage="negotiation"), policy)
        assert is_auto_eligible(_update(0.9, amount=1), policy)


# =============================================================================
# Stage side-outputs
# =============================================================================

class TestStageSideOutputs:
    """Probability suggestions and follow-up scheduling."""

    def test_probability_follows_stage(self):
        policy = Policy()
        assert suggest_probability("negotiation", policy) == 70
        assert suggest_probability("Closed_Won", policy) == 100
        assert suggest_probability("unheard-of", policy) is None

    def test_probability_never_decreases(self):
        assert suggest_probability("negotiation", Policy(), current=80) == 80

    def test_backward_stage_move_drops_the_floor(self):
        assert suggest_probability("proposal", Policy(), current=70, current_stage="negotiation") == 50
        assert suggest_probability("negotiation", Policy(), current=80, current_stage="negotiation") == 80
        assert suggest_probability("negotiation", Policy(), current=80, current_stage="unlisted") == 80

    def test_followup_out_of_range_is_disabled(self):
        policy = Policy(followup_days_by_stage={"negotiation": 3000000}, business_hours=BusinessHours())
        now = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)
        assert followup_due("negotiation", policy, now) is None

    def test_lost_stage_resets_probability(self):
        assert suggest_probability("closed lost", Policy(), current=80) == 0

    def test_policy_overrides_probability_table(self):
        policy = Policy(stage_probabilities={"Negotiation": 60})
        assert suggest_probability("negotiation", policy) == 60

    def test_followup_without_business_hours(self):
        policy = Policy(followup_days_by_stage={"prospect": 3})
        now = datetime(2026, 10, 14, 20, 0, tzinfo=timezone.utc)
        assert followup_due("prospect", policy, now) == datetime(2026, 10, 17, 20, 0, tzinfo=timezone.utc)
        assert followup_due("negotiation", policy, now) is None

    def test_followup_rolls_past_weekend(self):
        policy = Policy(followup_days_by_stage={"prospect": 3}, business_hours=BusinessHours())
        # Wednesday evening + 3 days lands on Saturday.
        now = datetime(2026, 10, 14, 20, 0, tzinfo=timezone.utc)
        assert followup_due("prospect", policy, now) == datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

    def test_followup_moves_to_opening_time(self):
        policy = Policy(followup_days_by_stage={"proposal": 0}, business_hours=BusinessHours())
        now = datetime(2026, 10, 19, 6, 30, tzinfo=timezone.utc)
        assert followup_due("proposal", policy, now) == datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

    def test_followup_inside_window_is_unchanged(self):
        policy = Policy(followup_days_by_stage={"proposal": 1}, business_hours=BusinessHours())
        now = datetime(2026, 10, 19, 11, 15, tzinfo=timezone.utc)
        assert followup_due("proposal", policy, now) == datetime(2026, 10, 20, 11, 15, tzinfo=timezone.utc)

    def test_followup_respects_timezone(self):
        policy = Policy(
            followup_days_by_stage={"proposal": 0},
            business_hours=BusinessHours(),
            timezone="America/New_York",
        )
        # 12:00 UTC is 08:00 EDT, before opening.
        now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        assert followup_due("proposal", policy, now) == datetime(2026, 10, 19, 13, 0, tzinfo=timezone.utc)


# =============================================================================
# Evaluation
# =============================================================================

class TestEvaluateActions:
    """Decisions stay index-aligned and actions are never mutated."""

    def test_decisions_are_index_aligned(self):
        actions = [_update(0.9, stage="negotiation"), _update(0.6, amount=40000)]
        evaluation = evaluate_actions(actions, Policy(auto_apply_threshold=0.8))

        assert [d.index for d in evaluation.decisions] == [0, 1]
        assert [d.auto_eligible for d in evaluation.decisions] == [True, False]
        assert evaluation.decisions[0].suggested_probability == 70
        assert evaluation.decisions[1].suggested_probability is None

        auto, review = evaluation.partition()
        assert auto == [actions[0]]
        assert review == [actions[1]]

    def test_current_deal_probability_is_respected(self):
        related = RelatedEntities(deal=EntityRecord(id="d1", probability=85))
        evaluation = evaluate_actions([_update(0.9, stage="negotiation")], Policy(), related=related)
        assert evaluation.decisions[0].suggested_probability == 85

    def test_deal_moving_back_gets_the_stage_probability(self):
        related = RelatedEntities(deal=EntityRecord(id="d1", stage="negotiation", probability=70))
        evaluation = evaluate_actions([_update(0.9, stage="proposal")], Policy(), related=related)
        assert evaluation.decisions[0].suggested_probability == 50

    def test_followup_companion_task(self):
        action = _update(0.9, stage="prospect")
        policy = Policy(
            auto_apply_threshold=0.8,
            followup_days_by_stage={"prospect": 3},
            business_hours=BusinessHours(),
        )
        related = RelatedEntities(deal=EntityRecord(id="d1", title="Acme renewal"))
        now = datetime(2026, 10, 14, 20, 0, tzinfo=timezone.utc)

        evaluation = evaluate_actions([action], policy, related=related, now=now)

        assert len(evaluation.actions) == 2
        task = evaluation.actions[1]
        assert task.type == ActionType.CREATE_TASK
        assert task.target == ActionTarget.TASKS
        assert task.date == "2026-10-19T09:00:00Z"
        assert task.data["deal_id"] == "d1"
        assert "Acme renewal" in task.data["title"]
        assert evaluation.decisions[0].followup_due == datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
        # Companion tasks carry no confidence, so they go to review.
        assert evaluation.decisions[1].index == 1
        assert not evaluation.decisions[1].auto_eligible
        # The proposed action itself is untouched.
        assert evaluation.actions[0].changes == {"stage": "prospect"}

    def test_companions_can_be_left_out(self):
        policy = Policy(followup_days_by_stage={"prospect": 3})
        evaluation = evaluate_actions([_update(0.9, stage="prospect")], policy, include_companions=False)
        assert len(evaluation.actions) == 1
        assert len(evaluation.companions) == 1
        assert evaluation.decisions[0].followup_due is not None

    def test_stage_on_non_deal_target_is_ignored(self):
        action = Action(
            type=ActionType.UPDATE_ENTITY,
            target=ActionTarget.CONTACTS,
            id="c1",
            changes={"stage": "negotiation"},
            reason="r",
            confidence=0.9,
        )
        evaluation = evaluate_actions([action], Policy(followup_days_by_stage={"negotiation": 5}))
        assert evaluation.decisions[0].suggested_probability is None
        assert evaluation.companions == []
