"""
Orchestration engine: interaction in, validated action list out.

State machine:
  IDLE → VALIDATING_INPUT → INVOKING_MODEL → NORMALIZING_OUTPUT → DONE
with ERRORED reachable from every step. ``orchestrate`` is total: every call
returns an OrchestratorOutput, and failures are reported through the
structured log instead of being raised.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError
import structlog

from corchcrm.agents.client import (
    BackendUnavailable,
    GenerationClient,
    GenerationError,
    GenerationTimeout,
)
from corchcrm.app.config import Settings, get_settings
from corchcrm.orchestrator.policy import evaluate_actions
from corchcrm.orchestrator.prompts import compose_request
from corchcrm.orchestrator.validator import validate_actions_with_report
from corchcrm.schemas.actions import (
    Action,
    ActionTarget,
    ActionType,
    CandidateOutput,
    OrchestratorInput,
    OrchestratorOutput,
)
from corchcrm.schemas.entities import EntityRecord, Interaction, RelatedEntities
from corchcrm.schemas.policy import Policy

logger = structlog.get_logger()

INVALID_INPUT_REASON = "Invalid input: missing interaction.source"
MALFORMED_INPUT_REASON = "Invalid input: malformed interaction"
MODEL_ERROR_REASON = "Model error"

_RETRYABLE = (GenerationTimeout, BackendUnavailable)


class EngineState(str, Enum):
    """Orchestration states."""
    IDLE = "idle"
    VALIDATING_INPUT = "validating_input"
    INVOKING_MODEL = "invoking_model"
    NORMALIZING_OUTPUT = "normalizing_output"
    DONE = "done"
    ERRORED = "errored"


def fallback_output(reason: str) -> OrchestratorOutput:
    """The single informational action returned on any degraded path."""
    return OrchestratorOutput(
        actions=[
            Action(
                type=ActionType.LOG_ACTION,
                target=ActionTarget.HISTORY,
                reason=reason,
                confidence=0.0,
            )
        ]
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OrchestrationEngine:
    """
    Turns one interaction into a validated, policy-annotated action list.

    The engine holds no per-call state: the generation client is injected
    once and every ``orchestrate`` call is an independent transaction, so
    many calls may run concurrently on the same instance.
    """

    def __init__(
        self,
        client: GenerationClient,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the engine.

        Args:
            client: Generation backend adapter
            settings: Settings to use (defaults to the cached settings)
            clock: Source of "now" when the interaction carries no timestamp
        """
        self.client = client
        self.settings = settings or get_settings()
        self.clock = clock or _utc_now

    @staticmethod
    def _transition(log: Any, current: EngineState, target: EngineState) -> EngineState:
        log.debug("orchestration_transition", from_state=current.value, to_state=target.value)
        return target

    async def orchestrate(
        self,
        request: Union[OrchestratorInput, Dict[str, Any], None],
    ) -> OrchestratorOutput:
        """Run one orchestration.

        Args:
            request: An OrchestratorInput or its JSON-like mapping

        Returns:
            OrchestratorOutput; a single ``log_action`` entry on failure
        """
        log = logger.bind(orchestration_id=uuid.uuid4().hex[:12])
        state = EngineState.IDLE

        try:
            state = self._transition(log, state, EngineState.VALIDATING_INPUT)
            parsed, failure = self._validate_input(request, log)
            if parsed is None:
                state = self._transition(log, state, EngineState.ERRORED)
                log.warning("orchestration_input_rejected", reason=failure)
                return fallback_output(failure)

            log.info(
                "orchestration_started",
                source=parsed.interaction.source.value,
                has_related=not parsed.related_entities.is_empty(),
            )

            state = self._transition(log, state, EngineState.INVOKING_MODEL)
            try:
                candidate = await self._invoke_model(parsed, log)
            except GenerationError as e:
                state = self._transition(log, state, EngineState.ERRORED)
                log.error("generation_failed", error_kind=e.kind, error=str(e))
                return fallback_output(MODEL_ERROR_REASON)

            state = self._transition(log, state, EngineState.NORMALIZING_OUTPUT)
            output = self._normalize_output(candidate, parsed, log)

            state = self._transition(log, state, EngineState.DONE)
            log.info(
                "orchestration_completed",
                actions=len(output.actions),
                auto_eligible=len(output.auto_eligible_actions()),
            )
            return output

        except Exception:
            log.exception("orchestration_failed", state=state.value)
            return fallback_output(MODEL_ERROR_REASON)

    # =========================================================================
    # Validating input
    # =========================================================================

    def _validate_input(
        self,
        request: Union[OrchestratorInput, Dict[str, Any], None],
        log: Any,
    ) -> tuple[Optional[OrchestratorInput], str]:
        """Parse the request; only the interaction is mandatory."""
        if isinstance(request, OrchestratorInput):
            return request, ""
        if not isinstance(request, dict):
            return None, INVALID_INPUT_REASON

        raw_interaction = request.get("interaction")
        if not isinstance(raw_interaction, dict) or not raw_interaction.get("source"):
            return None, INVALID_INPUT_REASON

        try:
            interaction = Interaction.model_validate(raw_interaction)
        except ValidationError as e:
            log.debug("interaction_invalid", errors=e.errors(include_url=False, include_input=False))
            fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
            if "source" in fields:
                return None, INVALID_INPUT_REASON
            return None, MALFORMED_INPUT_REASON

        return (
            OrchestratorInput(
                interaction=interaction,
                related_entities=self._parse_related(request.get("related_entities"), log),
                policy=Policy.from_raw(request.get("policy")),
            ),
            "",
        )

    @staticmethod
    def _parse_related(raw: Any, log: Any) -> RelatedEntities:
        """Keep every related record that parses; drop the rest."""
        if isinstance(raw, RelatedEntities):
            return raw
        if not isinstance(raw, dict):
            return RelatedEntities()

        records: Dict[str, EntityRecord] = {}
        for key in ("company", "contact", "deal"):
            value = raw.get(key)
            if value is None:
                continue
            try:
                records[key] = EntityRecord.model_validate(value)
            except ValidationError as e:
                log.warning("related_entity_ignored", entity=key, errors=e.error_count())
        return RelatedEntities(**records)

    # =========================================================================
    # Invoking model
    # =========================================================================

    async def _invoke_model(self, parsed: OrchestratorInput, log: Any) -> Dict[str, Any]:
        """Call the generation client, retrying only when configured to."""
        request = compose_request(
            parsed.interaction,
            parsed.related_entities,
            parsed.policy,
        )

        max_attempts = self.settings.generation_max_attempts
        retry_delay = self.settings.retry_delay_seconds
        backoff = self.settings.retry_backoff_factor

        # The adapter applies its own timeout; this bound also covers
        # injected clients that do not.
        timeout = self.settings.generation_timeout_seconds

        for attempt in range(1, max_attempts + 1):
            try:
                try:
                    return await asyncio.wait_for(
                        self.client.generate(request, CandidateOutput),
                        timeout=timeout,
                    )
                except asyncio.TimeoutError as e:
                    raise GenerationTimeout(f"No answer within {timeout}s") from e
            except _RETRYABLE as e:
                if attempt >= max_attempts:
                    raise
                log.warning(
                    "generation_retry",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error_kind=e.kind,
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= backoff

        raise GenerationError("Generation was not attempted")

    # =========================================================================
    # Normalizing output
    # =========================================================================

    def _anchor_time(self, interaction: Interaction) -> datetime:
        """The interaction's own timestamp, falling back to the clock."""
        if interaction.timestamp:
            try:
                moment = datetime.fromisoformat(interaction.timestamp.replace("Z", "+00:00"))
            except ValueError:
                moment = None
            if moment is not None:
                if moment.tzinfo is None:
                    moment = moment.replace(tzinfo=timezone.utc)
                return moment
        return self.clock()

    def _normalize_output(
        self,
        candidate: Any,
        parsed: OrchestratorInput,
        log: Any,
    ) -> OrchestratorOutput:
        report = validate_actions_with_report(candidate)
        if report.dropped:
            log.warning(
                "actions_dropped",
                dropped=report.dropped,
                reasons=sorted(set(report.drop_reasons)),
            )

        evaluation = evaluate_actions(
            report.actions,
            policy=parsed.policy,
            related=parsed.related_entities,
            now=self._anchor_time(parsed.interaction),
            include_companions=self.settings.add_followup_tasks,
        )
        return OrchestratorOutput(actions=evaluation.actions, decisions=evaluation.decisions)
