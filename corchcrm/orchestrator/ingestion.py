"""
Free-text ingestion for the orchestrator.

Maps a plain text (a pasted note, an extracted document, a transcript) plus
the user's known companies, contacts and deals into an orchestration request.

Entity resolution is deliberately coarse: the first entity whose name appears
verbatim (case-sensitive) in the text wins. Fuzzy or embedding-based matching
is a known limitation left to callers that need it.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import ValidationError
import structlog

from corchcrm.orchestrator.engine import OrchestrationEngine
from corchcrm.orchestrator.policy import format_utc
from corchcrm.schemas.actions import OrchestratorInput, OrchestratorOutput
from corchcrm.schemas.entities import (
    EntityRecord,
    Interaction,
    InteractionSource,
    NamedEntity,
    RelatedEntities,
)
from corchcrm.schemas.policy import Policy

logger = structlog.get_logger()

MIN_TEXT_LENGTH = 10

EntityLike = Union[NamedEntity, EntityRecord, Mapping[str, Any]]


def _entity_name(entity: EntityLike) -> Optional[str]:
    if isinstance(entity, NamedEntity):
        return entity.name
    if isinstance(entity, EntityRecord):
        return entity.display_name
    if isinstance(entity, Mapping):
        name = entity.get("name") or entity.get("title")
        return name if isinstance(name, str) else None
    return None


def _to_record(entity: EntityLike) -> Optional[EntityRecord]:
    if isinstance(entity, EntityRecord):
        return entity
    if isinstance(entity, NamedEntity):
        return EntityRecord.model_validate(entity.model_dump())
    try:
        return EntityRecord.model_validate(dict(entity))
    except (ValidationError, TypeError, ValueError):
        logger.warning("entity_record_invalid", name=_entity_name(entity))
        return None


def resolve_entity(text: str, entities: Optional[Iterable[EntityLike]]) -> Optional[EntityRecord]:
    """First entity whose name occurs in ``text``, or None."""
    for entity in entities or ():
        name = _entity_name(entity)
        if name and name in text:
            return _to_record(entity)
    return None


def build_text_input(
    text: str,
    companies: Optional[Iterable[EntityLike]] = None,
    contacts: Optional[Iterable[EntityLike]] = None,
    deals: Optional[Iterable[EntityLike]] = None,
    policy: Optional[Policy] = None,
    now: Optional[datetime] = None,
) -> OrchestratorInput:
    """Wrap free text as a note interaction with resolved context."""
    now = now or datetime.now(timezone.utc)
    return OrchestratorInput(
        interaction=Interaction(
            source=InteractionSource.NOTE,
            body=text,
            timestamp=format_utc(now),
        ),
        related_entities=RelatedEntities(
            company=resolve_entity(text, companies),
            contact=resolve_entity(text, contacts),
            deal=resolve_entity(text, deals),
        ),
        policy=policy or Policy(),
    )


async def orchestrate_text(
    engine: OrchestrationEngine,
    text: Optional[str],
    companies: Optional[Iterable[EntityLike]] = None,
    contacts: Optional[Iterable[EntityLike]] = None,
    deals: Optional[Iterable[EntityLike]] = None,
    policy: Optional[Policy] = None,
    min_length: int = MIN_TEXT_LENGTH,
) -> OrchestratorOutput:
    """Orchestrate a free text, skipping the model for empty or too-short input.

    Args:
        engine: Engine used for the model call
        text: Free text to analyze
        companies: Known companies (each with ``id`` and ``name``)
        contacts: Known contacts
        deals: Known deals
        policy: Optional automation policy
        min_length: Shortest stripped text worth a model call

    Returns:
        OrchestratorOutput; empty when the text was skipped
    """
    if not text or len(text.strip()) < min_length:
        logger.info("text_ingestion_skipped", length=len(text or ""), min_length=min_length)
        return OrchestratorOutput()

    request = build_text_input(
        text,
        companies=companies,
        contacts=contacts,
        deals=deals,
        policy=policy,
        now=engine.clock(),
    )
    return await engine.orchestrate(request)
