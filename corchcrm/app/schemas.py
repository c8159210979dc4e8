"""
Request/response models for the orchestrator HTTP API.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from corchcrm.schemas.entities import NamedEntity


class TextOrchestrationRequest(BaseModel):
    """Free text plus the user's known entities, for text ingestion."""
    text: str = Field(..., description="Note, document excerpt or transcript to analyze")
    companies: list[NamedEntity] = Field(default_factory=list)
    contacts: list[NamedEntity] = Field(default_factory=list)
    deals: list[NamedEntity] = Field(default_factory=list)
    policy: Optional[dict[str, Any]] = Field(
        default=None,
        description="Automation policy; malformed fields are ignored",
    )


class HealthResponse(BaseModel):
    """Health check payload."""
    status: str = "healthy"
    app: str
    version: str
    dry_run_mode: bool
