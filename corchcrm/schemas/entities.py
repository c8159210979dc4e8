"""
Interaction and related-entity models consumed by the orchestrator.
"""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class InteractionSource(str, Enum):
    """Channel an interaction arrived through."""
    EMAIL = "email"
    VOICE = "voice"
    MEETING = "meeting"
    NOTE = "note"


class InteractionDirection(str, Enum):
    """Whether the interaction was received or sent by the user."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Interaction(BaseModel):
    """A single communication event to be mined for CRM-relevant facts."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: InteractionSource
    subject: Optional[str] = None
    body: Optional[str] = Field(default=None, description="Primary text payload")
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    timestamp: Optional[str] = Field(default=None, description="ISO-8601 timestamp")
    direction: Optional[InteractionDirection] = None


class EntityRecord(BaseModel):
    """
    Partial CRM record supplied as context.

    Only a handful of descriptive fields are named; anything else the caller
    sends is kept in the model's extra bag and forwarded to the prompt as-is.
    """

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    stage: Optional[str] = None
    probability: Optional[float] = None
    amount: Optional[Union[int, float]] = None
    owner: Optional[str] = None
    owner_email: Optional[str] = None
    close_date: Optional[str] = None
    domain: Optional[str] = None
    industry: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        return self.name or self.title or self.full_name


class RelatedEntities(BaseModel):
    """Best-effort business context looked up by the caller."""
    company: Optional[EntityRecord] = None
    contact: Optional[EntityRecord] = None
    deal: Optional[EntityRecord] = None

    def is_empty(self) -> bool:
        return self.company is None and self.contact is None and self.deal is None


class NamedEntity(BaseModel):
    """Entry of a name-indexed entity list used by the text-ingestion adapter."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str
    name: str
