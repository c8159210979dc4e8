"""Generation backend adapters."""

from corchcrm.agents.client import (
    BackendUnavailable,
    DryRunGenerationClient,
    GenerationClient,
    GenerationError,
    GenerationTimeout,
    InvalidResponseShape,
    OpenAIGenerationClient,
    get_generation_client,
    parse_json_payload,
)

__all__ = [
    "BackendUnavailable",
    "DryRunGenerationClient",
    "GenerationClient",
    "GenerationError",
    "GenerationTimeout",
    "InvalidResponseShape",
    "OpenAIGenerationClient",
    "get_generation_client",
    "parse_json_payload",
]
