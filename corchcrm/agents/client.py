"""
Generation client for the orchestrator.
Wraps the OpenAI chat-completions API (Azure OpenAI or api.openai.com) behind a
single at-most-once call that returns schema-checked JSON or raises a typed
GenerationError.
"""

import asyncio
import json
import re
from functools import lru_cache
from typing import Any, Optional, Protocol, Type, Union

import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI
from pydantic import BaseModel, ValidationError
import structlog

from corchcrm.app.config import Settings, get_settings, is_dry_run
from corchcrm.schemas.actions import CandidateOutput, GenerationRequest

logger = structlog.get_logger()

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


# =============================================================================
# Errors
# =============================================================================

class GenerationError(Exception):
    """Base class for failures signaled by a generation client."""
    kind = "generation_error"


class InvalidResponseShape(GenerationError):
    """The backend answered, but not with JSON matching the output schema."""
    kind = "invalid_response_shape"


class BackendUnavailable(GenerationError):
    """Network, authentication, quota or server failure from the backend."""
    kind = "backend_unavailable"


class GenerationTimeout(GenerationError):
    """The backend did not answer within the configured timeout."""
    kind = "timeout"


# =============================================================================
# Client protocol
# =============================================================================

class GenerationClient(Protocol):
    """What the orchestration engine needs from a generation backend."""

    async def generate(
        self,
        request: GenerationRequest,
        output_schema: Type[BaseModel] = CandidateOutput,
    ) -> dict[str, Any]: ...


def parse_json_payload(text: str) -> Optional[Union[dict, list]]:
    """Parse model output leniently: code fences and surrounding prose are ignored."""
    text = _CODE_FENCE.sub("", text.strip()).strip()
    if not text:
        return None

    try:
        value = json.loads(text)
        if isinstance(value, (dict, list)):
            return value
    except json.JSONDecodeError:
        pass

    for opener, closer in (("{", "}"), ("[", "]")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start == -1 or end <= start:
            continue
        try:
            value = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            continue
        if isinstance(value, (dict, list)):
            return value

    return None


def conform(payload: Any, output_schema: Type[BaseModel]) -> dict[str, Any]:
    """Validate a parsed payload against the expected output shape."""
    if payload is None:
        raise InvalidResponseShape("Response did not contain a JSON object")
    try:
        return output_schema.model_validate(payload).model_dump(mode="json")
    except ValidationError as e:
        raise InvalidResponseShape(
            f"Response failed schema validation ({e.error_count()} errors)"
        ) from e


# =============================================================================
# OpenAI-backed client
# =============================================================================

class OpenAIGenerationClient:
    """Generation client backed by OpenAI chat completions."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        openai_client: Optional[Any] = None,
    ):
        """Initialize the client.

        Args:
            settings: Settings to use (defaults to the cached settings)
            openai_client: Pre-built async OpenAI client, mainly for tests
        """
        self.settings = settings or get_settings()
        self._openai_client = openai_client
        self._credential = None

    @property
    def model(self) -> str:
        if self.settings.azure_openai_endpoint:
            return self.settings.azure_openai_deployment
        return self.settings.openai_model

    def _get_openai_client(self) -> Any:
        """Build the SDK client lazily. SDK retries are disabled."""
        if self._openai_client is not None:
            return self._openai_client

        settings = self.settings
        timeout = settings.generation_timeout_seconds

        if settings.azure_openai_endpoint:
            if settings.azure_openai_api_key:
                self._openai_client = AsyncAzureOpenAI(
                    azure_endpoint=settings.azure_openai_endpoint,
                    api_key=settings.azure_openai_api_key,
                    api_version=settings.azure_openai_api_version,
                    timeout=timeout,
                    max_retries=0,
                )
                method = "api_key"
            else:
                from azure.identity.aio import DefaultAzureCredential, get_bearer_token_provider

                self._credential = DefaultAzureCredential()
                token_provider = get_bearer_token_provider(
                    self._credential,
                    "https://cognitiveservices.azure.com/.default",
                )
                self._openai_client = AsyncAzureOpenAI(
                    azure_endpoint=settings.azure_openai_endpoint,
                    azure_ad_token_provider=token_provider,
                    api_version=settings.azure_openai_api_version,
                    timeout=timeout,
                    max_retries=0,
                )
                method = "credential"
            logger.info(
                "generation_client_created",
                endpoint=settings.azure_openai_endpoint,
                deployment=settings.azure_openai_deployment,
                method=method,
            )
        elif settings.openai_api_key:
            self._openai_client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                timeout=timeout,
                max_retries=0,
            )
            logger.info("generation_client_created", model=settings.openai_model, method="api_key")
        else:
            raise BackendUnavailable(
                "No generation backend configured. "
                "Set CORCH_AZURE_OPENAI_ENDPOINT or CORCH_OPENAI_API_KEY."
            )

        return self._openai_client

    async def close(self) -> None:
        """Close client connections."""
        if self._openai_client is not None and hasattr(self._openai_client, "close"):
            await self._openai_client.close()
        self._openai_client = None
        if self._credential is not None:
            await self._credential.close()
            self._credential = None

    async def generate(
        self,
        request: GenerationRequest,
        output_schema: Type[BaseModel] = CandidateOutput,
    ) -> dict[str, Any]:
        """Run one chat completion and return output conforming to ``output_schema``.

        Args:
            request: Composed system and user messages
            output_schema: Pydantic model the parsed response must satisfy

        Returns:
            The validated response as a plain dict

        Raises:
            GenerationTimeout: The call exceeded the configured timeout
            BackendUnavailable: The backend could not be reached or refused the call
            InvalidResponseShape: The answer was not schema-conforming JSON
        """
        client = self._get_openai_client()
        timeout = self.settings.generation_timeout_seconds

        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": request.system},
                        {"role": "user", "content": request.user},
                    ],
                    temperature=self.settings.generation_temperature,
                    max_tokens=self.settings.generation_max_tokens,
                    response_format={"type": "json_object"},
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, openai.APITimeoutError) as e:
            raise GenerationTimeout(f"Generation timed out after {timeout}s") from e
        except openai.APIError as e:
            raise BackendUnavailable(f"Generation backend error: {e}") from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise InvalidResponseShape("Response did not contain choices")
        content = choices[0].message.content or ""

        usage = getattr(response, "usage", None)
        logger.debug(
            "generation_completed",
            model=self.model,
            usage={
                "prompt": getattr(usage, "prompt_tokens", None),
                "completion": getattr(usage, "completion_tokens", None),
            },
        )
        return conform(parse_json_payload(content), output_schema)


class DryRunGenerationClient:
    """Stand-in backend for dry-run mode: proposes nothing, calls nothing."""

    async def generate(
        self,
        request: GenerationRequest,
        output_schema: Type[BaseModel] = CandidateOutput,
    ) -> dict[str, Any]:
        logger.info("generation_skipped", reason="dry_run")
        return conform({"actions": []}, output_schema)


@lru_cache(maxsize=1)
def get_generation_client() -> Union[OpenAIGenerationClient, DryRunGenerationClient]:
    """
    Get a cached shared generation client.

    Note: This is cached, so configuration changes require a restart.
    """
    if is_dry_run():
        logger.warning("generation_backend_disabled", mode="dry_run")
        return DryRunGenerationClient()
    return OpenAIGenerationClient()
