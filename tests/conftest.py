"""
Shared fixtures: a stub generation backend, a fake OpenAI SDK client and
isolated settings.
"""

import asyncio
import copy
import os
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Optional

import pytest

# Keep the shared settings off any real backend
os.environ["CORCH_DRY_RUN_MODE"] = "true"
os.environ["CORCH_LOG_FORMAT"] = "text"

from corchcrm.agents.client import conform
from corchcrm.app.config import Settings
from corchcrm.orchestrator.engine import OrchestrationEngine
from corchcrm.schemas.actions import CandidateOutput

FIXED_NOW = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


class StubGenerationClient:
    """Generation client returning a fixed response and recording every call."""

    def __init__(
        self,
        response: Optional[Any] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.response = response if response is not None else {"actions": []}
        self.error = error
        self.delay = delay
        self.calls: list = []

    async def generate(self, request, output_schema=CandidateOutput):
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return conform(copy.deepcopy(self.response), output_schema)


class FakeCompletions:
    """Mimics ``client.chat.completions`` of the OpenAI SDK."""

    def __init__(self, content: Optional[str] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.content = content
        self.error = error
        self.delay = delay
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            id="chatcmpl-test",
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(prompt_tokens=120, completion_tokens=40),
        )


class FakeOpenAI:
    def __init__(self, completions: FakeCompletions):
        self.chat = SimpleNamespace(completions=completions)


def make_settings(**overrides) -> Settings:
    values = {
        "openai_api_key": "sk-test",
        "generation_timeout_seconds": 5.0,
        "retry_delay_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def stub_client() -> StubGenerationClient:
    return StubGenerationClient()


@pytest.fixture
def engine(stub_client, settings) -> OrchestrationEngine:
    return OrchestrationEngine(client=stub_client, settings=settings, clock=lambda: FIXED_NOW)


@pytest.fixture
def email_interaction() -> dict:
    return {
        "source": "email",
        "subject": "Re: Proposal",
        "body": "Client agreed to move stage to negotiation and increase budget to $40k",
        "from": "ana@acme.com",
        "to": "sales@corch.io",
    }
