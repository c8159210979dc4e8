"""
CorchCRM Orchestrator - FastAPI calling layer.
Exposes the orchestration engine over HTTP for the review UI and ingestion jobs.
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncGenerator

from fastapi import Body, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from corchcrm.agents.client import get_generation_client
from corchcrm.orchestrator.engine import OrchestrationEngine
from corchcrm.orchestrator.ingestion import orchestrate_text
from corchcrm.schemas.actions import OrchestratorOutput
from corchcrm.schemas.policy import Policy

from .config import get_settings, is_dry_run
from .logging_config import get_logger, setup_logging
from .schemas import HealthResponse, TextOrchestrationRequest

# Initialize logging
setup_logging()
logger = get_logger("main")


@lru_cache(maxsize=1)
def get_engine() -> OrchestrationEngine:
    """Shared engine bound to the configured generation client."""
    return OrchestrationEngine(client=get_generation_client())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info("application_starting", app=settings.app_name, version=settings.app_version)

    if is_dry_run():
        logger.warning("dry_run_mode", detail="generation backend disabled; no actions will be proposed")

    yield

    client = get_generation_client()
    if hasattr(client, "close"):
        await client.close()
    logger.info("application_stopped")


# Create FastAPI app
app = FastAPI(
    title="CorchCRM Orchestrator API",
    description="Turns emails, call transcripts and notes into validated, policy-annotated CRM action proposals.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    settings = get_settings()
    return HealthResponse(
        app=settings.app_name,
        version=settings.app_version,
        dry_run_mode=is_dry_run(),
    )


# =============================================================================
# Orchestrator API
# =============================================================================

@app.post(
    "/api/orchestrate",
    response_model=OrchestratorOutput,
    response_model_exclude_none=True,
    tags=["Orchestrator"],
    summary="Propose actions for an interaction",
    description="Always answers 200 with an action list; degraded paths return a single log_action entry.",
)
async def orchestrate(
    payload: Any = Body(default=None),
    engine: OrchestrationEngine = Depends(get_engine),
) -> OrchestratorOutput:
    """Run the orchestrator on an interaction, its related entities and policy.

    The body is passed to the engine as-is so that invalid input yields the
    engine's informational action rather than a 422.
    """
    return await engine.orchestrate(payload)


@app.post(
    "/api/orchestrate/text",
    response_model=OrchestratorOutput,
    response_model_exclude_none=True,
    tags=["Orchestrator"],
    summary="Propose actions for free text",
)
async def orchestrate_free_text(
    request: TextOrchestrationRequest,
    engine: OrchestrationEngine = Depends(get_engine),
) -> OrchestratorOutput:
    """Resolve known entities in the text and orchestrate it as a note."""
    return await orchestrate_text(
        engine,
        request.text,
        companies=request.companies,
        contacts=request.contacts,
        deals=request.deals,
        policy=Policy.from_raw(request.policy),
        min_length=get_settings().ingest_min_text_length,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
