"""FastAPI dependencies for resources created in the application lifespan.

The lifespan stores long-lived handles on ``app.state``; endpoints pull them
through these functions so tests can swap them out with
``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.deal_context.config import Settings, get_settings
from src.deal_context.core.cache import CacheStore
from src.deal_context.orchestrator.pipeline import DealContextOrchestrator


def get_app_settings() -> Settings:
    return get_settings()


async def get_cache(request: Request) -> CacheStore | None:
    """The shared cache store, or None if the lifespan has not created it."""
    return getattr(request.app.state, "cache", None)


async def get_orchestrator(request: Request) -> DealContextOrchestrator:
    """The orchestrator built at startup.

    Raises:
        HTTPException(503): If startup did not finish wiring the pipeline.
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator not initialized",
        )
    return orchestrator
