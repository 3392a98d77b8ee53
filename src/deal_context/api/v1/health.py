"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. Readiness
verifies the cache store answers PING and reports whether a language model
provider key is configured.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from src.deal_context.api.deps import get_app_settings, get_cache
from src.deal_context.config import Settings
from src.deal_context.core.cache import CacheStore

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(settings: Settings = Depends(get_app_settings)):
    """Basic liveness check. No external dependencies are touched."""
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(cache: CacheStore | None, settings: Settings) -> dict:
    checks: dict = {"redis": "ok", "litellm": "ok"}

    if cache is None:
        checks["redis"] = "error"
        checks["redis_error"] = "cache not initialized"
    else:
        try:
            if not await cache.ping():
                checks["redis"] = "error"
                checks["redis_error"] = "PING did not return PONG"
        except Exception as e:
            checks["redis"] = "error"
            checks["redis_error"] = str(e)

    if not (settings.ANTHROPIC_API_KEY or settings.OPENAI_API_KEY):
        checks["litellm"] = "no_keys"

    return checks


@router.get("/health/ready")
async def readiness_check(
    cache: CacheStore | None = Depends(get_cache),
    settings: Settings = Depends(get_app_settings),
):
    """Readiness check: 200 if Redis answers, 503 otherwise."""
    checks = await _check_dependencies(cache, settings)
    healthy = checks["redis"] == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if healthy else "degraded", "checks": checks},
    )
