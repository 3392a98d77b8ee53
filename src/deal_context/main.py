"""FastAPI application factory.

Creates the app with logging and metrics middleware, Sentry, lifespan wiring
of the cache store, credential caches, Slack client, language model and
orchestrator, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.deal_context.api.middleware.logging import LoggingMiddleware
from src.deal_context.api.v1.router import router as v1_router
from src.deal_context.auth import (
    HUBSPOT_REFRESH_BUFFER_MS,
    SLACK_REFRESH_BUFFER_MS,
    CredentialCache,
    HubSpotTokenExchanger,
    SlackTokenExchanger,
)
from src.deal_context.chat.context import ThreadContextCache
from src.deal_context.chat.slack import SlackClient
from src.deal_context.config import Settings, get_settings
from src.deal_context.core.cache import CacheStore, close_cache, init_cache
from src.deal_context.core.logging import configure_structlog
from src.deal_context.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.deal_context.core.singleflight import SingleFlight
from src.deal_context.crm.client import HubSpotClient
from src.deal_context.orchestrator.pipeline import DealContextOrchestrator
from src.deal_context.services.llm import LLMService


def build_credentials(settings: Settings, cache: CacheStore) -> dict[str, CredentialCache]:
    """Credential caches keyed by service, sharing one refresh single-flight group."""
    flight = SingleFlight()
    hubspot = CredentialCache(
        cache,
        HubSpotTokenExchanger(
            settings.HUBSPOT_CLIENT_ID,
            settings.HUBSPOT_CLIENT_SECRET,
            base_url=settings.HUBSPOT_BASE_URL,
            timeout=settings.TOKEN_EXCHANGE_TIMEOUT,
        ),
        refresh_buffer_ms=HUBSPOT_REFRESH_BUFFER_MS,
        singleflight=flight,
    )
    slack = CredentialCache(
        cache,
        SlackTokenExchanger(
            settings.SLACK_CLIENT_ID,
            settings.SLACK_CLIENT_SECRET,
            base_url=settings.SLACK_BASE_URL,
            timeout=settings.TOKEN_EXCHANGE_TIMEOUT,
        ),
        refresh_buffer_ms=SLACK_REFRESH_BUFFER_MS,
        static_token=settings.SLACK_BOT_TOKEN,
        singleflight=flight,
    )
    return {hubspot.service: hubspot, slack.service: slack}


def build_orchestrator(settings: Settings, cache: CacheStore) -> DealContextOrchestrator:
    """Wire the orchestrator and its collaborators around one cache store."""
    credentials = build_credentials(settings, cache)
    slack = SlackClient(
        credentials["slack"].get_token,
        base_url=settings.SLACK_BASE_URL,
        timeout=settings.SLACK_TIMEOUT,
    )

    return DealContextOrchestrator(
        slack=slack,
        crm_credentials=credentials["hubspot"],
        crm_factory=partial(
            HubSpotClient, base_url=settings.HUBSPOT_BASE_URL, timeout=settings.HUBSPOT_TIMEOUT
        ),
        thread_cache=ThreadContextCache(cache, ttl_seconds=settings.THREAD_CONTEXT_TTL_SECONDS),
        llm=LLMService(settings),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: open the cache and wire the pipeline; close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog(settings)

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    cache = init_cache(settings)
    app.state.cache = cache
    app.state.orchestrator = build_orchestrator(settings, cache)
    log.info("app.started", environment=settings.ENVIRONMENT.value)

    yield

    await close_cache(cache)
    log.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Deal Context API",
        version="0.1.0",
        description="Answers Slack questions about a deal from CRM and channel history",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
