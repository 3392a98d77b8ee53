"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Pipeline metrics: orchestrator outcomes, phase timings, token refreshes,
  timeout notices
- track_phase(): context manager timing one orchestrator phase
- init_sentry(): Initialize Sentry for unhandled errors
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Pipeline Metrics ─────────────────────────────────────────────────────────

pipeline_runs_total = Counter(
    "deal_context_runs_total",
    "Orchestrator runs by terminal outcome",
    ["outcome"],
)

pipeline_phase_duration_seconds = Histogram(
    "deal_context_phase_duration_seconds",
    "Orchestrator phase duration in seconds",
    ["phase"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0),
)

token_refreshes_total = Counter(
    "deal_context_token_refreshes_total",
    "Upstream token refresh exchanges",
    ["service", "status"],
)

timeout_notices_total = Counter(
    "deal_context_timeout_notices_total",
    "Progress notices sent because a run exceeded the soft deadline",
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and duration per method/endpoint.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path
        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()
        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


@contextmanager
def track_phase(phase: str) -> Iterator[None]:
    """Observe the wall-clock duration of one orchestrator phase."""
    start_time = time.perf_counter()
    try:
        yield
    finally:
        pipeline_phase_duration_seconds.labels(phase=phase).observe(
            time.perf_counter() - start_time
        )


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK for unhandled exceptions.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
    )


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
