"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- activations_total / activation_effects_total / crm_sync_total counters
- track_effect(): Context manager recording side-effect outcome and duration
- init_sentry(): Initialize Sentry with activation-aware before_send callback
- get_metrics_response(): Response body for the /metrics route
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import sentry_sdk
import structlog
from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
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

# ── Activation Metrics ───────────────────────────────────────────────────────

activations_total = Counter(
    "activations_total",
    "Display activation attempts",
    ["mode", "result"],
)

activation_effects_total = Counter(
    "activation_effects_total",
    "Post-commit activation side effects",
    ["effect", "status"],
)

activation_effect_duration_seconds = Histogram(
    "activation_effect_duration_seconds",
    "Post-commit side effect duration in seconds",
    ["effect"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── CRM Metrics ──────────────────────────────────────────────────────────────

crm_sync_total = Counter(
    "crm_sync_total",
    "CRM customer sync operations",
    ["action"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

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


# ── Effect Metrics Helper ───────────────────────────────────────────────────


@asynccontextmanager
async def track_effect(effect: str) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that tracks one post-commit side effect.

    Usage:
        async with track_effect("crm_tag_sync") as tracker:
            outcome = await run_it()
            tracker["status"] = outcome.status

    Records the duration histogram and a status counter. The status defaults
    to "ok", becomes "failed" if the body raises, and can be overridden by
    setting tracker["status"].
    """
    tracker: dict[str, Any] = {"status": "ok"}
    start_time = time.perf_counter()

    try:
        yield tracker
    except Exception:
        tracker["status"] = "failed"
        raise
    finally:
        duration = time.perf_counter() - start_time
        activation_effect_duration_seconds.labels(effect=effect).observe(duration)
        activation_effects_total.labels(effect=effect, status=tracker["status"]).inc()


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with activation-aware event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Copy bound display/store ids from structlog context into tags."""
        context = structlog.contextvars.get_contextvars()
        for key in ("display_id", "store_id", "request_id"):
            if key in context:
                event.setdefault("tags", {})[key] = context[key]
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
