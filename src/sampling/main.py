"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database and service initialization, and the v1 API
router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.sampling.activation.effects import EffectRunner
from src.sampling.activation.orchestrator import ActivationOrchestrator
from src.sampling.activation.repository import SqlActivationRepository
from src.sampling.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.sampling.api.v1.router import router as v1_router
from src.sampling.config import Environment, get_settings
from src.sampling.core.database import (
    close_db,
    create_engine_from_settings,
    create_session_factory,
    init_db,
)
from src.sampling.core.errors import ConfigurationError
from src.sampling.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.sampling.core.vault import get_vault
from src.sampling.crm.links import SqlCustomerLinkRepository
from src.sampling.crm.shopify import build_adapter
from src.sampling.crm.sync import CustomerSyncService
from src.sampling.notifications.dispatcher import build_dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, vault and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Credential Vault ────────────────────────────────────────────────
    # Production refuses to start without a master secret; elsewhere the
    # CRM integration is simply disabled.
    try:
        vault = get_vault()
    except ConfigurationError:
        if settings.ENVIRONMENT == Environment.production:
            log.error("vault.master_secret_missing")
            raise
        log.warning("vault.not_configured", hint="CRM integrations disabled")
        vault = None

    # ── Database ─────────────────────────────────────────────────────────
    engine = create_engine_from_settings(settings)
    session_factory = create_session_factory(engine)
    app.state.engine = engine
    app.state.session_factory = session_factory
    if settings.ENVIRONMENT != Environment.production:
        await init_db(engine)

    # ── Activation Services ──────────────────────────────────────────────
    repository = SqlActivationRepository(session_factory, settings=settings)

    crm_sync = None
    if vault is not None:
        crm_sync = CustomerSyncService(
            adapter_factory=partial(build_adapter, vault=vault, settings=settings),
            links=SqlCustomerLinkRepository(session_factory),
            settings=settings,
        )
    app.state.crm_sync = crm_sync

    effects = EffectRunner(
        repository=repository,
        notifier=build_dispatcher(settings),
        crm_sync=crm_sync,
        settings=settings,
    )
    app.state.orchestrator = ActivationOrchestrator(repository, effects, settings=settings)
    log.info(
        "app.started",
        environment=settings.ENVIRONMENT.value,
        crm_enabled=crm_sync is not None,
    )

    yield

    app.state.orchestrator = None
    await close_db(engine)
    log.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Display Activation API",
        version="0.1.0",
        description="Retail sampling display activation, ledger and CRM sync",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
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
