"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. Readiness
round-trips the database; CRM and notification services are best-effort and
never make the service unready.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from src.sampling.api.deps import get_engine
from src.sampling.config import get_settings
from src.sampling.core.database import check_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(engine: AsyncEngine | None) -> dict:
    """Check database connectivity and vault configuration."""
    settings = get_settings()
    checks: dict = {
        "database": "ok",
        "vault": "ok" if settings.ENCRYPTION_KEY else "not_configured",
    }

    if engine is None:
        checks["database"] = "error"
        checks["database_error"] = "Engine not initialized"
        return checks

    try:
        await check_db(engine)
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check(engine: AsyncEngine | None = Depends(get_engine)):
    """Readiness check: verifies database connectivity.

    Returns 200 if the database answers, 503 otherwise.
    """
    checks = await _check_dependencies(engine)
    healthy = checks.get("database") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if healthy else "degraded",
            "checks": checks,
        },
    )
