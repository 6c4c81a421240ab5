"""FastAPI dependencies that hand out services built by the lifespan.

Services live on app.state; a missing one means startup skipped or failed
to build it, which is reported as 503 rather than a crash.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncEngine

from src.sampling.activation.orchestrator import ActivationOrchestrator


def get_orchestrator(request: Request) -> ActivationOrchestrator:
    """Retrieve the ActivationOrchestrator from app.state, 503 if not available."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Activation service not initialized",
        )
    return orchestrator


def get_engine(request: Request) -> AsyncEngine | None:
    """Return the database engine if the lifespan created one."""
    return getattr(request.app.state, "engine", None)
