"""Display activation endpoint.

POST /api/v1/displays/activate accepts the camelCase activation form and maps
the activation error taxonomy onto HTTP:

- 200 {ok, storeId, storeName, message, effects}
- 400 {error, missingFields, invalidFields}
- 404 {error}
- 409 {error, storeId}
- 500 {error, details}
"""

from __future__ import annotations

from typing import Any

import pydantic
import structlog
from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse

from src.sampling.activation.orchestrator import ActivationOrchestrator
from src.sampling.activation.schemas import ActivationRequest
from src.sampling.api.deps import get_orchestrator
from src.sampling.core.errors import ConflictError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/displays", tags=["activation"])


def _parse_request(payload: dict[str, Any]) -> ActivationRequest:
    """Parse the body, reporting type errors as invalid fields."""
    try:
        return ActivationRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        invalid: dict[str, str] = {}
        for error in exc.errors():
            loc = [str(part) for part in error["loc"]]
            field_name = loc[0] if loc else "body"
            if field_name == "initialInventory" and len(loc) > 1:
                field_name = f"initialInventory.{loc[1]}"
            invalid.setdefault(field_name, error["msg"])
        raise ValidationError(invalid_fields=invalid) from exc


def _validation_response(exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": exc.message,
            "missingFields": exc.fields,
            "invalidFields": exc.invalid_fields,
        },
    )


@router.post("/activate")
async def activate_display(
    payload: dict[str, Any] = Body(...),
    orchestrator: ActivationOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Activate a display and create or link its store."""
    try:
        request = _parse_request(payload)
        report = await orchestrator.activate(request)
    except ValidationError as exc:
        return _validation_response(exc)
    except NotFoundError as exc:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": exc.message},
        )
    except ConflictError as exc:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"error": exc.message, "storeId": exc.store_id},
        )
    except Exception as exc:
        logger.exception(
            "activation.unexpected_error",
            display_id=payload.get("displayId"),
            error=str(exc),
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "An error occurred while activating the display",
                "details": str(exc),
            },
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "ok": True,
            "storeId": report.store_id,
            "storeName": report.store_name,
            "message": report.message,
            "mode": report.mode.value,
            "replayed": report.replayed,
            "effects": [effect.model_dump(mode="json") for effect in report.effects],
        },
    )
