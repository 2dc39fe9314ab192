"""
Exception handlers mapping engine errors to HTTP responses
"""
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from core.errors import (
    AlertNotFoundError,
    InternalInvariantViolation,
    InvalidStateError,
    PermissionDeniedError,
    ShipmentNotFoundError,
    ShipmentTrackingError,
    ShipmentValidationError,
    TransientFailure,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ShipmentNotFoundError: 404,
    AlertNotFoundError: 404,
    InvalidStateError: 409,
    ShipmentValidationError: 422,
    PermissionDeniedError: 403,
    TransientFailure: 503,
    InternalInvariantViolation: 500,
}


def error_status(exc: ShipmentTrackingError) -> int:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 400


def register_exception_handlers(app: FastAPI) -> None:
    """Register engine error handlers on a FastAPI app"""

    @app.exception_handler(ShipmentTrackingError)
    async def _tracking_error(request: Request, exc: ShipmentTrackingError) -> JSONResponse:
        status_code = error_status(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc}")

        content = {"detail": str(exc), "code": exc.code}
        if isinstance(exc, ShipmentValidationError) and exc.errors:
            content["errors"] = jsonable_encoder(exc.errors)
        # Internal traces stay in the log
        if isinstance(exc, InternalInvariantViolation):
            content["detail"] = "Internal error"
        return JSONResponse(status_code=status_code, content=content)
