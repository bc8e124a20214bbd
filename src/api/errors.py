"""Exception handlers for the HTTP API.

Maps domain errors to HTTP responses that carry the name of the failing
guard, so clients can tell a stale write from an illegal transition.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.domain.ports import (
    ConcurrentModificationError,
    InvalidTransitionError,
    LifecycleError,
    PermissionDeniedError,
    RecordNotFoundError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: 422,
    InvalidTransitionError: 409,
    ConcurrentModificationError: 409,
    PermissionDeniedError: 403,
    RecordNotFoundError: 404,
}


def status_code_for(error: LifecycleError) -> int:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 400


async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.info(
        f"{request.method} {request.url.path} rejected ({exc.guard}): {exc}",
        extra={"guard": exc.guard, "record_id": exc.record_id, "endpoint": request.url.path},
    )
    content = {
        "error": type(exc).__name__,
        "detail": str(exc),
        "guard": exc.guard,
        "record_id": exc.record_id,
    }
    if isinstance(exc, ValidationError) and exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=status_code, content=content)


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} storage failure during {exc.operation}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "StorageError",
            "detail": "A storage error occurred",
            "operation": exc.operation,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LifecycleError, lifecycle_error_handler)
    app.add_exception_handler(StorageError, storage_error_handler)
