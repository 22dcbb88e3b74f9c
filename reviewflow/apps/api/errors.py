from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from reviewflow.core.errors import ConfigError, ReviewflowError


logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    # Keep the flat {error} body used by every route in this service.
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(content={"error": message}, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        content={"error": "Validation error", "details": exc.errors()},
        status_code=422,
    )


async def config_exception_handler(request: Request, exc: ConfigError) -> JSONResponse:
    # Name the missing settings so operators can fix the deployment without logs.
    logger.error("config_error path=%s missing=%s", request.url.path, sorted(exc.missing))
    return JSONResponse(content={"error": str(exc), "missing": exc.missing}, status_code=500)


async def reviewflow_exception_handler(request: Request, exc: ReviewflowError) -> JSONResponse:
    logger.error("request_failed path=%s code=%s message=%s", request.url.path, exc.code, exc)
    return JSONResponse(content={"error": str(exc), "code": exc.code}, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; the log keeps them.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    return JSONResponse(content={"error": "Internal server error"}, status_code=500)
