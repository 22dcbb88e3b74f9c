from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError

from reviewflow.apps.api.errors import (
    config_exception_handler,
    http_exception_handler,
    reviewflow_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from reviewflow.apps.api.routes.cron import router as cron_router
from reviewflow.apps.api.routes.health import router as health_router
from reviewflow.apps.api.routes.ops import router as ops_router
from reviewflow.apps.api.routes.webhooks import router as webhooks_router
from reviewflow.core.config import get_settings
from reviewflow.core.errors import ConfigError, ReviewflowError
from reviewflow.core.logging import configure_logging
from reviewflow.services.plans import load_plan_catalog
from reviewflow.services.telemetry import record_request


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title=settings.app_name)
    # Thresholds are fixed for the life of the process and handed to the webhook consumer.
    app.state.plan_catalog = load_plan_catalog(settings)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(ConfigError)
    async def _config_exception_handler(request: Request, exc: ConfigError):
        return await config_exception_handler(request, exc)

    @app.exception_handler(ReviewflowError)
    async def _reviewflow_exception_handler(request: Request, exc: ReviewflowError):
        return await reviewflow_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router)
    app.include_router(cron_router)
    app.include_router(webhooks_router)
    app.include_router(ops_router)

    return app


app = create_app()
