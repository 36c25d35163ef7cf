# src/eoty_platform/main.py
"""Main entry point for the EOTY platform API."""

from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from eoty_platform.api.v1 import (
    admin_moderation_router,
    discussions_router,
    forum_router,
    lessons_router,
)
from eoty_platform.core.errors import PlatformError
from eoty_platform.core.settings import settings
from eoty_platform.db.session import create_tables
from eoty_platform.schemas.common import ErrorEnvelope
from eoty_platform.services.anomalies import AnomalySweepWorker

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_HTTP_CODES = {
    400: "validation",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "validation",
    409: "conflict",
    429: "rate_limited",
    503: "unavailable",
}

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Forum moderation pipeline and lesson video sessions",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers; error responses share one documented envelope
ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    code: {"model": ErrorEnvelope} for code in (400, 401, 403, 404, 409, 429, 500, 503)
}
for router in (admin_moderation_router, forum_router, lessons_router, discussions_router):
    app.include_router(router, prefix="/api/v1", responses=ERROR_RESPONSES)


def error_body(code: str, detail: str | None, **extra: object) -> dict[str, object]:
    """Build the error envelope, dropping unset optional fields."""
    body: dict[str, object] = {"success": False, "message": code, "detail": detail}
    body.update({key: value for key, value in extra.items() if value is not None})
    return body


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request.state.request_id
    return response


@app.exception_handler(PlatformError)
async def platform_error_handler(request: Request, exc: PlatformError) -> JSONResponse:
    headers = None
    retry_after = exc.extra().get("retry_after")
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.detail, **exc.extra()),
        headers=headers,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "internal")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    )
    return JSONResponse(status_code=400, content=error_body("validation", problems))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    correlation_id = getattr(request.state, "request_id", None) or request.headers.get(
        REQUEST_ID_HEADER
    ) or uuid.uuid4().hex
    logger.exception("Unhandled error on %s %s [%s]", request.method, request.url.path, correlation_id)
    return JSONResponse(
        status_code=500,
        content=error_body("internal", "Internal server error", correlation_id=correlation_id),
    )


@app.on_event("startup")
async def on_startup() -> None:
    create_tables()
    if settings.anomaly_sweep_enabled:
        worker = AnomalySweepWorker()
        await worker.start()
        app.state.anomaly_worker = worker
    else:
        app.state.anomaly_worker = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: AnomalySweepWorker | None = getattr(app.state, "anomaly_worker", None)
    if worker:
        await worker.stop()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("eoty_platform.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
