"""
Main Application - FastAPI application setup.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from app.api.admin_routes import router as admin_router
from app.api.auth_routes import router as auth_router
from app.config import settings
from app.db.migration_runner import run_migrations
from app.db.session import check_database, close_engines
from app.exceptions import AuthenticationError, AuthServiceError, InternalError
from app.models.api import ApiResponse, ErrorResponse, HealthData
from app.observability import get_logger, metrics, setup_logging, setup_tracing
from app.observability.metrics import render_metrics
from app.observability.tracing import instrument_fastapi

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Applies pending migrations on startup and disposes engines on shutdown.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )
    if settings.run_migrations_on_startup:
        await asyncio.to_thread(run_migrations)

    yield

    logger.info("application_shutting_down")
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


def error_response(status_code: int, message: str, error: str | None = None) -> JSONResponse:
    body = ErrorResponse(message=message, error=error)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


@app.exception_handler(AuthServiceError)
async def auth_error_handler(request: Request, exc: AuthServiceError) -> JSONResponse:
    """Single mapping from the typed error hierarchy to HTTP."""
    log = logger.warning if isinstance(exc, AuthenticationError) else logger.info
    log(
        "request_rejected",
        path=request.url.path,
        method=request.method,
        status_code=exc.status_code,
        error=exc.error_code,
    )
    metrics.record_error(exc.error_code, request.url.path)
    return error_response(exc.status_code, exc.message, exc.error_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed or incomplete bodies become a 400 in the standard envelope."""
    errors = exc.errors()
    fields = [".".join(str(part) for part in e.get("loc", ()) if part != "body") for e in errors]

    # Only the first message is shown; inputs are not logged since they may hold passwords
    first = errors[0] if errors else {}
    message = str(first.get("msg", "Invalid request")).removeprefix("Value error, ")

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        fields=fields,
    )
    metrics.record_error("VALIDATION_ERROR", request.url.path)
    return error_response(400, message, "VALIDATION_ERROR")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    metrics.record_error(type(exc).__name__, request.url.path)
    internal = InternalError()
    return error_response(internal.status_code, internal.message, internal.error_code)


# Setup tracing
setup_tracing()
instrument_fastapi(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.perf_counter()
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = request.url.path
    method = request.method

    structlog.contextvars.bind_contextvars(request_id=request_id)
    metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()
    try:
        response = await call_next(request)
        duration = time.perf_counter() - start_time
        metrics.record_http_request(endpoint, method, response.status_code, duration)
        logger.info(
            "request_completed",
            method=method,
            path=endpoint,
            status_code=response.status_code,
            duration_seconds=duration,
        )
        return response
    except Exception as e:
        duration = time.perf_counter() - start_time
        metrics.record_http_request(endpoint, method, 500, duration)
        logger.error(
            "request_failed",
            method=method,
            path=endpoint,
            error=str(e),
            duration_seconds=duration,
        )
        raise
    finally:
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()
        structlog.contextvars.unbind_contextvars("request_id")


# Register routes
app.include_router(auth_router)
app.include_router(admin_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/health", response_model=ApiResponse[HealthData])
async def health() -> JSONResponse | ApiResponse[HealthData]:
    """Liveness plus a database round trip. 503 when the database is unreachable."""
    db_ok = await check_database()
    data = HealthData(
        status="healthy" if db_ok else "degraded",
        database="connected" if db_ok else "unreachable",
        timestamp=datetime.now(UTC),
    )
    if not db_ok:
        body = ApiResponse(success=False, message="Database unreachable", data=data)
        return JSONResponse(
            status_code=503, content=body.model_dump(mode="json", by_alias=True)
        )
    return ApiResponse(message="OK", data=data)


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled", status_code=404)
    return PlainTextResponse(render_metrics())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
