"""
FastAPI application entry point with health endpoints and service routing.

This module provides the main FastAPI application instance with CORS
configuration, request correlation middleware, the error envelope handlers,
health check endpoints, and the v1 API router. The lifespan starts the
fulfillment retry loop when one is configured and disposes of database
connections on shutdown.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api.v1 import api_router
from src.core.config import get_settings
from src.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from src.core.security import get_security_headers
from src.database.connection import check_database_health, close_database_connections
from src.services.errors import FulfillmentError
from src.services.fulfillment.recovery import run_retry_loop

# Configure logging before application initialization
configure_logging()
logger = get_logger(__name__)

limiter = Limiter(key_func=get_remote_address)


def error_response(
    status_code: int,
    message: str,
    code: str,
    error: Optional[Any] = None,
) -> JSONResponse:
    """
    Render the error envelope.

    Diagnostic detail is only included outside production.
    """
    content: dict[str, Any] = {"success": False, "message": message, "code": code}
    if error is not None and not get_settings().is_production:
        content["error"] = jsonable_encoder(error)
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={"X-Request-ID": get_request_id()} if get_request_id() else None,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance

    Yields:
        None during application runtime
    """
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    retry_task: Optional[asyncio.Task] = None
    if settings.fulfillment_retry_interval_seconds > 0:
        retry_task = asyncio.create_task(
            run_retry_loop(settings.fulfillment_retry_interval_seconds)
        )
        logger.info(
            "Fulfillment retry loop scheduled",
            interval_seconds=settings.fulfillment_retry_interval_seconds,
        )

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        if retry_task is not None:
            retry_task.cancel()
            try:
                await retry_task
            except asyncio.CancelledError:
                pass
            logger.info("Fulfillment retry loop stopped")
        await close_database_connections()


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Meal order payment and delivery fulfillment API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    """Add security headers to every response."""
    response = await call_next(request)
    for header, value in get_security_headers().items():
        response.headers[header] = value
    return response


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """
    Middleware for request logging and correlation ID management.

    Sets request ID for correlation, logs request details, and measures
    response time. Clears context after request processing.
    """
    request_id = set_request_id(request.headers.get("X-Request-ID"))

    logger.info(
        "Request received",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        with log_performance(
            logger,
            "request_processing",
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response
    except Exception as e:
        logger.error(
            "Request failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        clear_context()


@app.exception_handler(FulfillmentError)
async def fulfillment_exception_handler(
    request: Request, exc: FulfillmentError
) -> JSONResponse:
    """Render workflow errors with their code and HTTP status."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request rejected",
        method=request.method,
        path=request.url.path,
        code=exc.code,
        error=exc.message,
        context=exc.context,
    )
    return error_response(
        exc.status_code,
        exc.message,
        exc.code,
        error={"type": type(exc).__name__, **exc.context},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures in the error envelope."""
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=exc.errors(),
    )
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Request validation failed",
        "REQUEST_VALIDATION_ERROR",
        error=exc.errors(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Render HTTP errors raised by dependencies in the error envelope."""
    response = error_response(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions with a generic error response.

    Logs the error with full context; internal detail is only returned
    outside production.
    """
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred",
        "INTERNAL_ERROR",
        error=str(exc),
    )


@app.get(
    "/health",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Health check endpoint",
)
async def health_check() -> dict[str, str]:
    """Always returns 200 OK while the application is running."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get(
    "/ready",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Readiness check endpoint",
)
async def readiness_check():
    """
    Readiness check endpoint for orchestration.

    Returns 503 while the database is unreachable.
    """
    database_ready = await check_database_health(max_retries=1)

    if not database_ready:
        logger.warning("Readiness check failed", database="unhealthy")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "service": settings.app_name,
                "dependencies_ready": False,
                "database": "unhealthy",
            },
        )

    return {
        "status": "ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "dependencies_ready": True,
        "database": "healthy",
    }


@app.get(
    "/live",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Liveness check endpoint",
)
async def liveness_check() -> dict[str, str]:
    return {
        "status": "alive",
        "service": settings.app_name,
        "version": settings.app_version,
    }


app.include_router(api_router, prefix=settings.api_v1_prefix)
