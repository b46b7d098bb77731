"""
Main FastAPI application for the widget sync service.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.database import init_db
from app.core.exceptions import (
    ConcurrentUpdateError,
    CredentialError,
    IntegrationAlreadyExistsError,
    IntegrationModeError,
    IntegrationNotFoundError,
    RateLimited,
    SchemaValidationError,
    SignatureError,
    UpstreamError,
    WidgetInstanceNotFoundError,
    WidgetSyncException,
)
from app.core.logging_config import setup_logging, log_info, log_warning, log_error
from app.core.rate_limiting import limiter, rate_limit_exceeded_handler
from app.integrations.engine import SyncEngine
from app.middleware.request_logging import request_id_ctx, RequestLoggingMiddleware

# -----------------------------------------------------------------------------
# Startup / Shutdown
# -----------------------------------------------------------------------------
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    log_info("Starting up Widget Sync Service...")
    try:
        init_db()
        log_info("Database initialization completed!")

        # Tests may install their own engine before startup
        engine = getattr(app.state, "sync_engine", None) or SyncEngine()
        await engine.start()
        app.state.sync_engine = engine
        log_info("Sync engine initialization completed!")
    except Exception as exc:
        log_error(exc)
        raise
    yield
    log_info("Shutting down Widget Sync Service...")
    try:
        await app.state.sync_engine.shutdown()
    except Exception as exc:
        log_warning(f"Failed to stop sync engine cleanly: {exc}")


# -----------------------------------------------------------------------------
# App Initialization
# -----------------------------------------------------------------------------
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Shared, versioned third-party data for dashboard widgets",
    openapi_url=f"{settings.api_v1_prefix}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# -----------------------------------------------------------------------------
# Middleware Configuration
# -----------------------------------------------------------------------------
# Rate Limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# CORS
cors_enabled = bool(settings.enable_cors)
cors_origins = settings.cors_origins or []
if cors_enabled:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Origin", "X-Requested-With"],
        max_age=3600,
    )
    log_info(f"CORS enabled for origins: {cors_origins}")

app.add_middleware(GZipMiddleware, minimum_size=1024)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=["*"])

# Logging Middleware
app.add_middleware(RequestLoggingMiddleware)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add X-Process-Time header."""
    start_time = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = str(time.time() - start_time)
    return response

# -----------------------------------------------------------------------------
# Exception Handlers
# -----------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle FastAPI request validation errors with detailed logging."""
    request_id = request_id_ctx.get()
    errors = exc.errors()

    sanitized_errors = [
        {
            "loc": err.get("loc"),
            "msg": err.get("msg"),
            "type": err.get("type")
        }
        for err in errors
    ]

    log_warning(
        "Request validation failed",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
        event="validation_error"
    )

    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": sanitized_errors,
            "request_id": request_id
        },
    )


def _status_for(exc: WidgetSyncException) -> int:
    if isinstance(exc, (IntegrationNotFoundError, WidgetInstanceNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (IntegrationAlreadyExistsError, ConcurrentUpdateError)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, SchemaValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, SignatureError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, (CredentialError, IntegrationModeError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, RateLimited):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(exc, UpstreamError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(WidgetSyncException)
async def widget_sync_exception_handler(request: Request, exc: WidgetSyncException):
    request_id = request_id_ctx.get()
    status_code = _status_for(exc)
    if status_code >= 500:
        log_error(exc, request_id=request_id)
    else:
        log_warning(
            "Request rejected",
            request_id=request_id,
            path=request.url.path,
            error=type(exc).__name__,
            status_code=status_code,
        )

    message = (
        "An unexpected internal error occurred."
        if settings.environment == "production" and status_code == 500
        else str(exc)
    )
    content = {"error": type(exc).__name__, "message": message, "request_id": request_id}
    if isinstance(exc, SchemaValidationError) and exc.errors:
        content["errors"] = exc.errors

    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(int(exc.retry_after))}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    request_id = request_id_ctx.get()
    log_error(exc, request_id=request_id)
    msg = (
        "An unexpected error occurred. Please try again later."
        if settings.environment == "production"
        else str(exc)
    )
    return JSONResponse(
        status_code=500,
        content={"error": "internal_server_error", "message": msg, "request_id": request_id},
    )

# -----------------------------------------------------------------------------
# API Routers
# -----------------------------------------------------------------------------
app.include_router(api_router, prefix=settings.api_v1_prefix)


# -----------------------------------------------------------------------------
# Entry Point
# -----------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
