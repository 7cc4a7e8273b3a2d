"""
FastAPI application entry point for the FormToSheets submission API.

This module provides the main FastAPI application with:
- Submission intake and Google Sheets / Drive / Calendar fan-out
- Sheet connection, form and Google account endpoints
- Request logging with correlation IDs
- Prometheus metrics
- CORS, security headers, and rate limiting
- Database pool and HTTP session management
- Graceful startup and shutdown
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import aiohttp
import asyncpg
import structlog
import uvicorn
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from api.src.config import Settings, get_settings
from api.src.dependencies import build_services, init_db_pool, limiter
from api.src.routers import forms, google, sheets, submissions, uploads
from shared.logging import bind_context, clear_context, configure_logging
from shared.metrics import get_metrics_handler, get_submission_metrics

# Get settings
settings: Settings = get_settings()

configure_logging(
    log_level=settings.log_level,
    json_logs=settings.log_format == "json",
    service_name=settings.app_name,
    environment=settings.environment,
)

# Initialize logger
logger = structlog.get_logger(__name__)

# ============================================================================
# Prometheus Metrics
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"]
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    ["method"]
)

database_connections_active = Gauge(
    "database_connections_active",
    "Active database connections"
)

database_connections_idle = Gauge(
    "database_connections_idle",
    "Idle database connections in pool"
)

# ============================================================================
# Application State
# ============================================================================

class AppState:
    """Application state container for shared resources."""

    def __init__(self):
        self.db_pool: Optional[asyncpg.Pool] = None
        self.http_session: Optional[aiohttp.ClientSession] = None

app_state = AppState()


def _update_pool_metrics() -> None:
    if app_state.db_pool:
        database_connections_active.set(app_state.db_pool.get_size())
        database_connections_idle.set(app_state.db_pool.get_idle_size())

# ============================================================================
# Lifespan Management
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager for startup and shutdown events.

    Handles:
    - Database connection pool initialization
    - Shared HTTP session for Google and Resend calls
    - Repository and service wiring
    - Graceful shutdown and resource cleanup
    """
    logger.info(
        "application_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment
    )

    # ========================================================================
    # Startup: Initialize Resources
    # ========================================================================

    try:
        app_state.db_pool = await init_db_pool(settings)

        # Test database connection
        async with app_state.db_pool.acquire() as conn:
            version = await conn.fetchval("SELECT version()")
            logger.info("database_connected", postgres_version=version)

        app_state.http_session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=settings.google_request_timeout)
        )

        logger.info("initializing_services")
        app.state.services = build_services(
            settings,
            app_state.db_pool,
            app_state.http_session,
            get_submission_metrics() if settings.metrics_enabled else None,
        )

        if not settings.google_oauth_configured:
            logger.warning("google_oauth_not_configured")
        if not settings.resend_api_key:
            logger.warning("email_service_not_configured", environment=settings.environment)

        _update_pool_metrics()

        logger.info(
            "application_started",
            app_name=settings.app_name,
            version=settings.app_version,
            environment=settings.environment
        )

        yield

    except Exception as e:
        logger.error("application_startup_failed", error=str(e), exc_info=True)
        raise

    # ========================================================================
    # Shutdown: Cleanup Resources
    # ========================================================================

    finally:
        logger.info("application_shutting_down")

        try:
            if app_state.http_session:
                await app_state.http_session.close()
                logger.info("http_session_closed")

            if app_state.db_pool:
                logger.info("closing_database_pool")
                await app_state.db_pool.close()
                logger.info("database_pool_closed")

            logger.info("application_shutdown_complete")

        except Exception as e:
            logger.error("application_shutdown_failed", error=str(e), exc_info=True)

# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Submission API for FormToSheets. Stores form submissions and syncs "
        "them to Google Sheets, Drive, Calendar and e-mail."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

app.state.limiter = limiter

# ============================================================================
# Middleware Configuration
# ============================================================================

# CORS Middleware
if settings.cors_enabled:
    logger.info("configuring_cors", origins=settings.cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

# GZip Compression Middleware
app.add_middleware(GZipMiddleware, minimum_size=1000)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request logging and metrics."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())

        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"

        clear_context()
        bind_context(correlation_id=correlation_id)

        http_requests_in_progress.labels(method=method).inc()
        start_time = time.time()

        logger.info(
            "request_started",
            method=method,
            path=path,
            client_ip=client_ip,
        )

        try:
            response = await call_next(request)

            duration = time.time() - start_time

            # Route templates keep IDs out of the label set
            route = request.scope.get("route")
            endpoint = getattr(route, "path", path)

            http_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status=response.status_code
            ).inc()

            http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(duration)

            logger.info(
                "request_completed",
                method=method,
                path=path,
                status_code=response.status_code,
                duration=f"{duration:.3f}s",
            )

            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                "request_failed",
                method=method,
                path=path,
                error=str(e),
                duration=f"{duration:.3f}s",
                exc_info=True
            )
            raise

        finally:
            http_requests_in_progress.labels(method=method).dec()
            clear_context()

app.add_middleware(RequestLoggingMiddleware)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if settings.security_headers_enabled:
            response.headers["X-Content-Type-Options"] = "nosniff"
            response.headers["X-Frame-Options"] = "DENY"
            response.headers["X-XSS-Protection"] = "1; mode=block"
            response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

            if settings.security_require_https:
                response.headers["Strict-Transport-Security"] = (
                    f"max-age={settings.security_hsts_max_age}; includeSubDomains"
                )

        return response

app.add_middleware(SecurityHeadersMiddleware)

# ============================================================================
# Exception Handlers
# ============================================================================

def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return f"{location}: {message}" if location else message


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    logger.warning(
        "validation_error",
        path=request.url.path,
        errors=exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": _validation_message(exc)}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        path=request.url.path,
        status_code=exc.status_code,
        detail=exc.detail
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(
        "unexpected_exception",
        path=request.url.path,
        error=str(exc),
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"}
    )

# Rate limit exception handler
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ============================================================================
# Health and Readiness Endpoints
# ============================================================================

@app.get("/health", tags=["Health"], response_class=JSONResponse)
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint.

    Returns basic health status without checking dependencies.
    Use for container health checks.
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment
    }


@app.get("/ready", tags=["Health"], response_class=JSONResponse)
async def readiness_check():
    """
    Readiness check endpoint.

    Checks database connectivity and whether the Google OAuth client is
    configured. Only the database decides readiness.
    """
    checks = {
        "database": "unknown",
        "google_oauth": "configured" if settings.google_oauth_configured else "not_configured",
    }

    try:
        async with app_state.db_pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
            checks["database"] = "healthy"
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        checks["database"] = "unhealthy"

    _update_pool_metrics()

    ready = checks["database"] == "healthy"

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "not_ready",
            "service": settings.app_name,
            "version": settings.app_version,
            "checks": checks
        }
    )

# ============================================================================
# Metrics Endpoint
# ============================================================================

metrics_handler = get_metrics_handler()


@app.get("/metrics", tags=["Monitoring"], response_class=PlainTextResponse)
async def metrics() -> Response:
    """
    Prometheus metrics endpoint.

    Exposes HTTP and submission pipeline metrics for scraping.
    """
    _update_pool_metrics()
    return Response(
        content=metrics_handler(),
        media_type=CONTENT_TYPE_LATEST
    )

# ============================================================================
# API Router Registration
# ============================================================================

app.include_router(submissions.router, prefix=settings.api_prefix)
app.include_router(sheets.router, prefix=settings.api_prefix)
app.include_router(forms.router, prefix=settings.api_prefix)
app.include_router(google.router, prefix=settings.api_prefix)
app.include_router(uploads.router, prefix=settings.api_prefix)

# ============================================================================
# Application Entry Point
# ============================================================================

if __name__ == "__main__":
    logger.info(
        "starting_uvicorn_server",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )

    uvicorn.run(
        "api.src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
