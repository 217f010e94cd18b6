"""
FastAPI Application Factory

Creates and configures the analytics API application.
"""

from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from bizmetrics.analytics.engine import AnalyticsEngines
from bizmetrics.config import get_settings
from bizmetrics.exceptions import AnalyticsError, RelationalQueryError
from bizmetrics.serving.api.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from bizmetrics.serving.api.routes import analytics_router, health_router

logger = structlog.get_logger(__name__)


async def analytics_error_handler(request: Request, exc: AnalyticsError) -> JSONResponse:
    """Datastore failures: the metric could not be computed."""
    logger.error(
        "Metric computation failed",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    body = {"error": "analytics_unavailable", "detail": str(exc)}
    if isinstance(exc, RelationalQueryError):
        body["error"] = "relational_query_failed"
    return JSONResponse(status_code=503, content=body)


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Invalid metric arguments (unknown period, bad range, bad limit)."""
    logger.info("Invalid metric request", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=422, content={"error": "invalid_request", "detail": str(exc)})


def create_api_app(engines: Optional[AnalyticsEngines] = None, lifespan=None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        engines: Pre-built engine set (tests); the lifespan builds it otherwise
        lifespan: Startup/shutdown context manager

    Returns:
        Configured FastAPI app instance
    """
    settings = get_settings()
    app = FastAPI(
        title="Business Metrics Analytics API",
        description="Per-business sales, customer, service, chat and reservation metrics",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.engines = engines

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_exception_handler(AnalyticsError, analytics_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(analytics_router, prefix="/api/v1/analytics", tags=["Analytics"])

    return app
