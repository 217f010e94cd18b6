"""
Health Check Endpoints

Provides health and readiness checks for orchestration systems.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from bizmetrics.config import get_settings
from bizmetrics.database.connection import check_database_health
from bizmetrics.database.documents import ORDER_LOGS, get_document_store
from bizmetrics.exceptions import DocumentStoreUnavailable
from bizmetrics.serving.cache import get_redis

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """
    Health of every backing service.

    The relational store is required; the document store and Redis are
    optional and only degrade the status.
    """
    settings = get_settings()
    checks: Dict[str, Any] = {}
    overall_status = "healthy"

    db_health = await check_database_health()
    checks["database"] = db_health
    if db_health.get("status") != "healthy":
        overall_status = "unhealthy"

    try:
        await get_document_store().collection(ORDER_LOGS)
        checks["documents"] = {"status": "healthy"}
    except DocumentStoreUnavailable as e:
        checks["documents"] = {"status": "unavailable", "error": str(e)}
        if overall_status == "healthy":
            overall_status = "degraded"

    redis = get_redis()
    checks["redis"] = {"status": "healthy" if redis is not None else "disabled"}

    engines = request.app.state.engines
    if engines is not None:
        checks["schema"] = engines.capabilities.as_dict()

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """Returns 200 if the application is running."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(request: Request, response: Response) -> Dict[str, str]:
    """Returns 200 once the engines are built and the database answers."""
    if request.app.state.engines is None:
        response.status_code = 503
        return {"status": "not_ready", "reason": "engines_not_initialized"}

    db_health = await check_database_health()
    if db_health.get("status") != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "database_unavailable"}

    return {"status": "ready"}
