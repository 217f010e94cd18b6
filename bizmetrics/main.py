"""
FastAPI Production Application

Main entry point for the Business Metrics Analytics API.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from redis.exceptions import RedisError

from bizmetrics.analytics.engine import AnalyticsEngines
from bizmetrics.config import get_settings
from bizmetrics.config.logging import configure_logging
from bizmetrics.database.connection import RelationalStore, close_database, init_database
from bizmetrics.database.documents import close_mongo, get_document_store, init_mongo
from bizmetrics.serving.api.main import create_api_app
from bizmetrics.serving.cache import close_redis, init_redis

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()

    logger.info("Starting Business Metrics Analytics API", environment=settings.app_env)

    # The relational store is required; startup fails without it
    engine = await init_database()
    await init_mongo()

    try:
        await init_redis()
    except RedisError as e:
        logger.warning("Redis unavailable, response cache disabled", error=str(e))

    timeout = settings.analytics.query_timeout_seconds
    app.state.engines = await AnalyticsEngines.probe(
        RelationalStore(engine, timeout=timeout),
        get_document_store(timeout),
        settings.analytics,
    )

    yield

    logger.info("Shutting down...")
    app.state.engines = None
    await close_redis()
    await close_mongo()
    await close_database()


app = create_api_app(lifespan=lifespan)


@app.get("/api/v1/info")
async def api_info():
    """API information endpoint."""
    return {
        "name": "Business Metrics Analytics API",
        "version": settings.version,
        "environment": settings.app_env,
        "documentation": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
