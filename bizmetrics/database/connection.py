"""
Database Connection Management

Async connection pool for the relational store (SQLAlchemy 2.0) and the
query interface the analytics engines consume.
"""

import asyncio
import time
from typing import Any, Dict, List, Mapping, Optional, Set

import structlog
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from bizmetrics.config import get_settings
from bizmetrics.exceptions import RelationalQueryError

logger = structlog.get_logger(__name__)

# Global engine, owned by the application lifespan
_engine: Optional[AsyncEngine] = None


async def init_database() -> AsyncEngine:
    """
    Initialize the database connection pool.

    Returns:
        AsyncEngine: The initialized database engine
    """
    global _engine

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = get_settings()
    _engine = create_async_engine(
        settings.database.async_url,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_recycle=settings.database.pool_recycle,
        pool_pre_ping=True,
    )

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info(
            "Database connection established",
            host=settings.database.host,
            database=settings.database.db,
        )
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        raise

    return _engine


async def close_database() -> None:
    """Gracefully close all connections in the pool."""
    global _engine

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Database connection pool closed")


def get_engine() -> AsyncEngine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


async def check_database_health() -> dict:
    """
    Check database health status.

    Returns:
        dict: Health status with latency information
    """
    try:
        start = time.perf_counter()
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }


class RelationalStore:
    """
    Read-only query interface over the relational store.

    Every call is bounded by ``timeout`` seconds. Driver errors and timeouts
    are raised as RelationalQueryError; cancellation propagates unchanged.

    Example:
        store = RelationalStore(engine)
        rows = await store.fetch_all("SELECT id FROM orders WHERE business_id = :b", {"b": "B1"})
    """

    def __init__(self, engine: AsyncEngine, timeout: float = 15.0):
        self.engine = engine
        self.timeout = timeout

    async def fetch_all(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Execute a parameterized query and return column-named rows."""
        return await self._guard(self._fetch_all(sql, dict(params or {})), sql)

    async def fetch_one(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Execute a query and return the first row, or None."""
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None

    async def columns(self, table: str) -> Set[str]:
        """Column names of ``table``; empty when the table does not exist."""
        return await self._guard(self._columns(table), f"inspect {table}")

    async def has_column(self, table: str, column: str) -> bool:
        """Check whether ``table.column`` exists in the current schema."""
        return column in await self.columns(table)

    async def has_table(self, table: str) -> bool:
        """Check whether ``table`` exists in the current schema."""
        return await self._guard(self._has_table(table), f"inspect {table}")

    async def _fetch_all(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.execute(text(sql), params)
            return [dict(row) for row in result.mappings().all()]

    async def _columns(self, table: str) -> Set[str]:
        def _inspect(sync_conn) -> Set[str]:
            inspector = inspect(sync_conn)
            if not inspector.has_table(table):
                return set()
            return {column["name"] for column in inspector.get_columns(table)}

        async with self.engine.connect() as conn:
            return await conn.run_sync(_inspect)

    async def _has_table(self, table: str) -> bool:
        async with self.engine.connect() as conn:
            return await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(table))

    async def _guard(self, coro, sql: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error("Relational query timed out", timeout=self.timeout)
            raise RelationalQueryError(f"Query timed out after {self.timeout}s", sql=sql) from e
        except SQLAlchemyError as e:
            logger.error("Relational query failed", error=str(e), error_type=type(e).__name__)
            raise RelationalQueryError(str(e), sql=sql) from e
