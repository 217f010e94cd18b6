"""
Test Suite Configuration
"""
from typing import Callable, Optional

import pytest
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from bizmetrics.analytics.engine import AnalyticsEngines
from bizmetrics.config import AnalyticsSettings
from bizmetrics.database.connection import RelationalStore
from bizmetrics.database.documents import DocumentStore
from bizmetrics.database.models import Base
from bizmetrics.database.schema import SchemaCapabilities
from tests.builders import LEGACY_METADATA
from tests.fakes import NOW, UnavailableDocumentStore

# =============================================================================
# FIXTURES
# =============================================================================

async def _create_engine(metadata: MetaData):
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    return engine


@pytest.fixture
async def engine():
    """In-memory database with the current schema"""
    engine = await _create_engine(Base.metadata)
    yield engine
    await engine.dispose()


@pytest.fixture
async def legacy_engine():
    """In-memory database predating the optional columns"""
    engine = await _create_engine(LEGACY_METADATA)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine) -> RelationalStore:
    return RelationalStore(engine, timeout=5)


@pytest.fixture
def legacy_store(legacy_engine) -> RelationalStore:
    return RelationalStore(legacy_engine, timeout=5)


@pytest.fixture
def analytics_settings() -> AnalyticsSettings:
    return AnalyticsSettings()


@pytest.fixture
def make_engines(analytics_settings) -> Callable[..., AnalyticsEngines]:
    """Engine set factory; documents default to an unreachable store."""

    def factory(
        relational: RelationalStore,
        documents: Optional[DocumentStore] = None,
        capabilities: Optional[SchemaCapabilities] = None,
    ) -> AnalyticsEngines:
        return AnalyticsEngines.create(
            relational,
            documents or UnavailableDocumentStore(),
            capabilities or SchemaCapabilities.all(),
            analytics_settings,
            clock=lambda: NOW,
        )

    return factory


@pytest.fixture
def engines(store, make_engines) -> AnalyticsEngines:
    """Current schema, document store down"""
    return make_engines(store)


@pytest.fixture
async def legacy_engines(legacy_store, make_engines) -> AnalyticsEngines:
    """Legacy schema with probed capabilities"""
    capabilities = await SchemaCapabilities.probe(legacy_store)
    return make_engines(legacy_store, capabilities=capabilities)
