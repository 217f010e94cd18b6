"""
Document Store Access

MongoDB holds the archived order logs and the chat message logs. The
analytics engines only see the narrow DocumentCollection protocol; the
DocumentStore hands out collections and raises DocumentStoreUnavailable when
the server cannot be reached, which the engines treat as a soft failure.
"""

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import structlog
from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from bizmetrics.config import get_settings
from bizmetrics.exceptions import DocumentStoreUnavailable

logger = structlog.get_logger(__name__)

SortSpec = Sequence[Tuple[str, int]]

ORDER_LOGS = "order_logs"
MESSAGE_LOGS = "message_logs"

# Global client, owned by the application lifespan
_client: Optional[AsyncMongoClient] = None


class DocumentCollection(Protocol):
    """Read operations the analytics core needs from a document collection."""

    async def find(self, query: Mapping[str, Any], sort: Optional[SortSpec] = None) -> List[Dict[str, Any]]:
        ...

    async def count_documents(self, query: Mapping[str, Any]) -> int:
        ...

    async def distinct(self, field: str, query: Mapping[str, Any]) -> List[Any]:
        ...

    async def find_one(self, query: Mapping[str, Any], sort: Optional[SortSpec] = None) -> Optional[Dict[str, Any]]:
        ...


class DocumentStore(Protocol):
    """Source of document collections."""

    async def collection(self, name: str) -> DocumentCollection:
        ...


class MongoCollection:
    """DocumentCollection backed by a pymongo async collection."""

    def __init__(self, collection, timeout: float):
        self._collection = collection
        self.timeout = timeout

    async def find(self, query: Mapping[str, Any], sort: Optional[SortSpec] = None) -> List[Dict[str, Any]]:
        cursor = self._collection.find(dict(query))
        if sort:
            cursor = cursor.sort(list(sort))
        return await self._guard(cursor.to_list(None))

    async def count_documents(self, query: Mapping[str, Any]) -> int:
        return await self._guard(self._collection.count_documents(dict(query)))

    async def distinct(self, field: str, query: Mapping[str, Any]) -> List[Any]:
        return await self._guard(self._collection.distinct(field, dict(query)))

    async def find_one(self, query: Mapping[str, Any], sort: Optional[SortSpec] = None) -> Optional[Dict[str, Any]]:
        return await self._guard(self._collection.find_one(dict(query), sort=list(sort) if sort else None))

    async def _guard(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except (asyncio.TimeoutError, PyMongoError) as e:
            logger.warning(
                "Document store call failed",
                collection=self._collection.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise DocumentStoreUnavailable(str(e)) from e


class MongoDocumentStore:
    """
    DocumentStore backed by a MongoDB database.

    The server is pinged on first use; a failed ping raises
    DocumentStoreUnavailable and is retried on the next call.
    """

    def __init__(self, client: Optional[AsyncMongoClient], database: str, timeout: float = 15.0):
        self._client = client
        self._database = database
        self.timeout = timeout
        self._verified = False

    async def collection(self, name: str) -> DocumentCollection:
        if self._client is None:
            raise DocumentStoreUnavailable("MongoDB client not initialized")

        if not self._verified:
            try:
                await asyncio.wait_for(self._client.admin.command("ping"), timeout=self.timeout)
            except (asyncio.TimeoutError, PyMongoError) as e:
                logger.warning("MongoDB unavailable", error=str(e))
                raise DocumentStoreUnavailable(str(e)) from e
            self._verified = True

        return MongoCollection(self._client[self._database][name], timeout=self.timeout)


async def init_mongo() -> AsyncMongoClient:
    """Create the MongoDB client. Connectivity is checked lazily."""
    global _client

    if _client is not None:
        return _client

    settings = get_settings()
    _client = AsyncMongoClient(
        settings.mongo.url,
        serverSelectionTimeoutMS=settings.mongo.server_selection_timeout_ms,
        connectTimeoutMS=settings.mongo.server_selection_timeout_ms,
    )
    logger.info("MongoDB client created", host=settings.mongo.host, database=settings.mongo.db)
    return _client


async def close_mongo() -> None:
    """Close the MongoDB client"""
    global _client

    if _client is not None:
        await _client.close()
        _client = None
        logger.info("MongoDB client closed")


def get_document_store(timeout: Optional[float] = None) -> MongoDocumentStore:
    """Document store over the global client; unavailable when not initialized."""
    settings = get_settings()
    return MongoDocumentStore(
        _client,
        settings.mongo.db,
        timeout=timeout if timeout is not None else settings.analytics.query_timeout_seconds,
    )
