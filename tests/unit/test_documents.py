"""
Unit Tests - MongoDB Document Store Adapter
"""
import asyncio
from datetime import datetime, timedelta

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from bizmetrics.analytics.chatbot import NOTE_MESSAGES_DOWN, NOTE_RESPONSE_FROM_ORDERS
from bizmetrics.analytics.fallback import NOTE_DOCUMENTS_DOWN, DualStoreStrategy
from bizmetrics.analytics.filters import Filter
from bizmetrics.analytics.results import DataSource
from bizmetrics.database.documents import MESSAGE_LOGS, ORDER_LOGS, MongoCollection, MongoDocumentStore
from bizmetrics.database.schema import SchemaCapabilities
from bizmetrics.exceptions import DocumentStoreUnavailable
from tests.builders import insert_rows, order_row
from tests.fakes import FailingQueryDocumentStore

# =============================================================================
# PYMONGO STAND-INS
# =============================================================================


class StubCursor:
    def __init__(self, collection):
        self.collection = collection
        self.sorted_by = None

    def sort(self, keys):
        self.sorted_by = keys
        return self

    async def to_list(self, length):
        return await self.collection.respond(list(self.collection.docs))


class StubCollection:
    """Async pymongo collection answering from a list or failing on demand"""

    def __init__(self, name, docs=(), error=None, delay=0.0):
        self.name = name
        self.docs = list(docs)
        self.error = error
        self.delay = delay

    async def respond(self, value):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return value

    def find(self, query):
        return StubCursor(self)

    async def count_documents(self, query):
        return await self.respond(len(self.docs))

    async def distinct(self, field, query):
        return await self.respond(sorted({doc[field] for doc in self.docs}))

    async def find_one(self, query, sort=None):
        return await self.respond(self.docs[0] if self.docs else None)


class StubAdmin:
    def __init__(self, error=None):
        self.error = error
        self.pings = 0

    async def command(self, name):
        self.pings += 1
        if self.error is not None:
            raise self.error
        return {"ok": 1.0}


class StubClient:
    """AsyncMongoClient with a single database of stub collections"""

    def __init__(self, collections=(), ping_error=None):
        self.admin = StubAdmin(ping_error)
        self.collections = {c.name: c for c in collections}

    def __getitem__(self, database):
        return self.collections


def _timeout():
    return ServerSelectionTimeoutError("127.0.0.1:27017: connection refused")


# =============================================================================
# TESTS
# =============================================================================


class TestMongoDocumentStore:
    """Tests for MongoDocumentStore.collection"""

    async def test_uninitialized_client(self):
        with pytest.raises(DocumentStoreUnavailable):
            await MongoDocumentStore(None, "zakaa_db").collection(ORDER_LOGS)

    async def test_failed_ping(self):
        client = StubClient(ping_error=_timeout())

        with pytest.raises(DocumentStoreUnavailable):
            await MongoDocumentStore(client, "zakaa_db").collection(ORDER_LOGS)

    async def test_ping_once_after_success(self):
        client = StubClient([StubCollection(ORDER_LOGS)])
        documents = MongoDocumentStore(client, "zakaa_db")

        await documents.collection(ORDER_LOGS)
        await documents.collection(ORDER_LOGS)

        assert client.admin.pings == 1

    async def test_failed_ping_retried_next_call(self):
        client = StubClient([StubCollection(ORDER_LOGS)], ping_error=_timeout())
        documents = MongoDocumentStore(client, "zakaa_db")

        with pytest.raises(DocumentStoreUnavailable):
            await documents.collection(ORDER_LOGS)
        client.admin.error = None
        await documents.collection(ORDER_LOGS)

        assert client.admin.pings == 2


class TestMongoCollection:
    """Tests for driver error translation"""

    async def test_reads(self):
        collection = MongoCollection(StubCollection(MESSAGE_LOGS, [{"phone": "b"}, {"phone": "a"}]), timeout=1)

        assert await collection.count_documents({}) == 2
        assert await collection.distinct("phone", {}) == ["a", "b"]
        assert await collection.find_one({}) == {"phone": "b"}
        assert len(await collection.find({}, sort=[("created_at", 1)])) == 2

    async def test_driver_error_on_find(self):
        collection = MongoCollection(StubCollection(ORDER_LOGS, error=_timeout()), timeout=1)

        with pytest.raises(DocumentStoreUnavailable):
            await collection.find({"business_id": "B1"})

    async def test_driver_error_on_count(self):
        collection = MongoCollection(StubCollection(MESSAGE_LOGS, error=_timeout()), timeout=1)

        with pytest.raises(DocumentStoreUnavailable):
            await collection.count_documents({"business_id": "B1"})

    async def test_slow_call_times_out(self):
        collection = MongoCollection(StubCollection(MESSAGE_LOGS, delay=1.0), timeout=0.01)

        with pytest.raises(DocumentStoreUnavailable):
            await collection.count_documents({})


class TestQueryFailureAfterHandle:
    """Queries failing on a collection that was handed out successfully"""

    @pytest.fixture
    async def seeded(self, engine):
        created = datetime(2024, 3, 1, 10, 0)
        await insert_rows(
            engine,
            "orders",
            [
                order_row("o1", created, 10, first_response_at=created + timedelta(seconds=30)),
                order_row("o2", datetime(2024, 3, 2, 10, 0), 20, phone="+9611000002"),
            ],
        )

    async def test_strategy_falls_back_through_mongo_adapter(self, store, seeded):
        client = StubClient([StubCollection(ORDER_LOGS, error=_timeout())])
        strategy = DualStoreStrategy(store, MongoDocumentStore(client, "zakaa_db"), SchemaCapabilities.all())

        snapshots = await strategy.completed_orders(Filter(business_id="B1"))

        assert snapshots.source == DataSource.RELATIONAL
        assert snapshots.notes == [NOTE_DOCUMENTS_DOWN]
        assert [o.order_id for o in snapshots.orders] == ["o1", "o2"]

    async def test_strategy_falls_back_on_failing_find(self, store, seeded):
        strategy = DualStoreStrategy(store, FailingQueryDocumentStore(), SchemaCapabilities.all())

        snapshots = await strategy.completed_orders(Filter(business_id="B1"))

        assert snapshots.source == DataSource.RELATIONAL
        assert len(snapshots.orders) == 2

    async def test_revenue_uses_relational_path(self, store, make_engines, seeded):
        engines = make_engines(store, FailingQueryDocumentStore())

        result = await engines.orders.order_value_summary("B1")

        assert result.source == DataSource.RELATIONAL
        assert result.data.total_revenue == 30

    async def test_chat_counts_degrade(self, store, make_engines, seeded):
        engines = make_engines(store, FailingQueryDocumentStore())

        requests = await engines.chatbot.requests_handled("B1")
        conversations = await engines.chatbot.conversations("B1")

        assert requests.source == DataSource.DEFAULT
        assert requests.notes == [NOTE_MESSAGES_DOWN]
        assert requests.data.count == 0
        assert conversations.degraded

    async def test_chat_response_time_from_orders(self, store, make_engines, seeded):
        client = StubClient([StubCollection(MESSAGE_LOGS, error=_timeout())])
        engines = make_engines(store, MongoDocumentStore(client, "zakaa_db"))

        result = await engines.chatbot.response_time("B1")

        assert result.degraded
        assert result.notes == [NOTE_RESPONSE_FROM_ORDERS]
        assert result.data.average_response_ms == 30000
