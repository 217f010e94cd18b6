"""
Database Module
"""
from .connection import (
    RelationalStore,
    check_database_health,
    close_database,
    get_engine,
    init_database,
)
from .documents import (
    MESSAGE_LOGS,
    ORDER_LOGS,
    DocumentCollection,
    DocumentStore,
    MongoDocumentStore,
    close_mongo,
    get_document_store,
    init_mongo,
)
from .models import Base
from .schema import SchemaCapabilities

__all__ = [
    "RelationalStore",
    "check_database_health",
    "close_database",
    "get_engine",
    "init_database",
    "MESSAGE_LOGS",
    "ORDER_LOGS",
    "DocumentCollection",
    "DocumentStore",
    "MongoDocumentStore",
    "close_mongo",
    "get_document_store",
    "init_mongo",
    "Base",
    "SchemaCapabilities",
]
