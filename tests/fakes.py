"""
In-memory document store fakes.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from bizmetrics.exceptions import DocumentStoreUnavailable

# Fixed "now" for churn, trends and the financial defaults
NOW = datetime(2024, 3, 20, 12, 0, 0)


def _matches(doc: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
    """Subset of Mongo query semantics: equality, $gte, $lte, $in, $ne."""
    for field, condition in query.items():
        value = doc.get(field)
        if isinstance(condition, dict):
            for op, operand in condition.items():
                if op == "$gte" and (value is None or value < operand):
                    return False
                if op == "$lte" and (value is None or value > operand):
                    return False
                if op == "$in" and value not in operand:
                    return False
                if op == "$ne" and value == operand:
                    return False
        elif value != condition:
            return False
    return True


class InMemoryCollection:
    """DocumentCollection over a list of dicts"""

    def __init__(self, docs: Iterable[Dict[str, Any]] = ()):
        self.docs = list(docs)

    async def find(self, query, sort=None) -> List[Dict[str, Any]]:
        docs = [dict(doc) for doc in self.docs if _matches(doc, query)]
        for field, direction in reversed(list(sort or [])):
            docs.sort(key=lambda doc: doc.get(field), reverse=direction < 0)
        return docs

    async def count_documents(self, query) -> int:
        return len(await self.find(query))

    async def distinct(self, field, query) -> List[Any]:
        values = []
        for doc in await self.find(query):
            if doc.get(field) not in values:
                values.append(doc.get(field))
        return values

    async def find_one(self, query, sort=None) -> Optional[Dict[str, Any]]:
        docs = await self.find(query, sort)
        return docs[0] if docs else None


class InMemoryDocumentStore:
    """DocumentStore holding named in-memory collections"""

    def __init__(self, **collections: Iterable[Dict[str, Any]]):
        self.collections = {name: InMemoryCollection(docs) for name, docs in collections.items()}

    async def collection(self, name: str) -> InMemoryCollection:
        return self.collections.setdefault(name, InMemoryCollection())


class UnavailableDocumentStore:
    """DocumentStore whose server cannot be reached"""

    async def collection(self, name: str):
        raise DocumentStoreUnavailable("connection refused")



class FailingCollection:
    """DocumentCollection whose server goes away after the handle is obtained"""

    async def find(self, query, sort=None):
        raise DocumentStoreUnavailable("connection reset")

    async def count_documents(self, query):
        raise DocumentStoreUnavailable("connection reset")

    async def distinct(self, field, query):
        raise DocumentStoreUnavailable("connection reset")

    async def find_one(self, query, sort=None):
        raise DocumentStoreUnavailable("connection reset")


class FailingQueryDocumentStore:
    """DocumentStore handing out collections that fail on every query"""

    async def collection(self, name: str) -> FailingCollection:
        return FailingCollection()
