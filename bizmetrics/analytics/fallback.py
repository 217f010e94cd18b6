"""
Dual-Datastore Fallback

Completed orders are read from the archived ``order_logs`` collection when
the document store answers, and recomputed from the live ``orders`` /
``order_items`` tables otherwise. Both paths normalize to OrderSnapshot so
every aggregate downstream runs through one code path.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import polars as pl
import structlog

from bizmetrics.analytics.filters import (
    ORDER_COLUMNS,
    ORDER_ITEM_COLUMNS,
    Filter,
    FilterColumns,
    build_filter_conditions,
    document_query,
)
from bizmetrics.analytics.periods import to_datetime, to_float, to_int
from bizmetrics.analytics.results import DataSource
from bizmetrics.database.connection import RelationalStore
from bizmetrics.database.documents import ORDER_LOGS, DocumentStore
from bizmetrics.database.schema import SchemaCapabilities
from bizmetrics.exceptions import DocumentStoreUnavailable

logger = structlog.get_logger(__name__)

NOTE_DOCUMENTS_DOWN = "document store unavailable, recomputed from live orders"
NOTE_ITEM_SCOPE = "category/menu filters are only available on live orders"

ORDER_SCHEMA = {
    "order_id": pl.Utf8,
    "customer_phone_number": pl.Utf8,
    "customer_name": pl.Utf8,
    "total": pl.Float64,
    "delivery_price": pl.Float64,
    "created_at": pl.Datetime("us"),
    "completed_at": pl.Datetime("us"),
}

ITEM_SCHEMA = {
    "order_id": pl.Utf8,
    "item_id": pl.Utf8,
    "name": pl.Utf8,
    "quantity": pl.Int64,
    "price": pl.Float64,
    "cost": pl.Float64,
    "created_at": pl.Datetime("us"),
}


@dataclass(frozen=True)
class SnapshotItem:
    item_id: str
    name: Optional[str]
    quantity: int
    price: float
    cost: Optional[float] = None


@dataclass(frozen=True)
class OrderSnapshot:
    """A completed order, independent of the store it was read from."""
    order_id: str
    customer_phone_number: str
    customer_name: Optional[str]
    total: float
    delivery_price: float
    created_at: datetime
    completed_at: Optional[datetime] = None
    items: Tuple[SnapshotItem, ...] = ()

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "OrderSnapshot":
        items = tuple(
            SnapshotItem(
                item_id=str(item.get("item_id") or item.get("name")),
                name=item.get("name"),
                quantity=to_int(item.get("quantity")),
                price=to_float(item.get("price")),
                cost=to_float(item["cost_at_time"]) if item.get("cost_at_time") is not None else None,
            )
            for item in doc.get("items") or []
        )
        return cls(
            order_id=str(doc.get("order_id") or doc.get("_id")),
            customer_phone_number=doc.get("customer_phone_number") or "",
            customer_name=doc.get("customer_name"),
            total=to_float(doc.get("total")),
            delivery_price=to_float(doc.get("delivery_price")),
            created_at=to_datetime(doc.get("created_at")),
            completed_at=to_datetime(doc.get("completed_at")),
            items=items,
        )


@dataclass
class SnapshotSet:
    """Completed orders plus the provenance of the read."""
    orders: List[OrderSnapshot]
    source: DataSource
    notes: List[str] = field(default_factory=list)

    def orders_frame(self) -> pl.DataFrame:
        rows = [
            {
                "order_id": o.order_id,
                "customer_phone_number": o.customer_phone_number,
                "customer_name": o.customer_name,
                "total": o.total,
                "delivery_price": o.delivery_price,
                "created_at": o.created_at,
                "completed_at": o.completed_at,
            }
            for o in self.orders
        ]
        return pl.DataFrame(rows, schema=ORDER_SCHEMA)

    def items_frame(self) -> pl.DataFrame:
        rows = [
            {
                "order_id": o.order_id,
                "item_id": item.item_id,
                "name": item.name,
                "quantity": item.quantity,
                "price": item.price,
                "cost": item.cost,
                "created_at": o.created_at,
            }
            for o in self.orders
            for item in o.items
        ]
        return pl.DataFrame(rows, schema=ITEM_SCHEMA)


class DualStoreStrategy:
    """
    Loads completed-order snapshots from the preferred store.

    Example:
        strategy = DualStoreStrategy(relational, documents, capabilities)
        snapshots = await strategy.completed_orders(filters, with_items=True)
    """

    def __init__(
        self,
        relational: RelationalStore,
        documents: DocumentStore,
        capabilities: SchemaCapabilities,
    ):
        self.relational = relational
        self.documents = documents
        self.capabilities = capabilities

    @property
    def order_columns(self) -> FilterColumns:
        if self.capabilities.delivery_type:
            return ORDER_COLUMNS
        return ORDER_COLUMNS.without("delivery_type")

    @property
    def item_columns(self) -> FilterColumns:
        if self.capabilities.delivery_type:
            return ORDER_ITEM_COLUMNS
        return ORDER_ITEM_COLUMNS.without("delivery_type")

    async def completed_orders(self, filters: Filter, with_items: bool = False) -> SnapshotSet:
        """
        Completed orders matching ``filters``, oldest first.

        Args:
            filters: Dashboard filter
            with_items: Also load the item lines of each order
        """
        if filters.has_item_scope:
            orders = await self.relational_orders(filters, with_items)
            return SnapshotSet(orders, DataSource.RELATIONAL, [NOTE_ITEM_SCOPE])

        try:
            orders = await self.document_orders(filters)
            return SnapshotSet(orders, DataSource.DOCUMENT)
        except DocumentStoreUnavailable as e:
            logger.warning(
                "Falling back to relational store",
                business_id=filters.business_id,
                error=str(e),
            )

        orders = await self.relational_orders(filters, with_items)
        return SnapshotSet(orders, DataSource.RELATIONAL, [NOTE_DOCUMENTS_DOWN])

    async def document_orders(self, filters: Filter) -> List[OrderSnapshot]:
        collection = await self.documents.collection(ORDER_LOGS)
        query = document_query(filters)
        query["final_status"] = "completed"
        docs = await collection.find(query, sort=[("created_at", 1)])
        return [OrderSnapshot.from_document(doc) for doc in docs]

    async def relational_orders(self, filters: Filter, with_items: bool = False) -> List[OrderSnapshot]:
        conditions = build_filter_conditions(filters, self.order_columns)
        conditions.add("o.status = 'completed'")
        completed_at = "o.completed_at" if self.capabilities.completed_at else "NULL"

        rows = await self.relational.fetch_all(
            f"""
            SELECT o.id, o.customer_phone_number, o.customer_name, o.total,
                   o.delivery_price, o.created_at, {completed_at} AS completed_at
            FROM orders o
            WHERE {conditions.where()}
            ORDER BY o.created_at ASC, o.id ASC
            """,
            conditions.params,
        )

        items: Dict[str, List[SnapshotItem]] = {}
        if with_items and rows:
            items = await self._relational_items(filters)

        return [
            OrderSnapshot(
                order_id=str(row["id"]),
                customer_phone_number=row["customer_phone_number"] or "",
                customer_name=row["customer_name"],
                total=to_float(row["total"]),
                delivery_price=to_float(row["delivery_price"]),
                created_at=to_datetime(row["created_at"]),
                completed_at=to_datetime(row["completed_at"]),
                items=tuple(items.get(str(row["id"]), ())),
            )
            for row in rows
        ]

    async def _relational_items(self, filters: Filter) -> Dict[str, List[SnapshotItem]]:
        conditions = build_filter_conditions(filters, self.item_columns)
        conditions.add("o.status = 'completed'")
        cost = "oi.cost_at_time" if self.capabilities.cost_at_time else "NULL"

        rows = await self.relational.fetch_all(
            f"""
            SELECT oi.order_id, oi.item_id, COALESCE(i.name, oi.name_at_time) AS name,
                   oi.quantity, oi.price_at_time, {cost} AS cost_at_time
            FROM order_items oi
            INNER JOIN orders o ON oi.order_id = o.id
            LEFT JOIN items i ON oi.item_id = i.id
            WHERE {conditions.where()}
            ORDER BY oi.order_id ASC, oi.id ASC
            """,
            conditions.params,
        )

        items: Dict[str, List[SnapshotItem]] = {}
        for row in rows:
            items.setdefault(str(row["order_id"]), []).append(
                SnapshotItem(
                    item_id=str(row["item_id"]),
                    name=row["name"],
                    quantity=to_int(row["quantity"]),
                    price=to_float(row["price_at_time"]),
                    cost=to_float(row["cost_at_time"]) if row["cost_at_time"] is not None else None,
                )
            )
        return items
