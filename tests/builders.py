"""
Row and document builders for the test datasets.

Relational rows carry every column of the current schema; ``insert_rows``
drops the ones a legacy table does not have.
"""
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    Time,
)
from sqlalchemy.ext.asyncio import AsyncEngine

from bizmetrics.database.models import Base

Row = Dict[str, Any]


def order_row(
    order_id: str,
    created_at: datetime,
    total: float,
    phone: str = "+9611000001",
    business_id: str = "B1",
    status: str = "completed",
    **extra: Any,
) -> Row:
    row = {
        "id": order_id,
        "business_id": business_id,
        "user_id": "U1",
        "customer_phone_number": phone,
        "customer_name": f"Customer {phone[-2:]}",
        "order_source": "whatsapp",
        "request_type": "order",
        "status": status,
        "subtotal": total,
        "delivery_price": 0,
        "total": total,
        "delivery_type": "takeaway",
        "created_at": created_at,
        "completed_at": created_at + timedelta(minutes=30) if status == "completed" else None,
    }
    row.update(extra)
    return row


def item_row(item_id: str, name: str, price: float, business_id: str = "B1", **extra: Any) -> Row:
    row = {
        "id": item_id,
        "business_id": business_id,
        "menu_id": "M1",
        "category_id": "C1",
        "name": name,
        "price": price,
        "times_ordered": 0,
        "times_delivered": 0,
    }
    row.update(extra)
    return row


def line_row(
    line_id: str,
    order_id: str,
    item_id: str,
    quantity: int,
    price: float,
    cost: Optional[float] = None,
    name: str = "",
) -> Row:
    return {
        "id": line_id,
        "order_id": order_id,
        "item_id": item_id,
        "quantity": quantity,
        "price_at_time": price,
        "cost_at_time": cost,
        "name_at_time": name,
    }


def reservation_row(
    reservation_id: str,
    day: date,
    at: time,
    status: str = "confirmed",
    business_id: str = "B1",
    table_id: Optional[str] = None,
    guests: Optional[int] = 2,
    **extra: Any,
) -> Row:
    row = {
        "id": reservation_id,
        "business_user_id": business_id,
        "table_id": table_id,
        "customer_phone_number": "+9611000001",
        "customer_name": "Guest",
        "reservation_date": day,
        "reservation_time": at,
        "number_of_guests": guests,
        "status": status,
        "no_show": status == "no_show",
        "created_at": datetime.combine(day, time(8, 0)),
    }
    row.update(extra)
    return row


def order_log(
    order_id: str,
    created_at: datetime,
    total: float,
    phone: str = "+9611000001",
    business_id: str = "B1",
    items: Iterable[Tuple[str, str, int, float]] = (),
    **extra: Any,
) -> Row:
    """Archived order; ``items`` as (item_id, name, quantity, price)."""
    doc = {
        "order_id": order_id,
        "business_id": business_id,
        "branch_id": "U1",
        "customer_phone_number": phone,
        "customer_name": f"Customer {phone[-2:]}",
        "final_status": "completed",
        "delivery_type": "takeaway",
        "order_source": "whatsapp",
        "items": [
            {"item_id": item_id, "name": name, "quantity": quantity, "price": price}
            for item_id, name, quantity, price in items
        ],
        "subtotal": total,
        "delivery_price": 0,
        "total": total,
        "created_at": created_at,
        "completed_at": created_at + timedelta(minutes=30),
    }
    doc.update(extra)
    return doc


def message(
    at: datetime,
    direction: str = "inbound",
    phone: str = "+9611000001",
    business_id: str = "B1",
    **extra: Any,
) -> Row:
    doc = {
        "business_id": business_id,
        "customer_phone_number": phone,
        "direction": direction,
        "message_type": "text",
        "fallback_used": False,
        "text": "hello",
        "created_at": at,
    }
    doc.update(extra)
    return doc


async def insert_rows(
    engine: AsyncEngine,
    table_name: str,
    rows: List[Row],
    metadata: MetaData = Base.metadata,
) -> None:
    """Insert rows, keeping only the columns ``table_name`` has."""
    table = metadata.tables[table_name]
    async with engine.begin() as conn:
        for row in rows:
            values = {key: value for key, value in row.items() if key in table.c}
            await conn.execute(table.insert().values(**values))


# =============================================================================
# LEGACY SCHEMA (no optional columns, no customizations table)
# =============================================================================

LEGACY_METADATA = MetaData()

Table(
    "orders",
    LEGACY_METADATA,
    Column("id", String(36), primary_key=True),
    Column("business_id", String(36), nullable=False),
    Column("user_id", String(36), nullable=False),
    Column("customer_phone_number", String(20), nullable=False),
    Column("customer_name", String(255)),
    Column("order_source", String(20)),
    Column("request_type", String(30)),
    Column("status", String(20)),
    Column("subtotal", Numeric(10, 2)),
    Column("delivery_price", Numeric(10, 2)),
    Column("total", Numeric(10, 2), nullable=False),
    Column("location_address", Text),
    Column("created_at", DateTime, nullable=False),
)

Table(
    "order_items",
    LEGACY_METADATA,
    Column("id", String(36), primary_key=True),
    Column("order_id", String(36), nullable=False),
    Column("item_id", String(36), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("price_at_time", Numeric(10, 2), nullable=False),
    Column("name_at_time", String(255)),
)

Table(
    "items",
    LEGACY_METADATA,
    Column("id", String(36), primary_key=True),
    Column("business_id", String(36), nullable=False),
    Column("menu_id", String(36)),
    Column("category_id", String(36)),
    Column("name", String(255), nullable=False),
    Column("price", Numeric(10, 2), nullable=False),
    Column("deleted_at", DateTime),
)

Table(
    "tables",
    LEGACY_METADATA,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False),
    Column("number", String(50), nullable=False),
    Column("seats", Integer, nullable=False),
)

Table(
    "reservations",
    LEGACY_METADATA,
    Column("id", String(36), primary_key=True),
    Column("business_user_id", String(36), nullable=False),
    Column("table_id", String(36)),
    Column("customer_phone_number", String(20), nullable=False),
    Column("customer_name", String(255), nullable=False),
    Column("reservation_date", Date, nullable=False),
    Column("reservation_time", Time, nullable=False),
    Column("number_of_guests", Integer),
    Column("status", String(20)),
    Column("created_at", DateTime),
)

