"""
Filter Condition Builder

Translates a dashboard Filter into parameterized SQL predicates (and into
the equivalent document-store query). Fragments are produced in a fixed
order: business, branch, start date, end date, delivery type, platform,
category, menu. Callers append further conditions with ``add()``.

Example:
    conditions = build_filter_conditions(filters)
    conditions.add("o.status = :status", status="completed")
    rows = await store.fetch_all(
        f"SELECT o.total FROM orders o WHERE {conditions.where()}",
        conditions.params,
    )
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, model_validator

from bizmetrics.analytics.periods import sql_timestamp


class Filter(BaseModel):
    """Dashboard filter. ``business_id`` scopes every query."""

    model_config = ConfigDict(frozen=True)

    business_id: str
    branch_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    delivery_type: Optional[str] = None
    platform: Optional[str] = None
    category_id: Optional[str] = None
    menu_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_range(self) -> "Filter":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    @property
    def has_item_scope(self) -> bool:
        """Category/menu filters only exist on the relational item tables."""
        return bool(self.category_id or self.menu_id)

    @property
    def start_at(self) -> Optional[datetime]:
        return datetime.combine(self.start_date, time.min) if self.start_date else None

    @property
    def end_at(self) -> Optional[datetime]:
        # Inclusive: a date-only endpoint covers the whole day
        return datetime.combine(self.end_date, time.max) if self.end_date else None

    def scoped(self, business_id: str) -> "Filter":
        """Copy bound to ``business_id``."""
        if self.business_id == business_id:
            return self
        return self.model_copy(update={"business_id": business_id})

    def with_range(self, start_date: Optional[date], end_date: Optional[date]) -> "Filter":
        return self.model_copy(update={"start_date": start_date, "end_date": end_date})


def resolve_filter(business_id: str, filters: Optional[Filter]) -> Filter:
    """Filter for ``business_id``; the explicit id always wins."""
    if filters is None:
        return Filter(business_id=business_id)
    return filters.scoped(business_id)


@dataclass(frozen=True)
class FilterColumns:
    """
    Column mapping for the builder.

    A column set to None drops the matching filter field. When ``order_id``
    is set, category/menu filters are rendered as an EXISTS over the order's
    item lines instead of direct column comparisons.
    """
    business_id: str
    created_at: str
    branch_id: Optional[str] = None
    delivery_type: Optional[str] = None
    platform: Optional[str] = None
    category_id: Optional[str] = None
    menu_id: Optional[str] = None
    order_id: Optional[str] = None
    date_only: bool = False

    def without(self, *names: str) -> "FilterColumns":
        return replace(self, **{name: None for name in names})


# Order-level queries (FROM orders o)
ORDER_COLUMNS = FilterColumns(
    business_id="o.business_id",
    created_at="o.created_at",
    branch_id="o.user_id",
    delivery_type="o.delivery_type",
    platform="o.order_source",
    category_id="category_id",
    menu_id="menu_id",
    order_id="o.id",
)

# Item-line queries (orders o JOIN order_items oi JOIN items i)
ORDER_ITEM_COLUMNS = replace(
    ORDER_COLUMNS,
    category_id="i.category_id",
    menu_id="i.menu_id",
    order_id=None,
)

# Reservation queries (FROM reservations r)
RESERVATION_COLUMNS = FilterColumns(
    business_id="r.business_user_id",
    created_at="r.reservation_date",
    date_only=True,
)


@dataclass
class FilterConditions:
    """Ordered predicate fragments with their named bind values."""
    fragments: List[str] = field(default_factory=list)
    values: List[Tuple[str, Any]] = field(default_factory=list)

    def add(self, fragment: str, **params: Any) -> "FilterConditions":
        self.fragments.append(fragment)
        self.values.extend(params.items())
        return self

    def where(self) -> str:
        return " AND ".join(self.fragments) if self.fragments else "1 = 1"

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self.values)

    def copy(self) -> "FilterConditions":
        return FilterConditions(list(self.fragments), list(self.values))


def _item_exists(columns: FilterColumns, column: str, bind: str) -> str:
    return (
        "EXISTS (SELECT 1 FROM order_items fx JOIN items fi ON fi.id = fx.item_id "
        f"WHERE fx.order_id = {columns.order_id} AND fi.{column} = :{bind})"
    )


def build_filter_conditions(
    filters: Filter,
    columns: FilterColumns = ORDER_COLUMNS,
) -> FilterConditions:
    """
    Build the predicate set for ``filters``.

    Args:
        filters: Dashboard filter
        columns: Column mapping of the target query

    Returns:
        FilterConditions with fragments in a fixed order
    """
    conditions = FilterConditions()
    conditions.add(f"{columns.business_id} = :business_id", business_id=filters.business_id)

    if filters.branch_id and columns.branch_id:
        conditions.add(f"{columns.branch_id} = :branch_id", branch_id=filters.branch_id)

    if filters.start_date:
        start = filters.start_date.isoformat() if columns.date_only else sql_timestamp(filters.start_at)
        conditions.add(f"{columns.created_at} >= :start_date", start_date=start)

    if filters.end_date:
        end = filters.end_date.isoformat() if columns.date_only else sql_timestamp(filters.end_at)
        conditions.add(f"{columns.created_at} <= :end_date", end_date=end)

    if filters.delivery_type and columns.delivery_type:
        conditions.add(f"{columns.delivery_type} = :delivery_type", delivery_type=filters.delivery_type)

    if filters.platform and columns.platform:
        conditions.add(f"{columns.platform} = :platform", platform=filters.platform)

    for name in ("category_id", "menu_id"):
        value = getattr(filters, name)
        column = getattr(columns, name)
        if not value or not column:
            continue
        if columns.order_id:
            conditions.add(_item_exists(columns, column, name), **{name: value})
        else:
            conditions.add(f"{column} = :{name}", **{name: value})

    return conditions


def document_query(filters: Filter, order_fields: bool = True) -> Dict[str, Any]:
    """
    Equivalent document-store query for ``filters``.

    Order logs carry branch, delivery type and platform; message logs only
    carry the business and the timestamp (``order_fields=False``).
    """
    query: Dict[str, Any] = {"business_id": filters.business_id}

    if order_fields:
        if filters.branch_id:
            query["branch_id"] = filters.branch_id
        if filters.delivery_type:
            query["delivery_type"] = filters.delivery_type
        if filters.platform:
            query["order_source"] = filters.platform

    if filters.start_date or filters.end_date:
        window: Dict[str, Any] = {}
        if filters.start_date:
            window["$gte"] = filters.start_at
        if filters.end_date:
            window["$lte"] = filters.end_at
        query["created_at"] = window

    return query
