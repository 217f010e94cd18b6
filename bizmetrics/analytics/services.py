"""
Service/Item Metrics

Item rankings, per-service revenue and profit, popularity trends and
basket analysis. ``top_items``, the single-winner rankings and the trend run
through the dual-store strategy; the rest read the live tables.
"""

from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

import polars as pl
import structlog

from bizmetrics.analytics.base import MetricEngine
from bizmetrics.analytics.fallback import SnapshotSet
from bizmetrics.analytics.filters import Filter, FilterConditions
from bizmetrics.analytics.periods import to_datetime, to_float, to_int
from bizmetrics.analytics.results import DataSource, MetricResult
from bizmetrics.analytics.schemas import (
    CustomizationUsage,
    HourlyServiceRanking,
    ItemCounter,
    ItemPair,
    ItemSales,
    ItemTrend,
    ProfitMargin,
    ServiceAmount,
)

logger = structlog.get_logger(__name__)

NOTE_NO_COUNTERS = "items.times_ordered/times_delivered missing"
NOTE_NO_COST = "order_items.cost_at_time missing, revenue reported as profit"
NOTE_NO_CUSTOMIZATIONS = "order_item_customizations table missing"


def item_totals(snapshots: SnapshotSet) -> pl.DataFrame:
    """Quantity, revenue and profit per item; null cost counts as 0."""
    return snapshots.items_frame().group_by("item_id", maintain_order=True).agg([
        pl.col("name").drop_nulls().first().alias("name"),
        pl.col("quantity").sum().alias("quantity"),
        (pl.col("price") * pl.col("quantity")).sum().alias("revenue"),
        ((pl.col("price") - pl.col("cost").fill_null(0)) * pl.col("quantity")).sum().alias("profit"),
    ])


def _change_percent(current: int, previous: int) -> float:
    if previous > 0:
        return ((current - previous) / previous) * 100
    return 100.0 if current > 0 else 0.0


def _trend(change: int) -> str:
    if change > 0:
        return "up"
    if change < 0:
        return "down"
    return "stable"


class ServiceMetrics(MetricEngine):
    """
    Service (item) metrics for one business.

    Example:
        metrics = ServiceMetrics(relational, documents, capabilities)
        pairs = await metrics.frequently_bought_together("B1", limit=5)
    """

    # -------------------------------------------------------------------------
    # Catalog counters
    # -------------------------------------------------------------------------

    async def _counters(
        self,
        filters: Filter,
        limit: int,
        order_by: str,
    ) -> List[ItemCounter]:
        conditions = FilterConditions()
        conditions.add("i.business_id = :business_id", business_id=filters.business_id)
        conditions.add("i.deleted_at IS NULL")
        if filters.category_id:
            conditions.add("i.category_id = :category_id", category_id=filters.category_id)
        if filters.menu_id:
            conditions.add("i.menu_id = :menu_id", menu_id=filters.menu_id)

        ordered = "i.times_ordered" if self.capabilities.times_ordered else "0"
        delivered = "i.times_delivered" if self.capabilities.times_delivered else "0"
        rows = await self.relational.fetch_all(
            f"""
            SELECT i.id, i.name, i.price,
                   {ordered} AS times_ordered, {delivered} AS times_delivered
            FROM items i
            WHERE {conditions.where()}
            ORDER BY {order_by} DESC, i.id ASC
            LIMIT {limit}
            """,
            conditions.params,
        )

        counters = []
        for row in rows:
            times_ordered = to_int(row["times_ordered"])
            times_delivered = to_int(row["times_delivered"])
            counters.append(
                ItemCounter(
                    item_id=str(row["id"]),
                    name=row["name"],
                    price=to_float(row["price"]),
                    times_ordered=times_ordered,
                    times_delivered=times_delivered,
                    completion_rate=(times_delivered / times_ordered) * 100 if times_ordered else 0.0,
                )
            )
        return counters

    async def popular_items(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
    ) -> MetricResult[List[ItemCounter]]:
        """Catalog items by ``times_ordered``."""
        limit = self._limit(limit)
        if not self.capabilities.times_ordered:
            return MetricResult.default([], NOTE_NO_COUNTERS)
        filters = self._filter(business_id, filters)
        return MetricResult.relational(await self._counters(filters, limit, "i.times_ordered"))

    async def most_delivered_items(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
    ) -> MetricResult[List[ItemCounter]]:
        """Catalog items by ``times_delivered``."""
        limit = self._limit(limit)
        if not self.capabilities.times_delivered:
            return MetricResult.default([], NOTE_NO_COUNTERS)
        filters = self._filter(business_id, filters)
        return MetricResult.relational(await self._counters(filters, limit, "i.times_delivered"))

    # -------------------------------------------------------------------------
    # Dual-store item rankings
    # -------------------------------------------------------------------------

    async def _totals(self, business_id: str, filters: Optional[Filter]) -> Tuple[pl.DataFrame, SnapshotSet]:
        filters = self._filter(business_id, filters)
        snapshots = await self.strategy.completed_orders(filters, with_items=True)
        return item_totals(snapshots), snapshots

    async def top_items(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
    ) -> MetricResult[List[ItemSales]]:
        """Quantity and revenue per item over completed orders, by quantity."""
        limit = self._limit(limit)
        totals, snapshots = await self._totals(business_id, filters)
        ranked = totals.sort("quantity", descending=True, maintain_order=True).head(limit)
        data = [
            ItemSales(item_id=row["item_id"], name=row["name"], quantity=row["quantity"], revenue=row["revenue"])
            for row in ranked.iter_rows(named=True)
        ]
        return MetricResult(data=data, source=snapshots.source, notes=snapshots.notes)

    async def most_ordered(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[Optional[ItemSales]]:
        """Item with the largest summed quantity; None without item lines."""
        totals, snapshots = await self._totals(business_id, filters)
        best = None
        if totals.height:
            row = totals.sort("quantity", descending=True, maintain_order=True).row(0, named=True)
            best = ItemSales(item_id=row["item_id"], name=row["name"], quantity=row["quantity"], revenue=row["revenue"])
        return MetricResult(data=best, source=snapshots.source, notes=snapshots.notes)

    async def least_ordered(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[Optional[ItemSales]]:
        """Item with the smallest positive summed quantity."""
        totals, snapshots = await self._totals(business_id, filters)
        totals = totals.filter(pl.col("quantity") > 0)
        worst = None
        if totals.height:
            row = totals.sort("quantity", maintain_order=True).row(0, named=True)
            worst = ItemSales(item_id=row["item_id"], name=row["name"], quantity=row["quantity"], revenue=row["revenue"])
        return MetricResult(data=worst, source=snapshots.source, notes=snapshots.notes)

    async def most_rewarding(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[Optional[ServiceAmount]]:
        """Item with the largest summed profit."""
        totals, snapshots = await self._totals(business_id, filters)
        notes = list(snapshots.notes)
        degraded = snapshots.source == DataSource.RELATIONAL and not self.capabilities.cost_at_time
        if degraded:
            notes.append(NOTE_NO_COST)

        best = None
        if totals.height:
            row = totals.sort("profit", descending=True, maintain_order=True).row(0, named=True)
            best = ServiceAmount(item_id=row["item_id"], name=row["name"], quantity=row["quantity"], amount=row["profit"])
        return MetricResult(data=best, source=snapshots.source, degraded=degraded, notes=notes)

    async def popularity_trend(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[ItemTrend]]:
        """
        Item quantities in the current window against the preceding one.

        The previous window has the same length and ends the day before the
        current one starts. Only items sold in the current window are listed,
        sorted by absolute percent change.
        """
        filters = self._filter(business_id, filters)
        end = filters.end_date or self.clock().date()
        start = filters.start_date or end - timedelta(days=self.settings.trend_default_days - 1)
        length = (end - start).days + 1
        previous_start: date = start - timedelta(days=length)
        previous_end: date = start - timedelta(days=1)

        current = await self.strategy.completed_orders(filters.with_range(start, end), with_items=True)
        previous = await self.strategy.completed_orders(filters.with_range(previous_start, previous_end), with_items=True)

        before: Dict[str, int] = {
            row["item_id"]: row["quantity"] for row in item_totals(previous).iter_rows(named=True)
        }
        trends = []
        for row in item_totals(current).iter_rows(named=True):
            now_quantity = row["quantity"]
            then_quantity = before.get(row["item_id"], 0)
            change = now_quantity - then_quantity
            trends.append(
                ItemTrend(
                    item_id=row["item_id"],
                    name=row["name"],
                    current_quantity=now_quantity,
                    previous_quantity=then_quantity,
                    change=change,
                    change_percent=_change_percent(now_quantity, then_quantity),
                    trend=_trend(change),
                )
            )
        trends.sort(key=lambda t: (-abs(t.change_percent), t.item_id))

        source = current.source if current.source == previous.source else DataSource.RELATIONAL
        notes = list(dict.fromkeys(current.notes + previous.notes))
        logger.debug(
            "Popularity trend computed",
            business_id=business_id,
            start=str(start),
            end=str(end),
            items=len(trends),
        )
        return MetricResult(data=trends, source=source, notes=notes)

    # -------------------------------------------------------------------------
    # Relational item lines
    # -------------------------------------------------------------------------

    async def _item_lines(self, filters: Filter) -> List[dict]:
        conditions = self._item_conditions(filters)
        conditions.add("o.status = 'completed'")
        cost = "oi.cost_at_time" if self.capabilities.cost_at_time else "NULL"
        return await self.relational.fetch_all(
            f"""
            SELECT oi.item_id, COALESCE(i.name, oi.name_at_time) AS name,
                   oi.quantity, oi.price_at_time, {cost} AS cost_at_time
            FROM order_items oi
            INNER JOIN orders o ON oi.order_id = o.id
            LEFT JOIN items i ON oi.item_id = i.id
            WHERE {conditions.where()}
            ORDER BY oi.item_id ASC
            """,
            conditions.params,
        )

    async def _amounts(self, filters: Filter, profit: bool) -> List[ServiceAmount]:
        quantities: Dict[str, int] = defaultdict(int)
        amounts: Dict[str, float] = defaultdict(float)
        names: Dict[str, Optional[str]] = {}
        for row in await self._item_lines(filters):
            item_id = str(row["item_id"])
            quantity = to_int(row["quantity"])
            price = to_float(row["price_at_time"])
            unit = price - to_float(row["cost_at_time"]) if profit else price
            quantities[item_id] += quantity
            amounts[item_id] += unit * quantity
            names.setdefault(item_id, row["name"])

        data = [
            ServiceAmount(item_id=item_id, name=names[item_id], quantity=quantities[item_id], amount=amounts[item_id])
            for item_id in quantities
        ]
        return sorted(data, key=lambda s: (-s.amount, s.item_id))

    async def revenue_per_service(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[ServiceAmount]]:
        """Completed revenue per item, highest first."""
        filters = self._filter(business_id, filters)
        return MetricResult.relational(await self._amounts(filters, profit=False))

    async def profit_per_service(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[ServiceAmount]]:
        """Completed profit per item; revenue relabeled when cost is not tracked."""
        filters = self._filter(business_id, filters)
        if not self.capabilities.cost_at_time:
            data = await self._amounts(filters, profit=False)
            return MetricResult.relational(data, notes=[NOTE_NO_COST], degraded=True)
        return MetricResult.relational(await self._amounts(filters, profit=True))

    async def profit_margin_per_service(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[ProfitMargin]]:
        """Revenue, profit and average line margin per item."""
        if not self.capabilities.cost_at_time:
            return MetricResult.default([], "order_items.cost_at_time missing")

        filters = self._filter(business_id, filters)
        revenue: Dict[str, float] = defaultdict(float)
        profit: Dict[str, float] = defaultdict(float)
        margins: Dict[str, List[float]] = defaultdict(list)
        names: Dict[str, Optional[str]] = {}
        for row in await self._item_lines(filters):
            item_id = str(row["item_id"])
            quantity = to_int(row["quantity"])
            price = to_float(row["price_at_time"])
            cost = to_float(row["cost_at_time"])
            revenue[item_id] += price * quantity
            profit[item_id] += (price - cost) * quantity
            if price > 0:
                margins[item_id].append((price - cost) / price * 100)
            names.setdefault(item_id, row["name"])

        data = [
            ProfitMargin(
                item_id=item_id,
                name=names[item_id],
                total_revenue=revenue[item_id],
                total_profit=profit[item_id],
                average_margin_percent=sum(margins[item_id]) / len(margins[item_id]) if margins[item_id] else 0.0,
            )
            for item_id in revenue
        ]
        data.sort(key=lambda m: (-m.total_profit, m.item_id))
        return MetricResult.relational(data)

    async def top_services_by_hour(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
    ) -> MetricResult[List[HourlyServiceRanking]]:
        """Per completion hour, the items sold most in that hour."""
        limit = self._limit(limit)
        filters = self._filter(business_id, filters)
        conditions, column = self._completed(filters, items=True)
        rows = await self.relational.fetch_all(
            f"""
            SELECT {column} AS ts, oi.item_id, COALESCE(i.name, oi.name_at_time) AS name,
                   oi.quantity, oi.price_at_time
            FROM order_items oi
            INNER JOIN orders o ON oi.order_id = o.id
            LEFT JOIN items i ON oi.item_id = i.id
            WHERE {conditions.where()}
            """,
            conditions.params,
        )

        hours: Dict[int, Dict[str, ItemSales]] = defaultdict(dict)
        for row in rows:
            hour = to_datetime(row["ts"]).hour
            item_id = str(row["item_id"])
            quantity = to_int(row["quantity"])
            sales = hours[hour].get(item_id) or ItemSales(item_id=item_id, name=row["name"], quantity=0, revenue=0)
            sales.quantity += quantity
            sales.revenue += to_float(row["price_at_time"]) * quantity
            hours[hour][item_id] = sales

        data = [
            HourlyServiceRanking(
                hour=hour,
                items=sorted(items.values(), key=lambda s: (-s.quantity, s.item_id))[:limit],
            )
            for hour, items in sorted(hours.items())
        ]
        return MetricResult.relational(data)

    # -------------------------------------------------------------------------
    # Basket analysis
    # -------------------------------------------------------------------------

    async def frequently_bought_together(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
    ) -> MetricResult[List[ItemPair]]:
        """Item pairs sharing a completed order; each unordered pair once."""
        limit = self._limit(limit)
        filters = self._filter(business_id, filters)
        conditions = self._order_conditions(filters)
        conditions.add("o.status = 'completed'")
        rows = await self.relational.fetch_all(
            f"""
            SELECT oi1.item_id AS item1_id,
                   MAX(COALESCE(i1.name, oi1.name_at_time)) AS item1_name,
                   oi2.item_id AS item2_id,
                   MAX(COALESCE(i2.name, oi2.name_at_time)) AS item2_name,
                   COUNT(DISTINCT o.id) AS times_bought_together
            FROM order_items oi1
            INNER JOIN order_items oi2 ON oi1.order_id = oi2.order_id AND oi1.item_id < oi2.item_id
            INNER JOIN orders o ON oi1.order_id = o.id
            LEFT JOIN items i1 ON oi1.item_id = i1.id
            LEFT JOIN items i2 ON oi2.item_id = i2.id
            WHERE {conditions.where()}
            GROUP BY oi1.item_id, oi2.item_id
            ORDER BY times_bought_together DESC, item1_id ASC, item2_id ASC
            LIMIT {limit}
            """,
            conditions.params,
        )
        data = [
            ItemPair(
                item1_id=str(row["item1_id"]),
                item1_name=row["item1_name"],
                item2_id=str(row["item2_id"]),
                item2_name=row["item2_name"],
                times_bought_together=to_int(row["times_bought_together"]),
            )
            for row in rows
        ]
        return MetricResult.relational(data)

    async def customization_usage(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
    ) -> MetricResult[List[CustomizationUsage]]:
        """Customizations applied to ordered items, most used first."""
        limit = self._limit(limit)
        if not self.capabilities.customizations:
            return MetricResult.default([], NOTE_NO_CUSTOMIZATIONS)

        filters = self._filter(business_id, filters)
        conditions = self._item_conditions(filters)
        rows = await self.relational.fetch_all(
            f"""
            SELECT c.customization_name AS customization_name,
                   COUNT(*) AS usage_count,
                   SUM(COALESCE(c.price_adjustment, 0)) AS total_price_adjustment,
                   COUNT(DISTINCT c.order_item_id) AS order_items_count
            FROM order_item_customizations c
            INNER JOIN order_items oi ON c.order_item_id = oi.id
            INNER JOIN orders o ON oi.order_id = o.id
            LEFT JOIN items i ON oi.item_id = i.id
            WHERE {conditions.where()}
            GROUP BY c.customization_name
            ORDER BY usage_count DESC, customization_name ASC
            LIMIT {limit}
            """,
            conditions.params,
        )
        data = [
            CustomizationUsage(
                customization_name=row["customization_name"],
                usage_count=to_int(row["usage_count"]),
                total_price_adjustment=to_float(row["total_price_adjustment"]),
                order_items_count=to_int(row["order_items_count"]),
            )
            for row in rows
        ]
        return MetricResult.relational(data)
