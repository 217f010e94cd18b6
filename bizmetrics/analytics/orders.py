"""
Order/Sales Metrics

Revenue, order counts, profit, rates and time-of-day distributions over a
business's orders. Revenue and order value run through the dual-store
strategy; everything else reads the live tables. Relational failures
propagate as RelationalQueryError.
"""

from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Optional, Tuple, Union

import polars as pl
import structlog

from bizmetrics.analytics.base import MetricEngine
from bizmetrics.analytics.fallback import OrderSnapshot
from bizmetrics.analytics.filters import Filter
from bizmetrics.analytics.periods import (
    DAY_NAMES,
    Period,
    bucket_key,
    to_datetime,
    to_float,
    to_int,
)
from bizmetrics.analytics.results import MetricResult
from bizmetrics.analytics.schemas import (
    CompletionTimeSummary,
    DayCount,
    DeliveryArea,
    DeliveryFeeSummary,
    DeliveryTypeShare,
    HeatmapCell,
    HourCount,
    OrderCountBucket,
    OrderValueSummary,
    ProfitBucket,
    RateSummary,
    RequestTypeTotals,
    RevenueBucket,
    ScheduleSplit,
    StatusCount,
)

logger = structlog.get_logger(__name__)

NOTE_NO_COST = "order_items.cost_at_time missing, revenue reported as profit"
NOTE_NO_COMPLETED_AT = "orders.completed_at missing"
NOTE_NO_DELIVERY_TYPE = "orders.delivery_type missing"
NOTE_NO_SCHEDULED_FOR = "orders.scheduled_for missing"


def revenue_buckets(orders: Iterable[OrderSnapshot], period: Union[Period, str]) -> List[RevenueBucket]:
    """Completed-order revenue per bucket of ``created_at``, ascending by key."""
    rows = [(bucket_key(o.created_at, period), o.total) for o in orders]
    if not rows:
        return []

    frame = pl.DataFrame(rows, schema={"period": pl.Utf8, "total": pl.Float64}, orient="row")
    grouped = (
        frame.group_by("period")
        .agg([
            pl.col("total").sum().alias("revenue"),
            pl.len().alias("orders"),
        ])
        .sort("period")
    )
    return [RevenueBucket(**row) for row in grouped.iter_rows(named=True)]


def order_value(orders: List[OrderSnapshot]) -> OrderValueSummary:
    total = sum(o.total for o in orders)
    count = len(orders)
    return OrderValueSummary(
        total_revenue=total,
        order_count=count,
        average_order_value=total / count if count else 0.0,
    )


def _rate(matching: int, total: int) -> float:
    return (matching / total) * 100 if total else 0.0


def _sorted_hours(counts: Dict[int, List[float]]) -> List[HourCount]:
    hours = [HourCount(hour=hour, orders=len(totals), revenue=sum(totals)) for hour, totals in counts.items()]
    return sorted(hours, key=lambda h: (-h.orders, h.hour))


class OrderMetrics(MetricEngine):
    """
    Order and sales metrics for one business.

    Example:
        metrics = OrderMetrics(relational, documents, capabilities)
        result = await metrics.revenue_by_period("B1", period="day")
    """

    # -------------------------------------------------------------------------
    # Dual-store metrics
    # -------------------------------------------------------------------------

    async def revenue_by_period(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        period: Union[Period, str] = Period.DAY,
    ) -> MetricResult[List[RevenueBucket]]:
        """
        Revenue and order count of completed orders per period bucket.

        Args:
            business_id: Tenant
            filters: Dashboard filter
            period: hour, day, week or month

        Returns:
            Buckets sorted ascending by key
        """
        period = Period(period)
        filters = self._filter(business_id, filters)
        snapshots = await self.strategy.completed_orders(filters)
        data = revenue_buckets(snapshots.orders, period)

        logger.info(
            "Revenue by period computed",
            business_id=business_id,
            period=period.value,
            buckets=len(data),
            source=snapshots.source.value,
        )
        return MetricResult(data=data, source=snapshots.source, notes=snapshots.notes)

    async def order_value_summary(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[OrderValueSummary]:
        """Total revenue, completed order count and average order value."""
        filters = self._filter(business_id, filters)
        snapshots = await self.strategy.completed_orders(filters)
        return MetricResult(data=order_value(snapshots.orders), source=snapshots.source, notes=snapshots.notes)

    # -------------------------------------------------------------------------
    # Relational metrics
    # -------------------------------------------------------------------------

    async def orders_by_period(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        period: Union[Period, str] = Period.DAY,
    ) -> MetricResult[List[OrderCountBucket]]:
        """Completed orders per bucket of the completion timestamp."""
        period = Period(period)
        filters = self._filter(business_id, filters)
        conditions, column = self._completed(filters)

        rows = await self.relational.fetch_all(
            f"SELECT {column} AS ts FROM orders o WHERE {conditions.where()}",
            conditions.params,
        )
        counts = Counter(bucket_key(row["ts"], period) for row in rows)
        data = [OrderCountBucket(period=key, orders=counts[key]) for key in sorted(counts)]

        notes = [] if self.capabilities.completed_at else [NOTE_NO_COMPLETED_AT + ", bucketed by created_at"]
        return MetricResult.relational(data, notes=notes)

    async def profit_by_period(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        period: Union[Period, str] = Period.DAY,
    ) -> MetricResult[List[ProfitBucket]]:
        """
        Profit of completed orders per bucket.

        Without ``order_items.cost_at_time`` the revenue per bucket is
        returned as profit and the result is marked degraded.
        """
        period = Period(period)
        filters = self._filter(business_id, filters)

        if self.capabilities.cost_at_time:
            conditions, column = self._completed(filters, items=True)
            rows = await self.relational.fetch_all(
                f"""
                SELECT o.id AS order_id, {column} AS ts,
                       SUM((oi.price_at_time - COALESCE(oi.cost_at_time, 0)) * oi.quantity) AS amount
                FROM order_items oi
                INNER JOIN orders o ON oi.order_id = o.id
                LEFT JOIN items i ON oi.item_id = i.id
                WHERE {conditions.where()}
                GROUP BY o.id, {column}
                """,
                conditions.params,
            )
        else:
            conditions, column = self._completed(filters)
            rows = await self.relational.fetch_all(
                f"SELECT o.id AS order_id, {column} AS ts, o.total AS amount FROM orders o WHERE {conditions.where()}",
                conditions.params,
            )

        buckets: Dict[str, List[float]] = defaultdict(list)
        for row in rows:
            buckets[bucket_key(row["ts"], period)].append(to_float(row["amount"]))
        data = [ProfitBucket(period=key, profit=sum(buckets[key]), orders=len(buckets[key])) for key in sorted(buckets)]

        if not self.capabilities.cost_at_time:
            logger.warning("Profit degraded to revenue", business_id=business_id)
            return MetricResult.relational(data, notes=[NOTE_NO_COST], degraded=True)
        return MetricResult.relational(data)

    async def status_breakdown(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[StatusCount]]:
        """Order count per status; revenue only counts completed orders."""
        filters = self._filter(business_id, filters)
        conditions = self._order_conditions(filters)
        rows = await self.relational.fetch_all(
            f"""
            SELECT o.status AS status, COUNT(*) AS order_count,
                   SUM(CASE WHEN o.status = 'completed' THEN o.total ELSE 0 END) AS revenue
            FROM orders o
            WHERE {conditions.where()}
            GROUP BY o.status
            ORDER BY order_count DESC, o.status ASC
            """,
            conditions.params,
        )
        data = [
            StatusCount(status=row["status"], count=to_int(row["order_count"]), revenue=to_float(row["revenue"]))
            for row in rows
        ]
        return MetricResult.relational(data)

    async def cancellation_rate(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[RateSummary]:
        """Rejected orders over all orders, as a percentage."""
        filters = self._filter(business_id, filters)
        return MetricResult.relational(await self._status_rate(filters, "rejected"))

    async def rejection_rate(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[RateSummary]:
        """Orders rejected by the business over all orders, as a percentage."""
        filters = self._filter(business_id, filters)
        return MetricResult.relational(await self._status_rate(filters, "rejected"))

    async def _status_rate(self, filters: Filter, status: str) -> RateSummary:
        conditions = self._order_conditions(filters)
        row = await self.relational.fetch_one(
            f"""
            SELECT COUNT(*) AS total,
                   SUM(CASE WHEN o.status = :rate_status THEN 1 ELSE 0 END) AS matching
            FROM orders o
            WHERE {conditions.where()}
            """,
            {**conditions.params, "rate_status": status},
        )
        total = to_int(row["total"]) if row else 0
        matching = to_int(row["matching"]) if row else 0
        return RateSummary(matching=matching, total=total, rate=_rate(matching, total))

    async def _completed_times(self, filters: Filter) -> List[Tuple[object, float]]:
        conditions, column = self._completed(filters)
        rows = await self.relational.fetch_all(
            f"SELECT {column} AS ts, o.total AS total FROM orders o WHERE {conditions.where()}",
            conditions.params,
        )
        return [(to_datetime(row["ts"]), to_float(row["total"])) for row in rows]

    async def peak_hours(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[HourCount]]:
        """Completed orders per hour of day, busiest first."""
        filters = self._filter(business_id, filters)
        counts: Dict[int, List[float]] = defaultdict(list)
        for ts, total in await self._completed_times(filters):
            counts[ts.hour].append(total)
        return MetricResult.relational(_sorted_hours(counts))

    async def peak_days(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[DayCount]]:
        """Completed orders per ISO weekday, busiest first."""
        filters = self._filter(business_id, filters)
        counts: Dict[int, List[float]] = defaultdict(list)
        for ts, total in await self._completed_times(filters):
            counts[ts.isoweekday()].append(total)

        data = [
            DayCount(day_of_week=day, day_name=DAY_NAMES[day - 1], orders=len(totals), revenue=sum(totals))
            for day, totals in counts.items()
        ]
        data.sort(key=lambda d: (-d.orders, d.day_of_week))
        return MetricResult.relational(data)

    async def sales_heatmap(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[HeatmapCell]]:
        """
        Observed (weekday, hour) cells of completed orders.

        Only cells with orders are returned, ascending by day then hour;
        callers fill the gaps with zeros.
        """
        filters = self._filter(business_id, filters)
        cells: Dict[Tuple[int, int], List[float]] = defaultdict(list)
        for ts, total in await self._completed_times(filters):
            cells[(ts.isoweekday(), ts.hour)].append(total)

        data = [
            HeatmapCell(
                day_of_week=day,
                day_name=DAY_NAMES[day - 1],
                hour=hour,
                orders=len(totals),
                revenue=sum(totals),
            )
            for (day, hour), totals in sorted(cells.items())
        ]
        return MetricResult.relational(data)

    async def time_to_complete(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[CompletionTimeSummary]:
        """Average, min and max whole minutes from creation to completion."""
        empty = CompletionTimeSummary(orders=0, average_minutes=0, min_minutes=0, max_minutes=0)
        if not self.capabilities.completed_at:
            return MetricResult.default(empty, NOTE_NO_COMPLETED_AT)

        filters = self._filter(business_id, filters)
        conditions, _ = self._completed(filters)
        rows = await self.relational.fetch_all(
            f"SELECT o.created_at, o.completed_at FROM orders o WHERE {conditions.where()}",
            conditions.params,
        )
        minutes = [
            (to_datetime(row["completed_at"]) - to_datetime(row["created_at"])).total_seconds() // 60
            for row in rows
        ]
        if not minutes:
            return MetricResult.relational(empty)

        data = CompletionTimeSummary(
            orders=len(minutes),
            average_minutes=sum(minutes) / len(minutes),
            min_minutes=min(minutes),
            max_minutes=max(minutes),
        )
        return MetricResult.relational(data)

    # -------------------------------------------------------------------------
    # Fulfilment
    # -------------------------------------------------------------------------

    async def delivery_type_split(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[DeliveryTypeShare]]:
        """Completed orders and revenue per delivery type."""
        if not self.capabilities.delivery_type:
            return MetricResult.default([], NOTE_NO_DELIVERY_TYPE)

        filters = self._filter(business_id, filters)
        conditions = self._order_conditions(filters)
        conditions.add("o.status = 'completed'")
        rows = await self.relational.fetch_all(
            f"""
            SELECT COALESCE(o.delivery_type, 'unknown') AS delivery_type,
                   COUNT(*) AS orders, SUM(o.total) AS revenue
            FROM orders o
            WHERE {conditions.where()}
            GROUP BY COALESCE(o.delivery_type, 'unknown')
            ORDER BY orders DESC, delivery_type ASC
            """,
            conditions.params,
        )
        data = [
            DeliveryTypeShare(
                delivery_type=row["delivery_type"],
                orders=to_int(row["orders"]),
                revenue=to_float(row["revenue"]),
            )
            for row in rows
        ]
        return MetricResult.relational(data)

    async def scheduled_vs_immediate(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[ScheduleSplit]:
        """Scheduled requests against immediate orders; revenue counts completed orders."""
        filters = self._filter(business_id, filters)
        conditions = self._order_conditions(filters)
        rows = await self.relational.fetch_all(
            f"""
            SELECT o.request_type AS request_type, COUNT(*) AS order_count,
                   SUM(CASE WHEN o.status = 'completed' THEN o.total ELSE 0 END) AS revenue
            FROM orders o
            WHERE {conditions.where()}
            GROUP BY o.request_type
            """,
            conditions.params,
        )
        by_type = {
            row["request_type"]: RequestTypeTotals(count=to_int(row["order_count"]), revenue=to_float(row["revenue"]))
            for row in rows
        }
        empty = RequestTypeTotals(count=0, revenue=0)
        scheduled = by_type.get("scheduled_request", empty)
        immediate = by_type.get("order", empty)
        data = ScheduleSplit(
            scheduled=scheduled,
            immediate=immediate,
            total=RequestTypeTotals(
                count=scheduled.count + immediate.count,
                revenue=scheduled.revenue + immediate.revenue,
            ),
        )
        return MetricResult.relational(data)

    async def busy_delivery_slots(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[HourCount]]:
        """Completed scheduled orders per scheduled hour, busiest first."""
        if not self.capabilities.scheduled_for:
            return MetricResult.default([], NOTE_NO_SCHEDULED_FOR)

        filters = self._filter(business_id, filters)
        conditions = self._order_conditions(filters)
        conditions.add("o.status = 'completed'")
        conditions.add("o.scheduled_for IS NOT NULL")
        rows = await self.relational.fetch_all(
            f"SELECT o.scheduled_for AS ts, o.total AS total FROM orders o WHERE {conditions.where()}",
            conditions.params,
        )

        counts: Dict[int, List[float]] = defaultdict(list)
        for row in rows:
            counts[to_datetime(row["ts"]).hour].append(to_float(row["total"]))
        return MetricResult.relational(_sorted_hours(counts))

    async def common_delivery_areas(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: int = 50,
    ) -> MetricResult[List[DeliveryArea]]:
        """Most frequent delivery addresses of completed delivery orders."""
        limit = self._limit(limit)
        if not self.capabilities.delivery_type:
            return MetricResult.default([], NOTE_NO_DELIVERY_TYPE)

        filters = self._filter(business_id, filters)
        conditions = self._order_conditions(filters)
        conditions.add("o.status = 'completed'")
        conditions.add("o.delivery_type = 'delivery'")
        conditions.add("o.location_address IS NOT NULL AND o.location_address != ''")
        rows = await self.relational.fetch_all(
            f"""
            SELECT o.location_address AS location_address, COUNT(*) AS orders,
                   COUNT(DISTINCT o.customer_phone_number) AS unique_customers,
                   SUM(o.total) AS revenue
            FROM orders o
            WHERE {conditions.where()}
            GROUP BY o.location_address
            ORDER BY orders DESC, location_address ASC
            LIMIT {limit}
            """,
            conditions.params,
        )
        data = [
            DeliveryArea(
                location_address=row["location_address"],
                orders=to_int(row["orders"]),
                unique_customers=to_int(row["unique_customers"]),
                revenue=to_float(row["revenue"]),
            )
            for row in rows
        ]
        return MetricResult.relational(data)

    async def delivery_fee_revenue(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[DeliveryFeeSummary]:
        """Delivery fees collected on completed delivery orders."""
        empty = DeliveryFeeSummary(total_delivery_fees=0, delivery_orders=0, total_revenue=0)
        if not self.capabilities.delivery_type:
            return MetricResult.default(empty, NOTE_NO_DELIVERY_TYPE)

        filters = self._filter(business_id, filters)
        conditions = self._order_conditions(filters)
        conditions.add("o.status = 'completed'")
        conditions.add("o.delivery_type = 'delivery'")
        row = await self.relational.fetch_one(
            f"""
            SELECT SUM(o.delivery_price) AS fees, COUNT(*) AS orders, SUM(o.total) AS revenue
            FROM orders o
            WHERE {conditions.where()}
            """,
            conditions.params,
        )
        if not row:
            return MetricResult.relational(empty)

        data = DeliveryFeeSummary(
            total_delivery_fees=to_float(row["fees"]),
            delivery_orders=to_int(row["orders"]),
            total_revenue=to_float(row["revenue"]),
        )
        return MetricResult.relational(data)
