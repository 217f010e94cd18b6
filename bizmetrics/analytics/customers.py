"""
Customer Metrics

Customer segmentation over completed orders: rankings, lifetime value,
retention windows, churn and new-vs-returning classification.

Rankings and lifetime value run through the dual-store strategy. Retention,
churn and new-vs-returning pick their customers with the filter, load the
business's whole completed-order history in one query and classify in memory.
"""

import math
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import polars as pl
import structlog

from bizmetrics.analytics.base import MetricEngine
from bizmetrics.analytics.fallback import SnapshotSet
from bizmetrics.analytics.filters import Filter
from bizmetrics.analytics.periods import shift_months, to_datetime, to_float
from bizmetrics.analytics.results import MetricResult
from bizmetrics.analytics.schemas import (
    AverageOrderValueReport,
    ChurnedCustomer,
    CustomerAverageOrder,
    CustomerFrequency,
    CustomerLifetimeValue,
    CustomerProfit,
    CustomerSpend,
    LifetimeValueReport,
    LifetimeValueSummary,
    NewVsReturning,
    ResponseBehavior,
    RetentionReport,
    RetentionWindow,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Visit:
    """One completed order in a customer's history"""
    at: datetime
    total: float
    customer_name: Optional[str]


def customer_frame(snapshots: SnapshotSet) -> pl.DataFrame:
    """Per-customer aggregates in first-seen order."""
    return snapshots.orders_frame().group_by("customer_phone_number", maintain_order=True).agg([
        pl.col("customer_name").drop_nulls().first().alias("customer_name"),
        pl.col("total").sum().alias("total_spent"),
        pl.len().alias("order_count"),
        pl.col("created_at").min().alias("first_order_at"),
        pl.col("created_at").max().alias("last_order_at"),
        pl.col("created_at").dt.date().n_unique().alias("active_days"),
    ])


def lifespan_days(first: datetime, last: datetime) -> int:
    """Whole days between first and last order, rounded up."""
    return math.ceil((last - first).total_seconds() / 86400)


def _percent(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole else 0.0


class CustomerMetrics(MetricEngine):
    """
    Customer metrics for one business.

    Example:
        metrics = CustomerMetrics(relational, documents, capabilities)
        result = await metrics.retention("B1", Filter(business_id="B1"))
    """

    # -------------------------------------------------------------------------
    # Dual-store rankings
    # -------------------------------------------------------------------------

    async def _ranked(
        self,
        business_id: str,
        filters: Optional[Filter],
        limit: Optional[int],
        by: Sequence[str],
    ) -> MetricResult[List[CustomerSpend]]:
        limit = self._limit(limit)
        filters = self._filter(business_id, filters)
        snapshots = await self.strategy.completed_orders(filters)

        ranked = customer_frame(snapshots).sort(list(by), descending=True, maintain_order=True).head(limit)
        data = [
            CustomerSpend(
                customer_phone_number=row["customer_phone_number"],
                customer_name=row["customer_name"],
                total_spent=row["total_spent"],
                order_count=row["order_count"],
            )
            for row in ranked.iter_rows(named=True)
        ]
        return MetricResult(data=data, source=snapshots.source, notes=snapshots.notes)

    async def top_spenders(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
    ) -> MetricResult[List[CustomerSpend]]:
        """Customers by total completed spend, highest first."""
        return await self._ranked(business_id, filters, limit, ["total_spent"])

    async def recurring_customers(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
    ) -> MetricResult[List[CustomerSpend]]:
        """Customers by completed order count, most first."""
        return await self._ranked(business_id, filters, limit, ["order_count"])

    async def lifetime_value(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[LifetimeValueReport]:
        """
        Per-customer lifetime value and a business-wide summary.

        Lifespan is the ceiling of the days between first and last order (0
        for a single order); orders per day is the order count over the
        lifespan, or the order count itself when the lifespan is 0.
        """
        filters = self._filter(business_id, filters)
        snapshots = await self.strategy.completed_orders(filters)
        frame = customer_frame(snapshots).sort("total_spent", descending=True, maintain_order=True)

        customers = []
        for row in frame.iter_rows(named=True):
            span = lifespan_days(row["first_order_at"], row["last_order_at"])
            count = row["order_count"]
            customers.append(
                CustomerLifetimeValue(
                    customer_phone_number=row["customer_phone_number"],
                    customer_name=row["customer_name"],
                    order_count=count,
                    total_spent=row["total_spent"],
                    average_order_value=row["total_spent"] / count,
                    first_order_at=row["first_order_at"],
                    last_order_at=row["last_order_at"],
                    lifespan_days=span,
                    orders_per_day=count / span if span > 0 else float(count),
                )
            )

        total_customers = len(customers)
        total_revenue = sum(c.total_spent for c in customers)
        total_orders = sum(c.order_count for c in customers)
        summary = LifetimeValueSummary(
            total_customers=total_customers,
            total_revenue=total_revenue,
            average_lifetime_value=total_revenue / total_customers if total_customers else 0.0,
            average_orders_per_customer=total_orders / total_customers if total_customers else 0.0,
        )

        logger.info(
            "Lifetime value computed",
            business_id=business_id,
            customers=total_customers,
            source=snapshots.source.value,
        )
        return MetricResult(
            data=LifetimeValueReport(customers=customers, summary=summary),
            source=snapshots.source,
            notes=snapshots.notes,
        )

    async def most_frequent_customers(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
    ) -> MetricResult[List[CustomerFrequency]]:
        """Customers by distinct ordering days, then by order count."""
        limit = self._limit(limit)
        filters = self._filter(business_id, filters)
        snapshots = await self.strategy.completed_orders(filters)

        ranked = customer_frame(snapshots).sort(
            ["active_days", "order_count"], descending=True, maintain_order=True
        ).head(limit)
        data = [
            CustomerFrequency(
                customer_phone_number=row["customer_phone_number"],
                customer_name=row["customer_name"],
                active_days=row["active_days"],
                order_count=row["order_count"],
            )
            for row in ranked.iter_rows(named=True)
        ]
        return MetricResult(data=data, source=snapshots.source, notes=snapshots.notes)

    async def average_order_value_per_customer(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[AverageOrderValueReport]:
        """Average order value of each customer and the mean of those averages."""
        filters = self._filter(business_id, filters)
        snapshots = await self.strategy.completed_orders(filters)

        customers = [
            CustomerAverageOrder(
                customer_phone_number=row["customer_phone_number"],
                customer_name=row["customer_name"],
                order_count=row["order_count"],
                total_spent=row["total_spent"],
                average_order_value=row["total_spent"] / row["order_count"],
            )
            for row in customer_frame(snapshots).iter_rows(named=True)
        ]
        overall = sum(c.average_order_value for c in customers) / len(customers) if customers else 0.0
        return MetricResult(
            data=AverageOrderValueReport(overall_average=overall, customers=customers),
            source=snapshots.source,
            notes=snapshots.notes,
        )

    # -------------------------------------------------------------------------
    # History-based classification
    # -------------------------------------------------------------------------

    async def _first_orders(self, filters: Filter) -> Dict[str, datetime]:
        """Earliest completed order per customer matching the full filter."""
        conditions = self._order_conditions(filters)
        conditions.add("o.status = 'completed'")
        rows = await self.relational.fetch_all(
            f"""
            SELECT o.customer_phone_number, MIN(o.created_at) AS first_at
            FROM orders o
            WHERE {conditions.where()}
            GROUP BY o.customer_phone_number
            ORDER BY o.customer_phone_number ASC
            """,
            conditions.params,
        )
        return OrderedDict((row["customer_phone_number"], to_datetime(row["first_at"])) for row in rows)

    async def _history(self, business_id: str) -> Dict[str, List[Visit]]:
        """All completed orders of the business per customer, oldest first."""
        conditions = self._order_conditions(Filter(business_id=business_id))
        conditions.add("o.status = 'completed'")
        rows = await self.relational.fetch_all(
            f"""
            SELECT o.customer_phone_number, o.customer_name, o.created_at, o.total
            FROM orders o
            WHERE {conditions.where()}
            ORDER BY o.customer_phone_number ASC, o.created_at ASC, o.id ASC
            """,
            conditions.params,
        )

        history: Dict[str, List[Visit]] = OrderedDict()
        for row in rows:
            history.setdefault(row["customer_phone_number"], []).append(
                Visit(
                    at=to_datetime(row["created_at"]),
                    total=to_float(row["total"]),
                    customer_name=row["customer_name"],
                )
            )
        return history

    async def retention(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        windows: Optional[Sequence[int]] = None,
    ) -> MetricResult[RetentionReport]:
        """
        Share of customers ordering again within N days of their first order.

        The first order is the customer's earliest completed order matching
        the filter; a repeat is any later completed order of the business
        with ``first < t <= first + N days``.
        """
        windows = list(windows or self.settings.retention_windows)
        if any(days <= 0 for days in windows):
            raise ValueError("retention windows must be positive")

        filters = self._filter(business_id, filters)
        firsts = await self._first_orders(filters)
        history = await self._history(filters.business_id)

        retained = {days: 0 for days in windows}
        for phone, first in firsts.items():
            later = [v.at for v in history.get(phone, []) if v.at > first]
            for days in windows:
                horizon = first + timedelta(days=days)
                if any(at <= horizon for at in later):
                    retained[days] += 1

        total = len(firsts)
        data = RetentionReport(
            total_customers=total,
            windows=[
                RetentionWindow(days=days, retained_customers=retained[days], retention_rate=_percent(retained[days], total))
                for days in windows
            ],
        )
        logger.info("Retention computed", business_id=business_id, customers=total)
        return MetricResult.relational(data)

    async def churned_customers(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[ChurnedCustomer]]:
        """
        Customers with completed orders before the lookback and none inside it.

        Candidates come from the filter; the lookback check covers every
        completed order of the business. Sorted by days since the last
        order, most stale first.
        """
        filters = self._filter(business_id, filters)
        now = self.clock()
        cutoff = shift_months(now, -self.settings.churn_lookback_months)
        firsts = await self._first_orders(filters)
        history = await self._history(filters.business_id)

        churned = []
        for phone in firsts:
            visits = history.get(phone)
            if not visits or any(v.at >= cutoff for v in visits):
                continue
            last = visits[-1]
            churned.append(
                ChurnedCustomer(
                    customer_phone_number=phone,
                    customer_name=next((v.customer_name for v in reversed(visits) if v.customer_name), None),
                    order_count=len(visits),
                    total_spent=sum(v.total for v in visits),
                    last_order_at=last.at,
                    days_since_last_order=(now - last.at).days,
                )
            )

        churned.sort(key=lambda c: (-c.days_since_last_order, c.customer_phone_number))
        return MetricResult.relational(churned)

    async def new_vs_returning(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[NewVsReturning]:
        """A customer is new when the business has no completed order of theirs before their first filtered one."""
        filters = self._filter(business_id, filters)
        firsts = await self._first_orders(filters)
        history = await self._history(filters.business_id)

        returning = sum(
            1 for phone, first in firsts.items()
            if any(v.at < first for v in history.get(phone, []))
        )
        total = len(firsts)
        new = total - returning
        data = NewVsReturning(
            new_customers=new,
            returning_customers=returning,
            total_customers=total,
            new_percentage=_percent(new, total),
            returning_percentage=_percent(returning, total),
        )
        return MetricResult.relational(data)

    # -------------------------------------------------------------------------
    # Optional-column metrics
    # -------------------------------------------------------------------------

    async def response_behavior(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[ResponseBehavior]:
        """Seconds to first response and cancellation rate over responded orders."""
        if not self.capabilities.first_response_at:
            empty = ResponseBehavior(
                orders_with_response=0,
                average_response_seconds=0,
                cancelled_orders=0,
                cancellation_rate=0,
            )
            return MetricResult.default(empty, "orders.first_response_at missing")

        filters = self._filter(business_id, filters)
        conditions = self._order_conditions(filters)
        conditions.add("o.first_response_at IS NOT NULL")
        rows = await self.relational.fetch_all(
            f"SELECT o.created_at, o.first_response_at, o.status FROM orders o WHERE {conditions.where()}",
            conditions.params,
        )

        seconds = [
            (to_datetime(row["first_response_at"]) - to_datetime(row["created_at"])).total_seconds()
            for row in rows
        ]
        cancelled = sum(1 for row in rows if row["status"] == "rejected")
        data = ResponseBehavior(
            orders_with_response=len(rows),
            average_response_seconds=sum(seconds) / len(seconds) if seconds else 0.0,
            cancelled_orders=cancelled,
            cancellation_rate=_percent(cancelled, len(rows)),
        )
        return MetricResult.relational(data)

    async def highest_profit_customers(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
    ) -> MetricResult[List[CustomerProfit]]:
        """Customers by item profit of completed orders."""
        limit = self._limit(limit)
        if not self.capabilities.cost_at_time:
            return MetricResult.default([], "order_items.cost_at_time missing")

        filters = self._filter(business_id, filters)
        conditions = self._item_conditions(filters)
        conditions.add("o.status = 'completed'")
        rows = await self.relational.fetch_all(
            f"""
            SELECT o.customer_phone_number AS customer_phone_number,
                   MAX(o.customer_name) AS customer_name,
                   SUM(oi.price_at_time * oi.quantity) AS revenue,
                   SUM((oi.price_at_time - COALESCE(oi.cost_at_time, 0)) * oi.quantity) AS profit
            FROM order_items oi
            INNER JOIN orders o ON oi.order_id = o.id
            LEFT JOIN items i ON oi.item_id = i.id
            WHERE {conditions.where()}
            GROUP BY o.customer_phone_number
            ORDER BY profit DESC, customer_phone_number ASC
            LIMIT {limit}
            """,
            conditions.params,
        )
        data = [
            CustomerProfit(
                customer_phone_number=row["customer_phone_number"],
                customer_name=row["customer_name"],
                total_revenue=to_float(row["revenue"]),
                total_profit=to_float(row["profit"]),
            )
            for row in rows
        ]
        return MetricResult.relational(data)
