"""
Financial Summaries

Daily, weekly and monthly sales summaries built on the order metrics.
"""

from datetime import date, timedelta
from typing import List, Optional

import structlog

from bizmetrics.analytics.filters import Filter
from bizmetrics.analytics.orders import OrderMetrics
from bizmetrics.analytics.periods import Period, month_bounds, shift_months, to_float, to_int
from bizmetrics.analytics.results import DataSource, MetricResult
from bizmetrics.analytics.schemas import (
    DailySalesReport,
    GrowthReport,
    HourCount,
    PeriodPerformance,
    RevenueBucket,
)

logger = structlog.get_logger(__name__)


def _growth(current: float, previous: float) -> float:
    if previous > 0:
        return ((current - previous) / previous) * 100
    return 100.0 if current > 0 else 0.0


class FinancialMetrics:
    """
    Period summaries for the financial dashboard.

    Example:
        financial = FinancialMetrics(order_metrics)
        report = await financial.monthly_performance("B1", 2024, 3)
    """

    def __init__(self, orders: OrderMetrics):
        self.orders = orders

    @property
    def today(self) -> date:
        return self.orders.clock().date()

    async def daily_sales_report(
        self,
        business_id: str,
        day: Optional[date] = None,
        filters: Optional[Filter] = None,
    ) -> MetricResult[DailySalesReport]:
        """Completed orders, revenue, fees and profit of one day (today by default)."""
        day = day or self.today
        filters = self.orders._filter(business_id, filters).with_range(day, day)
        capabilities = self.orders.capabilities

        conditions, _ = self.orders._completed(filters)
        row = await self.orders.relational.fetch_one(
            f"""
            SELECT COUNT(*) AS order_count, SUM(o.total) AS revenue, SUM(o.delivery_price) AS fees
            FROM orders o
            WHERE {conditions.where()}
            """,
            conditions.params,
        )
        order_count = to_int(row["order_count"]) if row else 0
        revenue = to_float(row["revenue"]) if row else 0.0
        fees = to_float(row["fees"]) if row else 0.0

        profit = 0.0
        notes: List[str] = []
        if capabilities.cost_at_time:
            item_conditions, _ = self.orders._completed(filters, items=True)
            profit_row = await self.orders.relational.fetch_one(
                f"""
                SELECT SUM((oi.price_at_time - COALESCE(oi.cost_at_time, 0)) * oi.quantity) AS profit
                FROM order_items oi
                INNER JOIN orders o ON oi.order_id = o.id
                LEFT JOIN items i ON oi.item_id = i.id
                WHERE {item_conditions.where()}
                """,
                item_conditions.params,
            )
            profit = to_float(profit_row["profit"]) if profit_row else 0.0
        else:
            notes.append("order_items.cost_at_time missing, profit not tracked")

        data = DailySalesReport(
            day=day,
            order_count=order_count,
            total_revenue=revenue,
            average_order_value=revenue / order_count if order_count else 0.0,
            delivery_fees=fees,
            total_profit=profit,
        )
        logger.debug("Daily sales report computed", business_id=business_id, day=str(day), orders=order_count)
        return MetricResult.relational(data, notes=notes, degraded=bool(notes))

    async def _performance(
        self,
        business_id: str,
        start: date,
        end: date,
        filters: Optional[Filter],
    ) -> MetricResult[PeriodPerformance]:
        scoped = self.orders._filter(business_id, filters).with_range(start, end)
        revenue = await self.orders.revenue_by_period(business_id, scoped, Period.DAY)

        total_revenue = sum(bucket.revenue for bucket in revenue.data)
        total_orders = sum(bucket.orders for bucket in revenue.data)
        days = (end - start).days + 1

        data = PeriodPerformance(
            start_date=start,
            end_date=end,
            total_revenue=total_revenue,
            total_orders=total_orders,
            average_order_value=total_revenue / total_orders if total_orders else 0.0,
            average_daily_revenue=total_revenue / days,
            daily_breakdown=revenue.data,
        )
        return MetricResult(data=data, source=revenue.source, degraded=revenue.degraded, notes=revenue.notes)

    async def weekly_summary(
        self,
        business_id: str,
        week_start: Optional[date] = None,
        filters: Optional[Filter] = None,
    ) -> MetricResult[PeriodPerformance]:
        """Seven days from ``week_start``; defaults to the current ISO week (Monday start)."""
        if week_start is None:
            today = self.today
            week_start = today - timedelta(days=today.isoweekday() - 1)
        return await self._performance(business_id, week_start, week_start + timedelta(days=6), filters)

    async def monthly_performance(
        self,
        business_id: str,
        year: Optional[int] = None,
        month: Optional[int] = None,
        filters: Optional[Filter] = None,
    ) -> MetricResult[PeriodPerformance]:
        """Calendar-month totals with the daily breakdown; defaults to the current month."""
        today = self.today
        year = year or today.year
        month = month or today.month
        if not 1 <= month <= 12:
            raise ValueError("month must be between 1 and 12")

        start, end = month_bounds(year, month)
        return await self._performance(business_id, start, end, filters)

    async def month_over_month_growth(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[GrowthReport]:
        """Current month against the previous one."""
        today = self.today
        previous_day = shift_months(self.orders.clock(), -1).date()

        current = await self.monthly_performance(business_id, today.year, today.month, filters)
        previous = await self.monthly_performance(business_id, previous_day.year, previous_day.month, filters)

        data = GrowthReport(
            current_month=current.data,
            previous_month=previous.data,
            revenue_growth_percent=_growth(current.data.total_revenue, previous.data.total_revenue),
            order_growth_percent=_growth(current.data.total_orders, previous.data.total_orders),
        )
        source = current.source if current.source == previous.source else DataSource.RELATIONAL
        notes = list(dict.fromkeys(current.notes + previous.notes))
        return MetricResult(data=data, source=source, degraded=current.degraded or previous.degraded, notes=notes)

    async def best_day_this_month(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[Optional[RevenueBucket]]:
        """Highest-revenue day of the current month; None without orders."""
        performance = await self.monthly_performance(business_id, filters=filters)
        best: Optional[RevenueBucket] = None
        for bucket in performance.data.daily_breakdown:
            if best is None or bucket.revenue > best.revenue:
                best = bucket
        return MetricResult(data=best, source=performance.source, degraded=performance.degraded, notes=performance.notes)

    async def best_hour_this_month(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[Optional[HourCount]]:
        """Busiest hour of day over the current month; None without orders."""
        start, end = month_bounds(self.today.year, self.today.month)
        scoped = self.orders._filter(business_id, filters).with_range(start, end)
        hours = await self.orders.peak_hours(business_id, scoped)
        return MetricResult.relational(hours.data[0] if hours.data else None)
