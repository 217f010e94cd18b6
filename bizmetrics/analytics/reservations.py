"""
Reservation Metrics

Reservation volumes, rates, time distributions and table utilization. Reads
the live ``reservations`` / ``tables`` tables only; relational failures
propagate.
"""

from collections import Counter
from typing import List, Optional

from bizmetrics.analytics.base import MetricEngine
from bizmetrics.analytics.filters import RESERVATION_COLUMNS, Filter, FilterConditions
from bizmetrics.analytics.periods import DAY_NAMES, hour_of, to_date, to_float, to_int
from bizmetrics.analytics.results import MetricResult
from bizmetrics.analytics.schemas import (
    GuestSummary,
    RateSummary,
    ReservationDay,
    ReservationHour,
    ReservationTotal,
    TableUtilization,
)


class ReservationMetrics(MetricEngine):
    """
    Reservation metrics for one business.

    Example:
        metrics = ReservationMetrics(relational, documents, capabilities)
        tables = await metrics.table_utilization("B1")
    """

    def _conditions(self, business_id: str, filters: Optional[Filter]) -> FilterConditions:
        return self._order_conditions(self._filter(business_id, filters), RESERVATION_COLUMNS)

    async def _rate(self, conditions: FilterConditions, matching: str) -> RateSummary:
        row = await self.relational.fetch_one(
            f"""
            SELECT COUNT(*) AS total,
                   SUM(CASE WHEN {matching} THEN 1 ELSE 0 END) AS matching
            FROM reservations r
            WHERE {conditions.where()}
            """,
            conditions.params,
        )
        total = to_int(row["total"]) if row else 0
        hits = to_int(row["matching"]) if row else 0
        return RateSummary(matching=hits, total=total, rate=(hits / total) * 100 if total else 0.0)

    async def total(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[ReservationTotal]:
        conditions = self._conditions(business_id, filters)
        row = await self.relational.fetch_one(
            f"SELECT COUNT(*) AS total FROM reservations r WHERE {conditions.where()}",
            conditions.params,
        )
        return MetricResult.relational(ReservationTotal(total=to_int(row["total"]) if row else 0))

    async def completion_rate(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[RateSummary]:
        """Completed reservations over all reservations."""
        conditions = self._conditions(business_id, filters)
        return MetricResult.relational(await self._rate(conditions, "r.status = 'completed'"))

    async def no_show_rate(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[RateSummary]:
        """No-shows over all reservations; the status marks no-shows on older schemas."""
        conditions = self._conditions(business_id, filters)
        matching = "r.no_show = 1" if self.capabilities.no_show else "r.status = 'no_show'"
        return MetricResult.relational(await self._rate(conditions, matching))

    async def peak_hours(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[ReservationHour]]:
        """Reservations per hour of ``reservation_time``, busiest first."""
        conditions = self._conditions(business_id, filters)
        rows = await self.relational.fetch_all(
            f"SELECT r.reservation_time FROM reservations r WHERE {conditions.where()}",
            conditions.params,
        )
        counts = Counter(hour_of(row["reservation_time"]) for row in rows)
        data = [
            ReservationHour(hour=hour, count=count)
            for hour, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        ]
        return MetricResult.relational(data)

    async def peak_days(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[ReservationDay]]:
        """Reservations per weekday, Monday through Sunday."""
        conditions = self._conditions(business_id, filters)
        rows = await self.relational.fetch_all(
            f"SELECT r.reservation_date FROM reservations r WHERE {conditions.where()}",
            conditions.params,
        )
        counts = Counter(to_date(row["reservation_date"]).isoweekday() for row in rows)
        data = [
            ReservationDay(day_of_week=day, day_name=DAY_NAMES[day - 1], count=counts[day])
            for day in sorted(counts)
        ]
        return MetricResult.relational(data)

    async def table_utilization(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[TableUtilization]]:
        """
        Reservations and distinct days used per table.

        Utilization is the reservation count against
        ``table_utilization_days`` reservations, capped at 100.
        """
        conditions = self._conditions(business_id, filters)
        conditions.add("r.table_id IS NOT NULL")
        rows = await self.relational.fetch_all(
            f"""
            SELECT r.table_id AS table_id, t.number AS table_number,
                   COUNT(*) AS reservation_count,
                   COUNT(DISTINCT r.reservation_date) AS days_used
            FROM reservations r
            LEFT JOIN tables t ON r.table_id = t.id
            WHERE {conditions.where()}
            GROUP BY r.table_id, t.number
            ORDER BY reservation_count DESC, table_id ASC
            """,
            conditions.params,
        )

        full = self.settings.table_utilization_days
        data = []
        for row in rows:
            count = to_int(row["reservation_count"])
            data.append(
                TableUtilization(
                    table_id=str(row["table_id"]),
                    table_number=str(row["table_number"]) if row["table_number"] is not None else None,
                    reservation_count=count,
                    days_used=to_int(row["days_used"]),
                    utilization=min(count / full * 100, 100.0),
                )
            )
        return MetricResult.relational(data)

    async def average_guests(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[GuestSummary]:
        conditions = self._conditions(business_id, filters)
        row = await self.relational.fetch_one(
            f"""
            SELECT COUNT(*) AS total, AVG(r.number_of_guests) AS average_guests
            FROM reservations r
            WHERE {conditions.where()}
            """,
            conditions.params,
        )
        data = GuestSummary(
            average_guests=to_float(row["average_guests"]) if row else 0.0,
            total_reservations=to_int(row["total"]) if row else 0,
        )
        return MetricResult.relational(data)
