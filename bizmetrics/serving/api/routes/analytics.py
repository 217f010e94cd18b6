"""
Analytics API Endpoints

REST API for the business dashboard. Every endpoint returns a serialized
MetricResult (``data``, ``source``, ``degraded``, ``notes``) and is memoized
in Redis for a short TTL when the cache is available.
"""

from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from bizmetrics.analytics.engine import AnalyticsEngines
from bizmetrics.analytics.filters import Filter
from bizmetrics.analytics.periods import Period
from bizmetrics.analytics.results import MetricResult
from bizmetrics.config import get_settings
from bizmetrics.serving.cache import CacheManager

router = APIRouter()
logger = structlog.get_logger(__name__)

analytics_cache = CacheManager("analytics", default_ttl=get_settings().analytics.cache_ttl_seconds)

Payload = Dict[str, Any]


def get_engines(request: Request) -> AnalyticsEngines:
    """Engine set built by the application lifespan."""
    engines = request.app.state.engines
    if engines is None:
        raise HTTPException(status_code=503, detail="Analytics engines not initialized")
    return engines


def get_filter(
    business_id: str,
    branch_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    delivery_type: Optional[str] = None,
    platform: Optional[str] = None,
    category_id: Optional[str] = None,
    menu_id: Optional[str] = None,
) -> Filter:
    """Dashboard filter from the path and query string."""
    return Filter(
        business_id=business_id,
        branch_id=branch_id,
        start_date=start_date,
        end_date=end_date,
        delivery_type=delivery_type,
        platform=platform,
        category_id=category_id,
        menu_id=menu_id,
    )


async def serve(
    metric: str,
    filters: Filter,
    compute: Callable[[], Awaitable[MetricResult]],
    **params: Any,
) -> Payload:
    """Compute ``metric`` or return the cached payload of an identical call."""
    key = CacheManager.make_key(metric, {**filters.model_dump(mode="json"), **params})

    async def factory() -> Payload:
        result = await compute()
        logger.debug(
            "Metric computed",
            metric=metric,
            business_id=filters.business_id,
            source=result.source.value,
            degraded=result.degraded,
        )
        return result.model_dump(mode="json")

    return await analytics_cache.get_or_set(key, factory)


# =============================================================================
# ORDERS / SALES
# =============================================================================

@router.get("/{business_id}/orders/revenue")
async def revenue_by_period(
    period: str = Query("day", description="hour, day, week or month"),
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    """Completed revenue per period bucket."""
    resolved = Period(period)
    return await serve(
        "revenue_by_period",
        filters,
        lambda: engines.orders.revenue_by_period(filters.business_id, filters, resolved),
        period=resolved.value,
    )


@router.get("/{business_id}/orders/value")
async def order_value_summary(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "order_value_summary",
        filters,
        lambda: engines.orders.order_value_summary(filters.business_id, filters),
    )


@router.get("/{business_id}/orders/count")
async def orders_by_period(
    period: str = Query("day", description="hour, day, week or month"),
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    resolved = Period(period)
    return await serve(
        "orders_by_period",
        filters,
        lambda: engines.orders.orders_by_period(filters.business_id, filters, resolved),
        period=resolved.value,
    )


@router.get("/{business_id}/orders/profit")
async def profit_by_period(
    period: str = Query("day", description="hour, day, week or month"),
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    resolved = Period(period)
    return await serve(
        "profit_by_period",
        filters,
        lambda: engines.orders.profit_by_period(filters.business_id, filters, resolved),
        period=resolved.value,
    )


@router.get("/{business_id}/orders/status")
async def status_breakdown(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "status_breakdown",
        filters,
        lambda: engines.orders.status_breakdown(filters.business_id, filters),
    )


@router.get("/{business_id}/orders/cancellation-rate")
async def cancellation_rate(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "cancellation_rate",
        filters,
        lambda: engines.orders.cancellation_rate(filters.business_id, filters),
    )


@router.get("/{business_id}/orders/rejection-rate")
async def rejection_rate(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "rejection_rate",
        filters,
        lambda: engines.orders.rejection_rate(filters.business_id, filters),
    )


@router.get("/{business_id}/orders/peak-hours")
async def peak_hours(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "peak_hours",
        filters,
        lambda: engines.orders.peak_hours(filters.business_id, filters),
    )


@router.get("/{business_id}/orders/peak-days")
async def peak_days(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "peak_days",
        filters,
        lambda: engines.orders.peak_days(filters.business_id, filters),
    )


@router.get("/{business_id}/orders/heatmap")
async def sales_heatmap(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "sales_heatmap",
        filters,
        lambda: engines.orders.sales_heatmap(filters.business_id, filters),
    )


@router.get("/{business_id}/orders/time-to-complete")
async def time_to_complete(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "time_to_complete",
        filters,
        lambda: engines.orders.time_to_complete(filters.business_id, filters),
    )


@router.get("/{business_id}/orders/delivery-types")
async def delivery_type_split(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "delivery_type_split",
        filters,
        lambda: engines.orders.delivery_type_split(filters.business_id, filters),
    )


@router.get("/{business_id}/orders/scheduled")
async def scheduled_vs_immediate(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "scheduled_vs_immediate",
        filters,
        lambda: engines.orders.scheduled_vs_immediate(filters.business_id, filters),
    )


@router.get("/{business_id}/orders/delivery-slots")
async def busy_delivery_slots(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "busy_delivery_slots",
        filters,
        lambda: engines.orders.busy_delivery_slots(filters.business_id, filters),
    )


@router.get("/{business_id}/orders/delivery-areas")
async def common_delivery_areas(
    limit: Optional[int] = Query(None, description="Number of areas"),
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "common_delivery_areas",
        filters,
        lambda: engines.orders.common_delivery_areas(filters.business_id, filters, limit=limit or 50),
        limit=limit,
    )


@router.get("/{business_id}/orders/delivery-fees")
async def delivery_fee_revenue(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "delivery_fee_revenue",
        filters,
        lambda: engines.orders.delivery_fee_revenue(filters.business_id, filters),
    )


# =============================================================================
# FINANCIAL
# =============================================================================

@router.get("/{business_id}/financial/daily")
async def daily_sales_report(
    day: Optional[date] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    """Sales report of one day, today by default."""
    return await serve(
        "daily_sales_report",
        filters,
        lambda: engines.financial.daily_sales_report(filters.business_id, day, filters),
        day=day,
    )


@router.get("/{business_id}/financial/weekly")
async def weekly_summary(
    week_start: Optional[date] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "weekly_summary",
        filters,
        lambda: engines.financial.weekly_summary(filters.business_id, week_start, filters),
        week_start=week_start,
    )


@router.get("/{business_id}/financial/monthly")
async def monthly_performance(
    year: Optional[int] = None,
    month: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "monthly_performance",
        filters,
        lambda: engines.financial.monthly_performance(filters.business_id, year, month, filters),
        year=year,
        month=month,
    )


@router.get("/{business_id}/financial/growth")
async def month_over_month_growth(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "month_over_month_growth",
        filters,
        lambda: engines.financial.month_over_month_growth(filters.business_id, filters),
    )


@router.get("/{business_id}/financial/best-day")
async def best_day_this_month(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "best_day_this_month",
        filters,
        lambda: engines.financial.best_day_this_month(filters.business_id, filters),
    )


@router.get("/{business_id}/financial/best-hour")
async def best_hour_this_month(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "best_hour_this_month",
        filters,
        lambda: engines.financial.best_hour_this_month(filters.business_id, filters),
    )


# =============================================================================
# CUSTOMERS
# =============================================================================

@router.get("/{business_id}/customers/top-spenders")
async def top_spenders(
    limit: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "top_spenders",
        filters,
        lambda: engines.customers.top_spenders(filters.business_id, filters, limit),
        limit=limit,
    )


@router.get("/{business_id}/customers/recurring")
async def recurring_customers(
    limit: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "recurring_customers",
        filters,
        lambda: engines.customers.recurring_customers(filters.business_id, filters, limit),
        limit=limit,
    )


@router.get("/{business_id}/customers/lifetime-value")
async def lifetime_value(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "lifetime_value",
        filters,
        lambda: engines.customers.lifetime_value(filters.business_id, filters),
    )


@router.get("/{business_id}/customers/retention")
async def retention(
    windows: Optional[List[int]] = Query(None, description="Retention windows in days"),
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    """Share of customers ordering again within each window."""
    return await serve(
        "retention",
        filters,
        lambda: engines.customers.retention(filters.business_id, filters, windows),
        windows=windows,
    )


@router.get("/{business_id}/customers/churned")
async def churned_customers(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "churned_customers",
        filters,
        lambda: engines.customers.churned_customers(filters.business_id, filters),
    )


@router.get("/{business_id}/customers/new-vs-returning")
async def new_vs_returning(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "new_vs_returning",
        filters,
        lambda: engines.customers.new_vs_returning(filters.business_id, filters),
    )


@router.get("/{business_id}/customers/response-behavior")
async def response_behavior(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "response_behavior",
        filters,
        lambda: engines.customers.response_behavior(filters.business_id, filters),
    )


@router.get("/{business_id}/customers/most-frequent")
async def most_frequent_customers(
    limit: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "most_frequent_customers",
        filters,
        lambda: engines.customers.most_frequent_customers(filters.business_id, filters, limit),
        limit=limit,
    )


@router.get("/{business_id}/customers/average-order-value")
async def average_order_value_per_customer(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "average_order_value_per_customer",
        filters,
        lambda: engines.customers.average_order_value_per_customer(filters.business_id, filters),
    )


@router.get("/{business_id}/customers/highest-profit")
async def highest_profit_customers(
    limit: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "highest_profit_customers",
        filters,
        lambda: engines.customers.highest_profit_customers(filters.business_id, filters, limit),
        limit=limit,
    )


# =============================================================================
# SERVICES / ITEMS
# =============================================================================

@router.get("/{business_id}/services/popular")
async def popular_items(
    limit: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "popular_items",
        filters,
        lambda: engines.services.popular_items(filters.business_id, filters, limit),
        limit=limit,
    )


@router.get("/{business_id}/services/most-delivered")
async def most_delivered_items(
    limit: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "most_delivered_items",
        filters,
        lambda: engines.services.most_delivered_items(filters.business_id, filters, limit),
        limit=limit,
    )


@router.get("/{business_id}/services/top")
async def top_items(
    limit: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "top_items",
        filters,
        lambda: engines.services.top_items(filters.business_id, filters, limit),
        limit=limit,
    )


@router.get("/{business_id}/services/most-ordered")
async def most_ordered(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "most_ordered",
        filters,
        lambda: engines.services.most_ordered(filters.business_id, filters),
    )


@router.get("/{business_id}/services/least-ordered")
async def least_ordered(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "least_ordered",
        filters,
        lambda: engines.services.least_ordered(filters.business_id, filters),
    )


@router.get("/{business_id}/services/most-rewarding")
async def most_rewarding(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "most_rewarding",
        filters,
        lambda: engines.services.most_rewarding(filters.business_id, filters),
    )


@router.get("/{business_id}/services/revenue")
async def revenue_per_service(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "revenue_per_service",
        filters,
        lambda: engines.services.revenue_per_service(filters.business_id, filters),
    )


@router.get("/{business_id}/services/profit")
async def profit_per_service(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "profit_per_service",
        filters,
        lambda: engines.services.profit_per_service(filters.business_id, filters),
    )


@router.get("/{business_id}/services/margin")
async def profit_margin_per_service(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "profit_margin_per_service",
        filters,
        lambda: engines.services.profit_margin_per_service(filters.business_id, filters),
    )


@router.get("/{business_id}/services/trend")
async def popularity_trend(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "popularity_trend",
        filters,
        lambda: engines.services.popularity_trend(filters.business_id, filters),
    )


@router.get("/{business_id}/services/by-hour")
async def top_services_by_hour(
    limit: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "top_services_by_hour",
        filters,
        lambda: engines.services.top_services_by_hour(filters.business_id, filters, limit),
        limit=limit,
    )


@router.get("/{business_id}/services/bought-together")
async def frequently_bought_together(
    limit: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "frequently_bought_together",
        filters,
        lambda: engines.services.frequently_bought_together(filters.business_id, filters, limit),
        limit=limit,
    )


@router.get("/{business_id}/services/customizations")
async def customization_usage(
    limit: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "customization_usage",
        filters,
        lambda: engines.services.customization_usage(filters.business_id, filters, limit),
        limit=limit,
    )


# =============================================================================
# CHATBOT / OPS
# =============================================================================

@router.get("/{business_id}/chatbot/requests")
async def requests_handled(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "requests_handled",
        filters,
        lambda: engines.chatbot.requests_handled(filters.business_id, filters),
    )


@router.get("/{business_id}/chatbot/conversations")
async def conversations(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "conversations",
        filters,
        lambda: engines.chatbot.conversations(filters.business_id, filters),
    )


@router.get("/{business_id}/chatbot/response-time")
async def response_time(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "response_time",
        filters,
        lambda: engines.chatbot.response_time(filters.business_id, filters),
    )


@router.get("/{business_id}/chatbot/resolution-rate")
async def resolution_rate(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "resolution_rate",
        filters,
        lambda: engines.chatbot.resolution_rate(filters.business_id, filters),
    )


@router.get("/{business_id}/chatbot/conversion-rate")
async def conversion_rate(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "conversion_rate",
        filters,
        lambda: engines.chatbot.conversion_rate(filters.business_id, filters),
    )


@router.get("/{business_id}/chatbot/drop-off")
async def drop_off_points(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "drop_off_points",
        filters,
        lambda: engines.chatbot.drop_off_points(filters.business_id, filters),
    )


@router.get("/{business_id}/chatbot/fallback-rate")
async def fallback_rate(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "fallback_rate",
        filters,
        lambda: engines.chatbot.fallback_rate(filters.business_id, filters),
    )


@router.get("/{business_id}/chatbot/questions")
async def most_asked_questions(
    limit: Optional[int] = None,
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "most_asked_questions",
        filters,
        lambda: engines.chatbot.most_asked_questions(filters.business_id, filters, limit),
        limit=limit,
    )


# =============================================================================
# RESERVATIONS
# =============================================================================

@router.get("/{business_id}/reservations/total")
async def reservation_total(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "reservation_total",
        filters,
        lambda: engines.reservations.total(filters.business_id, filters),
    )


@router.get("/{business_id}/reservations/completion-rate")
async def reservation_completion_rate(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "reservation_completion_rate",
        filters,
        lambda: engines.reservations.completion_rate(filters.business_id, filters),
    )


@router.get("/{business_id}/reservations/no-show-rate")
async def reservation_no_show_rate(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "reservation_no_show_rate",
        filters,
        lambda: engines.reservations.no_show_rate(filters.business_id, filters),
    )


@router.get("/{business_id}/reservations/peak-hours")
async def reservation_peak_hours(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "reservation_peak_hours",
        filters,
        lambda: engines.reservations.peak_hours(filters.business_id, filters),
    )


@router.get("/{business_id}/reservations/peak-days")
async def reservation_peak_days(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "reservation_peak_days",
        filters,
        lambda: engines.reservations.peak_days(filters.business_id, filters),
    )


@router.get("/{business_id}/reservations/tables")
async def table_utilization(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "table_utilization",
        filters,
        lambda: engines.reservations.table_utilization(filters.business_id, filters),
    )


@router.get("/{business_id}/reservations/guests")
async def average_guests(
    filters: Filter = Depends(get_filter),
    engines: AnalyticsEngines = Depends(get_engines),
) -> Payload:
    return await serve(
        "average_guests",
        filters,
        lambda: engines.reservations.average_guests(filters.business_id, filters),
    )
