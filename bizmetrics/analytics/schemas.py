"""
Metric Records

Typed aggregate records returned inside MetricResult.data.
"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel


# =============================================================================
# ORDERS
# =============================================================================

class RevenueBucket(BaseModel):
    """Revenue of completed orders in one period bucket"""
    period: str
    revenue: float
    orders: int


class OrderValueSummary(BaseModel):
    """Total and average order value"""
    total_revenue: float
    order_count: int
    average_order_value: float


class OrderCountBucket(BaseModel):
    period: str
    orders: int


class ProfitBucket(BaseModel):
    period: str
    profit: float
    orders: int


class StatusCount(BaseModel):
    """Orders per status; revenue counts completed orders only"""
    status: str
    count: int
    revenue: float


class RateSummary(BaseModel):
    """matching / total * 100, 0 when total is 0"""
    matching: int
    total: int
    rate: float


class HourCount(BaseModel):
    hour: int
    orders: int
    revenue: float


class DayCount(BaseModel):
    day_of_week: int  # ISO: Monday=1 .. Sunday=7
    day_name: str
    orders: int
    revenue: float


class HeatmapCell(BaseModel):
    day_of_week: int
    day_name: str
    hour: int
    orders: int
    revenue: float


class CompletionTimeSummary(BaseModel):
    """Minutes between creation and completion"""
    orders: int
    average_minutes: float
    min_minutes: float
    max_minutes: float


class DeliveryTypeShare(BaseModel):
    delivery_type: str
    orders: int
    revenue: float


class RequestTypeTotals(BaseModel):
    count: int
    revenue: float


class ScheduleSplit(BaseModel):
    """Scheduled requests vs immediate orders"""
    scheduled: RequestTypeTotals
    immediate: RequestTypeTotals
    total: RequestTypeTotals


class DeliveryArea(BaseModel):
    location_address: str
    orders: int
    unique_customers: int
    revenue: float


class DeliveryFeeSummary(BaseModel):
    total_delivery_fees: float
    delivery_orders: int
    total_revenue: float


# =============================================================================
# FINANCIAL
# =============================================================================

class DailySalesReport(BaseModel):
    day: date
    order_count: int
    total_revenue: float
    average_order_value: float
    delivery_fees: float
    total_profit: float


class PeriodPerformance(BaseModel):
    """Totals over a date range with the daily breakdown"""
    start_date: date
    end_date: date
    total_revenue: float
    total_orders: int
    average_order_value: float
    average_daily_revenue: float
    daily_breakdown: List[RevenueBucket]


class GrowthReport(BaseModel):
    current_month: PeriodPerformance
    previous_month: PeriodPerformance
    revenue_growth_percent: float
    order_growth_percent: float


# =============================================================================
# CUSTOMERS
# =============================================================================

class CustomerSpend(BaseModel):
    customer_phone_number: str
    customer_name: Optional[str] = None
    total_spent: float
    order_count: int


class CustomerLifetimeValue(BaseModel):
    customer_phone_number: str
    customer_name: Optional[str] = None
    order_count: int
    total_spent: float
    average_order_value: float
    first_order_at: datetime
    last_order_at: datetime
    lifespan_days: int
    orders_per_day: float


class LifetimeValueSummary(BaseModel):
    total_customers: int
    total_revenue: float
    average_lifetime_value: float
    average_orders_per_customer: float


class LifetimeValueReport(BaseModel):
    customers: List[CustomerLifetimeValue]
    summary: LifetimeValueSummary


class RetentionWindow(BaseModel):
    days: int
    retained_customers: int
    retention_rate: float


class RetentionReport(BaseModel):
    total_customers: int
    windows: List[RetentionWindow]

    def rate(self, days: int) -> float:
        for window in self.windows:
            if window.days == days:
                return window.retention_rate
        raise KeyError(days)


class ChurnedCustomer(BaseModel):
    customer_phone_number: str
    customer_name: Optional[str] = None
    order_count: int
    total_spent: float
    last_order_at: datetime
    days_since_last_order: int


class NewVsReturning(BaseModel):
    new_customers: int
    returning_customers: int
    total_customers: int
    new_percentage: float
    returning_percentage: float


class ResponseBehavior(BaseModel):
    orders_with_response: int
    average_response_seconds: float
    cancelled_orders: int
    cancellation_rate: float


class CustomerFrequency(BaseModel):
    customer_phone_number: str
    customer_name: Optional[str] = None
    active_days: int
    order_count: int


class CustomerAverageOrder(BaseModel):
    customer_phone_number: str
    customer_name: Optional[str] = None
    order_count: int
    total_spent: float
    average_order_value: float


class AverageOrderValueReport(BaseModel):
    """Mean of the per-customer averages plus the per-customer list"""
    overall_average: float
    customers: List[CustomerAverageOrder]


class CustomerProfit(BaseModel):
    customer_phone_number: str
    customer_name: Optional[str] = None
    total_revenue: float
    total_profit: float


# =============================================================================
# SERVICES / ITEMS
# =============================================================================

class ItemCounter(BaseModel):
    """Item ranked by an externally maintained counter"""
    item_id: str
    name: str
    price: float
    times_ordered: int
    times_delivered: int
    completion_rate: float


class ItemSales(BaseModel):
    item_id: str
    name: Optional[str] = None
    quantity: int
    revenue: float


class ServiceAmount(BaseModel):
    """Per-service money figure (revenue or profit)"""
    item_id: str
    name: Optional[str] = None
    quantity: int
    amount: float


class ProfitMargin(BaseModel):
    item_id: str
    name: Optional[str] = None
    total_revenue: float
    total_profit: float
    average_margin_percent: float


class ItemTrend(BaseModel):
    item_id: str
    name: Optional[str] = None
    current_quantity: int
    previous_quantity: int
    change: int
    change_percent: float
    trend: Literal["up", "down", "stable"]


class HourlyServiceRanking(BaseModel):
    hour: int
    items: List[ItemSales]


class ItemPair(BaseModel):
    item1_id: str
    item1_name: Optional[str] = None
    item2_id: str
    item2_name: Optional[str] = None
    times_bought_together: int


class CustomizationUsage(BaseModel):
    customization_name: str
    usage_count: int
    total_price_adjustment: float
    order_items_count: int


# =============================================================================
# CHATBOT
# =============================================================================

class RequestsHandled(BaseModel):
    count: int


class ConversationSummary(BaseModel):
    count: int
    unique_customers: int


class ResponseTimeSummary(BaseModel):
    """Average gap between an inbound message and its correlated reply"""
    average_response_ms: float
    correlated_messages: int


class ChatConversion(BaseModel):
    rate: float
    chats_count: int
    orders_count: int


class DropOffPoint(BaseModel):
    message_type: str
    drop_off_count: int


class FallbackSummary(BaseModel):
    fallback_rate: float
    total_messages: int
    fallback_count: int


class QuestionCount(BaseModel):
    question: str
    count: int


# =============================================================================
# RESERVATIONS
# =============================================================================

class ReservationTotal(BaseModel):
    total: int


class ReservationHour(BaseModel):
    hour: int
    count: int


class ReservationDay(BaseModel):
    day_of_week: int
    day_name: str
    count: int


class TableUtilization(BaseModel):
    table_id: str
    table_number: Optional[str] = None
    reservation_count: int
    days_used: int
    utilization: float


class GuestSummary(BaseModel):
    average_guests: float
    total_reservations: int
