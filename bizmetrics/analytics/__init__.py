"""
Analytics Module
"""
from .engine import AnalyticsEngines
from .filters import Filter, FilterConditions, build_filter_conditions
from .periods import Period, bucket_key
from .results import DataSource, MetricResult
from .orders import OrderMetrics
from .financial import FinancialMetrics
from .customers import CustomerMetrics
from .services import ServiceMetrics
from .chatbot import ChatbotMetrics
from .reservations import ReservationMetrics

__all__ = [
    "AnalyticsEngines",
    "Filter",
    "FilterConditions",
    "build_filter_conditions",
    "Period",
    "bucket_key",
    "DataSource",
    "MetricResult",
    "OrderMetrics",
    "FinancialMetrics",
    "CustomerMetrics",
    "ServiceMetrics",
    "ChatbotMetrics",
    "ReservationMetrics",
]
