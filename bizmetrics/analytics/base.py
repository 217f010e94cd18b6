"""
Metric Engine Base

Shared wiring for the metric engines: injected stores, the capability set,
the fallback strategy and the tunables.
"""

from datetime import datetime
from typing import Callable, Optional, Tuple

from bizmetrics.analytics.fallback import DualStoreStrategy
from bizmetrics.analytics.filters import Filter, FilterColumns, FilterConditions, build_filter_conditions, resolve_filter
from bizmetrics.analytics.periods import utcnow
from bizmetrics.config.settings import AnalyticsSettings
from bizmetrics.database.connection import RelationalStore
from bizmetrics.database.documents import DocumentStore
from bizmetrics.database.schema import SchemaCapabilities

Clock = Callable[[], datetime]


class MetricEngine:
    """Base class for engines reading both stores."""

    def __init__(
        self,
        relational: RelationalStore,
        documents: DocumentStore,
        capabilities: SchemaCapabilities,
        settings: Optional[AnalyticsSettings] = None,
        clock: Clock = utcnow,
    ):
        self.relational = relational
        self.documents = documents
        self.capabilities = capabilities
        self.settings = settings or AnalyticsSettings()
        self.clock = clock
        self.strategy = DualStoreStrategy(relational, documents, capabilities)

    def _filter(self, business_id: str, filters: Optional[Filter]) -> Filter:
        return resolve_filter(business_id, filters)

    def _limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.settings.default_limit
        if limit <= 0:
            raise ValueError("limit must be positive")
        return int(limit)

    def _order_conditions(self, filters: Filter, columns: Optional[FilterColumns] = None) -> FilterConditions:
        return build_filter_conditions(filters, columns or self.strategy.order_columns)

    def _item_conditions(self, filters: Filter) -> FilterConditions:
        return build_filter_conditions(filters, self.strategy.item_columns)

    def _completion_column(self) -> Tuple[str, bool]:
        """Timestamp marking completion; created_at on schemas without completed_at."""
        if self.capabilities.completed_at:
            return "o.completed_at", True
        return "o.created_at", False

    def _completed(self, filters: Filter, items: bool = False) -> Tuple[FilterConditions, str]:
        """Conditions for completed orders and the completion timestamp column."""
        conditions = self._item_conditions(filters) if items else self._order_conditions(filters)
        conditions.add("o.status = 'completed'")
        column, present = self._completion_column()
        if present:
            conditions.add(f"{column} IS NOT NULL")
        return conditions, column
