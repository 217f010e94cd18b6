"""
Analytics Engine Set

Composition root for the metric engines. The stores and the probed schema
capabilities are shared by every engine of one set.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from bizmetrics.analytics.base import Clock
from bizmetrics.analytics.chatbot import ChatbotMetrics
from bizmetrics.analytics.customers import CustomerMetrics
from bizmetrics.analytics.financial import FinancialMetrics
from bizmetrics.analytics.orders import OrderMetrics
from bizmetrics.analytics.periods import utcnow
from bizmetrics.analytics.reservations import ReservationMetrics
from bizmetrics.analytics.services import ServiceMetrics
from bizmetrics.config.settings import AnalyticsSettings
from bizmetrics.database.connection import RelationalStore
from bizmetrics.database.documents import DocumentStore
from bizmetrics.database.schema import SchemaCapabilities

logger = structlog.get_logger(__name__)


@dataclass
class AnalyticsEngines:
    """All metric engines over one pair of stores"""
    orders: OrderMetrics
    financial: FinancialMetrics
    customers: CustomerMetrics
    services: ServiceMetrics
    chatbot: ChatbotMetrics
    reservations: ReservationMetrics
    capabilities: SchemaCapabilities

    @classmethod
    def create(
        cls,
        relational: RelationalStore,
        documents: DocumentStore,
        capabilities: SchemaCapabilities,
        settings: Optional[AnalyticsSettings] = None,
        clock: Clock = utcnow,
    ) -> "AnalyticsEngines":
        settings = settings or AnalyticsSettings()
        args = (relational, documents, capabilities, settings, clock)

        orders = OrderMetrics(*args)
        return cls(
            orders=orders,
            financial=FinancialMetrics(orders),
            customers=CustomerMetrics(*args),
            services=ServiceMetrics(*args),
            chatbot=ChatbotMetrics(*args),
            reservations=ReservationMetrics(*args),
            capabilities=capabilities,
        )

    @classmethod
    async def probe(
        cls,
        relational: RelationalStore,
        documents: DocumentStore,
        settings: Optional[AnalyticsSettings] = None,
        clock: Clock = utcnow,
    ) -> "AnalyticsEngines":
        """Probe the relational schema once and build the engine set."""
        capabilities = await SchemaCapabilities.probe(relational)
        engines = cls.create(relational, documents, capabilities, settings, clock)
        logger.info("Analytics engines ready")
        return engines
