"""
Chatbot/Ops Metrics

Message-log analytics: volumes, response times, drop-off points and the
chat-to-order conversion approximation. The document store is the source of
record here; when it is unavailable every metric degrades to a documented
default instead of failing the request.
"""

from bisect import bisect_left
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import structlog

from bizmetrics.analytics.base import MetricEngine
from bizmetrics.analytics.filters import Filter, document_query
from bizmetrics.analytics.periods import to_datetime, to_int
from bizmetrics.analytics.results import MetricResult
from bizmetrics.analytics.schemas import (
    ChatConversion,
    ConversationSummary,
    DropOffPoint,
    FallbackSummary,
    QuestionCount,
    RequestsHandled,
    ResponseTimeSummary,
)
from bizmetrics.database.documents import MESSAGE_LOGS, DocumentCollection
from bizmetrics.exceptions import DocumentStoreUnavailable

logger = structlog.get_logger(__name__)

NOTE_MESSAGES_DOWN = "document store unavailable, message logs not read"
NOTE_RESPONSE_FROM_ORDERS = "message logs unavailable, response time from orders.first_response_at"

INBOUND = "inbound"
OUTBOUND = "outbound"
DEFAULT_MESSAGE_TYPE = "text"
QUESTION_LENGTH = 100

# (inbound message, milliseconds until the correlated reply or None)
Correlation = Tuple[Dict[str, Any], Optional[float]]


def _percent(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole else 0.0


class ChatbotMetrics(MetricEngine):
    """
    Chat and operations metrics for one business.

    Example:
        metrics = ChatbotMetrics(relational, documents, capabilities)
        result = await metrics.response_time("B1")
        if result.degraded:
            ...
    """

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.settings.response_window_seconds)

    async def _messages(self) -> DocumentCollection:
        return await self.documents.collection(MESSAGE_LOGS)

    def _query(self, filters: Filter, direction: str = INBOUND) -> Dict[str, Any]:
        query = document_query(filters, order_fields=False)
        query["direction"] = direction
        return query

    def _down(self, metric: str, business_id: str, error: Exception) -> None:
        logger.warning("Chat metric degraded", metric=metric, business_id=business_id, error=str(error))

    async def _inbound_count(self, filters: Filter) -> int:
        collection = await self._messages()
        return await collection.count_documents(self._query(filters))

    async def _correlate(self, filters: Filter) -> List[Correlation]:
        """
        Pair each inbound message with the earliest outbound message to the
        same customer at or after it, within the response window.
        """
        collection = await self._messages()
        inbound = await collection.find(self._query(filters), sort=[("created_at", 1)])
        if not inbound:
            return []

        outbound_query: Dict[str, Any] = {"business_id": filters.business_id, "direction": OUTBOUND}
        window: Dict[str, Any] = {}
        if filters.start_date:
            window["$gte"] = filters.start_at
        if filters.end_date:
            window["$lte"] = filters.end_at + self.window
        if window:
            outbound_query["created_at"] = window
        outbound =await collection.find(outbound_query, sort=[("created_at", 1)])

        replies: Dict[str, List[datetime]] = defaultdict(list)
        for message in outbound:
            replies[message.get("customer_phone_number")].append(to_datetime(message.get("created_at")))

        pairs: List[Correlation] = []
        for message in inbound:
            at = to_datetime(message.get("created_at"))
            times = replies.get(message.get("customer_phone_number"), [])
            index = bisect_left(times, at)
            gap = None
            if index < len(times) and times[index] <= at + self.window:
                gap = (times[index] - at).total_seconds() * 1000
            pairs.append((message, gap))
        return pairs

    async def requests_handled(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[RequestsHandled]:
        """Inbound messages in the window."""
        filters = self._filter(business_id, filters)
        try:
            count = await self._inbound_count(filters)
        except DocumentStoreUnavailable as e:
            self._down("requests_handled", business_id, e)
            return MetricResult.default(RequestsHandled(count=0), NOTE_MESSAGES_DOWN)
        return MetricResult.document(RequestsHandled(count=count))

    async def conversations(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[ConversationSummary]:
        """Inbound messages and distinct customers who sent them."""
        filters = self._filter(business_id, filters)
        try:
            collection = await self._messages()
            query = self._query(filters)
            count = await collection.count_documents(query)
            phones = await collection.distinct("customer_phone_number", query)
        except DocumentStoreUnavailable as e:
            self._down("conversations", business_id, e)
            return MetricResult.default(ConversationSummary(count=0, unique_customers=0), NOTE_MESSAGES_DOWN)

        unique = len([phone for phone in phones if phone])
        return MetricResult.document(ConversationSummary(count=count, unique_customers=unique))

    async def response_time(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[ResponseTimeSummary]:
        """
        Average milliseconds between an inbound message and its reply.

        Inbound messages without a reply inside the window are left out of
        the average. Without message logs the relational first-response
        delay of orders is used instead (degraded).
        """
        filters = self._filter(business_id, filters)
        try:
            pairs = await self._correlate(filters)
        except DocumentStoreUnavailable as e:
            self._down("response_time", business_id, e)
            return await self._response_time_from_orders(filters)

        gaps = [gap for _, gap in pairs if gap is not None]
        data = ResponseTimeSummary(
            average_response_ms=sum(gaps) / len(gaps) if gaps else 0.0,
            correlated_messages=len(gaps),
        )
        return MetricResult.document(data)

    async def _response_time_from_orders(self, filters: Filter) -> MetricResult[ResponseTimeSummary]:
        if not self.capabilities.first_response_at:
            empty = ResponseTimeSummary(average_response_ms=0, correlated_messages=0)
            return MetricResult.default(empty, NOTE_MESSAGES_DOWN)

        conditions = self._order_conditions(filters)
        conditions.add("o.first_response_at IS NOT NULL")
        rows = await self.relational.fetch_all(
            f"SELECT o.created_at, o.first_response_at FROM orders o WHERE {conditions.where()}",
            conditions.params,
        )
        gaps = [
            (to_datetime(row["first_response_at"]) - to_datetime(row["created_at"])).total_seconds() * 1000
            for row in rows
        ]
        data = ResponseTimeSummary(
            average_response_ms=sum(gaps) / len(gaps) if gaps else 0.0,
            correlated_messages=len(gaps),
        )
        return MetricResult.relational(data, notes=[NOTE_RESPONSE_FROM_ORDERS], degraded=True)

    async def _conversion(self, metric: str, filters: Filter) -> MetricResult[ChatConversion]:
        conditions = self._order_conditions(filters)
        conditions.add("o.status != 'cart'")
        row = await self.relational.fetch_one(
            f"SELECT COUNT(*) AS order_count FROM orders o WHERE {conditions.where()}",
            conditions.params,
        )
        orders = to_int(row["order_count"]) if row else 0

        try:
            chats = await self._inbound_count(filters)
        except DocumentStoreUnavailable as e:
            self._down(metric, filters.business_id, e)
            data = ChatConversion(rate=0, chats_count=0, orders_count=orders)
            return MetricResult.default(data, NOTE_MESSAGES_DOWN)

        data = ChatConversion(rate=_percent(orders, chats), chats_count=chats, orders_count=orders)
        return MetricResult.document(data)

    async def resolution_rate(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[ChatConversion]:
        """Non-cart orders per inbound message, as a percentage."""
        filters = self._filter(business_id, filters)
        return await self._conversion("resolution_rate", filters)

    async def conversion_rate(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[ChatConversion]:
        filters = self._filter(business_id, filters)
        return await self._conversion("conversion_rate", filters)

    async def drop_off_points(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[List[DropOffPoint]]:
        """Unanswered inbound messages per message type, most first."""
        filters = self._filter(business_id, filters)
        try:
            pairs = await self._correlate(filters)
        except DocumentStoreUnavailable as e:
            self._down("drop_off_points", business_id, e)
            return MetricResult.default([], NOTE_MESSAGES_DOWN)

        counts = Counter(
            message.get("message_type") or DEFAULT_MESSAGE_TYPE
            for message, gap in pairs
            if gap is None
        )
        data = [
            DropOffPoint(message_type=message_type, drop_off_count=count)
            for message_type, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        ]
        return MetricResult.document(data)

    async def fallback_rate(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
    ) -> MetricResult[FallbackSummary]:
        """Share of inbound messages the channel adapter answered with a fallback."""
        filters = self._filter(business_id, filters)
        try:
            collection = await self._messages()
            query = self._query(filters)
            total = await collection.count_documents(query)
            fallbacks = await collection.count_documents({**query, "fallback_used": True})
        except DocumentStoreUnavailable as e:
            self._down("fallback_rate", business_id, e)
            empty = FallbackSummary(fallback_rate=0, total_messages=0, fallback_count=0)
            return MetricResult.default(empty, NOTE_MESSAGES_DOWN)

        data = FallbackSummary(
            fallback_rate=_percent(fallbacks, total),
            total_messages=total,
            fallback_count=fallbacks,
        )
        return MetricResult.document(data)

    async def most_asked_questions(
        self,
        business_id: str,
        filters: Optional[Filter] = None,
        limit: Optional[int] = None,
    ) -> MetricResult[List[QuestionCount]]:
        """Inbound texts, truncated and lower-cased, by frequency."""
        limit = self._limit(limit)
        filters = self._filter(business_id, filters)
        try:
            collection = await self._messages()
            messages = await collection.find(self._query(filters))
        except DocumentStoreUnavailable as e:
            self._down("most_asked_questions", business_id, e)
            return MetricResult.default([], NOTE_MESSAGES_DOWN)

        counts = Counter(
            message["text"][:QUESTION_LENGTH].lower()
            for message in messages
            if isinstance(message.get("text"), str) and message["text"].strip()
        )
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        return MetricResult.document([QuestionCount(question=q, count=c) for q, c in ranked])
