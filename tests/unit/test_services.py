"""
Unit Tests - Service/Item Metrics
"""
from datetime import date, datetime

import pytest

from bizmetrics.analytics.filters import Filter
from bizmetrics.analytics.results import DataSource
from bizmetrics.analytics.services import NOTE_NO_COST, _change_percent
from tests.builders import LEGACY_METADATA, insert_rows, item_row, line_row, order_log, order_row
from tests.fakes import InMemoryDocumentStore


def _orders():
    return [
        order_row("o1", datetime(2024, 3, 10, 10, 0), 25),
        order_row("o2", datetime(2024, 3, 12, 15, 0), 15),
        order_row("o3", datetime(2024, 3, 15, 10, 0), 5),
        order_row("o4", datetime(2024, 3, 15, 11, 0), 105, status="rejected"),
        order_row("o5", datetime(2024, 2, 5, 9, 0), 60),
    ]


def _items():
    return [
        item_row("A", "Shawarma", 10, times_ordered=5, times_delivered=4),
        item_row("B", "Falafel", 5, category_id="C2", times_ordered=9, times_delivered=0),
        item_row("C", "Retired", 7, times_ordered=20, deleted_at=datetime(2024, 1, 1)),
    ]


def _lines():
    return [
        line_row("l1", "o1", "A", 2, 10, cost=4),
        line_row("l2", "o1", "B", 1, 5, cost=2),
        line_row("l3", "o2", "A", 1, 10, cost=4),
        line_row("l4", "o2", "B", 1, 5, cost=2),
        line_row("l5", "o3", "B", 1, 5, cost=2),
        line_row("l6", "o4", "A", 10, 10, cost=4),
        line_row("l7", "o4", "B", 1, 5, cost=2),
        line_row("l8", "o5", "A", 6, 10, cost=4),
    ]


async def _seed(engine, metadata=None):
    kwargs = {"metadata": metadata} if metadata is not None else {}
    await insert_rows(engine, "orders", _orders(), **kwargs)
    await insert_rows(engine, "items", _items(), **kwargs)
    await insert_rows(engine, "order_items", _lines(), **kwargs)


@pytest.fixture
async def seeded(engine):
    await _seed(engine)


@pytest.fixture
async def legacy_seeded(legacy_engine):
    await _seed(legacy_engine, LEGACY_METADATA)


class TestChangePercent:
    """Tests for trend percentages"""

    def test_relative_change(self):
        assert _change_percent(3, 6) == -50

    def test_new_item_is_full_increase(self):
        assert _change_percent(3, 0) == 100

    def test_no_sales_is_stable(self):
        assert _change_percent(0, 0) == 0


class TestCatalogCounters:
    """Tests for popular_items and most_delivered_items"""

    async def test_popular_items_skip_deleted(self, engines, seeded):
        result = await engines.services.popular_items("B1")

        assert [(i.item_id, i.times_ordered) for i in result.data] == [("B", 9), ("A", 5)]
        assert result.data[1].completion_rate == 80

    async def test_most_delivered_items(self, engines, seeded):
        result = await engines.services.most_delivered_items("B1", limit=1)

        assert [(i.item_id, i.times_delivered) for i in result.data] == [("A", 4)]

    async def test_counters_missing(self, legacy_engines, legacy_seeded):
        result = await legacy_engines.services.popular_items("B1")

        assert result.data == []
        assert result.degraded


class TestItemRankings:
    """Tests for the snapshot-based item rankings"""

    async def test_top_items(self, engines, seeded):
        result = await engines.services.top_items("B1")

        assert [(i.item_id, i.quantity, i.revenue) for i in result.data] == [("A", 9, 90.0), ("B", 3, 15.0)]

    async def test_most_and_least_ordered(self, engines, seeded):
        most = await engines.services.most_ordered("B1")
        least = await engines.services.least_ordered("B1")

        assert most.data.item_id == "A"
        assert least.data.item_id == "B"

    async def test_no_item_lines(self, engines, seeded):
        result = await engines.services.most_ordered("B-empty")

        assert result.data is None

    async def test_most_rewarding(self, engines, seeded):
        result = await engines.services.most_rewarding("B1")

        assert result.data.item_id == "A"
        assert result.data.amount == 54
        assert not result.degraded

    async def test_most_rewarding_without_cost(self, legacy_engines, legacy_seeded):
        result = await legacy_engines.services.most_rewarding("B1")

        assert result.data.amount == 90
        assert result.degraded
        assert NOTE_NO_COST in result.notes

    async def test_category_scope(self, engines, seeded):
        result = await engines.services.top_items("B1", Filter(business_id="B1", category_id="C2"))

        assert [(i.item_id, i.quantity) for i in result.data] == [("B", 3)]
        assert result.source == DataSource.RELATIONAL

    async def test_top_items_from_order_logs(self, store, make_engines):
        documents = InMemoryDocumentStore(
            order_logs=[
                order_log("d1", datetime(2024, 3, 1, 10, 0), 30, items=[("A", "Shawarma", 3, 10)]),
                order_log("d2", datetime(2024, 3, 2, 10, 0), 20, items=[("B", "Falafel", 4, 5)]),
            ]
        )
        engines = make_engines(store, documents)

        result = await engines.services.top_items("B1")

        assert result.source == DataSource.DOCUMENT
        assert [(i.item_id, i.quantity) for i in result.data] == [("B", 4), ("A", 3)]


class TestTrend:
    """Tests for popularity_trend"""

    async def test_default_window_against_previous(self, engines, seeded):
        result = await engines.services.popularity_trend("B1")

        assert [(t.item_id, t.current_quantity, t.previous_quantity, t.trend) for t in result.data] == [
            ("B", 3, 0, "up"),
            ("A", 3, 6, "down"),
        ]
        assert result.data[1].change_percent == -50

    async def test_explicit_window(self, engines, seeded):
        filters = Filter(business_id="B1", start_date=date(2024, 3, 12), end_date=date(2024, 3, 15))
        result = await engines.services.popularity_trend("B1", filters)

        # previous window is 2024-03-08 .. 2024-03-11
        trends = {t.item_id: t for t in result.data}
        assert trends["A"].previous_quantity == 2
        assert trends["A"].change == -1
        assert trends["B"].current_quantity == 2


class TestServiceAmounts:
    """Tests for revenue, profit and margin per service"""

    async def test_revenue_per_service(self, engines, seeded):
        result = await engines.services.revenue_per_service("B1")

        assert [(s.item_id, s.amount) for s in result.data] == [("A", 90.0), ("B", 15.0)]

    async def test_profit_per_service(self, engines, seeded):
        result = await engines.services.profit_per_service("B1")

        assert [(s.item_id, s.amount) for s in result.data] == [("A", 54.0), ("B", 9.0)]
        assert not result.degraded

    async def test_profit_without_cost_is_revenue(self, legacy_engines, legacy_seeded):
        result = await legacy_engines.services.profit_per_service("B1")

        assert [(s.item_id, s.amount) for s in result.data] == [("A", 90.0), ("B", 15.0)]
        assert result.degraded

    async def test_profit_margin(self, engines, seeded):
        result = await engines.services.profit_margin_per_service("B1")

        assert [m.item_id for m in result.data] == ["A", "B"]
        assert result.data[0].average_margin_percent == pytest.approx(60)
        assert result.data[1].average_margin_percent == pytest.approx(60)

    async def test_profit_margin_without_cost(self, legacy_engines, legacy_seeded):
        result = await legacy_engines.services.profit_margin_per_service("B1")

        assert result.data == []
        assert result.source == DataSource.DEFAULT


class TestBaskets:
    """Tests for hourly rankings, pairs and customizations"""

    async def test_top_services_by_hour(self, engines, seeded):
        result = await engines.services.top_services_by_hour("B1", limit=1)

        assert [r.hour for r in result.data] == [9, 10, 15]
        ten = result.data[1]
        assert [(i.item_id, i.quantity) for i in ten.items] == [("A", 2)]

    async def test_pairs_reported_once(self, engines, seeded):
        result = await engines.services.frequently_bought_together("B1")

        assert len(result.data) == 1
        pair = result.data[0]
        assert (pair.item1_id, pair.item2_id) == ("A", "B")
        assert pair.times_bought_together == 2
        assert pair.item1_name == "Shawarma"

    async def test_customization_usage(self, engines, seeded):
        await insert_rows(
            engines.services.relational.engine,
            "order_item_customizations",
            [
                {"id": "c1", "order_item_id": "l1", "customization_name": "Extra garlic", "price_adjustment": 1},
                {"id": "c2", "order_item_id": "l3", "customization_name": "Extra garlic", "price_adjustment": 1},
                {"id": "c3", "order_item_id": "l3", "customization_name": "No pickles", "price_adjustment": 0},
            ],
        )

        result = await engines.services.customization_usage("B1")

        assert [(c.customization_name, c.usage_count, c.order_items_count) for c in result.data] == [
            ("Extra garlic", 2, 2),
            ("No pickles", 1, 1),
        ]
        assert result.data[0].total_price_adjustment == 2

    async def test_customizations_table_missing(self, legacy_engines, legacy_seeded):
        result = await legacy_engines.services.customization_usage("B1")

        assert result.data == []
        assert result.degraded
