"""
Unit Tests - Customer Metrics
"""
from datetime import date, datetime, timedelta

import pytest

from bizmetrics.analytics.customers import lifespan_days
from bizmetrics.analytics.filters import Filter
from bizmetrics.analytics.results import DataSource
from tests.builders import LEGACY_METADATA, insert_rows, item_row, line_row, order_log, order_row
from tests.fakes import InMemoryDocumentStore

C1 = "+9611000001"
C2 = "+9611000002"
C3 = "+9611000003"
C4 = "+9611000004"

MARCH = Filter(business_id="B1", start_date=date(2024, 3, 1), end_date=date(2024, 3, 31))


def _orders():
    first = datetime(2024, 3, 1, 12, 0)
    return [
        order_row("o1", first, 10, phone=C1, first_response_at=first + timedelta(seconds=90)),
        order_row("o2", datetime(2024, 3, 11, 12, 0), 20, phone=C1),
        order_row("o3", datetime(2023, 12, 1, 12, 0), 50, phone=C2),
        order_row("o4", datetime(2023, 11, 15, 12, 0), 5, phone=C3),
        order_row("o5", datetime(2024, 3, 15, 12, 0), 15, phone=C3),
        order_row(
            "o6",
            datetime(2023, 10, 1, 12, 0),
            40,
            phone=C4,
            status="rejected",
            first_response_at=datetime(2023, 10, 1, 12, 0, 30),
        ),
        order_row("o7", datetime(2024, 3, 1, 12, 0), 99, phone=C1, business_id="B2"),
    ]


async def _seed(engine, metadata=None):
    kwargs = {"metadata": metadata} if metadata is not None else {}
    await insert_rows(engine, "orders", _orders(), **kwargs)
    await insert_rows(engine, "items", [item_row("A", "Shawarma", 10)], **kwargs)
    await insert_rows(
        engine,
        "order_items",
        [
            line_row("l1", "o1", "A", 1, 10, cost=4),
            line_row("l2", "o3", "A", 5, 10, cost=9),
        ],
        **kwargs,
    )


@pytest.fixture
async def seeded(engine):
    await _seed(engine)


@pytest.fixture
async def legacy_seeded(legacy_engine):
    await _seed(legacy_engine, LEGACY_METADATA)


class TestLifespan:
    """Tests for lifespan_days"""

    def test_single_order(self):
        at = datetime(2024, 3, 1, 12, 0)
        assert lifespan_days(at, at) == 0

    def test_partial_day_rounds_up(self):
        assert lifespan_days(datetime(2024, 3, 1, 12, 0), datetime(2024, 3, 2, 13, 0)) == 2


class TestRankings:
    """Tests for spend and frequency rankings"""

    async def test_top_spenders(self, engines, seeded):
        result = await engines.customers.top_spenders("B1")

        assert [(c.customer_phone_number, c.total_spent) for c in result.data] == [
            (C2, 50.0),
            (C1, 30.0),
            (C3, 20.0),
        ]
        assert result.source == DataSource.RELATIONAL

    async def test_top_spenders_limit(self, engines, seeded):
        result = await engines.customers.top_spenders("B1", limit=1)

        assert [c.customer_phone_number for c in result.data] == [C2]

    async def test_recurring_ties_keep_first_seen_order(self, engines, seeded):
        result = await engines.customers.recurring_customers("B1")

        assert [(c.customer_phone_number, c.order_count) for c in result.data] == [(C3, 2), (C1, 2), (C2, 1)]

    async def test_most_frequent_counts_distinct_days(self, engines, seeded):
        result = await engines.customers.most_frequent_customers("B1")

        assert [(c.customer_phone_number, c.active_days) for c in result.data] == [(C3, 2), (C1, 2), (C2, 1)]

    async def test_average_order_value_per_customer(self, engines, seeded):
        result = await engines.customers.average_order_value_per_customer("B1")

        averages = {c.customer_phone_number: c.average_order_value for c in result.data.customers}
        assert averages == {C1: 15.0, C2: 50.0, C3: 10.0}
        assert result.data.overall_average == 25

    async def test_rankings_from_order_logs(self, store, make_engines):
        documents = InMemoryDocumentStore(
            order_logs=[
                order_log("d1", datetime(2024, 3, 1, 10, 0), 12, phone=C1),
                order_log("d2", datetime(2024, 3, 2, 10, 0), 40, phone=C2),
                order_log("d3", datetime(2024, 3, 2, 11, 0), 7, phone=C1, final_status="rejected"),
            ]
        )
        engines = make_engines(store, documents)

        result = await engines.customers.top_spenders("B1")

        assert result.source == DataSource.DOCUMENT
        assert [(c.customer_phone_number, c.total_spent) for c in result.data] == [(C2, 40.0), (C1, 12.0)]


class TestLifetimeValue:
    """Tests for lifetime_value"""

    async def test_customers_and_summary(self, engines, seeded):
        result = await engines.customers.lifetime_value("B1")
        customers = {c.customer_phone_number: c for c in result.data.customers}

        assert customers[C1].lifespan_days == 10
        assert customers[C1].orders_per_day == pytest.approx(0.2)
        assert customers[C2].lifespan_days == 0
        assert customers[C2].orders_per_day == 1.0
        assert result.data.summary.total_customers == 3
        assert result.data.summary.total_revenue == 100
        assert result.data.summary.average_lifetime_value == pytest.approx(100 / 3)
        assert result.data.summary.average_orders_per_customer == pytest.approx(5 / 3)

    async def test_no_customers(self, engines, seeded):
        result = await engines.customers.lifetime_value("B-empty")

        assert result.data.customers == []
        assert result.data.summary.average_lifetime_value == 0


class TestRetention:
    """Tests for retention windows"""

    async def test_windows_over_all_history(self, engines, seeded):
        result = await engines.customers.retention("B1")

        assert result.data.total_customers == 3
        assert [(w.days, w.retained_customers) for w in result.data.windows] == [(7, 0), (14, 1), (30, 1)]

    async def test_first_order_inside_window(self, engines, seeded):
        result = await engines.customers.retention("B1", MARCH)

        assert result.data.total_customers == 2
        assert [w.retention_rate for w in result.data.windows] == [0.0, 50.0, 50.0]

    async def test_single_order_never_retained(self, engines, engine):
        await insert_rows(engine, "orders", [order_row("x1", datetime(2024, 3, 1), 10, business_id="B3")])

        result = await engines.customers.retention("B3")

        assert result.data.total_customers == 1
        assert all(w.retention_rate == 0 for w in result.data.windows)

    async def test_custom_windows(self, engines, seeded):
        result = await engines.customers.retention("B1", windows=[10])

        assert [(w.days, w.retained_customers) for w in result.data.windows] == [(10, 1)]

    async def test_non_positive_window_rejected(self, engines, seeded):
        with pytest.raises(ValueError):
            await engines.customers.retention("B1", windows=[0])


class TestChurnAndNewness:
    """Tests for churned_customers and new_vs_returning"""

    async def test_churned_customers(self, engines, seeded):
        result = await engines.customers.churned_customers("B1")

        assert len(result.data) == 1
        churned = result.data[0]
        assert churned.customer_phone_number == C2
        assert churned.order_count == 1
        assert churned.total_spent == 50
        assert churned.days_since_last_order == 110

    async def test_recent_order_prevents_churn(self, engines, seeded):
        result = await engines.customers.churned_customers("B1")

        assert C3 not in [c.customer_phone_number for c in result.data]

    async def test_new_vs_returning_in_window(self, engines, seeded):
        result = await engines.customers.new_vs_returning("B1", MARCH)

        assert result.data.new_customers == 1
        assert result.data.returning_customers == 1
        assert result.data.new_percentage == 50

    async def test_everyone_is_new_without_range(self, engines, seeded):
        result = await engines.customers.new_vs_returning("B1")

        assert result.data.new_customers == 3
        assert result.data.returning_customers == 0


class TestOptionalColumns:
    """Tests for metrics depending on optional columns"""

    async def test_response_behavior(self, engines, seeded):
        result = await engines.customers.response_behavior("B1")

        assert result.data.orders_with_response == 2
        assert result.data.average_response_seconds == 60
        assert result.data.cancelled_orders == 1
        assert result.data.cancellation_rate == 50

    async def test_highest_profit_customers(self, engines, seeded):
        result = await engines.customers.highest_profit_customers("B1")

        assert [(c.customer_phone_number, c.total_profit) for c in result.data] == [(C1, 6.0), (C2, 5.0)]
        assert result.data[1].total_revenue == 50

    async def test_legacy_defaults(self, legacy_engines, legacy_seeded):
        profit = await legacy_engines.customers.highest_profit_customers("B1")
        behavior = await legacy_engines.customers.response_behavior("B1")

        assert profit.data == []
        assert profit.source == DataSource.DEFAULT
        assert behavior.degraded
        assert behavior.data.orders_with_response == 0


class TestSingleCustomerHistories:
    """Tests for minimal per-customer histories"""

    async def test_two_orders_ten_days_apart(self, engines, engine):
        await insert_rows(
            engine,
            "orders",
            [
                order_row("x1", datetime(2024, 3, 1, 12, 0), 10, business_id="B4"),
                order_row("x2", datetime(2024, 3, 11, 12, 0), 10, business_id="B4"),
            ],
        )

        result = await engines.customers.retention("B4")

        assert [w.retention_rate for w in result.data.windows] == [0.0, 100.0, 100.0]

    async def test_old_only_order_churns_recent_order_does_not(self, engines, engine):
        await insert_rows(
            engine,
            "orders",
            [
                order_row("y1", datetime(2023, 12, 20, 12, 0), 10, phone=C1, business_id="B4"),
                order_row("y2", datetime(2023, 12, 20, 12, 0), 10, phone=C2, business_id="B4"),
                order_row("y3", datetime(2024, 3, 13, 12, 0), 10, phone=C2, business_id="B4"),
            ],
        )

        result = await engines.customers.churned_customers("B4")

        assert [c.customer_phone_number for c in result.data] == [C1]


class TestHistoryAcrossChannels:
    """Filters pick the customers; their history spans the whole business"""

    async def test_order_on_other_platform_makes_customer_returning(self, engines, engine):
        await insert_rows(
            engine,
            "orders",
            [
                order_row("p1", datetime(2024, 1, 5, 12, 0), 10, business_id="B9", order_source="telegram"),
                order_row("p2", datetime(2024, 3, 5, 12, 0), 10, business_id="B9"),
            ],
        )

        result = await engines.customers.new_vs_returning("B9", Filter(business_id="B9", platform="whatsapp"))

        assert result.data.new_customers == 0
        assert result.data.returning_customers == 1

    async def test_recent_order_on_other_platform_prevents_churn(self, engines, engine):
        await insert_rows(
            engine,
            "orders",
            [
                order_row("p1", datetime(2023, 11, 5, 12, 0), 10, business_id="B9"),
                order_row("p2", datetime(2024, 3, 13, 12, 0), 10, business_id="B9", order_source="telegram"),
            ],
        )

        result = await engines.customers.churned_customers("B9", Filter(business_id="B9", platform="whatsapp"))

        assert result.data == []

    async def test_churned_customer_counts_every_branch(self, engines, engine):
        await insert_rows(
            engine,
            "orders",
            [
                order_row("p1", datetime(2023, 11, 5, 12, 0), 10, business_id="B9"),
                order_row("p2", datetime(2023, 12, 5, 12, 0), 30, business_id="B9", user_id="U2"),
            ],
        )

        result = await engines.customers.churned_customers("B9", Filter(business_id="B9", branch_id="U1"))

        assert len(result.data) == 1
        assert result.data[0].order_count == 2
        assert result.data[0].total_spent == 40
        assert result.data[0].last_order_at == datetime(2023, 12, 5, 12, 0)

    async def test_repeat_on_other_branch_counts_as_retained(self, engines, engine):
        await insert_rows(
            engine,
            "orders",
            [
                order_row("p1", datetime(2024, 3, 1, 12, 0), 10, business_id="B9"),
                order_row("p2", datetime(2024, 3, 5, 12, 0), 10, business_id="B9", user_id="U2"),
                order_row("p3", datetime(2024, 3, 2, 12, 0), 10, phone=C2, business_id="B9", user_id="U2"),
            ],
        )

        result = await engines.customers.retention("B9", Filter(business_id="B9", branch_id="U1"))

        assert result.data.total_customers == 1
        assert [w.retained_customers for w in result.data.windows] == [1, 1, 1]
