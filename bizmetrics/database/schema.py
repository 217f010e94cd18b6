"""
Schema Capability Probe

Tenants run on different schema versions. Optional columns and tables are
probed once and passed to the engines, which degrade instead of failing when
a capability is missing.
"""

from dataclasses import dataclass, fields

import structlog

from bizmetrics.database.connection import RelationalStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SchemaCapabilities:
    """Optional schema features present in the relational store"""
    cost_at_time: bool = False  # order_items.cost_at_time
    completed_at: bool = False  # orders.completed_at
    delivery_type: bool = False  # orders.delivery_type
    first_response_at: bool = False  # orders.first_response_at
    scheduled_for: bool = False  # orders.scheduled_for
    times_ordered: bool = False  # items.times_ordered
    times_delivered: bool = False  # items.times_delivered
    no_show: bool = False  # reservations.no_show
    customizations: bool = False  # order_item_customizations table

    @classmethod
    async def probe(cls, store: RelationalStore) -> "SchemaCapabilities":
        """Inspect the schema once: one column listing per table."""
        orders = await store.columns("orders")
        order_items = await store.columns("order_items")
        items = await store.columns("items")
        reservations = await store.columns("reservations")
        customizations = await store.has_table("order_item_customizations")

        capabilities = cls(
            cost_at_time="cost_at_time" in order_items,
            completed_at="completed_at" in orders,
            delivery_type="delivery_type" in orders,
            first_response_at="first_response_at" in orders,
            scheduled_for="scheduled_for" in orders,
            times_ordered="times_ordered" in items,
            times_delivered="times_delivered" in items,
            no_show="no_show" in reservations,
            customizations=customizations,
        )
        logger.info("Schema capabilities probed", **capabilities.as_dict())
        return capabilities

    @classmethod
    def all(cls) -> "SchemaCapabilities":
        """Capabilities of the current schema version"""
        return cls(**{f.name: True for f in fields(cls)})

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}
