"""
Database Models - Operational Schema

Declarative description of the relational tables the analytics core reads.
The tables are owned by the order-processing and reservation workflows; the
analytics layer never writes to them. Columns marked optional in the probe
(bizmetrics.database.schema) are absent on tenants that predate the
migrations adding them.

Tables:
- orders: live orders, including carts
- order_items: item lines with price (and cost) snapshots
- order_item_customizations: selected add-ons per item line
- items: services/menu items with popularity counters
- tables: physical tables for reservations
- reservations: table and service reservations
"""

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class OrderStatus(str, Enum):
    """Order status enumeration"""
    CART = "cart"
    PENDING = "pending"
    ACCEPTED = "accepted"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    REJECTED = "rejected"


class DeliveryType(str, Enum):
    """Order fulfilment type"""
    TAKEAWAY = "takeaway"
    DELIVERY = "delivery"
    ON_SITE = "on_site"


class OrderSource(str, Enum):
    """Channel the order came from"""
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    MANUAL = "manual"
    DASHBOARD = "dashboard"


class ReservationStatus(str, Enum):
    """Reservation status enumeration"""
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# =============================================================================
# ORDERS
# =============================================================================

class Order(Base):
    """Live order (or cart) of a business"""
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)  # branch or business user
    customer_phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255))
    order_source: Mapped[str] = mapped_column(String(20), default=OrderSource.WHATSAPP.value)
    request_type: Mapped[str] = mapped_column(String(30), default="order")
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.ACCEPTED.value)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    delivery_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    delivery_type: Mapped[str] = mapped_column(String(20), nullable=False, default=DeliveryType.TAKEAWAY.value)
    location_address: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_orders_business_id", "business_id"),
        Index("idx_orders_status", "status"),
        Index("idx_orders_created_at", "created_at"),
        Index("idx_orders_customer_created", "customer_phone_number", "created_at"),
    )


class OrderItem(Base):
    """Item line of an order with price/cost snapshots"""
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("items.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price_at_time: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    cost_at_time: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    name_at_time: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    __table_args__ = (
        Index("idx_order_items_order_id", "order_id"),
        Index("idx_order_items_item_id", "item_id"),
    )


class OrderItemCustomization(Base):
    """Add-on selected for an order item line"""
    __tablename__ = "order_item_customizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False
    )
    customization_name: Mapped[str] = mapped_column(String(255), nullable=False)
    price_adjustment: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)


# =============================================================================
# CATALOG
# =============================================================================

class Item(Base):
    """Service or menu item of a business"""
    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), nullable=False)
    menu_id: Mapped[Optional[str]] = mapped_column(String(36))
    category_id: Mapped[Optional[str]] = mapped_column(String(36))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    availability: Mapped[str] = mapped_column(String(20), default="available")
    times_ordered: Mapped[int] = mapped_column(Integer, default=0)
    times_delivered: Mapped[int] = mapped_column(Integer, default=0)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_items_business_id", "business_id"),
        Index("idx_items_menu_id", "menu_id"),
    )


# =============================================================================
# RESERVATIONS
# =============================================================================

class DiningTable(Base):
    """Physical table of an F&B business"""
    __tablename__ = "tables"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    number: Mapped[str] = mapped_column(String(50), nullable=False)
    seats: Mapped[int] = mapped_column(Integer, nullable=False)


class Reservation(Base):
    """Table or service reservation"""
    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    table_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("tables.id", ondelete="SET NULL"))
    customer_phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    reservation_date: Mapped[date] = mapped_column(Date, nullable=False)
    reservation_time: Mapped[time] = mapped_column(Time, nullable=False)
    number_of_guests: Mapped[Optional[int]] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default=ReservationStatus.CONFIRMED.value)
    reservation_type: Mapped[Optional[str]] = mapped_column(String(30))
    no_show: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_reservations_business_user_id", "business_user_id"),
        Index("idx_reservations_date", "reservation_date"),
    )
