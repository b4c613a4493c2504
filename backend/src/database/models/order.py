"""
Order and delivery item models.

An Order is the aggregate root placed by (or on behalf of) a customer. Its
delivery items are the materialized fulfillment units, one per delivered
meal slot, created exactly once per order. OrderMaterialization is the
one-row-per-order marker written in the same transaction as the delivery
items; its unique ``order_id`` is the idempotency signal for materialization.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import BaseModel


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class MealType(str, Enum):
    """Meal type as sent by clients in order items and skip maps."""

    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"

    @property
    def time_slot(self) -> "DeliveryTimeSlot":
        """Delivery session serving this meal type."""
        return DeliveryTimeSlot(self.value.capitalize())


class DeliveryTimeSlot(str, Enum):
    """Delivery session of a delivery item."""

    BREAKFAST = "Breakfast"
    LUNCH = "Lunch"
    DINNER = "Dinner"

    @property
    def meal_type(self) -> MealType:
        """Meal type served in this session."""
        return MealType(self.value.lower())


class OrderStatus(str, Enum):
    """
    Order status enumeration.

    Attributes:
        PENDING: Order recorded, no receipt yet
        PAYMENT_CONFIRMED: Receipt recorded for the order's payment
        CONFIRMED: Delivery items materialized
        IN_PROGRESS: Deliveries under way
        CANCELLED: Every delivery item cancelled, or cancelled by a seller
    """

    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PAYMENT_CONFIRMED = "Payment_Confirmed"
    IN_PROGRESS = "In_Progress"
    CANCELLED = "Cancelled"


class DeliveryItemStatus(str, Enum):
    """Delivery item status enumeration."""

    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class Order(BaseModel):
    """
    Customer order.

    Attributes:
        user_id: Owning customer; may differ from the actor who placed it
        order_date: When the order was placed
        order_times: Active meal sessions as labels
        total_price: Order total
        delivery_address_id: Default address for every meal
        status: Current order status
        delivery_note: Free-form note for delivery executives
    """

    __tablename__ = "orders"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Customer who owns the order",
    )

    order_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the order was placed",
    )

    order_times: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        comment="Active meal sessions",
    )

    total_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Order total",
    )

    delivery_address_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("addresses.id", ondelete="SET NULL"),
        nullable=True,
        comment="Default delivery address",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    delivery_note: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
        comment="Note for delivery executives",
    )

    delivery_items: Mapped[list["DeliveryItem"]] = relationship(
        "DeliveryItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="raise",
    )

    payment: Mapped[Optional["Payment"]] = relationship(
        "Payment",
        back_populates="order",
        uselist=False,
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_orders_user_status", "user_id", "status"),
        CheckConstraint("total_price >= 0", name="ck_orders_total_price_non_negative"),
        {"comment": "Customer meal orders"},
    )

    def summary(self) -> dict[str, Any]:
        """Order fields returned alongside a payment."""
        return {
            "id": str(self.id),
            "order_date": self.order_date.isoformat() if self.order_date else None,
            "total_price": float(self.total_price) if self.total_price is not None else None,
            "status": self.status.value,
        }


class DeliveryItem(BaseModel):
    """
    One delivered meal slot of an order.

    Attributes:
        order_id: Parent order
        user_id: Order owner, denormalized
        menu_item_id: Menu item delivered
        quantity: Units delivered in this slot
        delivery_date: Calendar date of delivery
        delivery_time_slot: Breakfast, Lunch or Dinner
        address_id: Address for this slot
        status: Delivery status
    """

    __tablename__ = "delivery_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    menu_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("menu_items.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)

    delivery_time_slot: Mapped[DeliveryTimeSlot] = mapped_column(
        SQLEnum(DeliveryTimeSlot, name="delivery_time_slot", values_callable=_enum_values),
        nullable=False,
    )

    address_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("addresses.id", ondelete="SET NULL"),
        nullable=True,
    )

    status: Mapped[DeliveryItemStatus] = mapped_column(
        SQLEnum(DeliveryItemStatus, name="delivery_item_status", values_callable=_enum_values),
        nullable=False,
        default=DeliveryItemStatus.PENDING,
        index=True,
    )

    delivery_note: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    order: Mapped[Order] = relationship(
        "Order",
        back_populates="delivery_items",
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_delivery_items_order_date_slot", "order_id", "delivery_date", "delivery_time_slot"),
        CheckConstraint("quantity >= 1", name="ck_delivery_items_quantity_positive"),
        {"comment": "Materialized meal deliveries"},
    )


class OrderMaterialization(BaseModel):
    """
    Marker recording that an order's delivery items were created.

    Attributes:
        order_id: Materialized order, unique
        created_count: Delivery items inserted
        skipped_count: Meal slots excluded by the skip set
    """

    __tablename__ = "order_materializations"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    created_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
