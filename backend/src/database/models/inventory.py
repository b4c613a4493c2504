"""
Inventory models for menu products and stock reduction tracking.

This module defines the Product model holding stock counts, the MenuItem
model linking orderable menu entries to products, and the InventoryReduction
ledger guaranteeing that an order reduces stock at most once.

Stock counts are soft: ``Product.quantity`` may go negative. Fulfillment is
tracked against stock, stock is not reserved ahead of orders.
"""

import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import BaseModel


class ProductStatus(str, Enum):
    """Product availability status."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class Product(BaseModel):
    """
    Stocked product prepared for delivery.

    Attributes:
        code: Unique product code
        product_name: Human-readable name
        quantity: Units in stock, may be negative
        status: Availability status
    """

    __tablename__ = "products"

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Unique product code",
    )

    product_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product name",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units in stock; negative values mean oversold",
    )

    status: Mapped[ProductStatus] = mapped_column(
        SQLEnum(
            ProductStatus,
            name="product_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=ProductStatus.ACTIVE,
    )

    def __repr__(self) -> str:
        return (
            f"<Product(id={self.id}, code={self.code}, quantity={self.quantity})>"
        )


class MenuItem(BaseModel):
    """
    Orderable menu entry.

    Attributes:
        name: Menu item name
        price: Unit price
        product_id: Stocked product consumed when the item is delivered
    """

    __tablename__ = "menu_items"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Product consumed by this menu item",
    )

    product: Mapped[Optional[Product]] = relationship(
        "Product",
        foreign_keys=[product_id],
        lazy="selectin",
    )


class InventoryReduction(BaseModel):
    """
    Ledger entry recording that an order's stock was reduced.

    The unique ``order_id`` makes a second reduction for the same order fail
    at insert time, which the reconciler treats as "already reduced".
    """

    __tablename__ = "inventory_reductions"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="Order whose stock was reduced",
    )

    total_units: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units removed from stock across all products",
    )

    details: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        comment="Per-product reduction breakdown",
    )
