"""
Normalized order specification.

OrderSpec is the canonical, validated form of an order's delivery plan:
which dates, which meal sessions, which items, which addresses, and which
meals the customer skipped. It is produced by the order intake normalizer
and consumed by delivery item expansion and inventory reduction.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.database.models.order import DeliveryTimeSlot, MealType


class ExpansionMode(str, Enum):
    """
    How an order expands into delivery items.

    FIXED_SLOTS: one item per date and active session, using the first
        order item's menu item with quantity 1.
    PER_ITEM: one item per date and order item, using the item's own meal
        type and quantity.
    """

    FIXED_SLOTS = "fixed_slots"
    PER_ITEM = "per_item"


class OrderItemSpec(BaseModel):
    """One ordered menu item for a meal type."""

    model_config = ConfigDict(frozen=True)

    menu_item_id: uuid.UUID
    meal_type: MealType
    quantity: int = Field(ge=1)


class OrderSpec(BaseModel):
    """Validated order delivery plan."""

    model_config = ConfigDict(frozen=True)

    user_id: uuid.UUID
    order_date: Optional[datetime] = None
    selected_dates: tuple[date, ...]
    order_items: tuple[OrderItemSpec, ...]
    order_times: tuple[DeliveryTimeSlot, ...]
    delivery_address_id: Optional[uuid.UUID] = None
    inline_address: Optional[dict[str, Any]] = None
    delivery_locations: dict[MealType, uuid.UUID] = Field(default_factory=dict)
    skip_meals: dict[date, frozenset[MealType]] = Field(default_factory=dict)
    expansion_mode: ExpansionMode = ExpansionMode.PER_ITEM
    total_price: Optional[Decimal] = None
    delivery_note: Optional[str] = None

    def is_skipped(self, delivery_date: date, meal_type: MealType) -> bool:
        """Whether the customer skipped ``meal_type`` on ``delivery_date``."""
        return meal_type in self.skip_meals.get(delivery_date, frozenset())

    def address_for(self, meal_type: MealType) -> Optional[uuid.UUID]:
        """Per-meal override address, else the order's default address."""
        return self.delivery_locations.get(meal_type) or self.delivery_address_id

    @property
    def slot_count(self) -> int:
        """Meal slots described by the spec before skips are applied."""
        if self.expansion_mode == ExpansionMode.FIXED_SLOTS:
            return len(self.selected_dates) * len(self.order_times)
        return len(self.selected_dates) * len(self.order_items)

    def with_address(self, address_id: uuid.UUID) -> "OrderSpec":
        """Copy of the spec whose default address is ``address_id``."""
        return self.model_copy(update={"delivery_address_id": address_id})

    def to_payload(self) -> dict[str, Any]:
        """
        Encode the spec in the client order-data shape.

        The result normalizes back to an equal spec, which is how the
        fulfillment outbox stores it.
        """
        return {
            "userId": str(self.user_id),
            "orderDate": self.order_date.isoformat() if self.order_date else None,
            "selectedDates": [d.isoformat() for d in self.selected_dates],
            "orderItems": [
                {
                    "menuItemId": str(item.menu_item_id),
                    "mealType": item.meal_type.value,
                    "quantity": item.quantity,
                }
                for item in self.order_items
            ],
            "orderTimes": [slot.value for slot in self.order_times],
            "deliveryAddressId": (
                str(self.delivery_address_id) if self.delivery_address_id else None
            ),
            "deliveryLocations": {
                meal.value: str(address_id)
                for meal, address_id in self.delivery_locations.items()
            },
            "skipMeals": {
                d.isoformat(): {meal.value: True for meal in sorted(meals, key=lambda m: m.value)}
                for d, meals in self.skip_meals.items()
            },
            "expansionMode": self.expansion_mode.value,
            "totalPrice": str(self.total_price) if self.total_price is not None else None,
            "deliveryNote": self.delivery_note,
        }
