"""
Delivery item expansion planning.

Expands an OrderSpec into the delivery item rows to insert. Planning is pure
and deterministic: rows come out in selected-date order, then session or
item order, and each excluded meal slot is counted instead of emitted.

Two strategies exist, chosen by ``OrderSpec.expansion_mode``:

- fixed slots: dates x active sessions, first item's menu item, quantity 1
- per item: dates x order items, each item's own meal type and quantity
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional

from src.database.models.order import DeliveryItemStatus, DeliveryTimeSlot
from src.services.errors import ValidationError
from src.services.orders.spec import ExpansionMode, OrderSpec


@dataclass
class ExpansionPlan:
    """Rows staged for insertion plus the number of skipped meal slots."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    skipped_count: int = 0

    @property
    def created_count(self) -> int:
        return len(self.rows)

    @property
    def is_empty(self) -> bool:
        return not self.rows


def _stage_row(
    order_id: uuid.UUID,
    user_id: uuid.UUID,
    menu_item_id: uuid.UUID,
    quantity: int,
    delivery_date: date,
    slot: DeliveryTimeSlot,
    address_id: uuid.UUID,
    delivery_note: Optional[str],
) -> dict[str, Any]:
    return {
        "id": uuid.uuid4(),
        "order_id": order_id,
        "user_id": user_id,
        "menu_item_id": menu_item_id,
        "quantity": quantity,
        "delivery_date": delivery_date,
        "delivery_time_slot": slot,
        "address_id": address_id,
        "status": DeliveryItemStatus.PENDING,
        "delivery_note": delivery_note,
    }


def _resolve_address(spec: OrderSpec, slot: DeliveryTimeSlot) -> uuid.UUID:
    address_id = spec.address_for(slot.meal_type)
    if address_id is None:
        raise ValidationError(
            f"No delivery address for {slot.value}",
            field="deliveryAddressId",
        )
    return address_id


def plan_fixed_slots(order_id: uuid.UUID, spec: OrderSpec) -> ExpansionPlan:
    """One item per selected date and active session."""
    menu_item_id = spec.order_items[0].menu_item_id
    plan = ExpansionPlan()

    for delivery_date in spec.selected_dates:
        for slot in spec.order_times:
            if spec.is_skipped(delivery_date, slot.meal_type):
                plan.skipped_count += 1
                continue
            plan.rows.append(
                _stage_row(
                    order_id,
                    spec.user_id,
                    menu_item_id,
                    1,
                    delivery_date,
                    slot,
                    _resolve_address(spec, slot),
                    spec.delivery_note,
                )
            )
    return plan


def plan_per_item(order_id: uuid.UUID, spec: OrderSpec) -> ExpansionPlan:
    """One item per selected date and order item, in the item's own session."""
    plan = ExpansionPlan()

    for delivery_date in spec.selected_dates:
        for item in spec.order_items:
            if spec.is_skipped(delivery_date, item.meal_type):
                plan.skipped_count += 1
                continue
            slot = item.meal_type.time_slot
            plan.rows.append(
                _stage_row(
                    order_id,
                    spec.user_id,
                    item.menu_item_id,
                    item.quantity,
                    delivery_date,
                    slot,
                    _resolve_address(spec, slot),
                    spec.delivery_note,
                )
            )
    return plan


EXPANSION_STRATEGIES: dict[ExpansionMode, Callable[[uuid.UUID, OrderSpec], ExpansionPlan]] = {
    ExpansionMode.FIXED_SLOTS: plan_fixed_slots,
    ExpansionMode.PER_ITEM: plan_per_item,
}


def plan_delivery_items(order_id: uuid.UUID, spec: OrderSpec) -> ExpansionPlan:
    """
    Expand an order spec into delivery item rows.

    Args:
        order_id: Order the items belong to
        spec: Normalized order spec

    Returns:
        Staged rows and skip count; ``created_count + skipped_count`` always
        equals ``spec.slot_count``

    Raises:
        ValidationError: If a non-skipped slot has no resolvable address
    """
    return EXPANSION_STRATEGIES[spec.expansion_mode](order_id, spec)
