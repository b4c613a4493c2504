"""
Inventory reconciler.

Reduces product stock once per order, after its delivery items exist. Each
non-skipped (date, order item) pair consumes ``quantity`` units of the
product behind the item's menu entry. All decrements for an order are
applied in one transaction together with the order's reduction ledger row,
whose unique ``order_id`` prevents a second reduction.

Stock may go negative: reduction tracks consumption, it does not reserve
stock, and an oversold product is logged rather than rejected. Cancelling
delivery items later does not restore stock.
"""

import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.connection import transaction_scope
from src.database.models.order import MealType
from src.services.errors import AlreadyReducedError
from src.services.inventory.repository import InventoryRepository
from src.services.orders.spec import OrderItemSpec, OrderSpec

logger = get_logger(__name__)


@dataclass
class ReductionResult:
    """
    Outcome of a stock reduction.

    Attributes:
        order_id: Order whose stock was reduced
        already_reduced: The order was reduced before, nothing changed
        total_units: Units removed across all products
        products: Per-product units removed and remaining stock
        unresolved_menu_items: Menu items with no product to reduce
    """

    order_id: uuid.UUID
    already_reduced: bool = False
    total_units: int = 0
    products: list[dict[str, Any]] = field(default_factory=list)
    unresolved_menu_items: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": str(self.order_id),
            "already_reduced": self.already_reduced,
            "total_units": self.total_units,
            "products": self.products,
            "unresolved_menu_items": self.unresolved_menu_items,
        }


def plan_reduction(
    order_items: Sequence[OrderItemSpec],
    selected_dates: Sequence[date],
    skip_meals: Mapping[date, frozenset[MealType]],
) -> Counter:
    """
    Units consumed per menu item.

    Returns:
        Counter of menu item id to units, summed over non-skipped
        (date, item) pairs
    """
    units: Counter = Counter()
    for delivery_date in selected_dates:
        skipped = skip_meals.get(delivery_date, frozenset())
        for item in order_items:
            if item.meal_type in skipped:
                continue
            units[item.menu_item_id] += item.quantity
    return units


class InventoryReconciler:
    """
    Applies an order's stock reduction exactly once.

    Attributes:
        session: Async database session
        repository: Inventory data access
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = InventoryRepository(session)

    async def reduce_for_spec(self, order_id: uuid.UUID, spec: OrderSpec) -> ReductionResult:
        """Reduce stock for an order described by a normalized spec."""
        return await self.reduce_stock(
            spec.order_items, spec.selected_dates, spec.skip_meals, order_id
        )

    async def reduce_stock(
        self,
        order_items: Sequence[OrderItemSpec],
        selected_dates: Sequence[date],
        skip_meals: Mapping[date, frozenset[MealType]],
        order_id: uuid.UUID,
    ) -> ReductionResult:
        """
        Reduce product stock for an order's non-skipped meals.

        Args:
            order_items: Ordered items with meal type and quantity
            selected_dates: Delivery dates
            skip_meals: Meal types skipped per date
            order_id: Order the reduction belongs to

        Returns:
            Reduction outcome; ``already_reduced`` on repeated calls

        Raises:
            TransactionTimeoutError: If the reduction transaction times out
            PersistenceError: If the database fails the reduction
        """
        if await self.repository.get_reduction(order_id) is not None:
            return self._already_reduced(order_id)

        units_by_menu_item = plan_reduction(order_items, selected_dates, skip_meals)
        menu_items = await self.repository.get_menu_items(units_by_menu_item.keys())

        units_by_product: Counter = Counter()
        unresolved: list[str] = []
        for menu_item_id, units in units_by_menu_item.items():
            menu_item = menu_items.get(menu_item_id)
            if menu_item is None or menu_item.product_id is None:
                logger.warning(
                    "Menu item has no product, stock not reduced",
                    order_id=str(order_id),
                    menu_item_id=str(menu_item_id),
                    units=units,
                )
                unresolved.append(str(menu_item_id))
                continue
            units_by_product[menu_item.product_id] += units

        details = [
            {"product_id": str(product_id), "units": units}
            for product_id, units in units_by_product.items()
        ]
        total_units = sum(units_by_product.values())

        try:
            async with transaction_scope(
                self.session,
                "reduce_stock",
                order_id=str(order_id),
                product_count=len(units_by_product),
            ):
                try:
                    await self.repository.record_reduction(
                        order_id, total_units, [dict(detail) for detail in details]
                    )
                except IntegrityError as e:
                    raise AlreadyReducedError(
                        "Stock was reduced concurrently",
                        order_id=str(order_id),
                    ) from e

                for detail in details:
                    remaining = await self.repository.decrement(
                        uuid.UUID(detail["product_id"]), detail["units"]
                    )
                    detail["remaining"] = remaining
                    self._log_stock_level(order_id, detail, remaining)
        except AlreadyReducedError:
            return self._already_reduced(order_id)

        logger.info(
            "Stock reduced",
            order_id=str(order_id),
            total_units=total_units,
            product_count=len(details),
        )

        return ReductionResult(
            order_id=order_id,
            total_units=total_units,
            products=details,
            unresolved_menu_items=unresolved,
        )

    @staticmethod
    def _already_reduced(order_id: uuid.UUID) -> ReductionResult:
        logger.info("Stock already reduced for order", order_id=str(order_id))
        return ReductionResult(order_id=order_id, already_reduced=True)

    @staticmethod
    def _log_stock_level(
        order_id: uuid.UUID,
        detail: dict[str, Any],
        remaining: Optional[int],
    ) -> None:
        if remaining is None:
            logger.warning(
                "Product not found, stock not reduced",
                order_id=str(order_id),
                product_id=detail["product_id"],
            )
        elif remaining < 0:
            logger.warning(
                "Product stock is negative",
                order_id=str(order_id),
                product_id=detail["product_id"],
                remaining=remaining,
            )
