"""
Inventory data access repository.

Loads menu items with their products, maintains the reduction ledger, and
applies stock decrements. Write methods run inside the caller's transaction.
"""

import uuid
from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.models.inventory import InventoryReduction, MenuItem, Product
from src.services.errors import PersistenceError

logger = get_logger(__name__)


class InventoryRepository:
    """Repository for stock and reduction ledger operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_menu_items(self, menu_item_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, MenuItem]:
        """Menu items by id; ids with no menu item are absent from the result."""
        ids = list(menu_item_ids)
        if not ids:
            return {}
        try:
            result = await self.session.execute(select(MenuItem).where(MenuItem.id.in_(ids)))
        except SQLAlchemyError as e:
            logger.error(
                "Failed to load menu items",
                menu_item_count=len(ids),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError("Failed to load menu items") from e
        return {item.id: item for item in result.scalars().all()}

    async def get_reduction(self, order_id: uuid.UUID) -> Optional[InventoryReduction]:
        result = await self.session.execute(
            select(InventoryReduction).where(InventoryReduction.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def record_reduction(
        self,
        order_id: uuid.UUID,
        total_units: int,
        details: list[dict[str, Any]],
    ) -> None:
        """
        Insert the order's reduction ledger row.

        Raises:
            IntegrityError: If the order's stock was already reduced
        """
        self.session.add(
            InventoryReduction(order_id=order_id, total_units=total_units, details=details)
        )
        await self.session.flush()

    async def decrement(self, product_id: uuid.UUID, units: int) -> Optional[int]:
        """
        Subtract ``units`` from a product's stock.

        Returns:
            Stock after the decrement, or None if the product does not exist
        """
        result = await self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(quantity=Product.quantity - units)
            .returning(Product.quantity)
        )
        return result.scalar_one_or_none()
