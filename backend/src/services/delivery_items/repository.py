"""
Delivery item data access repository.

Counts, bulk-inserts, lists and updates delivery items, and writes the
per-order materialization marker. Write methods run inside the caller's
transaction scope and never commit.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.models.order import (
    DeliveryItem,
    DeliveryItemStatus,
    OrderMaterialization,
)
from src.services.errors import PersistenceError

logger = get_logger(__name__)


class DeliveryItemRepository:
    """Repository for delivery item data access operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def count_for_order(self, order_id: uuid.UUID) -> int:
        """Number of delivery items already stored for an order."""
        try:
            count = await self.session.scalar(
                select(func.count()).select_from(DeliveryItem).where(
                    DeliveryItem.order_id == order_id
                )
            )
        except SQLAlchemyError as e:
            logger.error(
                "Failed to count delivery items",
                order_id=str(order_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError(
                "Failed to count delivery items", order_id=str(order_id)
            ) from e
        return count or 0

    async def is_materialized(self, order_id: uuid.UUID) -> bool:
        """Whether the order has a materialization marker or stored items."""
        marker = await self.session.scalar(
            select(OrderMaterialization.order_id).where(
                OrderMaterialization.order_id == order_id
            )
        )
        if marker is not None:
            return True
        return await self.count_for_order(order_id) > 0

    async def mark_materialized(
        self,
        order_id: uuid.UUID,
        created_count: int,
        skipped_count: int,
    ) -> None:
        """
        Insert the order's materialization marker.

        Raises:
            IntegrityError: If another transaction already materialized the order
        """
        self.session.add(
            OrderMaterialization(
                order_id=order_id,
                created_count=created_count,
                skipped_count=skipped_count,
            )
        )
        await self.session.flush()

    async def bulk_insert(self, rows: Sequence[dict[str, Any]]) -> None:
        """Insert staged delivery item rows in a single statement."""
        if not rows:
            return
        await self.session.execute(insert(DeliveryItem), list(rows))

    async def list_for_order(self, order_id: uuid.UUID) -> list[DeliveryItem]:
        """Delivery items of an order, by date then session."""
        try:
            result = await self.session.execute(
                select(DeliveryItem)
                .where(DeliveryItem.order_id == order_id)
                .order_by(DeliveryItem.delivery_date, DeliveryItem.delivery_time_slot)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(
                "Failed to list delivery items",
                order_id=str(order_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError(
                "Failed to list delivery items", order_id=str(order_id)
            ) from e

    async def get_by_id(self, item_id: uuid.UUID) -> Optional[DeliveryItem]:
        try:
            result = await self.session.execute(
                select(DeliveryItem).where(DeliveryItem.id == item_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to load delivery item",
                item_id=str(item_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError(
                "Failed to load delivery item", item_id=str(item_id)
            ) from e

    async def set_status(self, item_id: uuid.UUID, status: DeliveryItemStatus) -> None:
        await self.session.execute(
            update(DeliveryItem).where(DeliveryItem.id == item_id).values(status=status)
        )

    async def count_not_cancelled(self, order_id: uuid.UUID) -> int:
        """Items of the order whose status is anything but Cancelled."""
        count = await self.session.scalar(
            select(func.count()).select_from(DeliveryItem).where(
                DeliveryItem.order_id == order_id,
                DeliveryItem.status != DeliveryItemStatus.CANCELLED,
            )
        )
        return count or 0
