"""
Order service.

Read access to orders under the actor's visibility rules. Orders are created
by the payment coordinator and change status through payments and delivery
items, so this service does not write.
"""

import uuid
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.models.order import OrderStatus
from src.database.models.user import User
from src.services.delivery_items.repository import DeliveryItemRepository
from src.services.errors import OrderNotFoundError, ValidationError
from src.services.orders.repository import OrderRepository

logger = get_logger(__name__)


class OrderService:
    """
    Order lookup and listing.

    Attributes:
        repository: Order data access
        delivery_items: Delivery item data access, for item counts
    """

    def __init__(self, session: AsyncSession):
        self.repository = OrderRepository(session)
        self.delivery_items = DeliveryItemRepository(session)

    async def get_order(self, actor: User, order_id: uuid.UUID) -> dict[str, Any]:
        """
        Load an order visible to the actor.

        Returns:
            Order fields plus ``delivery_items_count``

        Raises:
            OrderNotFoundError: If the order is unknown or not visible
        """
        order = await self.repository.get_visible(order_id, actor)
        if order is None:
            raise OrderNotFoundError(
                "Order not found or you don't have permission to access it",
                order_id=str(order_id),
            )
        data = order.to_dict()
        data["delivery_items_count"] = await self.delivery_items.count_for_order(order.id)
        return data

    async def list_orders(
        self,
        actor: User,
        status: Optional[Union[OrderStatus, str]] = None,
        customer_id: Optional[uuid.UUID] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        """Paginated orders visible to the actor, newest first."""
        parsed_status = None
        if status:
            try:
                parsed_status = OrderStatus(status)
            except ValueError:
                raise ValidationError("Invalid order status", field="status", value=status)

        orders, total = await self.repository.list_visible(
            actor,
            status=parsed_status,
            customer_id=customer_id,
            skip=(page - 1) * page_size,
            limit=page_size,
        )
        return {
            "items": [order.to_dict() for order in orders],
            "total": total,
            "page": page,
            "page_size": page_size,
        }
