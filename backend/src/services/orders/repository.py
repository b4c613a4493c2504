"""
Order data access repository.

This module implements the OrderRepository class providing async methods for
inserting orders, loading them with actor-scoped visibility, listing them with
filters, and updating their status. Repository methods never commit: callers
group writes into one unit of work with ``transaction_scope``.
"""

import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, or_, select, true, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.models.order import Order, OrderStatus
from src.database.models.user import User
from src.services.errors import PersistenceError

logger = get_logger(__name__)


def visible_to(actor: User):
    """
    SQL condition limiting orders to those the actor may see.

    Customers see their own orders, sellers also see the orders of customers
    they onboarded, admins and delivery managers see everything. Requires
    ``User`` joined as the order owner.
    """
    if actor.role.is_staff:
        return true()
    return or_(Order.user_id == actor.id, User.created_by == actor.id)


class OrderRepository:
    """
    Repository for order data access operations.

    Attributes:
        session: Async database session shared with the calling service
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_order(
        self,
        user_id: uuid.UUID,
        order_date: datetime,
        order_times: Sequence[str],
        total_price: Any,
        delivery_address_id: Optional[uuid.UUID],
        status: OrderStatus,
        delivery_note: Optional[str] = None,
    ) -> Order:
        """
        Insert an order row and flush it so its id is usable.

        Must run inside a transaction scope; failures propagate to it.
        """
        order = Order(
            user_id=user_id,
            order_date=order_date,
            order_times=list(order_times),
            total_price=total_price,
            delivery_address_id=delivery_address_id,
            status=status,
            delivery_note=delivery_note,
        )
        self.session.add(order)
        await self.session.flush()

        logger.info(
            "Order created",
            order_id=str(order.id),
            user_id=str(user_id),
            status=status.value,
        )
        return order

    async def get_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        """Load an order by id without visibility checks."""
        try:
            result = await self.session.execute(select(Order).where(Order.id == order_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to load order",
                order_id=str(order_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError("Failed to load order", order_id=str(order_id)) from e

    async def get_visible(self, order_id: uuid.UUID, actor: User) -> Optional[Order]:
        """Load an order if the actor may see it, else None."""
        stmt = (
            select(Order)
            .join(User, User.id == Order.user_id)
            .where(and_(Order.id == order_id, visible_to(actor)))
        )
        try:
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to load order",
                order_id=str(order_id),
                actor_id=str(actor.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError("Failed to load order", order_id=str(order_id)) from e

    async def list_visible(
        self,
        actor: User,
        status: Optional[OrderStatus] = None,
        customer_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[Order], int]:
        """
        List orders visible to the actor, newest first.

        Returns:
            Page of orders and the total matching count
        """
        conditions = [visible_to(actor)]
        if status is not None:
            conditions.append(Order.status == status)
        if customer_id is not None:
            conditions.append(Order.user_id == customer_id)

        base = select(Order).join(User, User.id == Order.user_id).where(and_(*conditions))

        try:
            total = await self.session.scalar(
                select(func.count()).select_from(base.subquery())
            )
            result = await self.session.execute(
                base.order_by(Order.order_date.desc()).offset(skip).limit(limit)
            )
            orders = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(
                "Failed to list orders",
                actor_id=str(actor.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError("Failed to list orders") from e

        logger.debug(
            "Orders listed",
            actor_id=str(actor.id),
            count=len(orders),
            total=total or 0,
        )
        return orders, total or 0

    async def set_status(self, order_id: uuid.UUID, status: OrderStatus) -> None:
        """Set an order's status inside the caller's transaction."""
        await self.session.execute(
            update(Order).where(Order.id == order_id).values(status=status)
        )
        logger.info("Order status updated", order_id=str(order_id), status=status.value)
