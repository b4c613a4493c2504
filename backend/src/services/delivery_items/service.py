"""
Delivery item service.

Materializes an order's delivery items exactly once and manages their status
afterwards. Materialization is guarded three ways: an initial count check, a
count re-check inside the creation transaction, and the unique
``order_materializations.order_id`` marker inserted in that same transaction.
Losing any of those races raises AlreadyMaterializedError inside the
transaction, which this service absorbs into an "already materialized"
success result.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.base import serialize_value
from src.database.connection import transaction_scope
from src.database.models.order import DeliveryItem, DeliveryItemStatus, Order, OrderStatus
from src.database.models.user import User
from src.services.delivery_items.expander import plan_delivery_items
from src.services.delivery_items.repository import DeliveryItemRepository
from src.services.errors import (
    AccessDeniedError,
    AlreadyMaterializedError,
    DeliveryItemNotFoundError,
    OrderNotFoundError,
    ValidationError,
)
from src.services.orders.normalizer import normalize_order_data
from src.services.orders.repository import OrderRepository
from src.services.orders.spec import ExpansionMode, OrderSpec

logger = get_logger(__name__)


@dataclass
class MaterializationResult:
    """
    Outcome of a materialization attempt.

    Attributes:
        order_id: Materialized order
        created_count: Items inserted by this call
        skipped_count: Meal slots excluded by the skip set in this call
        delivery_items: Rows inserted by this call
        already_materialized: Items existed before this call, nothing inserted
        delivery_items_count: Items stored for the order after this call
    """

    order_id: uuid.UUID
    created_count: int = 0
    skipped_count: int = 0
    delivery_items: list[dict[str, Any]] = field(default_factory=list)
    already_materialized: bool = False
    delivery_items_count: int = 0

    @property
    def message(self) -> str:
        if self.already_materialized:
            return "Delivery items already exist for this order"
        if self.created_count == 0:
            return "No delivery items to create, every meal was skipped"
        return f"Created {self.created_count} delivery items"

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": str(self.order_id),
            "created_count": self.created_count,
            "skipped_count": self.skipped_count,
            "delivery_items_count": self.delivery_items_count,
            "already_materialized": self.already_materialized,
            "delivery_items": [_row_to_dict(row) for row in self.delivery_items],
        }


def _row_to_dict(row: dict[str, Any]) -> dict[str, Any]:
    return {key: serialize_value(value) for key, value in row.items()}


class DeliveryItemService:
    """
    Delivery item materialization and status management.

    Attributes:
        session: Async database session
        repository: Delivery item data access
        orders: Order data access
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = DeliveryItemRepository(session)
        self.orders = OrderRepository(session)

    async def _already_materialized(self, order_id: uuid.UUID) -> MaterializationResult:
        existing = await self.repository.count_for_order(order_id)
        logger.info(
            "Delivery items already materialized",
            order_id=str(order_id),
            delivery_items_count=existing,
        )
        return MaterializationResult(
            order_id=order_id,
            already_materialized=True,
            delivery_items_count=existing,
        )

    async def is_materialized(self, order_id: uuid.UUID) -> bool:
        return await self.repository.is_materialized(order_id)

    async def materialize(self, order: Order, spec: OrderSpec) -> MaterializationResult:
        """
        Create the order's delivery items from its spec, at most once.

        Args:
            order: Persisted order
            spec: Normalized order spec

        Returns:
            Result of this attempt; repeated calls report the existing count

        Raises:
            ValidationError: If a slot has no resolvable address
            TransactionTimeoutError: If the creation transaction times out
            PersistenceError: If the database rejects the insert
        """
        if await self.repository.count_for_order(order.id) > 0:
            return await self._already_materialized(order.id)

        if spec.user_id != order.user_id:
            spec = spec.model_copy(update={"user_id": order.user_id})
        if spec.delivery_address_id is None and order.delivery_address_id is not None:
            spec = spec.with_address(order.delivery_address_id)

        plan = plan_delivery_items(order.id, spec)

        if plan.is_empty:
            logger.info(
                "No delivery items to create",
                order_id=str(order.id),
                skipped_count=plan.skipped_count,
            )
            return MaterializationResult(order_id=order.id, skipped_count=plan.skipped_count)

        try:
            async with transaction_scope(
                self.session,
                "materialize_delivery_items",
                order_id=str(order.id),
                item_count=plan.created_count,
            ):
                if await self.repository.count_for_order(order.id) > 0:
                    raise AlreadyMaterializedError(
                        "Delivery items were created concurrently",
                        order_id=str(order.id),
                    )
                try:
                    await self.repository.mark_materialized(
                        order.id, plan.created_count, plan.skipped_count
                    )
                except IntegrityError as e:
                    raise AlreadyMaterializedError(
                        "Order was materialized concurrently",
                        order_id=str(order.id),
                    ) from e

                await self.repository.bulk_insert(plan.rows)
                await self.orders.set_status(order.id, OrderStatus.CONFIRMED)
        except AlreadyMaterializedError:
            return await self._already_materialized(order.id)

        logger.info(
            "Delivery items materialized",
            order_id=str(order.id),
            created_count=plan.created_count,
            skipped_count=plan.skipped_count,
            expansion_mode=spec.expansion_mode.value,
        )

        return MaterializationResult(
            order_id=order.id,
            created_count=plan.created_count,
            skipped_count=plan.skipped_count,
            delivery_items=plan.rows,
            delivery_items_count=plan.created_count,
        )

    async def materialize_after_payment(
        self,
        order_id: uuid.UUID,
        raw_order_data: Any,
        actor: Optional[User] = None,
    ) -> MaterializationResult:
        """
        Materialize delivery items for an existing, paid order.

        Existing items short-circuit before the order data is parsed, so a
        retried call never fails on a payload it no longer needs.

        Args:
            order_id: Existing order
            raw_order_data: JSON string or mapping describing the order
            actor: When given, the order must be visible to this user

        Raises:
            OrderNotFoundError: If the order does not exist or is not visible
            MalformedInputError: If the order data is not valid JSON
            ValidationError: If the order data is incomplete
        """
        if actor is not None:
            order = await self.orders.get_visible(order_id, actor)
        else:
            order = await self.orders.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        if await self.repository.count_for_order(order.id) > 0:
            return await self._already_materialized(order.id)

        spec = normalize_order_data(
            raw_order_data,
            user_id=order.user_id,
            delivery_address_id=order.delivery_address_id,
            default_mode=ExpansionMode.FIXED_SLOTS,
        )
        return await self.materialize(order, spec)

    async def list_for_order(self, actor: User, order_id: uuid.UUID) -> list[DeliveryItem]:
        """Delivery items of an order visible to the actor."""
        order = await self.orders.get_visible(order_id, actor)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        return await self.repository.list_for_order(order.id)

    async def _check_access(self, actor: User, item: DeliveryItem, action: str) -> None:
        # Owner, owner's seller and staff roles
        if actor.role.is_staff:
            return
        owner = await self.session.get(User, item.user_id)
        if owner is None or not actor.can_act_for(owner):
            raise AccessDeniedError(
                f"Not allowed to {action} this delivery item",
                item_id=str(item.id),
                actor_id=str(actor.id),
            )

    async def update_status(
        self,
        actor: User,
        item_id: uuid.UUID,
        status: Union[DeliveryItemStatus, str],
    ) -> dict[str, Any]:
        """
        Change a delivery item's status.

        The item owner, the owner's seller, admins and delivery managers may
        change it. Cancelling the last non-cancelled item cancels the order in
        the same transaction. Stock reduced for the order is not restored.

        Returns:
            Updated item fields plus ``order_cancelled``
        """
        try:
            new_status = DeliveryItemStatus(status)
        except ValueError:
            raise ValidationError(
                "status must be one of: "
                + ", ".join(member.value for member in DeliveryItemStatus),
                field="status",
                value=status,
            )

        item = await self.repository.get_by_id(item_id)
        if item is None:
            raise DeliveryItemNotFoundError("Delivery item not found", item_id=str(item_id))

        await self._check_access(actor, item, "update")

        order_cancelled = False
        async with transaction_scope(
            self.session,
            "update_delivery_item_status",
            item_id=str(item_id),
            status=new_status.value,
        ):
            await self.repository.set_status(item.id, new_status)
            if new_status == DeliveryItemStatus.CANCELLED:
                if await self.repository.count_not_cancelled(item.order_id) == 0:
                    await self.orders.set_status(item.order_id, OrderStatus.CANCELLED)
                    order_cancelled = True

        item.status = new_status
        logger.info(
            "Delivery item status updated",
            item_id=str(item_id),
            order_id=str(item.order_id),
            status=new_status.value,
            order_cancelled=order_cancelled,
            actor_id=str(actor.id),
        )

        data = item.to_dict()
        data["order_cancelled"] = order_cancelled
        return data

    async def get_status(self, actor: User, item_id: uuid.UUID) -> dict[str, Any]:
        """Status of a delivery item the actor may see."""
        item = await self.repository.get_by_id(item_id)
        if item is None:
            raise DeliveryItemNotFoundError("Delivery item not found", item_id=str(item_id))
        await self._check_access(actor, item, "view")
        return {"id": str(item.id), "status": item.status.value}
