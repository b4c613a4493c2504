"""
Post-payment fulfillment steps.

Runs delivery item expansion and then stock reduction for a paid order,
recording each outcome on the order's outbox task. Step failures are logged
and recorded, never raised: the payment is already committed, and the
recovery service retries whatever did not complete. Stock is only reduced
once delivery items exist: a failed expansion leaves the reduction task
pending, and a reduction retried on its own first checks that the order was
materialized.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.connection import transaction_scope
from src.database.models.fulfillment import FulfillmentTaskKind, FulfillmentTaskStatus
from src.database.models.order import Order
from src.services.delivery_items.service import DeliveryItemService, MaterializationResult
from src.services.fulfillment.repository import FulfillmentTaskRepository
from src.services.inventory.reconciler import InventoryReconciler, ReductionResult
from src.services.orders.spec import OrderSpec

logger = get_logger(__name__)


@dataclass
class FulfillmentOutcome:
    """Results of the fulfillment steps run for one order."""

    order_id: uuid.UUID
    delivery_items: Optional[MaterializationResult] = None
    stock: Optional[ReductionResult] = None
    failed_steps: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed_steps

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": str(self.order_id),
            "delivery_items": self.delivery_items.to_dict() if self.delivery_items else None,
            "stock": self.stock.to_dict() if self.stock else None,
            "failed_steps": self.failed_steps,
        }


class FulfillmentRunner:
    """
    Executes outbox tasks for an order.

    Attributes:
        session: Async database session
        delivery_items: Delivery item materialization
        reconciler: Stock reduction
        tasks: Outbox task data access
    """

    def __init__(
        self,
        session: AsyncSession,
        delivery_items: Optional[DeliveryItemService] = None,
        reconciler: Optional[InventoryReconciler] = None,
    ):
        self.session = session
        self.delivery_items = delivery_items or DeliveryItemService(session)
        self.reconciler = reconciler or InventoryReconciler(session)
        self.tasks = FulfillmentTaskRepository(session)

    async def run(
        self,
        order: Order,
        spec: OrderSpec,
        kinds: Iterable[FulfillmentTaskKind] = tuple(FulfillmentTaskKind),
    ) -> FulfillmentOutcome:
        """
        Run the requested steps in order, stopping at the first failure.

        Args:
            order: Paid order
            spec: Normalized spec the order was placed with
            kinds: Steps to run; expansion always precedes reduction
        """
        requested = set(kinds)
        outcome = FulfillmentOutcome(order_id=order.id)

        for kind in FulfillmentTaskKind:
            if kind not in requested:
                continue
            try:
                if kind == FulfillmentTaskKind.EXPAND_DELIVERY_ITEMS:
                    outcome.delivery_items = await self.delivery_items.materialize(order, spec)
                elif await self._expansion_pending(order.id, requested):
                    logger.warning(
                        "Stock reduction deferred until delivery items exist",
                        order_id=str(order.id),
                    )
                    outcome.failed_steps.append(kind.value)
                    await self.record(
                        order.id,
                        kind,
                        FulfillmentTaskStatus.FAILED,
                        "Delivery items have not been created yet",
                    )
                    break
                else:
                    outcome.stock = await self.reconciler.reduce_for_spec(order.id, spec)
            except Exception as e:
                logger.error(
                    "Fulfillment step failed",
                    order_id=str(order.id),
                    step=kind.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                outcome.failed_steps.append(kind.value)
                await self.record(
                    order.id,
                    kind,
                    FulfillmentTaskStatus.FAILED,
                    f"{type(e).__name__}: {e}",
                )
                break

            await self.record(order.id, kind, FulfillmentTaskStatus.COMPLETED)

        return outcome

    async def _expansion_pending(
        self, order_id: uuid.UUID, requested: set[FulfillmentTaskKind]
    ) -> bool:
        # Expansion ran earlier in this call when it was requested
        if FulfillmentTaskKind.EXPAND_DELIVERY_ITEMS in requested:
            return False
        return not await self.delivery_items.is_materialized(order_id)

    async def record(
        self,
        order_id: uuid.UUID,
        kind: FulfillmentTaskKind,
        status: FulfillmentTaskStatus,
        error: Optional[str] = None,
    ) -> None:
        """Store a task outcome; a failure to store it is only logged."""
        try:
            async with transaction_scope(
                self.session,
                "record_fulfillment_task",
                order_id=str(order_id),
                step=kind.value,
            ):
                await self.tasks.mark(order_id, kind, status, error)
        except Exception as e:
            logger.error(
                "Failed to record fulfillment task outcome",
                order_id=str(order_id),
                step=kind.value,
                status=status.value,
                error=str(e),
                error_type=type(e).__name__,
            )
