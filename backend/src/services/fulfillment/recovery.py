"""
Fulfillment recovery.

Retries outbox tasks left pending or failed after a payment: delivery item
expansion and stock reduction are both idempotent, so re-running a task that
partially succeeded is safe. Runs on demand through the admin API and, when
``fulfillment_retry_interval_seconds`` is positive, periodically from the
application lifespan.
"""

import asyncio
import uuid
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import get_settings
from src.core.logging import get_logger, log_performance
from src.database.connection import get_session
from src.database.models.fulfillment import FulfillmentTaskKind, FulfillmentTaskStatus
from src.services.errors import FulfillmentError
from src.services.fulfillment.repository import FulfillmentTaskRepository
from src.services.fulfillment.runner import FulfillmentRunner
from src.services.orders.normalizer import normalize_order_data
from src.services.orders.repository import OrderRepository

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 50


class FulfillmentRecoveryService:
    """Re-runs unfinished fulfillment tasks."""

    def __init__(self, session: AsyncSession, runner: Optional[FulfillmentRunner] = None):
        self.session = session
        self.runner = runner or FulfillmentRunner(session)
        self.tasks = FulfillmentTaskRepository(session)
        self.orders = OrderRepository(session)

    async def retry_pending(self, limit: Optional[int] = None) -> dict[str, Any]:
        """
        Retry up to ``limit`` unfinished tasks, grouped by order.

        Returns:
            Counts of orders processed, orders fully recovered, and orders
            that still have failing steps
        """
        settings = get_settings()
        tasks = await self.tasks.list_retryable(
            limit or DEFAULT_BATCH_SIZE,
            settings.fulfillment_retry_max_attempts,
        )

        by_order: dict[uuid.UUID, tuple[dict[str, Any], set[FulfillmentTaskKind]]] = {}
        for task in tasks:
            payload, kinds = by_order.setdefault(task.order_id, (task.payload, set()))
            kinds.add(task.kind)

        recovered = 0
        failed = 0
        with log_performance(logger, "retry_fulfillment_tasks", task_count=len(tasks)):
            for order_id, (payload, kinds) in by_order.items():
                if await self._retry_order(order_id, payload, kinds):
                    recovered += 1
                else:
                    failed += 1

        summary = {"orders": len(by_order), "recovered": recovered, "failed": failed}
        logger.info("Fulfillment retry finished", **summary)
        return summary

    async def _retry_order(
        self,
        order_id: uuid.UUID,
        payload: dict[str, Any],
        kinds: set[FulfillmentTaskKind],
    ) -> bool:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            logger.warning("Fulfillment task references a missing order", order_id=str(order_id))
            return False

        try:
            spec = normalize_order_data(
                payload,
                user_id=order.user_id,
                delivery_address_id=order.delivery_address_id,
            )
        except FulfillmentError as e:
            logger.error(
                "Stored fulfillment payload is invalid",
                order_id=str(order_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            for kind in kinds:
                await self.runner.record(
                    order_id, kind, FulfillmentTaskStatus.FAILED, f"{type(e).__name__}: {e}"
                )
            return False

        outcome = await self.runner.run(order, spec, kinds)
        return outcome.succeeded


async def run_retry_loop(interval_seconds: float) -> None:
    """Retry unfinished fulfillment tasks every ``interval_seconds`` until cancelled."""
    logger.info("Fulfillment retry loop started", interval_seconds=interval_seconds)
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            async with get_session() as session:
                await FulfillmentRecoveryService(session).retry_pending()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Fulfillment retry loop iteration failed",
                error=str(e),
                error_type=type(e).__name__,
            )
