"""
Fulfillment task outbox repository.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.models.fulfillment import (
    FulfillmentTask,
    FulfillmentTaskKind,
    FulfillmentTaskStatus,
)

logger = get_logger(__name__)

# Error text kept on a failed task
MAX_ERROR_LENGTH = 2000


class FulfillmentTaskRepository:
    """Reads and updates outbox tasks. Never commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, order_id: uuid.UUID, payload: dict[str, Any]) -> list[FulfillmentTask]:
        """Write one pending task per post-payment side effect."""
        tasks = [
            FulfillmentTask(
                order_id=order_id,
                kind=kind,
                payload=payload,
                status=FulfillmentTaskStatus.PENDING,
                attempts=0,
            )
            for kind in FulfillmentTaskKind
        ]
        self.session.add_all(tasks)
        await self.session.flush()
        logger.debug("Fulfillment tasks enqueued", order_id=str(order_id), count=len(tasks))
        return tasks

    async def mark(
        self,
        order_id: uuid.UUID,
        kind: FulfillmentTaskKind,
        status: FulfillmentTaskStatus,
        error: Optional[str] = None,
    ) -> None:
        """Record the outcome of one attempt at a task."""
        await self.session.execute(
            update(FulfillmentTask)
            .where(FulfillmentTask.order_id == order_id, FulfillmentTask.kind == kind)
            .values(
                status=status,
                attempts=FulfillmentTask.attempts + 1,
                last_error=error[:MAX_ERROR_LENGTH] if error else None,
            )
        )

    async def list_retryable(self, limit: int, max_attempts: int) -> list[FulfillmentTask]:
        """Unfinished tasks below the attempt cap, oldest first."""
        result = await self.session.execute(
            select(FulfillmentTask)
            .where(
                FulfillmentTask.status != FulfillmentTaskStatus.COMPLETED,
                FulfillmentTask.attempts < max_attempts,
            )
            .order_by(FulfillmentTask.created_at, FulfillmentTask.order_id)
            .limit(limit)
        )
        return list(result.scalars().all())
