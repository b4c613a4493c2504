"""
Fulfillment task outbox.

A FulfillmentTask is written inside the payment transaction for every side
effect that runs after it commits (delivery item expansion, stock reduction).
If the side effect fails, the task stays behind for the recovery service to
retry instead of being recorded only in logs.
"""

import uuid
from enum import Enum
from typing import Any, Optional

from sqlalchemy import Enum as SQLEnum, ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import BaseModel


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class FulfillmentTaskKind(str, Enum):
    """Post-payment side effects, in execution order."""

    EXPAND_DELIVERY_ITEMS = "expand_delivery_items"
    REDUCE_STOCK = "reduce_stock"


class FulfillmentTaskStatus(str, Enum):
    """Outbox task status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class FulfillmentTask(BaseModel):
    """
    Durable intent to run a post-payment side effect.

    Attributes:
        order_id: Order the side effect applies to
        kind: Which side effect
        payload: Normalized order spec the side effect consumes
        status: pending, completed or failed
        attempts: Executions so far
        last_error: Error text of the last failed attempt
    """

    __tablename__ = "fulfillment_tasks"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    kind: Mapped[FulfillmentTaskKind] = mapped_column(
        SQLEnum(FulfillmentTaskKind, name="fulfillment_task_kind", values_callable=_enum_values),
        nullable=False,
    )

    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    status: Mapped[FulfillmentTaskStatus] = mapped_column(
        SQLEnum(FulfillmentTaskStatus, name="fulfillment_task_status", values_callable=_enum_values),
        nullable=False,
        default=FulfillmentTaskStatus.PENDING,
    )

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_error: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)

    __table_args__ = (
        Index("ix_fulfillment_tasks_status_created", "status", "created_at"),
        Index("uq_fulfillment_tasks_order_kind", "order_id", "kind", unique=True),
        {"comment": "Outbox of post-payment fulfillment side effects"},
    )
