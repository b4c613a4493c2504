"""
Payment repository.

This module implements the PaymentRepository class for inserting payments
and receipt records, loading them with their order and receipts under
actor-scoped visibility, filtering payment history, and updating or deleting
payments. Write methods run inside the caller's ``transaction_scope``.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from src.core.logging import get_logger
from src.database.models.order import Order
from src.database.models.payment import (
    Payment,
    PaymentMethod,
    PaymentReceipt,
    PaymentStatus,
    ReceiptType,
)
from src.database.models.user import User
from src.services.errors import PersistenceError
from src.services.orders.repository import visible_to

logger = get_logger(__name__)


class PaymentRepository:
    """
    Repository for payment data access operations.

    Attributes:
        session: Async database session for executing queries
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _detailed(self):
        return (
            select(Payment)
            .join(Order, Order.id == Payment.order_id)
            .join(User, User.id == Order.user_id)
            .options(joinedload(Payment.order), selectinload(Payment.receipts))
        )

    async def create_payment(
        self,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
        payment_method: PaymentMethod,
        payment_amount: Decimal,
        payment_status: PaymentStatus,
        uploaded_receipt_type: ReceiptType,
        payment_date: Optional[datetime] = None,
        receipt_url: Optional[str] = None,
        external_receipt_url: Optional[str] = None,
    ) -> Payment:
        """Insert a payment row and flush it so its id is usable."""
        payment = Payment(
            user_id=user_id,
            order_id=order_id,
            payment_method=payment_method,
            payment_amount=payment_amount,
            payment_status=payment_status,
            uploaded_receipt_type=uploaded_receipt_type,
            payment_date=payment_date,
            receipt_url=receipt_url,
            external_receipt_url=external_receipt_url,
        )
        self.session.add(payment)
        await self.session.flush()

        logger.info(
            "Payment created",
            payment_id=str(payment.id),
            order_id=str(order_id),
            payment_method=payment_method.value,
            payment_status=payment_status.value,
        )
        return payment

    async def add_receipt(
        self,
        user_id: uuid.UUID,
        payment_id: uuid.UUID,
        receipt_url: str,
        receipt_type: ReceiptType,
    ) -> PaymentReceipt:
        receipt = PaymentReceipt(
            user_id=user_id,
            payment_id=payment_id,
            receipt_url=receipt_url,
            receipt_type=receipt_type,
        )
        self.session.add(receipt)
        await self.session.flush()
        return receipt

    async def get_by_order_id(self, order_id: uuid.UUID) -> Optional[Payment]:
        """The order's payment, if one exists."""
        result = await self.session.execute(
            select(Payment).where(Payment.order_id == order_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_detailed(self, payment_id: uuid.UUID) -> Optional[Payment]:
        """Load a payment with its order and receipts."""
        try:
            result = await self.session.execute(
                self._detailed()
                .where(Payment.id == payment_id)
                .execution_options(populate_existing=True)
            )
            return result.unique().scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to load payment",
                payment_id=str(payment_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError("Failed to load payment", payment_id=str(payment_id)) from e

    async def get_visible(self, payment_id: uuid.UUID, actor: User) -> Optional[Payment]:
        """Load a payment the actor recorded or whose order the actor may see."""
        stmt = self._detailed().where(
            and_(
                Payment.id == payment_id,
                or_(Payment.user_id == actor.id, visible_to(actor)),
            )
        )
        try:
            result = await self.session.execute(stmt)
            return result.unique().scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to load payment",
                payment_id=str(payment_id),
                actor_id=str(actor.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError("Failed to load payment", payment_id=str(payment_id)) from e

    async def list_visible(
        self,
        actor: User,
        status: Optional[PaymentStatus] = None,
        payment_method: Optional[PaymentMethod] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> list[Payment]:
        """Payments visible to the actor, newest first."""
        conditions = [or_(Payment.user_id == actor.id, visible_to(actor))]
        if status is not None:
            conditions.append(Payment.payment_status == status)
        if payment_method is not None:
            conditions.append(Payment.payment_method == payment_method)
        if start_date is not None:
            conditions.append(Payment.created_at >= start_date)
        if end_date is not None:
            conditions.append(Payment.created_at <= end_date)

        try:
            result = await self.session.execute(
                self._detailed().where(and_(*conditions)).order_by(Payment.created_at.desc())
            )
            return list(result.unique().scalars().all())
        except SQLAlchemyError as e:
            logger.error(
                "Failed to list payments",
                actor_id=str(actor.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError("Failed to list payments") from e

    async def update_payment(self, payment_id: uuid.UUID, **values) -> None:
        """Update payment columns inside the caller's transaction."""
        await self.session.execute(
            update(Payment).where(Payment.id == payment_id).values(**values)
        )

    async def delete_with_receipts(self, payment_id: uuid.UUID) -> None:
        await self.session.execute(
            delete(PaymentReceipt).where(PaymentReceipt.payment_id == payment_id)
        )
        await self.session.execute(delete(Payment).where(Payment.id == payment_id))
        logger.info("Payment deleted", payment_id=str(payment_id))
