"""
Payment service coordinating orders, payments and fulfillment.

This module implements the PaymentService class. ``create_payment`` records
a payment for one of three kinds of order reference:

- ExistingOrder: an order already persisted; its status follows the receipt
- DraftOrder: a client-side draft id with the order spec to persist
- NewOrder: an order spec with no client-visible id yet

The order (when new), the payment, its receipt record and the order's
fulfillment outbox tasks are written in one transaction. Delivery item
expansion and stock reduction run after the commit and never fail the
payment; unfinished steps stay in the outbox for the recovery service.

The remaining methods manage payments afterwards: post-hoc receipts, lookup
and history, status changes and deletion. A payment is Confirmed exactly
when an uploaded or external receipt is present.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import get_settings
from src.core.logging import get_logger
from src.database.connection import transaction_scope
from src.database.models.order import Order, OrderStatus
from src.database.models.payment import (
    Payment,
    PaymentMethod,
    PaymentReceipt,
    PaymentStatus,
    ReceiptType,
)
from src.database.models.user import User
from src.services.addresses.service import AddressService
from src.services.errors import (
    AccessDeniedError,
    DuplicatePaymentError,
    OrderNotFoundError,
    PaymentNotFoundError,
    ValidationError,
)
from src.services.fulfillment.repository import FulfillmentTaskRepository
from src.services.fulfillment.runner import FulfillmentOutcome, FulfillmentRunner
from src.services.orders.normalizer import normalize_order_data
from src.services.orders.repository import OrderRepository
from src.services.orders.spec import ExpansionMode, OrderSpec
from src.services.payments.receipt_storage import ReceiptStorage
from src.services.payments.repository import PaymentRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExistingOrder:
    """Reference to a persisted order."""

    order_id: uuid.UUID


@dataclass(frozen=True)
class DraftOrder:
    """Client-side draft order, persisted together with its payment."""

    draft_id: str
    spec: OrderSpec


@dataclass(frozen=True)
class NewOrder:
    """Order described only by its spec."""

    spec: OrderSpec


OrderRef = Union[ExistingOrder, DraftOrder, NewOrder]


@dataclass
class PaymentCreateData:
    """
    Payment request.

    Attributes:
        order: Which order the payment is for
        payment_method: UPI, CreditCard, DebitCard or NetBanking
        payment_amount: Amount paid, must be positive
        receipt_url: Stored path of an uploaded receipt
        receipt_type: Image or PDF, defaults to Image
        external_receipt_url: Receipt hosted elsewhere
    """

    order: OrderRef
    payment_method: Union[PaymentMethod, str]
    payment_amount: Union[Decimal, str, int, float]
    receipt_url: Optional[str] = None
    receipt_type: Optional[Union[ReceiptType, str]] = None
    external_receipt_url: Optional[str] = None

    @property
    def has_receipt(self) -> bool:
        return bool(self.receipt_url or self.external_receipt_url)


def build_order_ref(
    order_id: Optional[str],
    order_data: Any,
    actor_id: uuid.UUID,
    draft_prefix: Optional[str] = None,
) -> OrderRef:
    """
    Classify a request's order reference.

    An ``order_id`` carrying the draft prefix names a draft that must come
    with ``order_data``; any other ``order_id`` names an existing order;
    ``order_data`` alone describes a brand-new order. Order data is
    normalized with the actor as the default owner.

    Raises:
        ValidationError: If neither reference is given or an id is malformed
        MalformedInputError: If order data is not valid JSON
    """
    prefix = draft_prefix if draft_prefix is not None else get_settings().draft_order_prefix

    def spec() -> OrderSpec:
        if order_data in (None, ""):
            raise ValidationError("orderData is required for a new order", field="orderData")
        return normalize_order_data(
            order_data,
            user_id=actor_id,
            default_mode=ExpansionMode.PER_ITEM,
        )

    if order_id:
        if prefix and order_id.startswith(prefix):
            return DraftOrder(draft_id=order_id, spec=spec())
        try:
            return ExistingOrder(order_id=uuid.UUID(order_id))
        except ValueError:
            raise ValidationError("orderId must be a valid id", field="orderId", value=order_id)

    if order_data in (None, ""):
        raise ValidationError("orderId or orderData is required", field="orderId")
    return NewOrder(spec=spec())


def _parse_method(value: Union[PaymentMethod, str]) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError(
            "Invalid payment method. Allowed methods: "
            + ", ".join(method.value for method in PaymentMethod),
            field="paymentMethod",
            value=value,
        )


def _parse_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("paymentAmount must be a number", field="paymentAmount", value=value)
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(
            "paymentAmount must be greater than zero",
            field="paymentAmount",
            value=value,
        )
    return amount


def _parse_receipt_type(value: Optional[Union[ReceiptType, str]]) -> ReceiptType:
    if value in (None, ""):
        return ReceiptType.IMAGE
    try:
        return ReceiptType(value)
    except ValueError:
        raise ValidationError(
            "Invalid receipt type. Allowed types: Image, PDF",
            field="receiptType",
            value=value,
        )


class PaymentService:
    """
    Payment/order transaction coordinator.

    Attributes:
        session: Async database session
        payments: Payment data access
        orders: Order data access
        addresses: Inline address resolution
        tasks: Fulfillment outbox
        runner: Post-payment fulfillment steps
        receipt_storage: Receipt files, used when deleting payments
    """

    def __init__(
        self,
        session: AsyncSession,
        runner: Optional[FulfillmentRunner] = None,
        receipt_storage: Optional[ReceiptStorage] = None,
    ):
        self.session = session
        self.payments = PaymentRepository(session)
        self.orders = OrderRepository(session)
        self.addresses = AddressService(session)
        self.tasks = FulfillmentTaskRepository(session)
        self.runner = runner or FulfillmentRunner(session)
        self.receipt_storage = receipt_storage or ReceiptStorage()

    async def create_payment(self, actor: User, data: PaymentCreateData) -> dict[str, Any]:
        """
        Record a payment, creating its order first when needed.

        Args:
            actor: Authenticated user recording the payment
            data: Payment request

        Returns:
            ``payment`` (joined with its order summary and receipts) and
            ``fulfillment`` (post-payment step results, None for existing orders)

        Raises:
            ValidationError: If the request or order data is invalid
            OrderNotFoundError: If an existing order is unknown or not visible
            DuplicatePaymentError: If the existing order already has a payment
            AccessDeniedError: If the actor may not order for the customer
            AddressResolutionError: If the inline address could not be created
            TransactionTimeoutError: If the transaction exceeds its deadline
            PersistenceError: If the database rejects the transaction
        """
        method = _parse_method(data.payment_method)
        amount = _parse_amount(data.payment_amount)
        receipt_type = _parse_receipt_type(data.receipt_type)

        ref = data.order
        spec: Optional[OrderSpec] = None
        if not isinstance(ref, ExistingOrder):
            spec = ref.spec
            if spec.order_date is None:
                raise ValidationError("orderDate is required for a new order", field="orderDate")

        confirmed = data.has_receipt
        order_status = OrderStatus.PAYMENT_CONFIRMED if confirmed else OrderStatus.PENDING
        receipt: Optional[PaymentReceipt] = None

        async with transaction_scope(
            self.session,
            "create_payment",
            actor_id=str(actor.id),
            order_ref=type(ref).__name__,
        ):
            if isinstance(ref, ExistingOrder):
                order = await self._load_payable_order(actor, ref.order_id)
                await self.orders.set_status(order.id, order_status)
                order.status = order_status
            else:
                order, spec = await self._create_order(actor, spec, amount, order_status)

            payment = await self.payments.create_payment(
                user_id=actor.id,
                order_id=order.id,
                payment_method=method,
                payment_amount=amount,
                payment_status=PaymentStatus.CONFIRMED if confirmed else PaymentStatus.PENDING,
                uploaded_receipt_type=receipt_type,
                payment_date=datetime.now(timezone.utc) if confirmed else None,
                receipt_url=data.receipt_url,
                external_receipt_url=data.external_receipt_url,
            )

            if data.receipt_url:
                receipt = await self.payments.add_receipt(
                    actor.id, payment.id, data.receipt_url, receipt_type
                )

            if spec is not None:
                await self.tasks.enqueue(order.id, spec.to_payload())

        logger.info(
            "Payment recorded",
            payment_id=str(payment.id),
            order_id=str(order.id),
            actor_id=str(actor.id),
            customer_id=str(order.user_id),
            order_ref=type(ref).__name__,
            payment_status=payment.payment_status.value,
            amount=str(amount),
        )

        fulfillment: Optional[FulfillmentOutcome] = None
        if spec is not None:
            fulfillment = await self.runner.run(order, spec)

        return {
            "payment": payment.to_response(order=order, receipts=[receipt] if receipt else []),
            "fulfillment": fulfillment.to_dict() if fulfillment else None,
        }

    async def _load_payable_order(self, actor: User, order_id: uuid.UUID) -> Order:
        order = await self.orders.get_visible(order_id, actor)
        if order is None:
            raise OrderNotFoundError(
                "Order not found or you don't have permission to access it",
                order_id=str(order_id),
            )
        if await self.payments.get_by_order_id(order.id) is not None:
            raise DuplicatePaymentError(
                "Payment already exists for this order",
                order_id=str(order.id),
            )
        return order

    async def _create_order(
        self,
        actor: User,
        spec: OrderSpec,
        amount: Decimal,
        status: OrderStatus,
    ) -> tuple[Order, OrderSpec]:
        customer = actor if spec.user_id == actor.id else await self.session.get(User, spec.user_id)
        if customer is None:
            raise ValidationError("Customer not found", field="userId", user_id=str(spec.user_id))
        if not actor.can_act_for(customer):
            raise AccessDeniedError(
                "Not allowed to place orders for this customer",
                actor_id=str(actor.id),
                customer_id=str(customer.id),
            )

        if spec.delivery_address_id is None:
            address_id = await self.addresses.create_address_for_user(
                customer.id,
                actor.id if actor.id != customer.id else None,
                spec.inline_address or {},
            )
            spec = spec.with_address(address_id)

        order = await self.orders.create_order(
            user_id=customer.id,
            order_date=spec.order_date,
            order_times=[slot.value for slot in spec.order_times],
            total_price=spec.total_price if spec.total_price is not None else amount,
            delivery_address_id=spec.delivery_address_id,
            status=status,
            delivery_note=spec.delivery_note,
        )
        return order, spec

    async def _get_visible_payment(self, actor: User, payment_id: uuid.UUID) -> Payment:
        payment = await self.payments.get_visible(payment_id, actor)
        if payment is None:
            raise PaymentNotFoundError(
                "Payment not found or you don't have permission to access it",
                payment_id=str(payment_id),
            )
        return payment

    async def _reload(self, payment_id: uuid.UUID) -> dict[str, Any]:
        payment = await self.payments.get_detailed(payment_id)
        if payment is None:
            raise PaymentNotFoundError("Payment not found", payment_id=str(payment_id))
        return payment.to_response()

    async def attach_receipt(
        self,
        actor: User,
        payment_id: uuid.UUID,
        receipt_url: Optional[str] = None,
        external_receipt_url: Optional[str] = None,
        receipt_type: Optional[Union[ReceiptType, str]] = None,
    ) -> dict[str, Any]:
        """
        Attach a receipt to an existing payment, confirming it.

        Raises:
            ValidationError: If no receipt is given
            PaymentNotFoundError: If the payment is unknown or not visible
        """
        if not (receipt_url or external_receipt_url):
            raise ValidationError(
                "A receipt file or externalReceiptUrl is required",
                field="receipt",
            )
        parsed_type = _parse_receipt_type(receipt_type)
        payment = await self._get_visible_payment(actor, payment_id)

        values: dict[str, Any] = {
            "payment_status": PaymentStatus.CONFIRMED,
            "payment_date": payment.payment_date or datetime.now(timezone.utc),
            "uploaded_receipt_type": parsed_type,
        }
        if receipt_url:
            values["receipt_url"] = receipt_url
        if external_receipt_url:
            values["external_receipt_url"] = external_receipt_url

        async with transaction_scope(
            self.session,
            "attach_receipt",
            payment_id=str(payment.id),
            actor_id=str(actor.id),
        ):
            await self.payments.add_receipt(
                actor.id, payment.id, receipt_url or external_receipt_url, parsed_type
            )
            await self.payments.update_payment(payment.id, **values)
            await self.orders.set_status(payment.order_id, OrderStatus.PAYMENT_CONFIRMED)

        logger.info(
            "Receipt attached to payment",
            payment_id=str(payment.id),
            order_id=str(payment.order_id),
            actor_id=str(actor.id),
        )
        return await self._reload(payment.id)

    async def get_payment(self, actor: User, payment_id: uuid.UUID) -> dict[str, Any]:
        payment = await self._get_visible_payment(actor, payment_id)
        return payment.to_response()

    async def list_payments(
        self,
        actor: User,
        status: Optional[Union[PaymentStatus, str]] = None,
        payment_method: Optional[Union[PaymentMethod, str]] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        """Payment history visible to the actor, newest first."""
        parsed_status = None
        if status:
            try:
                parsed_status = PaymentStatus(status)
            except ValueError:
                raise ValidationError("Invalid payment status", field="status", value=status)
        parsed_method = _parse_method(payment_method) if payment_method else None
        if start_date and end_date and end_date < start_date:
            raise ValidationError("endDate must not be before startDate", field="endDate")

        payments = await self.payments.list_visible(
            actor,
            status=parsed_status,
            payment_method=parsed_method,
            start_date=start_date,
            end_date=end_date,
        )
        return [payment.to_response() for payment in payments]

    async def update_payment_status(
        self,
        actor: User,
        payment_id: uuid.UUID,
        status: Union[PaymentStatus, str],
    ) -> dict[str, Any]:
        """
        Change a payment's status, keeping its order in step.

        Confirmed requires a receipt and confirms the order's payment;
        Failed clears the payment date and returns the order to Pending.

        Raises:
            ValidationError: If the status is unknown or contradicts the receipt
            PaymentNotFoundError: If the payment is unknown or not visible
        """
        try:
            new_status = PaymentStatus(status)
        except ValueError:
            raise ValidationError(
                "Invalid payment status. Allowed: Pending, Confirmed, Failed",
                field="status",
                value=status,
            )

        payment = await self._get_visible_payment(actor, payment_id)

        if new_status == PaymentStatus.CONFIRMED and not payment.has_receipt:
            raise ValidationError(
                "A payment can only be confirmed with a receipt",
                field="status",
                payment_id=str(payment.id),
            )
        if new_status == PaymentStatus.PENDING and payment.has_receipt:
            raise ValidationError(
                "A payment with a receipt cannot be pending",
                field="status",
                payment_id=str(payment.id),
            )

        values: dict[str, Any] = {"payment_status": new_status}
        order_status: Optional[OrderStatus] = None
        if new_status == PaymentStatus.CONFIRMED:
            values["payment_date"] = payment.payment_date or datetime.now(timezone.utc)
            order_status = OrderStatus.PAYMENT_CONFIRMED
        elif new_status == PaymentStatus.FAILED:
            values["payment_date"] = None
            order_status = OrderStatus.PENDING

        async with transaction_scope(
            self.session,
            "update_payment_status",
            payment_id=str(payment.id),
            status=new_status.value,
        ):
            await self.payments.update_payment(payment.id, **values)
            if order_status is not None:
                await self.orders.set_status(payment.order_id, order_status)

        logger.info(
            "Payment status updated",
            payment_id=str(payment.id),
            old_status=payment.payment_status.value,
            new_status=new_status.value,
            actor_id=str(actor.id),
        )
        return await self._reload(payment.id)

    async def delete_payment(self, actor: User, payment_id: uuid.UUID) -> None:
        """
        Delete a payment and its receipts and return the order to Pending.

        The stored receipt file is removed after the commit; failing to
        remove it does not fail the deletion.
        """
        payment = await self._get_visible_payment(actor, payment_id)

        async with transaction_scope(
            self.session,
            "delete_payment",
            payment_id=str(payment.id),
            actor_id=str(actor.id),
        ):
            await self.payments.delete_with_receipts(payment.id)
            await self.orders.set_status(payment.order_id, OrderStatus.PENDING)

        if payment.receipt_url:
            await self.receipt_storage.delete(payment.receipt_url)

        logger.info(
            "Payment deleted with receipts",
            payment_id=str(payment.id),
            order_id=str(payment.order_id),
            actor_id=str(actor.id),
        )
