"""
Payment and payment receipt models.

At most one payment exists per order; the payment service enforces this with
an existence check. A payment is Confirmed exactly when a receipt (an
uploaded file or an external receipt URL) is present.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import BaseModel
from src.database.models.order import Order


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class PaymentMethod(str, Enum):
    """Accepted payment methods."""

    UPI = "UPI"
    CREDIT_CARD = "CreditCard"
    DEBIT_CARD = "DebitCard"
    NET_BANKING = "NetBanking"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""

    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"


class ReceiptType(str, Enum):
    """Kind of uploaded receipt."""

    IMAGE = "Image"
    PDF = "PDF"


class Payment(BaseModel):
    """
    Payment recorded against an order.

    Attributes:
        user_id: Actor who recorded the payment
        order_id: Paid order
        payment_method: How the customer paid
        payment_amount: Amount paid
        payment_date: Set once a receipt confirms the payment
        receipt_url: Stored receipt path
        external_receipt_url: Receipt hosted elsewhere
        uploaded_receipt_type: Image or PDF
        payment_status: Pending, Confirmed or Failed
    """

    __tablename__ = "payments"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method", values_callable=_enum_values),
        nullable=False,
    )

    payment_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    payment_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    receipt_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    external_receipt_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    uploaded_receipt_type: Mapped[ReceiptType] = mapped_column(
        SQLEnum(ReceiptType, name="receipt_type", values_callable=_enum_values),
        nullable=False,
        default=ReceiptType.IMAGE,
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )

    order: Mapped[Order] = relationship(
        "Order",
        back_populates="payment",
        lazy="raise",
    )

    receipts: Mapped[list["PaymentReceipt"]] = relationship(
        "PaymentReceipt",
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_payments_user_created", "user_id", "created_at"),
        CheckConstraint("payment_amount > 0", name="ck_payments_amount_positive"),
        {"comment": "Order payments"},
    )

    @property
    def has_receipt(self) -> bool:
        """Whether an uploaded or external receipt is present."""
        return bool(self.receipt_url or self.external_receipt_url)

    def to_response(
        self,
        order: Optional[Order] = None,
        receipts: Optional[list["PaymentReceipt"]] = None,
    ) -> dict[str, Any]:
        """
        Payment joined with its order summary and receipts.

        ``order`` and ``receipts`` stand in for relationships that were not
        loaded with the payment.
        """
        order = order if order is not None else self.order
        receipts = receipts if receipts is not None else self.receipts
        data = self.to_dict()
        data["order"] = order.summary() if order is not None else None
        data["receipts"] = [receipt.to_dict() for receipt in receipts or []]
        return data


class PaymentReceipt(BaseModel):
    """Receipt metadata attached to a payment."""

    __tablename__ = "payment_receipts"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    payment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    receipt_url: Mapped[str] = mapped_column(String(1000), nullable=False)

    receipt_type: Mapped[ReceiptType] = mapped_column(
        SQLEnum(ReceiptType, name="receipt_type", values_callable=_enum_values),
        nullable=False,
        default=ReceiptType.IMAGE,
    )

    payment: Mapped[Payment] = relationship(
        "Payment",
        back_populates="receipts",
        lazy="raise",
    )
