"""
Payment API endpoints.

Records payments (creating the order when it does not exist yet), attaches
receipts, and exposes payment history, status changes and deletion. Errors
raised by the services are rendered by the application's exception handlers.
"""

from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, File, Form, Query, UploadFile, status

from src.api.deps import CurrentUser, PaymentServiceDep, ReceiptStorageDep
from src.core.logging import get_logger
from src.database.models.payment import PaymentMethod, PaymentStatus
from src.schemas.common import SuccessResponse, envelope
from src.schemas.payments import PaymentStatusUpdateRequest
from src.services.payments.receipt_storage import ReceiptStorage
from src.services.payments.service import PaymentCreateData, build_order_ref

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


async def _store_receipt(
    storage: ReceiptStorage,
    receipt: Optional[UploadFile],
) -> tuple[Optional[str], Optional[str]]:
    """Store an uploaded receipt; returns its URL and implied receipt type."""
    if receipt is None or not receipt.filename:
        return None, None
    content = await receipt.read()
    receipt_type = storage.validate(content, receipt.content_type)
    url = await storage.save(content, receipt.filename, receipt.content_type)
    return url, receipt_type.value


@router.post(
    "",
    response_model=SuccessResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a payment",
    description=(
        "Record a payment for an existing order, a draft order, or a new order "
        "described by orderData. New orders get their delivery items and stock "
        "reduction after the payment is committed."
    ),
)
async def create_payment(
    current_user: CurrentUser,
    service: PaymentServiceDep,
    storage: ReceiptStorageDep,
    payment_method: Annotated[str, Form(alias="paymentMethod")],
    payment_amount: Annotated[str, Form(alias="paymentAmount")],
    order_id: Annotated[Optional[str], Form(alias="orderId")] = None,
    receipt_type: Annotated[Optional[str], Form(alias="receiptType")] = None,
    external_receipt_url: Annotated[Optional[str], Form(alias="externalReceiptUrl")] = None,
    order_data: Annotated[Optional[str], Form(alias="orderData")] = None,
    receipt: Annotated[Optional[UploadFile], File()] = None,
) -> dict:
    order_ref = build_order_ref(order_id, order_data, current_user.id)

    receipt_url, inferred_type = await _store_receipt(storage, receipt)
    try:
        result = await service.create_payment(
            current_user,
            PaymentCreateData(
                order=order_ref,
                payment_method=payment_method,
                payment_amount=payment_amount,
                receipt_url=receipt_url,
                receipt_type=receipt_type or inferred_type,
                external_receipt_url=external_receipt_url or None,
            ),
        )
    except Exception:
        if receipt_url:
            await storage.delete(receipt_url)
        raise

    return envelope("Payment created successfully", result)


@router.get(
    "",
    response_model=SuccessResponse,
    summary="List payments",
)
async def list_payments(
    current_user: CurrentUser,
    service: PaymentServiceDep,
    payment_status: Annotated[Optional[PaymentStatus], Query(alias="status")] = None,
    payment_method: Annotated[Optional[PaymentMethod], Query(alias="paymentMethod")] = None,
    start_date: Annotated[Optional[datetime], Query(alias="startDate")] = None,
    end_date: Annotated[Optional[datetime], Query(alias="endDate")] = None,
) -> dict:
    payments = await service.list_payments(
        current_user,
        status=payment_status,
        payment_method=payment_method,
        start_date=start_date,
        end_date=end_date,
    )
    return envelope("Payments retrieved successfully", payments)


@router.get(
    "/{payment_id}",
    response_model=SuccessResponse,
    summary="Get a payment",
)
async def get_payment(
    payment_id: UUID,
    current_user: CurrentUser,
    service: PaymentServiceDep,
) -> dict:
    payment = await service.get_payment(current_user, payment_id)
    return envelope("Payment retrieved successfully", payment)


@router.patch(
    "/{payment_id}/status",
    response_model=SuccessResponse,
    summary="Update payment status",
)
async def update_payment_status(
    payment_id: UUID,
    request: PaymentStatusUpdateRequest,
    current_user: CurrentUser,
    service: PaymentServiceDep,
) -> dict:
    payment = await service.update_payment_status(current_user, payment_id, request.status)
    return envelope("Payment status updated successfully", payment)


@router.post(
    "/{payment_id}/receipt",
    response_model=SuccessResponse,
    summary="Attach a receipt",
    description="Attach an uploaded or external receipt, confirming the payment.",
)
async def attach_receipt(
    payment_id: UUID,
    current_user: CurrentUser,
    service: PaymentServiceDep,
    storage: ReceiptStorageDep,
    receipt_type: Annotated[Optional[str], Form(alias="receiptType")] = None,
    external_receipt_url: Annotated[Optional[str], Form(alias="externalReceiptUrl")] = None,
    receipt: Annotated[Optional[UploadFile], File()] = None,
) -> dict:
    receipt_url, inferred_type = await _store_receipt(storage, receipt)
    try:
        payment = await service.attach_receipt(
            current_user,
            payment_id,
            receipt_url=receipt_url,
            external_receipt_url=external_receipt_url or None,
            receipt_type=receipt_type or inferred_type,
        )
    except Exception:
        if receipt_url:
            await storage.delete(receipt_url)
        raise

    return envelope("Receipt attached successfully", payment)


@router.delete(
    "/{payment_id}",
    response_model=SuccessResponse,
    summary="Delete a payment",
)
async def delete_payment(
    payment_id: UUID,
    current_user: CurrentUser,
    service: PaymentServiceDep,
) -> dict:
    await service.delete_payment(current_user, payment_id)
    return envelope("Payment deleted successfully")
