"""
Delivery item API endpoints.

Materialization is idempotent: calling it for an order that already has
delivery items reports the existing count and creates nothing.
"""

from uuid import UUID

from fastapi import APIRouter

from src.api.deps import CurrentUser, DeliveryItemServiceDep
from src.core.logging import get_logger
from src.schemas.common import SuccessResponse, envelope
from src.schemas.orders import DeliveryItemStatusUpdateRequest, MaterializeRequest

logger = get_logger(__name__)

router = APIRouter(prefix="/delivery-items", tags=["delivery-items"])


@router.post(
    "/orders/{order_id}/materialize",
    response_model=SuccessResponse,
    summary="Create delivery items for a paid order",
)
async def materialize_delivery_items(
    order_id: UUID,
    request: MaterializeRequest,
    current_user: CurrentUser,
    service: DeliveryItemServiceDep,
) -> dict:
    result = await service.materialize_after_payment(
        order_id,
        request.order_data,
        actor=current_user,
    )
    return envelope(result.message, result.to_dict())


@router.get(
    "/orders/{order_id}",
    response_model=SuccessResponse,
    summary="List an order's delivery items",
)
async def list_delivery_items(
    order_id: UUID,
    current_user: CurrentUser,
    service: DeliveryItemServiceDep,
) -> dict:
    items = await service.list_for_order(current_user, order_id)
    return envelope(
        "Delivery items retrieved successfully",
        [item.to_dict() for item in items],
    )


@router.get(
    "/{item_id}/status",
    response_model=SuccessResponse,
    summary="Get a delivery item's status",
)
async def get_delivery_item_status(
    item_id: UUID,
    current_user: CurrentUser,
    service: DeliveryItemServiceDep,
) -> dict:
    item_status = await service.get_status(current_user, item_id)
    return envelope("Delivery item status retrieved successfully", item_status)


@router.patch(
    "/{item_id}/status",
    response_model=SuccessResponse,
    summary="Update a delivery item's status",
)
async def update_delivery_item_status(
    item_id: UUID,
    request: DeliveryItemStatusUpdateRequest,
    current_user: CurrentUser,
    service: DeliveryItemServiceDep,
) -> dict:
    item = await service.update_status(current_user, item_id, request.status)
    return envelope("Delivery item status updated successfully", item)
