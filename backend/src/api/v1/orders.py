"""
Order API endpoints.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Query

from src.api.deps import CurrentUser, OrderServiceDep
from src.database.models.order import OrderStatus
from src.schemas.common import SuccessResponse, envelope

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get(
    "",
    response_model=SuccessResponse,
    summary="List orders",
    description="Orders visible to the caller, newest first.",
)
async def list_orders(
    current_user: CurrentUser,
    service: OrderServiceDep,
    order_status: Annotated[Optional[OrderStatus], Query(alias="status")] = None,
    customer_id: Annotated[Optional[UUID], Query(alias="customerId")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(alias="pageSize", ge=1, le=100)] = 20,
) -> dict:
    orders = await service.list_orders(
        current_user,
        status=order_status,
        customer_id=customer_id,
        page=page,
        page_size=page_size,
    )
    return envelope("Orders retrieved successfully", orders)


@router.get(
    "/{order_id}",
    response_model=SuccessResponse,
    summary="Get an order",
)
async def get_order(
    order_id: UUID,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> dict:
    order = await service.get_order(current_user, order_id)
    return envelope("Order retrieved successfully", order)
