"""
Fulfillment recovery API endpoints (admin only).
"""

from typing import Optional

from fastapi import APIRouter

from src.api.deps import CurrentAdmin, RecoveryServiceDep
from src.core.logging import get_logger
from src.schemas.common import SuccessResponse, envelope
from src.schemas.orders import FulfillmentRetryRequest

logger = get_logger(__name__)

router = APIRouter(prefix="/fulfillment", tags=["fulfillment"])


@router.post(
    "/retry",
    response_model=SuccessResponse,
    summary="Retry unfinished fulfillment tasks",
)
async def retry_fulfillment(
    current_user: CurrentAdmin,
    service: RecoveryServiceDep,
    request: Optional[FulfillmentRetryRequest] = None,
) -> dict:
    logger.info("Fulfillment retry requested", actor_id=str(current_user.id))
    summary = await service.retry_pending(request.limit if request else None)
    return envelope("Fulfillment retry completed", summary)
