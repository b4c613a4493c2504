"""
Order and delivery item Pydantic schemas for API request validation.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from src.database.models.order import DeliveryItemStatus


class MaterializeRequest(BaseModel):
    """Order data used to create an existing order's delivery items."""

    model_config = ConfigDict(populate_by_name=True)

    order_data: Union[str, dict[str, Any]] = Field(
        ...,
        alias="orderData",
        description="Order data as a JSON object or JSON-encoded string",
    )


class DeliveryItemStatusUpdateRequest(BaseModel):
    """Request to change a delivery item's status."""

    status: DeliveryItemStatus = Field(
        ...,
        description="Pending, Confirmed, Delivered or Cancelled",
    )


class FulfillmentRetryRequest(BaseModel):
    """Request to retry unfinished fulfillment tasks."""

    limit: Optional[int] = Field(
        None,
        ge=1,
        le=500,
        description="Maximum tasks to retry in this run",
    )
