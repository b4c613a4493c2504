"""
Payment Pydantic schemas for API request validation.

Payment creation and receipt upload are multipart forms and are declared on
the endpoints; JSON bodies are modeled here.
"""

from pydantic import BaseModel, ConfigDict, Field

from src.database.models.payment import PaymentStatus


class PaymentStatusUpdateRequest(BaseModel):
    """Request to change a payment's status."""

    model_config = ConfigDict(use_enum_values=False)

    status: PaymentStatus = Field(..., description="Pending, Confirmed or Failed")
