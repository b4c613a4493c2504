"""
Success envelope shared by all API endpoints.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class SuccessResponse(BaseModel):
    """Successful response envelope."""

    success: bool = Field(default=True, description="Always true")
    message: str = Field(..., description="Human-readable outcome")
    data: Optional[Any] = Field(default=None, description="Response payload")


def envelope(message: str, data: Any = None) -> dict[str, Any]:
    """Build a success envelope."""
    return {"success": True, "message": message, "data": data}
