"""
Delivery address model.
"""

import uuid
from typing import Optional

from sqlalchemy import ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import BaseModel


class Address(BaseModel):
    """
    Customer delivery address.

    Attributes:
        user_id: Customer the address belongs to
        created_by: User who recorded the address (the customer or their seller)
        label: Short name such as "Home" or "Office"
        street_address: Street and house details
        city: City
        state: State or province
        postal_code: Postal code
        country: Country
        geo_location: "lat, lng" pair when known
    """

    __tablename__ = "addresses"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Customer the address belongs to",
    )

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="User who recorded the address",
    )

    label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    street_address: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    country: Mapped[str] = mapped_column(String(100), nullable=False, default="India")
    geo_location: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
