"""
Address resolution for orders placed with an inline delivery address.
"""

import uuid
from typing import Any, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.database.models.address import Address
from src.services.errors import AddressResolutionError

logger = get_logger(__name__)

# Inline address keys as sent by clients, mapped to Address columns
ADDRESS_FIELDS = {
    "label": "label",
    "streetAddress": "street_address",
    "street_address": "street_address",
    "street": "street_address",
    "city": "city",
    "state": "state",
    "postalCode": "postal_code",
    "postal_code": "postal_code",
    "pincode": "postal_code",
    "country": "country",
    "geoLocation": "geo_location",
    "geo_location": "geo_location",
}

REQUIRED_FIELDS = ("street_address", "city")


class AddressService:
    """Creates delivery addresses on behalf of customers."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_address_for_user(
        self,
        customer_id: uuid.UUID,
        seller_id: Optional[uuid.UUID],
        payload: Mapping[str, Any],
    ) -> uuid.UUID:
        """
        Persist an inline address for a customer inside the caller's transaction.

        Args:
            customer_id: Customer the address belongs to
            seller_id: User recording the address, when not the customer
            payload: Free-form address object

        Returns:
            Id of the new address

        Raises:
            AddressResolutionError: If the payload is incomplete or the insert fails
        """
        values: dict[str, Any] = {}
        for key, value in payload.items():
            column = ADDRESS_FIELDS.get(key)
            if column and value not in (None, ""):
                values[column] = str(value).strip()

        missing = [name for name in REQUIRED_FIELDS if not values.get(name)]
        if missing:
            raise AddressResolutionError(
                "Address is missing required fields",
                missing_fields=missing,
                customer_id=str(customer_id),
            )

        address = Address(
            id=uuid.uuid4(),
            user_id=customer_id,
            created_by=seller_id or customer_id,
            **values,
        )
        try:
            self.session.add(address)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to create address",
                customer_id=str(customer_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise AddressResolutionError(
                "Failed to create delivery address",
                customer_id=str(customer_id),
                error=str(e),
            ) from e

        logger.info(
            "Address created for customer",
            address_id=str(address.id),
            customer_id=str(customer_id),
            created_by=str(seller_id or customer_id),
        )
        return address.id
