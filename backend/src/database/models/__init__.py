"""
Database models package initialization.

Models are imported here so they register with the Base metadata and
string-based relationship targets resolve.
"""

from src.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from src.database.models.user import User, UserRole
from src.database.models.address import Address
from src.database.models.inventory import InventoryReduction, MenuItem, Product
from src.database.models.order import (
    DeliveryItem,
    DeliveryItemStatus,
    DeliveryTimeSlot,
    MealType,
    Order,
    OrderMaterialization,
    OrderStatus,
)
from src.database.models.payment import (
    Payment,
    PaymentMethod,
    PaymentReceipt,
    PaymentStatus,
    ReceiptType,
)
from src.database.models.fulfillment import (
    FulfillmentTask,
    FulfillmentTaskKind,
    FulfillmentTaskStatus,
)

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "User",
    "UserRole",
    "Address",
    "InventoryReduction",
    "MenuItem",
    "Product",
    "DeliveryItem",
    "DeliveryItemStatus",
    "DeliveryTimeSlot",
    "MealType",
    "Order",
    "OrderMaterialization",
    "OrderStatus",
    "Payment",
    "PaymentMethod",
    "PaymentReceipt",
    "PaymentStatus",
    "ReceiptType",
    "FulfillmentTask",
    "FulfillmentTaskKind",
    "FulfillmentTaskStatus",
]
