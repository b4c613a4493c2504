"""
API v1 package initialization.

Collects the v1 routers under a single router mounted at the API prefix.
"""

from fastapi import APIRouter

from src.api.v1.delivery_items import router as delivery_items_router
from src.api.v1.fulfillment import router as fulfillment_router
from src.api.v1.orders import router as orders_router
from src.api.v1.payments import router as payments_router

api_router = APIRouter()
api_router.include_router(payments_router)
api_router.include_router(orders_router)
api_router.include_router(delivery_items_router)
api_router.include_router(fulfillment_router)

__all__ = ["api_router"]
