"""
Tests for order lookup and listing.
"""

import uuid
from typing import Callable
from unittest.mock import AsyncMock

import pytest

from src.database.models import Order, User
from src.database.models.order import OrderStatus
from src.services.errors import OrderNotFoundError, ValidationError
from src.services.orders.service import OrderService


@pytest.fixture
def service(mock_session: AsyncMock) -> OrderService:
    service = OrderService(mock_session)
    service.repository = AsyncMock()
    service.delivery_items = AsyncMock()
    return service


class TestGetOrder:
    @pytest.mark.asyncio
    async def test_includes_delivery_item_count(
        self, service: OrderService, customer: User, make_order: Callable[..., Order]
    ):
        order = make_order(customer, status=OrderStatus.PAYMENT_CONFIRMED)
        service.repository.get_visible.return_value = order
        service.delivery_items.count_for_order.return_value = 7

        data = await service.get_order(customer, order.id)

        assert data["id"] == str(order.id)
        assert data["status"] == "Payment_Confirmed"
        assert data["delivery_items_count"] == 7
        service.repository.get_visible.assert_awaited_once_with(order.id, customer)

    @pytest.mark.asyncio
    async def test_invisible_order_is_not_found(self, service: OrderService, customer: User):
        service.repository.get_visible.return_value = None
        order_id = uuid.uuid4()

        with pytest.raises(OrderNotFoundError) as exc_info:
            await service.get_order(customer, order_id)

        assert exc_info.value.context["order_id"] == str(order_id)
        service.delivery_items.count_for_order.assert_not_awaited()


class TestListOrders:
    @pytest.mark.asyncio
    async def test_paginates(
        self, service: OrderService, admin: User, customer: User, make_order: Callable[..., Order]
    ):
        orders = [make_order(customer) for _ in range(2)]
        service.repository.list_visible.return_value = (orders, 42)

        result = await service.list_orders(admin, status="Pending", page=3, page_size=2)

        assert result["total"] == 42
        assert result["page"] == 3
        assert [item["id"] for item in result["items"]] == [str(o.id) for o in orders]
        service.repository.list_visible.assert_awaited_once_with(
            admin,
            status=OrderStatus.PENDING,
            customer_id=None,
            skip=4,
            limit=2,
        )

    @pytest.mark.asyncio
    async def test_invalid_status(self, service: OrderService, admin: User):
        with pytest.raises(ValidationError) as exc_info:
            await service.list_orders(admin, status="Shipped")

        assert exc_info.value.field == "status"
        service.repository.list_visible.assert_not_awaited()
