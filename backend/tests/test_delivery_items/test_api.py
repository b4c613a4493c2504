"""
Integration tests for delivery item and fulfillment API endpoints.
"""

import uuid
from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from src.api.deps import get_current_user, get_delivery_item_service, get_recovery_service
from src.database.models import User
from src.database.models.order import DeliveryItemStatus
from src.services.delivery_items.service import MaterializationResult
from src.services.errors import AccessDeniedError, OrderNotFoundError


@pytest.fixture
def delivery_item_service() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def recovery_service() -> AsyncMock:
    service = AsyncMock()
    service.retry_pending.return_value = {"orders": 2, "recovered": 1, "failed": 1}
    return service


def as_user(client: TestClient, user: User) -> TestClient:
    client.app.dependency_overrides[get_current_user] = lambda: user
    return client


@pytest.fixture
def client(
    test_client: TestClient,
    delivery_item_service: AsyncMock,
    recovery_service: AsyncMock,
) -> TestClient:
    overrides = test_client.app.dependency_overrides
    overrides[get_delivery_item_service] = lambda: delivery_item_service
    overrides[get_recovery_service] = lambda: recovery_service
    return test_client


class TestMaterializeEndpoint:
    def test_existing_items_reported_as_success(
        self,
        client: TestClient,
        delivery_item_service: AsyncMock,
        customer: User,
        order_payload: dict[str, Any],
    ):
        order_id = uuid.uuid4()
        delivery_item_service.materialize_after_payment.return_value = MaterializationResult(
            order_id=order_id,
            already_materialized=True,
            delivery_items_count=90,
        )

        response = as_user(client, customer).post(
            f"/api/v1/delivery-items/orders/{order_id}/materialize",
            json={"orderData": order_payload},
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["success"] is True
        assert body["data"]["delivery_items_count"] == 90
        assert body["data"]["already_materialized"] is True
        assert body["data"]["created_count"] == 0
        args = delivery_item_service.materialize_after_payment.await_args
        assert args.args == (order_id, order_payload)
        assert args.kwargs == {"actor": customer}

    def test_order_data_may_be_json_string(
        self, client: TestClient, delivery_item_service: AsyncMock, customer: User
    ):
        order_id = uuid.uuid4()
        delivery_item_service.materialize_after_payment.return_value = MaterializationResult(
            order_id=order_id, created_count=7, skipped_count=2, delivery_items_count=7
        )

        response = as_user(client, customer).post(
            f"/api/v1/delivery-items/orders/{order_id}/materialize",
            json={"orderData": '{"selectedDates": []}'},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["message"] == "Created 7 delivery items"

    def test_unknown_order(
        self, client: TestClient, delivery_item_service: AsyncMock, customer: User
    ):
        delivery_item_service.materialize_after_payment.side_effect = OrderNotFoundError(
            "Order not found"
        )

        response = as_user(client, customer).post(
            f"/api/v1/delivery-items/orders/{uuid.uuid4()}/materialize",
            json={"orderData": {}},
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "ORDER_NOT_FOUND"

    def test_order_data_required(self, client: TestClient, customer: User):
        response = as_user(client, customer).post(
            f"/api/v1/delivery-items/orders/{uuid.uuid4()}/materialize", json={}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestStatusEndpoints:
    def test_update_status(
        self, client: TestClient, delivery_item_service: AsyncMock, seller: User
    ):
        item_id = uuid.uuid4()
        delivery_item_service.update_status.return_value = {
            "id": str(item_id),
            "status": "Cancelled",
            "order_cancelled": True,
        }

        response = as_user(client, seller).patch(
            f"/api/v1/delivery-items/{item_id}/status", json={"status": "Cancelled"}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["order_cancelled"] is True
        delivery_item_service.update_status.assert_awaited_once_with(
            seller, item_id, DeliveryItemStatus.CANCELLED
        )

    def test_update_status_denied(
        self, client: TestClient, delivery_item_service: AsyncMock, customer: User
    ):
        delivery_item_service.update_status.side_effect = AccessDeniedError(
            "Not allowed to update this delivery item"
        )

        response = as_user(client, customer).patch(
            f"/api/v1/delivery-items/{uuid.uuid4()}/status", json={"status": "Delivered"}
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["code"] == "ACCESS_DENIED"

    def test_get_status(
        self, client: TestClient, delivery_item_service: AsyncMock, customer: User
    ):
        item_id = uuid.uuid4()
        delivery_item_service.get_status.return_value = {"id": str(item_id), "status": "Pending"}

        response = as_user(client, customer).get(f"/api/v1/delivery-items/{item_id}/status")

        assert response.json()["data"] == {"id": str(item_id), "status": "Pending"}
        delivery_item_service.get_status.assert_awaited_once_with(customer, item_id)


class TestFulfillmentRetry:
    def test_admin_runs_retry(
        self, client: TestClient, recovery_service: AsyncMock, admin: User
    ):
        response = as_user(client, admin).post("/api/v1/fulfillment/retry", json={"limit": 10})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"] == {"orders": 2, "recovered": 1, "failed": 1}
        recovery_service.retry_pending.assert_awaited_once_with(10)

    def test_retry_without_body_uses_default_batch(
        self, client: TestClient, recovery_service: AsyncMock, admin: User
    ):
        response = as_user(client, admin).post("/api/v1/fulfillment/retry")

        assert response.status_code == status.HTTP_200_OK
        recovery_service.retry_pending.assert_awaited_once_with(None)

    @pytest.mark.parametrize("role_fixture", ["customer", "seller", "delivery_manager"])
    def test_non_admin_is_forbidden(
        self,
        client: TestClient,
        recovery_service: AsyncMock,
        role_fixture: str,
        request: pytest.FixtureRequest,
    ):
        user = request.getfixturevalue(role_fixture)

        response = as_user(client, user).post("/api/v1/fulfillment/retry")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["code"] == "HTTP_403"
        recovery_service.retry_pending.assert_not_awaited()
