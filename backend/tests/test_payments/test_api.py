"""
Integration tests for payment API endpoints.

The FastAPI TestClient runs against the real application with the acting
user, the payment service and the receipt storage replaced through
dependency overrides, so requests exercise routing, multipart parsing and
the error envelope without a database.
"""

import json
import uuid
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from src.api.deps import get_current_user, get_payment_service, get_receipt_storage
from src.database.models import User
from src.services.errors import DuplicatePaymentError, PaymentNotFoundError
from src.services.payments.receipt_storage import ReceiptStorage
from src.services.payments.service import ExistingOrder, NewOrder, PaymentCreateData

PAYMENTS_URL = "/api/v1/payments"


@pytest.fixture
def payment_service() -> AsyncMock:
    service = AsyncMock()
    service.create_payment.return_value = {
        "payment": {"id": str(uuid.uuid4()), "payment_status": "Pending"},
        "fulfillment": None,
    }
    return service


@pytest.fixture
def receipt_storage(tmp_path: Path) -> ReceiptStorage:
    return ReceiptStorage(directory=str(tmp_path), url_prefix="/payment-receipts")


@pytest.fixture
def client(
    test_client: TestClient,
    customer: User,
    payment_service: AsyncMock,
    receipt_storage: ReceiptStorage,
) -> TestClient:
    app = test_client.app
    app.dependency_overrides[get_current_user] = lambda: customer
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    app.dependency_overrides[get_receipt_storage] = lambda: receipt_storage
    return test_client


class TestCreatePayment:
    def test_new_order_from_order_data(
        self,
        client: TestClient,
        payment_service: AsyncMock,
        customer: User,
        order_payload: dict[str, Any],
    ):
        response = client.post(
            PAYMENTS_URL,
            data={
                "paymentMethod": "UPI",
                "paymentAmount": "21000",
                "orderData": json.dumps(order_payload),
            },
        )

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Payment created successfully"
        assert body["data"]["payment"]["payment_status"] == "Pending"

        actor, data = payment_service.create_payment.await_args.args
        assert actor is customer
        assert isinstance(data, PaymentCreateData)
        assert isinstance(data.order, NewOrder)
        assert data.order.spec.user_id == customer.id
        assert data.receipt_url is None

    def test_existing_order_with_receipt_upload(
        self,
        client: TestClient,
        payment_service: AsyncMock,
        tmp_path: Path,
    ):
        order_id = uuid.uuid4()

        response = client.post(
            PAYMENTS_URL,
            data={"paymentMethod": "DebitCard", "paymentAmount": "450", "orderId": str(order_id)},
            files={"receipt": ("receipt.pdf", b"%PDF-1.7 receipt", "application/pdf")},
        )

        assert response.status_code == status.HTTP_201_CREATED
        _, data = payment_service.create_payment.await_args.args
        assert data.order == ExistingOrder(order_id)
        assert data.receipt_type == "PDF"
        assert data.receipt_url.startswith("/payment-receipts/")
        assert (tmp_path / data.receipt_url.rsplit("/", 1)[1]).exists()

    def test_stored_receipt_removed_when_payment_fails(
        self,
        client: TestClient,
        payment_service: AsyncMock,
        tmp_path: Path,
    ):
        payment_service.create_payment.side_effect = DuplicatePaymentError(
            "Payment already exists for this order"
        )

        response = client.post(
            PAYMENTS_URL,
            data={"paymentMethod": "UPI", "paymentAmount": "450", "orderId": str(uuid.uuid4())},
            files={"receipt": ("receipt.png", b"\x89PNG data", "image/png")},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "DUPLICATE_PAYMENT"
        assert body["error"]["type"] == "DuplicatePaymentError"
        assert list(tmp_path.iterdir()) == []

    def test_missing_order_reference(self, client: TestClient, payment_service: AsyncMock):
        response = client.post(
            PAYMENTS_URL,
            data={"paymentMethod": "UPI", "paymentAmount": "450"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["error"]["field"] == "orderId"
        payment_service.create_payment.assert_not_awaited()

    def test_malformed_order_data(self, client: TestClient):
        response = client.post(
            PAYMENTS_URL,
            data={"paymentMethod": "UPI", "paymentAmount": "450", "orderData": "{oops"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "MALFORMED_INPUT"

    def test_rejected_receipt_type(self, client: TestClient, payment_service: AsyncMock):
        response = client.post(
            PAYMENTS_URL,
            data={"paymentMethod": "UPI", "paymentAmount": "450", "orderId": str(uuid.uuid4())},
            files={"receipt": ("receipt.txt", b"paid", "text/plain")},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["field"] == "receipt"
        payment_service.create_payment.assert_not_awaited()

    def test_missing_form_fields(self, client: TestClient):
        response = client.post(PAYMENTS_URL, data={"orderId": str(uuid.uuid4())})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "REQUEST_VALIDATION_ERROR"

    def test_error_detail_hidden_in_production(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ):
        from src.core.config import get_settings

        monkeypatch.setenv("APP_ENVIRONMENT", "production")
        get_settings.cache_clear()

        response = client.post(
            PAYMENTS_URL,
            data={"paymentMethod": "UPI", "paymentAmount": "450"},
        )

        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert "error" not in body


class TestPaymentRoutes:
    def test_get_payment_not_found(self, client: TestClient, payment_service: AsyncMock):
        payment_service.get_payment.side_effect = PaymentNotFoundError("Payment not found")

        response = client.get(f"{PAYMENTS_URL}/{uuid.uuid4()}")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "PAYMENT_NOT_FOUND"

    def test_list_passes_filters(self, client: TestClient, payment_service: AsyncMock):
        payment_service.list_payments.return_value = []

        response = client.get(PAYMENTS_URL, params={"status": "Confirmed", "paymentMethod": "UPI"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"] == []
        kwargs = payment_service.list_payments.await_args.kwargs
        assert kwargs["status"].value == "Confirmed"
        assert kwargs["payment_method"].value == "UPI"

    def test_status_update_rejects_unknown_status(self, client: TestClient):
        response = client.patch(
            f"{PAYMENTS_URL}/{uuid.uuid4()}/status", json={"status": "Refunded"}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_attach_external_receipt(self, client: TestClient, payment_service: AsyncMock):
        payment_id = uuid.uuid4()
        payment_service.attach_receipt.return_value = {"id": str(payment_id)}

        response = client.post(
            f"{PAYMENTS_URL}/{payment_id}/receipt",
            data={"externalReceiptUrl": "https://bank.example/r/9"},
        )

        assert response.status_code == status.HTTP_200_OK
        kwargs = payment_service.attach_receipt.await_args.kwargs
        assert kwargs["external_receipt_url"] == "https://bank.example/r/9"
        assert kwargs["receipt_url"] is None

    def test_delete_payment(self, client: TestClient, payment_service: AsyncMock, customer: User):
        payment_id = uuid.uuid4()

        response = client.delete(f"{PAYMENTS_URL}/{payment_id}")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["message"] == "Payment deleted successfully"
        payment_service.delete_payment.assert_awaited_once_with(customer, payment_id)


class TestAuthentication:
    def test_missing_token(self, test_client: TestClient):
        response = test_client.get(PAYMENTS_URL)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        body = response.json()
        assert body["code"] == "HTTP_401"
        assert response.headers["WWW-Authenticate"] == "Bearer"
