"""
Tests for the transaction boundary shared by the fulfillment services
and for model relationship loading.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from src.database.connection import _convert_database_url_to_async, transaction_scope
from src.database.models import DeliveryItem, Order, Payment, PaymentReceipt
from src.services.errors import (
    AccessDeniedError,
    PersistenceError,
    TransactionTimeoutError,
)


class TestTransactionScope:
    @pytest.mark.asyncio
    async def test_commits_on_success(self, mock_session: AsyncMock):
        async with transaction_scope(mock_session, "create_order") as session:
            session.add(object())

        mock_session.commit.assert_awaited_once()
        mock_session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fulfillment_errors_pass_through(self, mock_session: AsyncMock):
        with pytest.raises(AccessDeniedError):
            async with transaction_scope(mock_session, "create_order"):
                raise AccessDeniedError("Not allowed to create payments for this customer")

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_database_errors_become_persistence_errors(self, mock_session: AsyncMock):
        mock_session.commit.side_effect = IntegrityError(
            "INSERT INTO payments", {}, Exception("duplicate key")
        )

        with pytest.raises(PersistenceError) as exc_info:
            async with transaction_scope(mock_session, "create_payment", order_id="o-1"):
                pass

        assert exc_info.value.context["operation"] == "create_payment"
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_deadline(self, mock_session: AsyncMock):
        with pytest.raises(TransactionTimeoutError) as exc_info:
            async with transaction_scope(mock_session, "reduce_stock", timeout_seconds=0.01):
                await asyncio.sleep(1)

        assert exc_info.value.context["timeout_seconds"] == 0.01
        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_errors_are_not_committed(self, mock_session: AsyncMock):
        with pytest.raises(KeyError):
            async with transaction_scope(mock_session, "create_order"):
                raise KeyError("orderItems")

        mock_session.commit.assert_not_awaited()


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@db/meals", "postgresql+asyncpg://u:p@db/meals"),
        ("postgresql+asyncpg://u:p@db/meals", "postgresql+asyncpg://u:p@db/meals"),
    ],
)
def test_database_url_uses_asyncpg(url, expected):
    assert _convert_database_url_to_async(url) == expected


@pytest.mark.parametrize(
    "model, relationship",
    [
        (Order, "delivery_items"),
        (Order, "payment"),
        (DeliveryItem, "order"),
        (Payment, "order"),
        (Payment, "receipts"),
        (PaymentReceipt, "payment"),
    ],
)
def test_unloaded_relationships_raise_instead_of_reading_empty(model, relationship: str):
    assert inspect(model).relationships[relationship].lazy == "raise"
