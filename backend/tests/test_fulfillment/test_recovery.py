"""
Tests for the post-payment fulfillment runner and the outbox recovery service.
"""

import uuid
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from src.database.models import FulfillmentTask, Order, User
from src.database.models.fulfillment import FulfillmentTaskKind, FulfillmentTaskStatus
from src.services.delivery_items.service import MaterializationResult
from src.services.fulfillment.recovery import FulfillmentRecoveryService
from src.services.fulfillment.runner import FulfillmentOutcome, FulfillmentRunner
from src.services.inventory.reconciler import ReductionResult
from src.services.orders.normalizer import normalize_order_data
from src.services.orders.spec import OrderSpec

EXPAND = FulfillmentTaskKind.EXPAND_DELIVERY_ITEMS
REDUCE = FulfillmentTaskKind.REDUCE_STOCK


@pytest.fixture
def order(customer: User, make_order: Callable[..., Order]) -> Order:
    return make_order(customer)


@pytest.fixture
def spec(order: Order, order_payload: dict[str, Any]) -> OrderSpec:
    return normalize_order_data(order_payload, user_id=order.user_id)


@pytest.fixture
def runner(mock_session: AsyncMock, order: Order) -> FulfillmentRunner:
    delivery_items = AsyncMock()
    delivery_items.materialize.return_value = MaterializationResult(
        order_id=order.id, created_count=4, skipped_count=2, delivery_items_count=4
    )
    delivery_items.is_materialized.return_value = True
    reconciler = AsyncMock()
    reconciler.reduce_for_spec.return_value = ReductionResult(order_id=order.id, total_units=6)
    runner = FulfillmentRunner(mock_session, delivery_items=delivery_items, reconciler=reconciler)
    runner.tasks = AsyncMock()
    return runner


def recorded(runner: FulfillmentRunner) -> list[tuple]:
    return [call.args[1:3] for call in runner.tasks.mark.await_args_list]


class TestFulfillmentRunner:
    @pytest.mark.asyncio
    async def test_runs_expansion_then_reduction(
        self, runner: FulfillmentRunner, order: Order, spec: OrderSpec
    ):
        outcome = await runner.run(order, spec)

        assert outcome.succeeded
        assert outcome.delivery_items.created_count == 4
        assert outcome.stock.total_units == 6
        assert recorded(runner) == [
            (EXPAND, FulfillmentTaskStatus.COMPLETED),
            (REDUCE, FulfillmentTaskStatus.COMPLETED),
        ]

    @pytest.mark.asyncio
    async def test_failed_expansion_leaves_reduction_pending(
        self, runner: FulfillmentRunner, order: Order, spec: OrderSpec
    ):
        runner.delivery_items.materialize.side_effect = ValueError("no address for Lunch")

        outcome = await runner.run(order, spec)

        assert not outcome.succeeded
        assert outcome.failed_steps == [EXPAND.value]
        assert outcome.to_dict()["stock"] is None
        runner.reconciler.reduce_for_spec.assert_not_awaited()
        assert recorded(runner) == [(EXPAND, FulfillmentTaskStatus.FAILED)]

    @pytest.mark.asyncio
    async def test_failed_reduction_is_recorded(
        self, runner: FulfillmentRunner, order: Order, spec: OrderSpec
    ):
        runner.reconciler.reduce_for_spec.side_effect = OperationalError(
            "UPDATE products", {}, Exception("deadlock detected")
        )

        outcome = await runner.run(order, spec)

        assert outcome.failed_steps == [REDUCE.value]
        assert outcome.delivery_items is not None
        assert recorded(runner) == [
            (EXPAND, FulfillmentTaskStatus.COMPLETED),
            (REDUCE, FulfillmentTaskStatus.FAILED),
        ]

    @pytest.mark.asyncio
    async def test_only_requested_steps_run(
        self, runner: FulfillmentRunner, order: Order, spec: OrderSpec
    ):
        await runner.run(order, spec, kinds={REDUCE})

        runner.delivery_items.materialize.assert_not_awaited()
        runner.delivery_items.is_materialized.assert_awaited_once_with(order.id)
        assert recorded(runner) == [(REDUCE, FulfillmentTaskStatus.COMPLETED)]

    @pytest.mark.asyncio
    async def test_reduction_alone_waits_for_delivery_items(
        self, runner: FulfillmentRunner, order: Order, spec: OrderSpec
    ):
        runner.delivery_items.is_materialized.return_value = False

        outcome = await runner.run(order, spec, kinds={REDUCE})

        assert outcome.failed_steps == [REDUCE.value]
        assert outcome.stock is None
        runner.reconciler.reduce_for_spec.assert_not_awaited()
        assert recorded(runner) == [(REDUCE, FulfillmentTaskStatus.FAILED)]
        assert runner.tasks.mark.await_args.args[3] == "Delivery items have not been created yet"

    @pytest.mark.asyncio
    async def test_reduction_after_expansion_skips_materialized_check(
        self, runner: FulfillmentRunner, order: Order, spec: OrderSpec
    ):
        runner.delivery_items.is_materialized.return_value = False

        outcome = await runner.run(order, spec)

        assert outcome.succeeded
        runner.delivery_items.is_materialized.assert_not_awaited()
        runner.reconciler.reduce_for_spec.assert_awaited_once_with(order.id, spec)

    @pytest.mark.asyncio
    async def test_failure_to_record_is_not_raised(
        self, runner: FulfillmentRunner, mock_session: AsyncMock, order: Order, spec: OrderSpec
    ):
        runner.tasks.mark.side_effect = OperationalError(
            "UPDATE fulfillment_tasks", {}, Exception("connection lost")
        )

        outcome = await runner.run(order, spec)

        assert outcome.succeeded
        assert mock_session.rollback.await_count == 2


class TestFulfillmentRecovery:
    @pytest.fixture
    def recovery(self, mock_session: AsyncMock) -> FulfillmentRecoveryService:
        runner = AsyncMock(spec=FulfillmentRunner)
        recovery = FulfillmentRecoveryService(mock_session, runner=runner)
        recovery.tasks = AsyncMock()
        recovery.orders = AsyncMock()
        return recovery

    @staticmethod
    def task(order: Order, kind: FulfillmentTaskKind, payload: dict[str, Any]) -> FulfillmentTask:
        return FulfillmentTask(
            id=uuid.uuid4(),
            order_id=order.id,
            kind=kind,
            payload=payload,
            status=FulfillmentTaskStatus.FAILED,
            attempts=1,
        )

    @pytest.mark.asyncio
    async def test_retries_unfinished_steps_per_order(
        self,
        recovery: FulfillmentRecoveryService,
        order: Order,
        spec: OrderSpec,
    ):
        payload = spec.to_payload()
        recovery.tasks.list_retryable.return_value = [
            self.task(order, EXPAND, payload),
            self.task(order, REDUCE, payload),
        ]
        recovery.orders.get_by_id.return_value = order
        recovery.runner.run.return_value = FulfillmentOutcome(order_id=order.id)

        summary = await recovery.retry_pending(limit=10)

        assert summary == {"orders": 1, "recovered": 1, "failed": 0}
        recovery.tasks.list_retryable.assert_awaited_once_with(10, 5)
        run_order, run_spec, kinds = recovery.runner.run.await_args.args
        assert run_order is order
        assert run_spec == spec
        assert kinds == {EXPAND, REDUCE}

    @pytest.mark.asyncio
    async def test_still_failing_order_is_counted(
        self,
        recovery: FulfillmentRecoveryService,
        order: Order,
        spec: OrderSpec,
    ):
        recovery.tasks.list_retryable.return_value = [self.task(order, REDUCE, spec.to_payload())]
        recovery.orders.get_by_id.return_value = order
        recovery.runner.run.return_value = FulfillmentOutcome(
            order_id=order.id, failed_steps=[REDUCE.value]
        )

        summary = await recovery.retry_pending()

        assert summary == {"orders": 1, "recovered": 0, "failed": 1}

    @pytest.mark.asyncio
    async def test_invalid_payload_is_recorded_as_failure(
        self,
        recovery: FulfillmentRecoveryService,
        order: Order,
    ):
        recovery.tasks.list_retryable.return_value = [
            self.task(order, EXPAND, {"orderItems": []}),
        ]
        recovery.orders.get_by_id.return_value = order

        summary = await recovery.retry_pending()

        assert summary["failed"] == 1
        recovery.runner.run.assert_not_awaited()
        order_id, kind, status, error = recovery.runner.record.await_args.args
        assert (order_id, kind, status) == (order.id, EXPAND, FulfillmentTaskStatus.FAILED)
        assert error.startswith("ValidationError")

    @pytest.mark.asyncio
    async def test_missing_order(
        self,
        recovery: FulfillmentRecoveryService,
        order: Order,
        spec: OrderSpec,
    ):
        recovery.tasks.list_retryable.return_value = [self.task(order, EXPAND, spec.to_payload())]
        recovery.orders.get_by_id.return_value = None

        summary = await recovery.retry_pending()

        assert summary == {"orders": 1, "recovered": 0, "failed": 1}
        recovery.runner.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_to_retry(self, recovery: FulfillmentRecoveryService):
        recovery.tasks.list_retryable.return_value = []

        summary = await recovery.retry_pending()

        assert summary == {"orders": 0, "recovered": 0, "failed": 0}


class TestRecoveredReductionOrdering:
    """Retries through a real runner never reduce stock before items exist."""

    @pytest.fixture
    def recovery(
        self, runner: FulfillmentRunner, mock_session: AsyncMock, order: Order
    ) -> FulfillmentRecoveryService:
        recovery = FulfillmentRecoveryService(mock_session, runner=runner)
        recovery.tasks = AsyncMock()
        recovery.orders = AsyncMock()
        recovery.orders.get_by_id.return_value = order
        return recovery

    @pytest.mark.asyncio
    async def test_reduction_left_after_expansion_gave_up(
        self,
        recovery: FulfillmentRecoveryService,
        runner: FulfillmentRunner,
        order: Order,
        spec: OrderSpec,
    ):
        # Expansion reached the attempt cap, only the untouched reduction is listed
        reduction = TestFulfillmentRecovery.task(order, REDUCE, spec.to_payload())
        reduction.status = FulfillmentTaskStatus.PENDING
        reduction.attempts = 0
        recovery.tasks.list_retryable.return_value = [reduction]
        runner.delivery_items.is_materialized.return_value = False

        summary = await recovery.retry_pending()

        assert summary == {"orders": 1, "recovered": 0, "failed": 1}
        runner.delivery_items.materialize.assert_not_awaited()
        runner.reconciler.reduce_for_spec.assert_not_awaited()
        assert recorded(runner) == [(REDUCE, FulfillmentTaskStatus.FAILED)]

    @pytest.mark.asyncio
    async def test_tasks_split_across_batches(
        self,
        recovery: FulfillmentRecoveryService,
        runner: FulfillmentRunner,
        order: Order,
        spec: OrderSpec,
    ):
        payload = spec.to_payload()
        recovery.tasks.list_retryable.side_effect = [
            [TestFulfillmentRecovery.task(order, REDUCE, payload)],
            [TestFulfillmentRecovery.task(order, EXPAND, payload)],
            [TestFulfillmentRecovery.task(order, REDUCE, payload)],
        ]
        runner.delivery_items.is_materialized.side_effect = [False, True]

        first = await recovery.retry_pending(limit=1)
        runner.reconciler.reduce_for_spec.assert_not_awaited()

        second = await recovery.retry_pending(limit=1)
        runner.delivery_items.materialize.assert_awaited_once()
        runner.reconciler.reduce_for_spec.assert_not_awaited()

        third = await recovery.retry_pending(limit=1)

        assert [first["recovered"], second["recovered"], third["recovered"]] == [0, 1, 1]
        runner.reconciler.reduce_for_spec.assert_awaited_once()
        assert recorded(runner) == [
            (REDUCE, FulfillmentTaskStatus.FAILED),
            (EXPAND, FulfillmentTaskStatus.COMPLETED),
            (REDUCE, FulfillmentTaskStatus.COMPLETED),
        ]
