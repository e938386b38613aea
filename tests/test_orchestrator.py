"""
Tests for the order routing pipeline.

Collaborators are faked: the ledger is an in-memory dict keyed by order id
with the same first-write-wins contract as the database table.
"""
import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from rate_router.core.exceptions import NoQuotesAvailable, OrderFetchFailure, ProviderError
from rate_router.modules.routing.decision import ReasonCode
from rate_router.modules.shipping.aggregator import AggregateResult
from rate_router.services.ledger import LedgerWriteResult
from rate_router.services.orchestrator import OrderRoutingOrchestrator, PipelineState
from tests.conftest import make_quote, make_settings


ORDER = {
    "orderId": 1001,
    "shipTo": {"postalCode": "10001"},
    "weight": {"value": 16, "units": "ounces"},
    "items": [{"quantity": 1}],
    "advancedOptions": {"storeId": 42},
}


class InMemoryLedger:
    def __init__(self, store, fail_writes=0):
        self.store = store
        self.fail_writes = fail_writes

    async def exists(self, order_id):
        return order_id in self.store

    async def record(self, decision):
        if self.fail_writes:
            self.fail_writes -= 1
            raise RuntimeError("database unavailable")
        if decision.order_id in self.store:
            return LedgerWriteResult.ALREADY_EXISTS
        self.store[decision.order_id] = decision
        return LedgerWriteResult.RECORDED


@asynccontextmanager
async def fake_session():
    yield None


def make_orchestrator(rules, store=None, quotes=None, order=ORDER, ledger=None, **settings_overrides):
    store = {} if store is None else store
    ledger = ledger or InMemoryLedger(store)

    aggregator = AsyncMock()
    aggregator.providers = []
    aggregator.quote.return_value = AggregateResult(
        quotes=quotes if quotes is not None else [
            make_quote("internal", 900, days_min=3),
            make_quote("ups", 1000, days_min=2),
        ]
    )

    order_client = AsyncMock()
    order_client.get_order.return_value = order

    signal = AsyncMock()
    signal.send.return_value = True

    orchestrator = OrderRoutingOrchestrator(
        aggregator=aggregator,
        rules=rules,
        order_client=order_client,
        signal=signal,
        settings=make_settings(**settings_overrides),
        session_factory=fake_session,
        ledger_factory=lambda db: ledger,
        sleep=AsyncMock(),
    )
    return orchestrator, store


class TestHappyPath:
    """A fresh order runs every stage."""

    @pytest.mark.asyncio
    async def test_order_is_decided_recorded_and_signalled(self, rules):
        orchestrator, store = make_orchestrator(rules)

        record = await orchestrator.process("1001")

        assert record.state == PipelineState.SIGNAL_SENT
        assert record.error is None
        decision = store["1001"]
        assert decision.chosen_carrier == "internal"
        assert decision.reason == ReasonCode.CHEAPEST
        assert decision.savings_cents == 100
        assert decision.zone == 1
        assert decision.organization_id == "42"
        orchestrator.signal.send.assert_awaited_once_with(decision)

    @pytest.mark.asyncio
    async def test_zone_attached_before_quoting(self, rules):
        orchestrator, _ = make_orchestrator(rules)

        await orchestrator.process("1001")

        request = orchestrator.aggregator.quote.await_args.args[0]
        assert request.zone == 1
        assert request.destination_postal_code == "10001"
        assert request.order_id == "1001"

    @pytest.mark.asyncio
    async def test_signal_failure_leaves_decision_recorded(self, rules):
        orchestrator, store = make_orchestrator(rules)
        orchestrator.signal.send.return_value = False

        record = await orchestrator.process("1001")

        assert record.state == PipelineState.LEDGER_WRITTEN
        assert "1001" in store

    @pytest.mark.asyncio
    async def test_overweight_order_goes_to_competitor(self, rules):
        heavy = dict(ORDER, weight={"value": 51, "units": "pounds"})
        orchestrator, store = make_orchestrator(rules, order=heavy)

        await orchestrator.process("1001")

        decision = store["1001"]
        assert decision.chosen_carrier == "ups"
        assert decision.reason == ReasonCode.INTERNAL_UNAVAILABLE
        assert any(note.startswith("internal:") for note in decision.eligibility_notes)

    @pytest.mark.asyncio
    async def test_no_quotes_is_still_recorded(self, rules):
        orchestrator, store = make_orchestrator(rules)
        orchestrator.aggregator.quote.side_effect = NoQuotesAvailable(
            "No quotes",
            errors=[ProviderError("upstream down", provider="shipengine", status_code=503)],
        )
        orchestrator.signal.send.return_value = False

        record = await orchestrator.process("1001")

        assert record.state == PipelineState.LEDGER_WRITTEN
        decision = store["1001"]
        assert decision.reason == ReasonCode.NO_QUOTES
        assert decision.chosen is None
        assert decision.provider_errors[0]["details"]["provider"] == "shipengine"


class TestIdempotency:
    """Redeliveries never produce a second decision."""

    @pytest.mark.asyncio
    async def test_redelivery_after_completion_is_duplicate(self, rules):
        orchestrator, store = make_orchestrator(rules)
        await orchestrator.process("1001")

        record = await orchestrator.process("1001")

        assert record.state == PipelineState.DUPLICATE
        assert orchestrator.order_client.get_order.await_count == 1
        assert orchestrator.aggregator.quote.await_count == 1
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_decision_from_another_instance_is_duplicate(self, rules):
        store = {}
        first, _ = make_orchestrator(rules, store=store)
        second, _ = make_orchestrator(rules, store=store)

        await first.process("1001")
        record = await second.process("1001")

        assert record.state == PipelineState.DUPLICATE
        second.order_client.get_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_instances_record_once(self, rules):
        store = {}
        first, _ = make_orchestrator(rules, store=store)
        second, _ = make_orchestrator(rules, store=store)

        records = await asyncio.gather(first.process("1001"), second.process("1001"))

        assert {r.state for r in records} == {PipelineState.SIGNAL_SENT, PipelineState.DUPLICATE}
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_in_flight_submit_is_ignored(self, rules):
        orchestrator, store = make_orchestrator(rules)
        release = asyncio.Event()

        async def slow_get_order(order_id):
            await release.wait()
            return ORDER

        orchestrator.order_client.get_order.side_effect = slow_get_order

        task = orchestrator.submit("1001")
        await asyncio.sleep(0)
        assert orchestrator.is_in_flight("1001")
        assert orchestrator.submit("1001") is None

        release.set()
        record = await task

        assert record.state == PipelineState.SIGNAL_SENT
        assert orchestrator.order_client.get_order.await_count == 1
        assert len(store) == 1


class TestOrderFetchRetry:
    """Order fetch backoff and abandonment."""

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, rules):
        orchestrator, store = make_orchestrator(rules)
        orchestrator.order_client.get_order.side_effect = [
            OrderFetchFailure("timeout", order_id="1001"),
            OrderFetchFailure("503", order_id="1001", status_code=503),
            ORDER,
        ]

        record = await orchestrator.process("1001")

        assert record.state == PipelineState.SIGNAL_SENT
        assert record.fetch_attempts == 3
        assert orchestrator._sleep.await_count == 2
        assert "1001" in store

    @pytest.mark.asyncio
    async def test_backoff_delay_is_capped(self, rules):
        orchestrator, _ = make_orchestrator(
            rules,
            ORDER_FETCH_MAX_ATTEMPTS=5,
            ORDER_FETCH_BASE_DELAY_SECONDS=1.0,
            ORDER_FETCH_MAX_DELAY_SECONDS=2.0,
        )
        orchestrator.order_client.get_order.side_effect = OrderFetchFailure("down", order_id="1001")

        await orchestrator.process("1001")

        delays = [c.args[0] for c in orchestrator._sleep.await_args_list]
        assert len(delays) == 4
        assert all(0 <= d <= 2.0 for d in delays)

    @pytest.mark.asyncio
    async def test_abandoned_after_max_attempts(self, rules):
        orchestrator, store = make_orchestrator(rules)
        orchestrator.order_client.get_order.side_effect = OrderFetchFailure("down", order_id="1001")

        record = await orchestrator.process("1001")

        assert record.state == PipelineState.ABANDONED
        assert record.fetch_attempts == 3
        assert record.error == "down"
        orchestrator.aggregator.quote.assert_not_awaited()
        orchestrator.signal.send.assert_not_awaited()
        assert store == {}

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self, rules):
        orchestrator, store = make_orchestrator(rules)
        orchestrator.order_client.get_order.side_effect = OrderFetchFailure(
            "not found", order_id="1001", transient=False, status_code=404
        )

        record = await orchestrator.process("1001")

        assert record.state == PipelineState.ABANDONED
        assert record.fetch_attempts == 1
        orchestrator._sleep.assert_not_awaited()
        assert store == {}

    @pytest.mark.asyncio
    async def test_order_without_postal_code_is_abandoned(self, rules):
        orchestrator, store = make_orchestrator(rules, order=dict(ORDER, shipTo={}))

        record = await orchestrator.process("1001")

        assert record.state == PipelineState.ABANDONED
        orchestrator.aggregator.quote.assert_not_awaited()
        assert store == {}

    @pytest.mark.asyncio
    async def test_order_with_unknown_weight_unit_is_abandoned(self, rules):
        odd = dict(ORDER, weight={"value": 3, "units": "stone"})
        orchestrator, store = make_orchestrator(rules, order=odd)

        record = await orchestrator.process("1001")

        assert record.state == PipelineState.ABANDONED
        assert record.fetch_attempts == 1
        assert "weight" in record.error
        orchestrator.aggregator.quote.assert_not_awaited()
        assert store == {}


class TestPreview:
    """Dry-run decisions leave no trace."""

    @pytest.mark.asyncio
    async def test_preview_decides_without_recording_or_signalling(self, rules):
        orchestrator, store = make_orchestrator(rules)

        decision = await orchestrator.preview("1001")

        assert decision.order_id == "1001"
        assert decision.chosen_carrier == "internal"
        assert decision.reason == ReasonCode.CHEAPEST
        assert store == {}
        assert orchestrator.records == {}
        orchestrator.signal.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_preview_then_webhook_runs_full_pipeline(self, rules):
        orchestrator, store = make_orchestrator(rules)

        await orchestrator.preview("1001")
        record = await orchestrator.process("1001")

        assert record.state == PipelineState.SIGNAL_SENT
        assert "1001" in store

    @pytest.mark.asyncio
    async def test_preview_raises_fetch_failure(self, rules):
        orchestrator, store = make_orchestrator(rules)
        orchestrator.order_client.get_order.side_effect = OrderFetchFailure(
            "not found", order_id="1001", transient=False, status_code=404
        )

        with pytest.raises(OrderFetchFailure):
            await orchestrator.preview("1001")

        assert store == {}
        assert orchestrator.records == {}


class TestResume:
    """A redelivery picks up where the previous run stopped."""

    @pytest.mark.asyncio
    async def test_resume_from_decided_reuses_decision(self, rules):
        store = {}
        ledger = InMemoryLedger(store, fail_writes=1)
        orchestrator, _ = make_orchestrator(rules, store=store, ledger=ledger)

        first = await orchestrator.process("1001")
        assert first.state == PipelineState.DECIDED
        assert "database unavailable" in first.error
        assert store == {}

        second = await orchestrator.process("1001")

        assert second.state == PipelineState.SIGNAL_SENT
        assert store["1001"] is first.decision
        assert orchestrator.order_client.get_order.await_count == 1
        assert orchestrator.aggregator.quote.await_count == 1

    @pytest.mark.asyncio
    async def test_resume_from_ledger_written_only_resends_signal(self, rules):
        orchestrator, store = make_orchestrator(rules)
        orchestrator.signal.send.side_effect = [False, True]

        first = await orchestrator.process("1001")
        assert first.state == PipelineState.LEDGER_WRITTEN

        second = await orchestrator.process("1001")

        assert second.state == PipelineState.SIGNAL_SENT
        assert orchestrator.signal.send.await_count == 2
        assert orchestrator.aggregator.quote.await_count == 1
        assert len(store) == 1


class TestSubmission:
    """Webhook resource URLs and shutdown."""

    @pytest.mark.asyncio
    async def test_single_order_resource(self, rules):
        orchestrator, store = make_orchestrator(rules)

        order_id = orchestrator.accept_resource("https://ssapi.example.com/orders/1001")
        assert order_id == "1001"

        task = orchestrator._tasks["1001"]
        await task
        assert "1001" in store

    @pytest.mark.asyncio
    async def test_batch_resource_submits_every_order(self, rules):
        orchestrator, store = make_orchestrator(rules)
        orchestrator.order_client.list_order_ids.return_value = ["1001", "1002"]

        result = orchestrator.accept_resource(
            "https://ssapi.example.com/orders?importBatch=abc123"
        )
        assert result is None

        batch_task = next(iter(orchestrator._batch_tasks))
        assert await batch_task == ["1001", "1002"]
        await asyncio.gather(*orchestrator._tasks.values())

        assert set(store) == {"1001", "1002"}

    @pytest.mark.asyncio
    async def test_batch_listing_failure_submits_nothing(self, rules):
        orchestrator, store = make_orchestrator(rules)
        orchestrator.order_client.list_order_ids.side_effect = OrderFetchFailure("batch gone", transient=False)

        orchestrator.accept_resource("https://ssapi.example.com/orders?importBatch=abc123")
        batch_task = next(iter(orchestrator._batch_tasks))

        assert await batch_task == []
        assert orchestrator._tasks == {}
        assert store == {}

    @pytest.mark.asyncio
    async def test_shutdown_cancels_without_writing(self, rules):
        orchestrator, store = make_orchestrator(rules)

        async def never_returns(order_id):
            await asyncio.Event().wait()

        orchestrator.order_client.get_order.side_effect = never_returns

        task = orchestrator.submit("1001")
        await asyncio.sleep(0)

        await orchestrator.shutdown()

        assert task.cancelled()
        assert store == {}
        assert orchestrator.records["1001"].state == PipelineState.DEDUPED
        orchestrator.aggregator.close.assert_awaited_once()
        orchestrator.order_client.close.assert_awaited_once()
        orchestrator.signal.close.assert_awaited_once()
