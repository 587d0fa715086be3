"""
Unit tests for TradeExecutor.

Tests cover:
- Single execution: fill, rejection, missing quote, zero size
- Batch execution with partial failure and input-ordered outcomes
- Published ORDER_* and BATCH_COMPLETED events
- Preview without submission
"""

from unittest.mock import AsyncMock

import pytest

from fxtrader.core.event_bus import EventType
from fxtrader.core.exceptions import GatewayError, QuoteUnavailable
from fxtrader.core.models import TradeIntent
from fxtrader.execution.executor import TradeExecutor


class EventRecorder:
    """Collects published events by type."""

    def __init__(self, bus, *event_types):
        self.events = []
        for event_type in event_types:
            bus.subscribe(event_type, self._on_event)

    async def _on_event(self, event):
        self.events.append(event)

    def of(self, event_type):
        return [e for e in self.events if e.event_type == event_type]


def intent_for(instrument, direction="long", **overrides):
    fields = dict(
        instrument=instrument,
        direction=direction,
        risk_amount=10.0,
        stop_loss_pips=25,
        take_profit_pips=50,
    )
    fields.update(overrides)
    return TradeIntent(**fields)


@pytest.fixture
def executor(broker, event_bus):
    return TradeExecutor(broker, event_bus)


class TestExecuteSingle:

    @pytest.mark.asyncio
    async def test_fill(self, executor, broker, event_bus, long_intent):
        recorder = EventRecorder(event_bus, EventType.ORDER_SUBMITTED, EventType.ORDER_FILLED)

        outcome = await executor.execute_single(long_intent)
        await event_bus.drain()

        assert outcome.is_filled
        assert outcome.trade_id == "101"
        assert outcome.units == 3773
        assert outcome.entry_price == 1.10015
        assert len(broker.submitted) == 1
        assert broker.submitted[0].stop_loss_price == 1.09765

        filled = recorder.of(EventType.ORDER_FILLED)
        assert len(filled) == 1
        assert filled[0].data["trade_id"] == "101"
        assert filled[0].data["direction"] == "long"
        assert filled[0].data["move_to_break_even"] is False
        assert len(recorder.of(EventType.ORDER_SUBMITTED)) == 1
        assert executor.orders_filled_count == 1

    @pytest.mark.asyncio
    async def test_broker_rejection(self, executor, broker, event_bus, long_intent):
        broker.reject("EUR_USD", "INSUFFICIENT_MARGIN")
        recorder = EventRecorder(event_bus, EventType.ORDER_REJECTED)

        outcome = await executor.execute_single(long_intent)
        await event_bus.drain()

        assert outcome.status == "rejected"
        assert outcome.reason == "INSUFFICIENT_MARGIN"
        assert outcome.error_type == "OrderRejected"
        assert recorder.of(EventType.ORDER_REJECTED)[0].data["reason"] == "INSUFFICIENT_MARGIN"
        assert executor.orders_rejected_count == 1

    @pytest.mark.asyncio
    async def test_missing_quote_not_submitted(self, executor, broker):
        outcome = await executor.execute_single(intent_for("AUD_CAD"))

        assert outcome.status == "rejected"
        assert outcome.error_type == "QuoteUnavailable"
        assert broker.submitted == []

    @pytest.mark.asyncio
    async def test_zero_units_not_submitted(self, executor, broker):
        intent = intent_for("EUR_USD", risk_amount=0.001, stop_loss_pips=500)

        outcome = await executor.execute_single(intent)

        assert outcome.status == "rejected"
        assert outcome.error_type == "InvalidParameters"
        assert "0 units" in outcome.reason
        assert broker.submitted == []

    @pytest.mark.asyncio
    async def test_gateway_error_becomes_outcome(self, executor, broker, long_intent):
        broker.submit_order = AsyncMock(side_effect=GatewayError("connection reset"))

        outcome = await executor.execute_single(long_intent)

        assert outcome.status == "rejected"
        assert outcome.reason == "connection reset"
        assert outcome.error_type == "GatewayError"

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_outcome(self, executor, broker, event_bus, long_intent):
        recorder = EventRecorder(event_bus, EventType.ORDER_REJECTED)
        broker.submit_order = AsyncMock(side_effect=AttributeError("'str' object has no attribute 'get'"))

        outcome = await executor.execute_single(long_intent)
        await event_bus.drain()

        assert outcome.status == "rejected"
        assert outcome.error_type == "AttributeError"
        assert recorder.of(EventType.ORDER_REJECTED)[0].data["error_type"] == "AttributeError"


class TestExecuteBatch:

    @pytest.mark.asyncio
    async def test_all_succeed(self, executor, broker, long_intent, short_intent):
        result = await executor.execute_batch([long_intent, short_intent])

        assert result.total == 2
        assert result.succeeded == 2
        assert result.all_succeeded
        assert len(broker.submitted) == 2

    @pytest.mark.asyncio
    async def test_partial_failure(self, executor, broker, event_bus):
        broker.reject("GBP_USD", "MARKET_HALTED")
        intents = [
            intent_for("EUR_USD"),
            intent_for("GBP_USD", "short"),
            intent_for("NZD_USD"),
            intent_for("USD_JPY", "short"),
        ]
        recorder = EventRecorder(event_bus, EventType.BATCH_COMPLETED)

        result = await executor.execute_batch(intents)
        await event_bus.drain()

        assert result.total == 4
        assert result.succeeded == 2
        assert result.failed == 2
        assert [o.intent.instrument for o in result.outcomes] == [
            "EUR_USD", "GBP_USD", "NZD_USD", "USD_JPY"
        ]
        assert [o.status for o in result.outcomes] == [
            "filled", "rejected", "rejected", "filled"
        ]
        assert result.outcomes[1].reason == "MARKET_HALTED"
        assert result.outcomes[2].error_type == "QuoteUnavailable"

        completed = recorder.of(EventType.BATCH_COMPLETED)[0].data
        assert completed["succeeded"] == 2
        assert completed["failed"] == 2
        assert {f["instrument"] for f in completed["failures"]} == {"GBP_USD", "NZD_USD"}

    @pytest.mark.asyncio
    async def test_unexpected_error_contained(self, executor, broker):
        original = broker.get_quote

        async def flaky(instrument):
            if instrument == "GBP_USD":
                raise KeyError("bid")
            return await original(instrument)

        broker.get_quote = flaky

        result = await executor.execute_batch([intent_for("EUR_USD"), intent_for("GBP_USD")])

        assert result.succeeded == 1
        assert result.outcomes[1].error_type == "KeyError"

    @pytest.mark.asyncio
    async def test_all_fail_never_raises(self, executor, broker):
        broker.quotes.clear()

        result = await executor.execute_batch([intent_for("EUR_USD"), intent_for("GBP_USD")])

        assert result.succeeded == 0
        assert result.failed == 2

    @pytest.mark.asyncio
    async def test_batch_runs_concurrently(self, executor, broker):
        broker.submit_delay = 0.05
        intents = [intent_for("EUR_USD") for _ in range(5)]

        result = await executor.execute_batch(intents)

        assert result.succeeded == 5
        assert len({o.trade_id for o in result.outcomes}) == 5

    @pytest.mark.asyncio
    async def test_empty_batch(self, executor):
        result = await executor.execute_batch([])
        assert result.total == 0


class TestPreview:

    @pytest.mark.asyncio
    async def test_preview_does_not_submit(self, executor, broker, long_intent):
        preview = await executor.preview(long_intent)

        assert preview.order.units == 3773
        assert preview.spread_pips == pytest.approx(1.5)
        assert preview.risk_per_pip == pytest.approx(10 / 26.5)
        assert preview.quote.ask == 1.10015
        assert broker.submitted == []

    @pytest.mark.asyncio
    async def test_preview_raises_without_quote(self, executor):
        with pytest.raises(QuoteUnavailable):
            await executor.preview(intent_for("AUD_CAD"))
