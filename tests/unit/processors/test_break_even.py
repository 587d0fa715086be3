"""
Unit tests for BreakEvenMonitor.

Tests cover:
- Stop moved to entry exactly once when the threshold is reached
- Long watches measured at bid, short watches at ask
- Abort on quote and modify failures, without retries
- Watches started from ORDER_FILLED events
- Shutdown cancelling active watches
"""

import asyncio

import pytest
import pytest_asyncio

from fxtrader.core.event_bus import Event, EventType
from fxtrader.core.exceptions import GatewayError, QuoteUnavailable
from fxtrader.processors.break_even import BreakEvenMonitor

POLL = 0.01


async def wait_for(condition, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest_asyncio.fixture
async def monitor(event_bus, broker):
    processor = BreakEvenMonitor(event_bus, broker, poll_interval=POLL)
    await processor.start()
    yield processor
    await processor.stop()


class TestWatch:

    @pytest.mark.asyncio
    async def test_moves_stop_once_threshold_reached(self, monitor, broker, event_bus):
        completed = []
        event_bus.subscribe(EventType.BREAK_EVEN_COMPLETED, lambda e: completed.append(e.data))
        broker.set_quote("EUR_USD", 1.10030, 1.10045)

        watch = monitor.watch("201", "EUR_USD", "long", 1.10015, threshold_pips=10)
        await asyncio.sleep(POLL * 5)
        assert broker.modified == []
        assert watch.is_active

        broker.set_quote("EUR_USD", 1.10120, 1.10135)
        await wait_for(lambda: watch.status == "completed")
        await asyncio.sleep(POLL * 5)
        await event_bus.drain()

        assert broker.modified == [("201", 1.10015, None)]
        assert watch.completed_at is not None
        assert monitor.completed_count == 1
        assert completed[0]["trade_id"] == "201"
        assert monitor.active_watches() == []

    @pytest.mark.asyncio
    async def test_long_measured_at_bid(self, monitor, broker):
        # ask is 12 pips up, bid only 8: not yet at threshold
        broker.set_quote("EUR_USD", 1.10080, 1.10120)

        watch = monitor.watch("202", "EUR_USD", "long", 1.10000, threshold_pips=10)
        await asyncio.sleep(POLL * 5)

        assert watch.is_active
        assert broker.modified == []

    @pytest.mark.asyncio
    async def test_short_measured_at_ask(self, monitor, broker):
        broker.set_quote("GBP_USD", 1.24870, 1.24890)

        watch = monitor.watch("203", "GBP_USD", "short", 1.25000, threshold_pips=10)
        await wait_for(lambda: watch.status == "completed")

        assert broker.modified == [("203", 1.25000, None)]

    @pytest.mark.asyncio
    async def test_losing_trade_keeps_polling(self, monitor, broker):
        broker.set_quote("EUR_USD", 1.09900, 1.09915)

        watch = monitor.watch("204", "EUR_USD", "long", 1.10015, threshold_pips=5)
        await asyncio.sleep(POLL * 5)

        assert watch.is_active
        assert broker.quote_requests >= 2

    @pytest.mark.asyncio
    async def test_duplicate_watch_returns_existing(self, monitor):
        first = monitor.watch("205", "EUR_USD", "long", 1.2, threshold_pips=10)
        second = monitor.watch("205", "EUR_USD", "long", 1.2, threshold_pips=10)

        assert first is second
        assert len(monitor.active_watches()) == 1

    @pytest.mark.asyncio
    async def test_jpy_threshold(self, monitor, broker):
        broker.set_quote("USD_JPY", 150.150, 150.170)

        watch = monitor.watch("206", "USD_JPY", "long", 150.020, threshold_pips=12)
        await wait_for(lambda: watch.status == "completed")

        assert broker.modified == [("206", 150.020, None)]


class TestAbort:

    @pytest.mark.asyncio
    async def test_quote_failure_aborts(self, monitor, broker, event_bus):
        aborted = []
        event_bus.subscribe(EventType.BREAK_EVEN_ABORTED, lambda e: aborted.append(e.data))
        broker.quote_errors["EUR_USD"] = QuoteUnavailable("No price available for EUR_USD")

        watch = monitor.watch("301", "EUR_USD", "long", 1.1, threshold_pips=10)
        await wait_for(lambda: watch.status == "aborted")
        requests = broker.quote_requests
        await asyncio.sleep(POLL * 5)
        await event_bus.drain()

        assert broker.quote_requests == requests
        assert "quote failed" in watch.error
        assert aborted[0]["trade_id"] == "301"
        assert monitor.aborted_count == 1

    @pytest.mark.asyncio
    async def test_modify_failure_aborts_without_retry(self, monitor, broker):
        broker.modify_error = GatewayError("TRADE_DOESNT_EXIST")
        broker.set_quote("EUR_USD", 1.2, 1.2001)

        watch = monitor.watch("302", "EUR_USD", "long", 1.1, threshold_pips=10)
        await wait_for(lambda: watch.status == "aborted")
        await asyncio.sleep(POLL * 5)

        assert "TRADE_DOESNT_EXIST" in watch.error
        assert broker.modified == []

    @pytest.mark.asyncio
    async def test_abort_does_not_affect_other_watches(self, monitor, broker):
        broker.quote_errors["GBP_USD"] = GatewayError("timeout")
        broker.set_quote("EUR_USD", 1.2, 1.2001)

        failing = monitor.watch("303", "GBP_USD", "long", 1.25, threshold_pips=10)
        healthy = monitor.watch("304", "EUR_USD", "long", 1.1, threshold_pips=10)
        await wait_for(lambda: failing.status == "aborted" and healthy.status == "completed")

        assert broker.modified == [("304", 1.1, None)]

    @pytest.mark.asyncio
    async def test_rewatch_after_abort(self, monitor, broker):
        broker.quote_errors["EUR_USD"] = GatewayError("timeout")
        first = monitor.watch("305", "EUR_USD", "long", 1.1, threshold_pips=10)
        await wait_for(lambda: first.status == "aborted")

        del broker.quote_errors["EUR_USD"]
        second = monitor.watch("305", "EUR_USD", "long", 1.1, threshold_pips=10)

        assert second is not first
        assert second.is_active


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_fill_event_starts_watch(self, monitor, event_bus):
        await event_bus.publish(Event(EventType.ORDER_FILLED, {
            "trade_id": "401",
            "instrument": "EUR_USD",
            "direction": "long",
            "units": 3773,
            "entry_price": 1.10015,
            "move_to_break_even": True,
            "break_even_pips": 10,
        }, "test"))
        await event_bus.drain()

        watch = monitor.get_watch("401")
        assert watch is not None
        assert watch.entry_price == 1.10015
        assert watch.threshold_pips == 10

    @pytest.mark.asyncio
    async def test_fill_without_break_even_ignored(self, monitor, event_bus):
        await event_bus.publish(Event(EventType.ORDER_FILLED, {
            "trade_id": "402",
            "instrument": "EUR_USD",
            "direction": "long",
            "entry_price": 1.10015,
            "move_to_break_even": False,
            "break_even_pips": None,
        }, "test"))
        await event_bus.drain()

        assert monitor.get_watch("402") is None

    @pytest.mark.asyncio
    async def test_stop_aborts_active_watches(self, event_bus, broker):
        monitor = BreakEvenMonitor(event_bus, broker, poll_interval=POLL)
        await monitor.start()
        broker.set_quote("EUR_USD", 1.0, 1.0001)
        watch = monitor.watch("403", "EUR_USD", "long", 1.1, threshold_pips=10)

        await monitor.stop()

        assert watch.status == "aborted"
        assert watch.error == "monitor stopped"
        assert not monitor.is_running
        assert event_bus.subscriber_count(EventType.ORDER_FILLED) == 0

    def test_invalid_poll_interval(self, broker):
        from fxtrader.core.event_bus import EventBus

        with pytest.raises(ValueError):
            BreakEvenMonitor(EventBus(), broker, poll_interval=0)
