"""
Unit tests for EventProcessor and EventOrchestrator.

Tests cover:
- Processor lifecycle: idempotent start/stop, declared subscriptions
- Rollback of subscriptions when startup fails
- A failing shutdown hook still leaves the processor stopped
- Orchestrator ordering, health report and all-failed startup
"""

import pytest

from fxtrader.core.event_bus import Event, EventBus, EventType
from fxtrader.core.event_processor import EventOrchestrator, EventProcessor


class RecordingProcessor(EventProcessor):
    """Processor that records its lifecycle calls and received events."""

    def __init__(self, event_bus: EventBus, log=None, fail_start=False, fail_stop=False):
        super().__init__(event_bus)
        self.log = log if log is not None else []
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.received = []

    def subscriptions(self):
        return [
            (EventType.ORDER_FILLED, self._on_event),
            (EventType.ORDER_REJECTED, self._on_event),
        ]

    async def _on_start(self) -> None:
        self.log.append(("start", self))
        if self.fail_start:
            raise ConnectionError("broker unreachable")

    async def _on_stop(self) -> None:
        self.log.append(("stop", self))
        if self.fail_stop:
            raise RuntimeError("cleanup failed")

    async def _on_event(self, event: Event) -> None:
        self.received.append(event)


class BrokenSubscriptions(RecordingProcessor):
    """Second subscription is invalid, so start fails after the first succeeds."""

    def subscriptions(self):
        return [
            (EventType.ORDER_FILLED, self._on_event),
            ("order_rejected", self._on_event),
        ]


@pytest.fixture
def bus():
    return EventBus()


class TestEventProcessor:

    @pytest.mark.asyncio
    async def test_start_subscribes_declared_handlers(self, bus):
        processor = RecordingProcessor(bus)

        await processor.start()

        assert processor.is_running
        assert bus.subscriber_count(EventType.ORDER_FILLED) == 1
        assert bus.subscriber_count(EventType.ORDER_REJECTED) == 1

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, bus):
        processor = RecordingProcessor(bus)

        await processor.start()
        await processor.start()
        assert [call for call, _ in processor.log] == ["start"]
        assert bus.subscriber_count(EventType.ORDER_FILLED) == 1

        await processor.stop()
        await processor.stop()
        assert [call for call, _ in processor.log] == ["start", "stop"]
        assert not processor.is_running
        assert bus.subscriber_count(EventType.ORDER_FILLED) == 0

    @pytest.mark.asyncio
    async def test_stopped_processor_receives_nothing(self, bus):
        processor = RecordingProcessor(bus)
        await bus.start()
        await processor.start()

        await bus.publish(Event(EventType.ORDER_FILLED, {"trade_id": "101"}, "test"))
        await bus.drain()
        await processor.stop()
        await bus.publish(Event(EventType.ORDER_FILLED, {"trade_id": "102"}, "test"))
        await bus.drain()
        await bus.stop()

        assert [e.data["trade_id"] for e in processor.received] == ["101"]

    @pytest.mark.asyncio
    async def test_failed_start_hook_propagates(self, bus):
        processor = RecordingProcessor(bus, fail_start=True)

        with pytest.raises(ConnectionError):
            await processor.start()

        assert not processor.is_running
        assert bus.subscriber_count(EventType.ORDER_FILLED) == 0

    @pytest.mark.asyncio
    async def test_failed_subscription_rolls_back(self, bus):
        processor = BrokenSubscriptions(bus)

        with pytest.raises(TypeError):
            await processor.start()

        assert not processor.is_running
        assert bus.subscriber_count(EventType.ORDER_FILLED) == 0

    @pytest.mark.asyncio
    async def test_failing_stop_hook_still_marks_stopped(self, bus):
        processor = RecordingProcessor(bus, fail_stop=True)
        await processor.start()

        await processor.stop()

        assert not processor.is_running
        assert bus.subscriber_count(EventType.ORDER_FILLED) == 0

        await processor.start()
        assert processor.is_running


class TestEventOrchestrator:

    @pytest.mark.asyncio
    async def test_start_in_order_stop_in_reverse(self, bus):
        log = []
        first = RecordingProcessor(bus, log)
        second = RecordingProcessor(bus, log)
        orchestrator = EventOrchestrator(bus)
        orchestrator.register(first)
        orchestrator.register(second)

        await orchestrator.start_all()
        await orchestrator.stop_all()

        assert log == [("start", first), ("start", second), ("stop", second), ("stop", first)]

    @pytest.mark.asyncio
    async def test_register_twice_is_ignored(self, bus):
        processor = RecordingProcessor(bus)
        orchestrator = EventOrchestrator(bus)

        orchestrator.register(processor)
        orchestrator.register(processor)

        assert orchestrator.health() == {"RecordingProcessor": False}

    def test_register_rejects_other_bus(self, bus):
        orchestrator = EventOrchestrator(bus)

        with pytest.raises(ValueError, match="different event bus"):
            orchestrator.register(RecordingProcessor(EventBus()))

    @pytest.mark.asyncio
    async def test_partial_start_failure_reported(self, bus):
        healthy = RecordingProcessor(bus)
        broken = BrokenSubscriptions(bus)
        orchestrator = EventOrchestrator(bus)
        orchestrator.register(broken)
        orchestrator.register(healthy)

        health = await orchestrator.start_all()

        assert health == {"BrokenSubscriptions": False, "RecordingProcessor": True}
        assert healthy.is_running

    @pytest.mark.asyncio
    async def test_all_failed_raises(self, bus):
        orchestrator = EventOrchestrator(bus)
        orchestrator.register(RecordingProcessor(bus, fail_start=True))
        orchestrator.register(BrokenSubscriptions(bus))

        with pytest.raises(RuntimeError, match="No processor started"):
            await orchestrator.start_all()

    @pytest.mark.asyncio
    async def test_empty_orchestrator_starts(self, bus):
        orchestrator = EventOrchestrator(bus)

        assert await orchestrator.start_all() == {}

    @pytest.mark.asyncio
    async def test_stop_all_survives_failing_hook(self, bus):
        log = []
        first = RecordingProcessor(bus, log)
        second = RecordingProcessor(bus, log, fail_stop=True)
        orchestrator = EventOrchestrator(bus)
        orchestrator.register(first)
        orchestrator.register(second)
        await orchestrator.start_all()

        await orchestrator.stop_all()

        assert log[-2:] == [("stop", second), ("stop", first)]
        assert not first.is_running and not second.is_running
