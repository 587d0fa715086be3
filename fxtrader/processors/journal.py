"""
Execution Journal for FX Trader

Subscribes to every outcome event and writes one structured log line per
event, keeping running counts per event type. This is the engine's audit
trail; it holds no trading state of its own.
"""

from collections import Counter
from typing import Dict, List

from loguru import logger

from ..core.event_bus import Event, EventType
from ..core.event_processor import EventProcessor

JOURNALED_EVENTS: List[EventType] = [
    EventType.ORDER_SUBMITTED,
    EventType.ORDER_FILLED,
    EventType.ORDER_REJECTED,
    EventType.BATCH_COMPLETED,
    EventType.TASK_SCHEDULED,
    EventType.TASK_FIRED,
    EventType.TASK_CANCELLED,
    EventType.TASK_MISSED,
    EventType.BREAK_EVEN_ARMED,
    EventType.BREAK_EVEN_COMPLETED,
    EventType.BREAK_EVEN_ABORTED,
    EventType.ERROR,
]

_WARNING_EVENTS = {
    EventType.ORDER_REJECTED,
    EventType.TASK_MISSED,
    EventType.BREAK_EVEN_ABORTED,
}


class ExecutionJournal(EventProcessor):
    """
    Logs order, task and break-even events as they happen.

    Examples:
        >>> journal = ExecutionJournal(bus)
        >>> await journal.start()
        >>> journal.count(EventType.ORDER_FILLED)
        0
    """

    def __init__(self, event_bus):
        super().__init__(event_bus)
        self._counts: Counter = Counter()

    def subscriptions(self):
        return [(event_type, self._on_event) for event_type in JOURNALED_EVENTS]

    async def _on_event(self, event: Event) -> None:
        self._counts[event.event_type] += 1

        details = " ".join(f"{k}={v}" for k, v in event.data.items())
        message = f"[journal] {event.event_type.value} from {event.source}: {details}"

        if event.event_type is EventType.ERROR:
            logger.error(message)
        elif event.event_type in _WARNING_EVENTS:
            logger.warning(message)
        else:
            logger.info(message)

    def count(self, event_type: EventType) -> int:
        return self._counts[event_type]

    @property
    def orders_filled_count(self) -> int:
        return self._counts[EventType.ORDER_FILLED]

    @property
    def orders_rejected_count(self) -> int:
        return self._counts[EventType.ORDER_REJECTED]

    @property
    def tasks_fired_count(self) -> int:
        return self._counts[EventType.TASK_FIRED]

    @property
    def break_even_completed_count(self) -> int:
        return self._counts[EventType.BREAK_EVEN_COMPLETED]

    @property
    def break_even_aborted_count(self) -> int:
        return self._counts[EventType.BREAK_EVEN_ABORTED]

    @property
    def counts(self) -> Dict[str, int]:
        """Snapshot of event counts keyed by event type value."""
        return {event_type.value: n for event_type, n in self._counts.items()}
