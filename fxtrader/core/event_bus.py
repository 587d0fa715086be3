"""
Event Bus System for FX Trader

This module provides the publish-subscribe backbone of the execution engine.
Order fills fan out to the break-even monitor through it, and every order,
schedule and monitor transition is published on it so outcomes are observable
without coupling the components that produce them.
"""

from enum import Enum
from typing import Any, Callable, Dict, List
from dataclasses import dataclass
from datetime import datetime
import asyncio
import inspect
from loguru import logger

from .models import utc_now


class EventType(Enum):
    """
    Enumeration of all event types in the execution engine.

    Event values are string literals to keep log lines readable.
    All components should use these enum members rather than raw strings.

    Examples:
        >>> EventType.ORDER_FILLED
        <EventType.ORDER_FILLED: 'order_filled'>

        >>> EventType.ORDER_FILLED.value
        'order_filled'
    """

    ORDER_SUBMITTED = "order_submitted"
    """
    Emitted just before an order request is sent to the broker.

    Payload includes: instrument, units, entry_price, stop_loss_price,
    take_profit_price.
    """

    ORDER_FILLED = "order_filled"
    """
    Emitted when the broker confirms a fill and a trade is opened.

    Payload includes: trade_id, instrument, direction, units, entry_price,
    move_to_break_even, break_even_pips.

    Use case: The break-even monitor starts watching the trade when requested.
    """

    ORDER_REJECTED = "order_rejected"
    """
    Emitted when an intent fails at any step (quote, sizing or broker).

    Payload includes: instrument, direction, reason, error_type.
    """

    BATCH_COMPLETED = "batch_completed"
    """
    Emitted after every intent of a batch has an outcome.

    Payload includes: total, succeeded, failed.
    """

    TASK_SCHEDULED = "task_scheduled"
    """Emitted when a deferred task is persisted and armed. Payload: task_id, fire_at, intents."""

    TASK_FIRED = "task_fired"
    """Emitted after a deferred task has executed. Payload: task_id, succeeded, failed."""

    TASK_CANCELLED = "task_cancelled"
    """Emitted when a pending task is cancelled. Payload: task_id."""

    TASK_MISSED = "task_missed"
    """
    Emitted when recovery finds an elapsed task and the policy is to skip it.

    Payload includes: task_id, fire_at.
    """

    BREAK_EVEN_ARMED = "break_even_armed"
    """Emitted when a break-even watch starts polling. Payload: trade_id, threshold_pips."""

    BREAK_EVEN_COMPLETED = "break_even_completed"
    """
    Emitted when a trade's stop-loss was moved to its entry price.

    Payload includes: trade_id, instrument, entry_price, profit_pips.
    """

    BREAK_EVEN_ABORTED = "break_even_aborted"
    """
    Emitted when a watch stops on a quote or modify error. It is not retried.

    Payload includes: trade_id, instrument, error.
    """

    ERROR = "error"
    """
    Emitted when a component hits an unexpected failure.

    Payload includes: error_type, error_message, component, context.
    """

    def __str__(self) -> str:
        """Return the event type name (e.g., 'ORDER_FILLED')."""
        return self.name

    def __repr__(self) -> str:
        """Return the detailed representation of the event type."""
        return f"<EventType.{self.name}: '{self.value}'>"


@dataclass
class Event:
    """
    Event data structure for the event bus system.

    Attributes:
        event_type (EventType): The type of event being emitted
        data (Dict[str, Any]): Event payload data specific to the event type
        source (str): Component that emitted the event
        timestamp (datetime): When the event was created

    Examples:
        >>> event = Event(
        ...     event_type=EventType.ORDER_FILLED,
        ...     data={'trade_id': '42', 'instrument': 'EUR_USD'},
        ...     source='TradeExecutor'
        ... )
        >>> event.event_type
        <EventType.ORDER_FILLED: 'order_filled'>
    """

    event_type: EventType
    data: Dict[str, Any]
    source: str
    timestamp: datetime = None

    def __post_init__(self):
        """
        Validate event data and set timestamp if not provided.

        Raises:
            TypeError: If event_type is not EventType or data is not dict
        """
        if not isinstance(self.event_type, EventType):
            raise TypeError(
                f"event_type must be EventType enum, got {type(self.event_type).__name__}"
            )

        if not isinstance(self.data, dict):
            raise TypeError(
                f"data must be dict, got {type(self.data).__name__}"
            )

        if self.timestamp is None:
            self.timestamp = utc_now()

    def __str__(self) -> str:
        return f"Event({self.event_type.name} from {self.source} at {self.timestamp})"

    def __repr__(self) -> str:
        return (
            f"Event(event_type={self.event_type!r}, "
            f"source='{self.source}', "
            f"timestamp={self.timestamp!r}, "
            f"data={self.data!r})"
        )


class EventBus:
    """
    Central event bus for publish-subscribe event handling.

    Supports synchronous delivery through emit() and queued asynchronous
    delivery through publish() once start() has been awaited. A failing
    subscriber is logged and never prevents delivery to the others.

    Examples:
        >>> bus = EventBus()
        >>> await bus.start()
        >>> bus.subscribe(EventType.ORDER_FILLED, on_fill)
        >>> await bus.publish(Event(EventType.ORDER_FILLED, {'trade_id': '1'}, 'test'))
        >>> await bus.stop()
    """

    def __init__(self, handler_timeout: float = 1.0):
        """
        Initialize the event bus with empty subscriber lists.

        Args:
            handler_timeout (float): Seconds a single handler may run before
                it is abandoned with a warning. Defaults to 1.0.
        """
        self._subscribers: Dict[EventType, List[Callable[[Event], None]]] = {
            event_type: [] for event_type in EventType
        }
        self._handler_timeout = handler_timeout
        self._queue: asyncio.Queue = None  # Created in start() to use correct event loop
        self._running: bool = False
        self._task: asyncio.Task = None

    def subscribe(self, event_type: EventType, callback: Callable[[Event], None]) -> None:
        """
        Subscribe to a specific event type.

        Args:
            event_type (EventType): The event type to subscribe to
            callback (Callable): Sync or async function accepting an Event

        Raises:
            TypeError: If event_type is not an EventType enum member
        """
        if not isinstance(event_type, EventType):
            raise TypeError(f"event_type must be EventType enum, got {type(event_type)}")

        if callback not in self._subscribers[event_type]:
            self._subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: EventType, callback: Callable[[Event], None]) -> None:
        """Unsubscribe a callback from a specific event type."""
        if callback in self._subscribers[event_type]:
            self._subscribers[event_type].remove(callback)

    def emit(self, event: Event) -> None:
        """
        Synchronously deliver an event to all sync subscribers.

        Exceptions in callbacks are caught and logged to prevent one subscriber
        from breaking others.

        Raises:
            TypeError: If event is not an Event instance
        """
        if not isinstance(event, Event):
            raise TypeError(f"event must be Event instance, got {type(event)}")

        for callback in self._subscribers[event.event_type]:
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    f"Error in event subscriber for {event.event_type.value}: {e}"
                )

    def subscriber_count(self, event_type: EventType) -> int:
        """Get the number of subscribers for an event type."""
        return len(self._subscribers[event_type])

    def clear_subscribers(self, event_type: EventType = None) -> None:
        """Clear subscribers for one event type, or for all when None."""
        if event_type is None:
            for event_type in EventType:
                self._subscribers[event_type].clear()
        else:
            self._subscribers[event_type].clear()

    async def publish(self, event: Event) -> None:
        """
        Queue an event for asynchronous delivery without blocking the caller.

        Raises:
            TypeError: If event is not an Event instance
            RuntimeError: If event bus is not started
        """
        if not isinstance(event, Event):
            raise TypeError(f"event must be Event instance, got {type(event)}")

        if self._queue is None:
            raise RuntimeError("Event bus not started. Call start() first.")

        self._queue.put_nowait(event)

    async def start(self) -> None:
        """
        Start the async event processing loop.

        The processing loop runs until stop() is called.
        """
        if self._running:
            return

        # Create queue in the current event loop to avoid "different loop" errors
        self._queue = asyncio.Queue()
        self._running = True
        self._task = asyncio.create_task(self._process_events())

    async def _process_events(self) -> None:
        """
        Internal event processing loop.

        Runs until _running is False AND the queue is empty.
        """
        while True:
            event = None
            try:
                # Wait with timeout to allow checking _running flag
                event = await asyncio.wait_for(self._queue.get(), timeout=0.1)
                await self._dispatch(event)

            except asyncio.TimeoutError:
                if not self._running and self._queue.empty():
                    break
                continue
            except Exception as e:
                logger.error(f"Error processing event: {e}")
            finally:
                if event is not None:
                    self._queue.task_done()

    async def _dispatch(self, event: Event) -> None:
        """
        Dispatch an event to all subscribers with timeout protection.

        Async handlers are awaited directly; sync handlers run in a worker
        thread so they cannot block the event loop.
        """
        handlers = list(self._subscribers[event.event_type])

        logger.debug(
            f"Dispatching event {event.event_type.value} to {len(handlers)} handler(s)"
        )

        for callback in handlers:
            name = getattr(callback, "__name__", repr(callback))
            try:
                if inspect.iscoroutinefunction(callback):
                    await asyncio.wait_for(callback(event), timeout=self._handler_timeout)
                else:
                    await asyncio.wait_for(
                        asyncio.to_thread(callback, event),
                        timeout=self._handler_timeout
                    )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Handler {name} for event {event.event_type.value} "
                    f"exceeded {self._handler_timeout}s timeout"
                )
            except Exception as e:
                logger.error(
                    f"Error in event subscriber {name} "
                    f"for {event.event_type.value}: {e}"
                )

    async def stop(self) -> None:
        """
        Stop the event processing loop after draining queued events.

        No events are lost during shutdown unless the 5s drain timeout is hit.
        """
        if not self._running:
            return

        self._running = False

        try:
            await asyncio.wait_for(self._queue.join(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Event queue did not drain within 5s timeout")

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass  # Expected when cancelling

    async def drain(self) -> None:
        """Wait until every queued event has been dispatched."""
        if self._queue is not None:
            await self._queue.join()

    @property
    def is_running(self) -> bool:
        """Check if the event bus is currently running."""
        return self._running

    @property
    def queue_size(self) -> int:
        """Number of events waiting to be processed (0 if not started)."""
        if self._queue is None:
            return 0
        return self._queue.qsize()
