"""
Event processors for FX Trader

A processor is a long-lived bus subscriber with a start/stop lifecycle. It
declares which events it wants through subscriptions(); the base class owns
subscribing and unsubscribing, so a processor cannot leak a handler on stop or
after a failed start.

EventOrchestrator starts a group of processors as one unit (the engine owns
one holding the execution journal and the break-even monitor) and reports
which of them are running.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Tuple

from loguru import logger

from .event_bus import Event, EventBus, EventType

Handler = Callable[[Event], Awaitable[None]]


class EventProcessor(ABC):
    """
    Base class for bus subscribers.

    start() runs _on_start() and then subscribes every pair returned by
    subscriptions(). stop() unsubscribes first, so no new event reaches the
    processor while _on_stop() tears it down.

    Examples:
        >>> class FillCounter(EventProcessor):
        ...     def subscriptions(self):
        ...         return [(EventType.ORDER_FILLED, self._on_fill)]
        ...
        ...     async def _on_fill(self, event):
        ...         self.fills += 1
    """

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self._is_started = False
        self._active: List[Tuple[EventType, Handler]] = []

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def subscriptions(self) -> List[Tuple[EventType, Handler]]:
        """Event types and the handlers that receive them."""

    async def _on_start(self) -> None:
        pass

    async def _on_stop(self) -> None:
        pass

    async def start(self) -> None:
        """
        Start the processor. A second call while running does nothing.

        Raises:
            Exception: Whatever _on_start() or subscription raised; any
                handlers already subscribed are removed first
        """
        if self._is_started:
            return

        try:
            await self._on_start()
            for event_type, handler in self.subscriptions():
                self.event_bus.subscribe(event_type, handler)
                self._active.append((event_type, handler))
        except Exception as e:
            self._unsubscribe_all()
            logger.error(f"{self.name} failed to start: {e}")
            raise

        self._is_started = True
        logger.info(f"{self.name} started ({len(self._active)} subscription(s))")

    async def stop(self) -> None:
        """
        Stop the processor. Never raises; a failing _on_stop() is logged and
        the processor is still marked stopped.
        """
        if not self._is_started:
            return

        self._unsubscribe_all()
        try:
            await self._on_stop()
        except Exception as e:
            logger.error(f"{self.name} shutdown hook failed: {e}")
        finally:
            self._is_started = False
        logger.info(f"{self.name} stopped")

    def _unsubscribe_all(self) -> None:
        for event_type, handler in self._active:
            self.event_bus.unsubscribe(event_type, handler)
        self._active.clear()

    @property
    def is_running(self) -> bool:
        return self._is_started


class EventOrchestrator:
    """
    Starts processors in registration order and stops them in reverse.

    One processor failing to start does not prevent the others; start_all()
    raises only when none of them came up.
    """

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self._processors: List[EventProcessor] = []

    def register(self, processor: EventProcessor) -> None:
        if processor.event_bus is not self.event_bus:
            raise ValueError(f"{processor.name} is bound to a different event bus")
        if processor in self._processors:
            return
        self._processors.append(processor)
        logger.debug(f"Registered {processor.name}")

    async def start_all(self) -> Dict[str, bool]:
        """
        Start every registered processor.

        Returns:
            Processor name to running flag, as from health()

        Raises:
            RuntimeError: If processors are registered and all failed to start
        """
        for processor in self._processors:
            try:
                await processor.start()
            except Exception:
                # already logged by the processor
                continue

        failed = [p.name for p in self._processors if not p.is_running]
        if failed and len(failed) == len(self._processors):
            raise RuntimeError(f"No processor started: {', '.join(failed)}")
        if failed:
            logger.warning(f"Processors not running: {', '.join(failed)}")
        return self.health()

    async def stop_all(self) -> None:
        for processor in reversed(self._processors):
            await processor.stop()

    def health(self) -> Dict[str, bool]:
        """Running flag per registered processor, in registration order."""
        return {p.name: p.is_running for p in self._processors}
