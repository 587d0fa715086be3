"""
Break-Even Monitor for FX Trader

This module moves a filled trade's stop-loss to its entry price once the
trade is far enough in profit:
- Subscribes to ORDER_FILLED and starts a watch when break-even was requested
- Polls the broker quote at a fixed interval
- Modifies the stop once, then stops polling

A watch that hits any quote or modify error is aborted: the failure is logged
and published as BREAK_EVEN_ABORTED, never retried, and never affects other
watches.
"""

import asyncio
from typing import Dict, List, Optional

from loguru import logger

from ..broker.gateway import BrokerGateway
from ..core.event_bus import Event, EventBus, EventType
from ..core.event_processor import EventProcessor
from ..core.models import BreakEvenWatch, Direction, utc_now
from ..execution.instruments import InstrumentRegistry


class BreakEvenMonitor(EventProcessor):
    """
    One polling task per watched trade, at most one active watch per trade.

    Watch lifecycle: active -> completed | aborted.

    Configuration:
        poll_interval (float): Seconds between quote polls (default: 1.0)

    Examples:
        >>> monitor = BreakEvenMonitor(bus, gateway)
        >>> await monitor.start()
        >>> watch = monitor.watch("123", "EUR_USD", "long", 1.10015, threshold_pips=15)
        >>> watch.status
        'active'
        >>> await monitor.stop()
    """

    def __init__(
        self,
        event_bus: EventBus,
        gateway: BrokerGateway,
        registry: Optional[InstrumentRegistry] = None,
        poll_interval: float = 1.0
    ):
        super().__init__(event_bus)
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")

        self.gateway = gateway
        self.registry = registry or InstrumentRegistry()
        self.poll_interval = poll_interval

        self._watches: Dict[str, BreakEvenWatch] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._completed: int = 0
        self._aborted: int = 0

    def subscriptions(self):
        return [(EventType.ORDER_FILLED, self._on_order_filled)]

    async def _on_stop(self) -> None:
        """Cancel every running watch; they do not survive a restart."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning(f"Stopped {len(tasks)} active break-even watch(es)")
        self._tasks.clear()

        # a task cancelled before its first step never reaches its own handler
        for watch in self.active_watches():
            watch.status = "aborted"
            watch.error = "monitor stopped"
            watch.completed_at = utc_now()

    async def _on_order_filled(self, event: Event) -> None:
        data = event.data
        if not data.get("move_to_break_even"):
            return

        try:
            self.watch(
                trade_id=str(data["trade_id"]),
                instrument=data["instrument"],
                direction=data["direction"],
                entry_price=float(data["entry_price"]),
                threshold_pips=float(data["break_even_pips"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Cannot start break-even watch from fill {data}: {e}")

    def watch(
        self,
        trade_id: str,
        instrument: str,
        direction: Direction,
        entry_price: float,
        threshold_pips: float
    ) -> BreakEvenWatch:
        """
        Start watching a filled trade.

        If the trade already has an active watch, that watch is returned and
        no second poller is started.

        Returns:
            BreakEvenWatch: The (possibly existing) active watch
        """
        existing = self._watches.get(trade_id)
        if existing is not None and existing.is_active:
            logger.debug(f"Trade {trade_id} already has an active break-even watch")
            return existing

        watch = BreakEvenWatch(
            trade_id=trade_id,
            instrument=instrument,
            direction=direction,
            entry_price=entry_price,
            threshold_pips=threshold_pips,
        )
        self._watches[trade_id] = watch
        self._tasks[trade_id] = asyncio.create_task(
            self._run(watch), name=f"break-even-{trade_id}"
        )

        logger.info(
            f"Watching trade {trade_id} ({direction} {instrument} @ {entry_price}) "
            f"for break-even at +{threshold_pips} pips"
        )
        return watch

    async def _run(self, watch: BreakEvenWatch) -> None:
        try:
            await self._publish(EventType.BREAK_EVEN_ARMED, {
                "trade_id": watch.trade_id,
                "instrument": watch.instrument,
                "threshold_pips": watch.threshold_pips,
            })
            while watch.is_active:
                await asyncio.sleep(self.poll_interval)

                try:
                    profit_pips = await self._profit_pips(watch)
                except Exception as e:
                    await self._abort(watch, f"quote failed: {e}")
                    return

                if profit_pips < watch.threshold_pips:
                    continue

                try:
                    await self.gateway.modify_trade(
                        watch.trade_id,
                        stop_loss=watch.entry_price,
                        instrument=watch.instrument,
                    )
                except Exception as e:
                    await self._abort(watch, f"modify failed: {e}")
                    return

                await self._complete(watch, profit_pips)
        except asyncio.CancelledError:
            if watch.is_active:
                watch.status = "aborted"
                watch.error = "monitor stopped"
                watch.completed_at = utc_now()
            raise
        finally:
            self._tasks.pop(watch.trade_id, None)

    async def _profit_pips(self, watch: BreakEvenWatch) -> float:
        """Open profit in pips, measured at the price the trade could close at."""
        quote = await self.gateway.get_quote(watch.instrument)
        price = quote.exit_price(watch.direction)
        distance = price - watch.entry_price
        if watch.direction == "short":
            distance = -distance
        return self.registry.to_pips(watch.instrument, distance)

    async def _complete(self, watch: BreakEvenWatch, profit_pips: float) -> None:
        watch.status = "completed"
        watch.completed_at = utc_now()
        self._completed += 1

        logger.info(
            f"Moved stop-loss of trade {watch.trade_id} to break-even "
            f"{watch.entry_price} at +{profit_pips:.1f} pips"
        )
        await self._publish(EventType.BREAK_EVEN_COMPLETED, {
            "trade_id": watch.trade_id,
            "instrument": watch.instrument,
            "entry_price": watch.entry_price,
            "profit_pips": profit_pips,
        })

    async def _abort(self, watch: BreakEvenWatch, error: str) -> None:
        watch.status = "aborted"
        watch.error = error
        watch.completed_at = utc_now()
        self._aborted += 1

        logger.error(f"Break-even watch for trade {watch.trade_id} aborted: {error}")
        await self._publish(EventType.BREAK_EVEN_ABORTED, {
            "trade_id": watch.trade_id,
            "instrument": watch.instrument,
            "error": error,
        })

    async def _publish(self, event_type: EventType, data: dict) -> None:
        try:
            await self.event_bus.publish(
                Event(event_type=event_type, data=data, source="BreakEvenMonitor")
            )
        except Exception as e:
            logger.error(f"Failed to publish {event_type.value}: {e}")

    def get_watch(self, trade_id: str) -> Optional[BreakEvenWatch]:
        return self._watches.get(trade_id)

    def active_watches(self) -> List[BreakEvenWatch]:
        return [w for w in self._watches.values() if w.is_active]

    @property
    def completed_count(self) -> int:
        return self._completed

    @property
    def aborted_count(self) -> int:
        return self._aborted
