"""
Trading Engine for FX Trader

Composition root that wires the execution components together:
- InstrumentRegistry, PositionSizer and OrderBuilder for order construction
- EventBus shared by every component
- TradeExecutor for immediate execution
- ExecutionScheduler for deferred execution with recovery
- BreakEvenMonitor and ExecutionJournal as bus processors

Callers talk to the engine only; it decides whether an intent runs now or is
scheduled.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Union

from loguru import logger

from .broker.gateway import BrokerGateway
from .config import EngineConfig
from .core.clock import Clock
from .core.event_bus import EventBus
from .core.event_processor import EventOrchestrator
from .core.exceptions import InvalidParameters, PersistenceError
from .core.models import BatchResult, OrderOutcome, OrderPreview, Quote, ScheduledTask, TradeIntent
from .core.task_store import TaskStore
from .execution.executor import TradeExecutor
from .execution.orders import OrderBuilder
from .execution.scheduler import ExecutionScheduler
from .execution.sizing import PositionSizer
from .processors.break_even import BreakEvenMonitor
from .processors.journal import ExecutionJournal


class TradingEngine:
    """
    Owns the lifecycle of all execution components.

    Startup order: event bus, processors, scheduler (recovery last, so
    recovered tasks that fire immediately already have a monitor and a
    journal listening). Shutdown runs in reverse.

    Examples:
        >>> async with TradingEngine(gateway, SqliteTaskStore("tasks.db")) as engine:
        ...     outcome = await engine.submit(intent)
        ...     task_id = await engine.submit(intent, fire_at=tomorrow_open)
        ...     await engine.cancel(task_id)
        True
    """

    def __init__(
        self,
        gateway: BrokerGateway,
        store: TaskStore,
        config: Optional[EngineConfig] = None,
        clock: Optional[Clock] = None
    ):
        self.config = config or EngineConfig()
        self.gateway = gateway
        self.store = store
        self.clock = clock or Clock()

        self.registry = self.config.build_registry()
        self.sizer = PositionSizer(self.registry)
        self.builder = OrderBuilder(self.sizer)

        self.event_bus = EventBus()
        self.executor = TradeExecutor(gateway, self.event_bus, self.builder)
        self.scheduler = ExecutionScheduler(
            self.executor,
            store,
            self.event_bus,
            clock=self.clock,
            missed_task_policy=self.config.missed_task_policy,
        )

        self.break_even_monitor = BreakEvenMonitor(
            self.event_bus,
            gateway,
            registry=self.registry,
            poll_interval=self.config.poll_interval_seconds,
        )
        self.journal = ExecutionJournal(self.event_bus)

        self.orchestrator = EventOrchestrator(self.event_bus)
        self.orchestrator.register(self.journal)
        self.orchestrator.register(self.break_even_monitor)

        self._running = False

    async def start(self) -> None:
        """
        Start the bus, the processors and the scheduler.

        A recovery failure is logged and the engine keeps running; tasks
        scheduled afterwards still work.
        """
        if self._running:
            return

        logger.info(f"Starting TradingEngine ({self.config.environment})")
        await self.event_bus.start()
        health = await self.orchestrator.start_all()
        running = sum(health.values())
        logger.info(f"{running}/{len(health)} processor(s) running")

        try:
            await self.scheduler.start()
        except PersistenceError as e:
            logger.error(f"Continuing without recovered tasks: {e}")

        self._running = True
        logger.info("TradingEngine started")

    async def stop(self) -> None:
        if not self._running:
            return

        logger.info("Stopping TradingEngine")
        await self.scheduler.stop()
        await self.orchestrator.stop_all()
        await self.event_bus.stop()
        self._running = False
        logger.info("TradingEngine stopped")

    async def __aenter__(self) -> "TradingEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def submit(
        self,
        intent: TradeIntent,
        fire_at: Optional[datetime] = None
    ) -> Union[OrderOutcome, str]:
        """
        Execute an intent now, or schedule it.

        Args:
            intent (TradeIntent): What to trade
            fire_at (datetime, optional): When to execute; now if omitted

        Returns:
            OrderOutcome when executed now, otherwise the scheduled task id

        Raises:
            SchedulingError: If fire_at is not in the future
            PersistenceError: If the scheduled task could not be stored
        """
        if fire_at is None:
            return await self.executor.execute_single(intent)
        return await self.scheduler.schedule([intent], fire_at)

    async def submit_batch(
        self,
        intents: Sequence[TradeIntent],
        fire_at: Optional[datetime] = None
    ) -> Union[BatchResult, str]:
        """
        Execute many intents now, or schedule them as one task.

        An empty batch executed now gives an empty BatchResult.

        Returns:
            BatchResult when executed now, otherwise the scheduled task id

        Raises:
            InvalidParameters: If an empty batch is scheduled
            SchedulingError: If fire_at is not in the future
            PersistenceError: If the scheduled task could not be stored
        """
        if fire_at is None:
            return await self.executor.execute_batch(intents)
        return await self.scheduler.schedule(intents, fire_at)

    async def cancel(self, task_id: str) -> bool:
        return await self.scheduler.cancel(task_id)

    def pending(self) -> List[ScheduledTask]:
        return self.scheduler.pending()

    async def preview(self, intent: TradeIntent) -> OrderPreview:
        return await self.executor.preview(intent)

    async def quotes(self, instruments: Iterable[str]) -> Dict[str, Quote]:
        """Current quotes for several instruments; missing prices are omitted."""
        return await self.gateway.get_quotes(instruments)

    async def close_trade(self, trade_id: str) -> None:
        """Close an open trade at market."""
        logger.info(f"Closing trade {trade_id}")
        await self.gateway.close_trade(trade_id)

    async def move_to_break_even(self, trade_id: str, instrument: str, entry_price: float) -> None:
        """
        Move an open trade's stop-loss to its entry price now.

        Independent of BreakEvenMonitor; no profit threshold is checked.

        Raises:
            InvalidParameters: If entry_price is not positive
            GatewayError: If the broker refuses the modification
        """
        if entry_price <= 0:
            raise InvalidParameters(f"entry_price must be positive, got {entry_price}")

        stop_loss = self.registry.round_price(instrument, entry_price)
        await self.gateway.modify_trade(trade_id, stop_loss=stop_loss, instrument=instrument)
        logger.info(f"Trade {trade_id} stop moved to break-even at {stop_loss}")

    @property
    def is_running(self) -> bool:
        return self._running

    def processor_health(self) -> Dict[str, bool]:
        return self.orchestrator.health()
