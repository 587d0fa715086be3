"""
Execution Scheduler for FX Trader

This module defers single and batch submissions to a future instant:
- schedule(): validate, persist, then arm a timer
- cancel(): idempotent pending -> cancelled transition
- recover(): reload persisted tasks after a restart and re-arm or fire them

Task lifecycle: pending -> fired | cancelled, both terminal. A task record
is removed from the store exactly once; whichever of fire or cancel deletes
it first wins and the other becomes a no-op.

Known limitation: a task is executed before its record is deleted. If the
delete fails the record survives and the task fires again on the next
recovery, so execution is at-least-once in that window.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Literal, Optional, Sequence, Set, Union

from loguru import logger

from ..core.clock import Clock, TimerHandle
from ..core.event_bus import Event, EventBus, EventType
from ..core.exceptions import InvalidParameters, PersistenceError, SchedulingError
from ..core.models import ScheduledTask, TradeIntent, as_utc
from ..core.task_store import TaskStore
from .executor import TradeExecutor

MissedTaskPolicy = Literal["fire", "skip"]


class ExecutionScheduler:
    """
    Owns deferred tasks: persists, arms, cancels, fires and recovers them.

    Configuration:
        missed_task_policy (str): What recovery does with a task whose fire
            time passed while the process was down. 'fire' (default) executes
            it immediately; 'skip' drops it and publishes TASK_MISSED.

    Examples:
        >>> scheduler = ExecutionScheduler(executor, store, bus)
        >>> await scheduler.start()  # recovers persisted tasks
        >>> task_id = await scheduler.schedule([intent], fire_at)
        >>> await scheduler.cancel(task_id)
        True
        >>> await scheduler.cancel(task_id)
        False
    """

    def __init__(
        self,
        executor: TradeExecutor,
        store: TaskStore,
        event_bus: EventBus,
        clock: Optional[Clock] = None,
        missed_task_policy: MissedTaskPolicy = "fire"
    ):
        if missed_task_policy not in ("fire", "skip"):
            raise ValueError(
                f"missed_task_policy must be 'fire' or 'skip', got {missed_task_policy!r}"
            )

        self.executor = executor
        self.store = store
        self.event_bus = event_bus
        self.clock = clock or Clock()
        self.missed_task_policy = missed_task_policy

        self._tasks: Dict[str, ScheduledTask] = {}
        self._timers: Dict[str, TimerHandle] = {}
        self._firing: Set[str] = set()
        self._running: bool = False

        self._tasks_fired: int = 0
        self._tasks_cancelled: int = 0

    async def start(self) -> None:
        """
        Start accepting timers and recover persisted tasks.

        Raises:
            PersistenceError: If the store cannot be listed (logged first)
        """
        if self._running:
            return
        self._running = True
        logger.info("Starting ExecutionScheduler")
        await self.recover()

    async def stop(self) -> None:
        """
        Disarm every timer. Persisted records are left for the next process.
        """
        if not self._running:
            return
        self._running = False

        for timer in self._timers.values():
            timer.cancel()
        disarmed = len(self._timers)
        self._timers.clear()
        self._tasks.clear()

        logger.info(f"ExecutionScheduler stopped ({disarmed} timer(s) disarmed)")

    async def schedule(
        self,
        intents: Union[TradeIntent, Sequence[TradeIntent]],
        fire_at: datetime
    ) -> str:
        """
        Defer execution of one or many intents until fire_at.

        The task is persisted before its timer is armed, so a crash in between
        leaves a record that recovery will pick up.

        Args:
            intents: A single intent or a non-empty sequence of intents
            fire_at: Instant to execute at; naive datetimes are taken as UTC

        Returns:
            str: Task id usable with cancel()

        Raises:
            InvalidParameters: If the payload is empty
            SchedulingError: If fire_at is not strictly in the future
            PersistenceError: If the task could not be stored (nothing is armed)
        """
        if isinstance(intents, TradeIntent):
            intents = [intents]
        intents = list(intents)
        if not intents:
            raise InvalidParameters("Cannot schedule an empty batch")

        fire_at = as_utc(fire_at)
        now = self.clock.now()
        if fire_at <= now:
            raise SchedulingError(
                f"Scheduled time must be in the future (fire_at={fire_at.isoformat()}, "
                f"now={now.isoformat()})"
            )

        task = ScheduledTask(intents=intents, fire_at=fire_at, created_at=now)

        try:
            self.store.put(task)
        except PersistenceError as e:
            logger.error(f"Failed to persist scheduled task: {e}")
            raise

        self._tasks[task.id] = task
        self._arm(task)

        logger.info(
            f"Scheduled task {task.id}: {len(task.intents)} trade(s) "
            f"at {task.fire_at.isoformat()}"
        )
        await self._publish(EventType.TASK_SCHEDULED, {
            "task_id": task.id,
            "fire_at": task.fire_at.isoformat(),
            "intents": len(task.intents),
        })
        return task.id

    async def cancel(self, task_id: str) -> bool:
        """
        Cancel a pending task.

        Returns:
            bool: True only if this call moved the task from pending to
                cancelled. False if the task is unknown, already terminal,
                already firing, or its record was already gone.

        Raises:
            PersistenceError: If the store failed; the task stays armed
        """
        task = self._tasks.get(task_id)
        if task is None or not task.is_pending or task_id in self._firing:
            logger.debug(f"Cancel of task {task_id} ignored (not pending)")
            return False

        try:
            removed = self.store.delete(task_id)
        except PersistenceError as e:
            logger.error(f"Failed to cancel task {task_id}: {e}")
            raise

        timer = self._timers.pop(task_id, None)
        if timer is not None:
            timer.cancel()
        self._tasks.pop(task_id, None)

        if not removed:
            logger.debug(f"Task {task_id} record already removed; cancel is a no-op")
            return False

        task.status = "cancelled"
        self._tasks_cancelled += 1
        logger.info(f"Cancelled scheduled task {task_id}")
        await self._publish(EventType.TASK_CANCELLED, {"task_id": task_id})
        return True

    def get(self, task_id: str) -> Optional[ScheduledTask]:
        return self._tasks.get(task_id)

    def pending(self) -> List[ScheduledTask]:
        """Pending tasks known to this scheduler, soonest first."""
        return sorted(
            (t for t in self._tasks.values() if t.is_pending),
            key=lambda t: t.fire_at
        )

    async def recover(self) -> int:
        """
        Reload persisted tasks and re-arm or resolve them.

        Future tasks are re-armed for their remaining delay. Elapsed tasks
        follow missed_task_policy. Records in a terminal status are removed.

        Returns:
            int: Number of tasks re-armed or fired

        Raises:
            PersistenceError: If the store cannot be listed (logged first)
        """
        try:
            stored = self.store.list_all()
        except PersistenceError as e:
            logger.error(f"Scheduled task recovery failed: {e}")
            raise

        now = self.clock.now()
        recovered = 0
        for task in stored:
            if task.id in self._tasks:
                continue

            if not task.is_pending:
                logger.warning(f"Removing stale {task.status} task {task.id} from store")
                self._delete_quietly(task.id)
                continue

            if task.fire_at <= now and self.missed_task_policy == "skip":
                logger.warning(
                    f"Skipping task {task.id}: fire time {task.fire_at.isoformat()} "
                    f"passed while offline"
                )
                self._delete_quietly(task.id)
                await self._publish(EventType.TASK_MISSED, {
                    "task_id": task.id,
                    "fire_at": task.fire_at.isoformat(),
                })
                continue

            if task.fire_at <= now:
                logger.warning(
                    f"Task {task.id} was due at {task.fire_at.isoformat()}; firing now"
                )
            self._tasks[task.id] = task
            self._arm(task)
            recovered += 1

        logger.info(f"Recovered {recovered} scheduled task(s) from store")
        return recovered

    def _arm(self, task: ScheduledTask) -> None:
        delay = (task.fire_at - self.clock.now()).total_seconds()

        async def fire() -> None:
            await self._fire(task.id)

        self._timers[task.id] = self.clock.after(delay, fire, name=f"scheduled-{task.id}")
        logger.debug(f"Armed task {task.id} in {max(delay, 0.0):.3f}s")

    async def _fire(self, task_id: str) -> None:
        """Execute a due task, then mark it fired and delete its record."""
        task = self._tasks.get(task_id)
        if task is None or not task.is_pending or task_id in self._firing:
            return

        self._firing.add(task_id)
        self._timers.pop(task_id, None)
        logger.info(f"Firing scheduled task {task_id} ({len(task.intents)} trade(s))")

        try:
            if task.is_batch:
                result = await self.executor.execute_batch(task.intents)
                succeeded, failed = result.succeeded, result.failed
            else:
                outcome = await self.executor.execute_single(task.intents[0])
                succeeded, failed = (1, 0) if outcome.is_filled else (0, 1)
        except asyncio.CancelledError:
            self._firing.discard(task_id)
            raise
        except Exception as e:
            logger.error(f"Scheduled task {task_id} failed during execution: {e}")
            await self._publish(EventType.ERROR, {
                "error_type": type(e).__name__,
                "error_message": str(e),
                "component": "ExecutionScheduler",
                "context": f"fire:{task_id}",
            })
            succeeded, failed = 0, len(task.intents)

        task.status = "fired"
        self._tasks_fired += 1
        self._tasks.pop(task_id, None)
        self._firing.discard(task_id)

        try:
            if not self.store.delete(task_id):
                logger.debug(f"Task {task_id} record already removed")
        except PersistenceError as e:
            logger.error(
                f"Task {task_id} fired but its record could not be removed; "
                f"it will fire again on next recovery: {e}"
            )

        await self._publish(EventType.TASK_FIRED, {
            "task_id": task_id,
            "succeeded": succeeded,
            "failed": failed,
        })

    def _delete_quietly(self, task_id: str) -> None:
        try:
            self.store.delete(task_id)
        except PersistenceError as e:
            logger.error(f"Failed to remove task {task_id} during recovery: {e}")

    async def _publish(self, event_type: EventType, data: dict) -> None:
        try:
            await self.event_bus.publish(
                Event(event_type=event_type, data=data, source="ExecutionScheduler")
            )
        except Exception as e:
            logger.error(f"Failed to publish {event_type.value}: {e}")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_count(self) -> int:
        return len(self.pending())

    @property
    def tasks_fired_count(self) -> int:
        return self._tasks_fired

    @property
    def tasks_cancelled_count(self) -> int:
        return self._tasks_cancelled
