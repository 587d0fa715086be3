"""
Clock and timer abstraction on top of asyncio.

Timer handles die with the process; the scheduler never persists them and
always derives fresh ones from a Clock after recovery.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional

from loguru import logger

from .models import utc_now


class TimerHandle:
    """Cancellable handle for a callback armed with Clock.after()."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    def cancel(self) -> bool:
        """
        Disarm the timer.

        Returns:
            bool: True if the timer was still pending and is now cancelled
        """
        if self._task.done():
            return False
        return self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()


class Clock:
    """
    Wall clock plus asyncio-based one-shot timers.

    Examples:
        >>> clock = Clock()
        >>> handle = clock.after(5.0, fire_task)
        >>> handle.cancel()
        True
    """

    def now(self) -> datetime:
        """Current instant, timezone-aware UTC."""
        return utc_now()

    def after(
        self,
        delay: float,
        callback: Callable[[], Awaitable[None]],
        name: Optional[str] = None
    ) -> TimerHandle:
        """
        Run an async callback once after `delay` seconds.

        A negative delay runs the callback on the next loop iteration.

        Args:
            delay (float): Seconds to wait
            callback (Callable): Zero-argument coroutine function
            name (str, optional): Task name for debugging

        Returns:
            TimerHandle: Handle that can disarm the timer before it fires
        """
        task = asyncio.create_task(self._run_later(max(delay, 0.0), callback), name=name)
        return TimerHandle(task)

    @staticmethod
    async def _run_later(delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        await asyncio.sleep(delay)
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Timer callback {getattr(callback, '__name__', callback)} failed: {e}")
