"""
Session Timer - Cancellable countdown that forces submission at zero

The countdown is anchored to the event loop's monotonic clock, so a
slow tick never makes the deadline drift earlier, and the expiry
callback runs at most once per timer.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class SessionTimer:
    """
    Owned periodic-task handle counting down an exam duration.

    Args:
        duration_seconds: Whole seconds to count down from
        on_expire: Coroutine function awaited once when the count reaches zero
        tick_interval: Real seconds per counted second (tests shrink this)
        on_tick: Optional callback receiving the remaining seconds after each tick
    """

    def __init__(
        self,
        duration_seconds: int,
        on_expire: Callable[[], Awaitable[None]],
        tick_interval: float = 1.0,
        on_tick: Optional[Callable[[int], None]] = None
    ):
        if duration_seconds < 0:
            raise ValueError("duration_seconds must be >= 0")
        if tick_interval <= 0:
            raise ValueError("tick_interval must be > 0")

        self.duration_seconds = int(duration_seconds)
        self.tick_interval = tick_interval
        self._on_expire = on_expire
        self._on_tick = on_tick

        self._remaining = self.duration_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopped = False
        self._expired = False

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self):
        """Start counting down. Must be called from inside a running loop."""
        if self._task is not None:
            raise RuntimeError("Timer already started")
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self):
        """
        Stop the countdown immediately.

        Safe to call from the expiry callback itself: the timer task is
        only flagged then, so the callback keeps running to completion.
        """
        self._stopped = True
        if self._task is None or self._task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if self._task is not current:
            self._task.cancel()

    async def wait(self):
        """Wait for the timer task to finish (cancelled or expired)"""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    async def _run(self):
        loop = asyncio.get_running_loop()
        started = loop.time()
        ticks = 0

        while self._remaining > 0:
            ticks += 1
            target = started + ticks * self.tick_interval
            # asyncio may wake within clock resolution of the deadline
            while loop.time() < target:
                await asyncio.sleep(target - loop.time())

            if self._stopped:
                return

            self._remaining -= 1
            if self._on_tick is not None:
                try:
                    self._on_tick(self._remaining)
                except Exception as e:
                    logger.warning(f"Timer tick listener error: {e}")

        if self._stopped or self._expired:
            return

        self._expired = True
        logger.info(f"Exam timer expired after {self.duration_seconds}s")
        await self._on_expire()
