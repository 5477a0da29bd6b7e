"""
debounce.py - Delayed task with cancel-and-reschedule semantics.
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class DebouncedTask:
    """
    Run a coroutine once a burst of triggers has gone quiet.

    Every schedule() call cancels the pending run and starts a new
    delay, so only the last trigger of a burst fires.
    """

    def __init__(self, callback: Callable[[], Awaitable[object]], delay: float, name: str = "debounced"):
        self._callback = callback
        self._delay = delay
        self._name = name
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> bool:
        """
        (Re)start the quiet period.

        Returns:
            False when no event loop is running and nothing was scheduled
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"{self._name}: no running event loop, trigger ignored")
            return False
        if self._task is not asyncio.current_task():
            self.cancel()
        self._task = loop.create_task(self._run_after_delay())
        return True

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait(self) -> None:
        """Wait until no run is scheduled or in progress, reschedules included."""
        while self._task is not None:
            task = self._task
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
            if self._task is task:
                return

    async def _run_after_delay(self) -> None:
        await asyncio.sleep(self._delay)
        try:
            await self._callback()
        except Exception as e:
            logger.error(f"{self._name} failed: {e}")
