"""
locks.py - Mutual exclusion for sync work.

Two disciplines share the event loop:
- SyncLock serialises upload, download and form sync. Engines take it
  with try_hold() and drop the request when it is busy; form sync waits
  for it with hold().
- SerialWorkQueue runs submitted coroutines one at a time in FIFO order;
  nothing submitted to it is dropped.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncLock:
    """Single-holder lock with a non-blocking acquire for drop-on-busy callers."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._holder: str | None = None
        self._waiting = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked() or self._waiting > 0

    @property
    def holder(self) -> str | None:
        return self._holder

    @asynccontextmanager
    async def hold(self, owner: str) -> AsyncIterator[None]:
        """Wait for the lock, then hold it for the block."""
        self._waiting += 1
        try:
            await self._lock.acquire()
        finally:
            self._waiting -= 1
        self._holder = owner
        try:
            yield
        finally:
            self._holder = None
            self._lock.release()

    @asynccontextmanager
    async def try_hold(self, owner: str) -> AsyncIterator[bool]:
        """
        Hold the lock only if nobody holds or awaits it.

        Yields True when acquired; False means the caller must skip
        its work.
        """
        if self.busy:
            logger.debug(f"{owner} skipped: sync lock held by {self._holder}")
            yield False
            return
        await self._lock.acquire()
        self._holder = owner
        try:
            yield True
        finally:
            self._holder = None
            self._lock.release()


class SerialWorkQueue:
    """FIFO queue running one coroutine at a time."""

    def __init__(self, name: str = "work-queue") -> None:
        self.name = name
        self._lock = asyncio.Lock()
        self._pending = 0

    @property
    def pending(self) -> int:
        """Operations submitted and not yet finished, the running one included."""
        return self._pending

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def submit(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run an operation after every previously submitted one.

        Errors propagate to the submitter; the queue keeps going.
        """
        self._pending += 1
        try:
            async with self._lock:
                return await operation()
        finally:
            self._pending -= 1
