"""Bounded admission for concurrent claim sessions.

Each claim session drives a full browser context, so the number that may run
at once is capped.  Callers beyond the cap wait in strict FIFO order and are
handed a slot directly by whoever releases one.

Key exports:
    ConcurrencyLimiter: ``acquire`` / ``release`` / ``status`` plus the
        ``slot()`` async context manager.

Usage::

    limiter = ConcurrencyLimiter(max_concurrent=3)
    async with limiter.slot():
        await run_session()

The limiter is an asyncio primitive for a single event loop; it is not
shared across processes.
"""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Deque, Dict

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 10


class ConcurrencyLimiter:
    """FIFO counting limiter with direct slot hand-off.

    Invariant: ``active <= max_concurrent`` at every observable point.  A
    waiter is woken only by receiving a released slot, so a newly arriving
    caller can never overtake the queue.
    """

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._active = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    async def acquire(self) -> None:
        """Take a slot, suspending in FIFO order while none is free.

        There is no timeout here.  Every successful ``acquire`` must be
        paired with exactly one ``release``, normally in a ``finally``.
        """
        if self._active < self.max_concurrent and not self.queued:
            self._active += 1
            return

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        logger.debug(
            "Slot wait queued (active=%d, queued=%d)",
            self._active, self.queued,
        )
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # A slot was handed over just before cancellation landed
                self.release()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        """Free a slot, handing it to the oldest live waiter if any.

        Raises:
            RuntimeError: If no slot is currently held.
        """
        if self._active <= 0:
            raise RuntimeError("release() called without a held slot")

        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                # Slot transfers to the waiter; active count is unchanged
                fut.set_result(None)
                return
        self._active -= 1

    def status(self) -> Dict[str, int]:
        """Snapshot for observability: active, queued and the cap."""
        return {
            "active": self._active,
            "queued": self.queued,
            "max_concurrent": self.max_concurrent,
        }

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one slot for the duration of the ``async with`` block."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()
