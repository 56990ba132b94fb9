"""Time sources for the simulated transport and the query cache.

All times are milliseconds. ``SystemClock`` uses the event loop for real;
``ManualClock`` runs on virtual time that only moves when ``advance`` is
called, which makes latency-dependent interleavings reproducible.
"""

import asyncio
import heapq
import itertools
import time
from typing import Protocol, runtime_checkable

# Event-loop turns given to woken tasks before virtual time moves again.
_SETTLE_TURNS = 50


@runtime_checkable
class Clock(Protocol):
    def now(self) -> float:
        """Current time in milliseconds."""

    async def sleep(self, ms: float) -> None:
        """Suspend the calling task for ``ms`` milliseconds."""


class SystemClock:
    """Wall-clock time backed by ``time.monotonic`` and ``asyncio.sleep``."""

    def now(self) -> float:
        return time.monotonic() * 1000.0

    async def sleep(self, ms: float) -> None:
        await asyncio.sleep(max(ms, 0.0) / 1000.0)


class ManualClock:
    """Virtual clock. Sleepers wake only when ``advance`` passes their deadline.

    Usage::

        clock = ManualClock()
        task = asyncio.create_task(transport.perform(request))
        await clock.advance(1200)   # every latency draw has elapsed
        response = await task
    """

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = start_ms
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        """Number of tasks currently asleep on this clock."""
        return sum(1 for _, _, fut in self._sleepers if not fut.done())

    async def sleep(self, ms: float) -> None:
        if ms <= 0:
            await asyncio.sleep(0)
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + ms, next(self._seq), fut))
        await fut

    async def advance(self, ms: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        await _settle()
        target = self._now + ms
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, fut = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            if not fut.done():
                fut.set_result(None)
            await _settle()
        self._now = target
        await _settle()

    async def run_until_idle(self, max_steps: int = 10_000) -> None:
        """Keep advancing to the next deadline until nobody is asleep."""
        await _settle()
        for _ in range(max_steps):
            if not self._sleepers:
                return
            await self.advance(self._sleepers[0][0] - self._now)
        msg = f"clock still has sleepers after {max_steps} steps"
        raise RuntimeError(msg)


async def _settle() -> None:
    for _ in range(_SETTLE_TURNS):
        await asyncio.sleep(0)
