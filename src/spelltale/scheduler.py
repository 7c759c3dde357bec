"""
Timer capability shared by the reveal engine, prefetcher and realtime channel.

Every delayed callback in the client goes through a ``Scheduler`` so the
owner can cancel it and tests can drive time deterministically:

- AsyncioScheduler: backed by the running event loop (production).
- VirtualScheduler: a manual clock; callbacks fire only when ``advance()``
  moves virtual time past their deadline.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from typing import Callable, Protocol

logger = logging.getLogger("spelltale")


class TimerHandle(Protocol):
    """Handle of a scheduled callback."""

    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call more than once."""
        ...


class Scheduler(Protocol):
    """Protocol for scheduling delayed callbacks."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once, ``delay`` seconds from now.

        Args:
            delay: Delay in seconds.
            callback: Zero-argument callable.

        Returns:
            A handle whose ``cancel()`` stops the callback from running.
        """
        ...

    def time(self) -> float:
        """Current time in seconds on this scheduler's clock."""
        ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, callback)

    def time(self) -> float:
        return asyncio.get_running_loop().time()


class VirtualTimer:
    """Cancellable timer owned by a VirtualScheduler."""

    def __init__(self, deadline: float, callback: Callable[[], None]) -> None:
        self.deadline = deadline
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """Deterministic scheduler driven by explicit ``advance()`` calls.

    Callbacks fire in deadline order (ties in scheduling order). A callback
    may schedule new timers; those fire within the same ``advance()`` if
    their deadline falls inside the advanced window.

    Usage:
        scheduler = VirtualScheduler()
        scheduler.call_later(1.0, on_fire)
        scheduler.advance(0.5)   # nothing fires
        scheduler.advance(0.5)   # on_fire runs
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._queue: list[tuple[float, int, VirtualTimer]] = []
        self._sequence = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> VirtualTimer:
        timer = VirtualTimer(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (timer.deadline, next(self._sequence), timer))
        return timer

    def time(self) -> float:
        return self._now

    def advance(self, seconds: float) -> int:
        """Move virtual time forward and fire every callback that falls due.

        Args:
            seconds: Amount of virtual time to advance.

        Returns:
            Number of callbacks fired.
        """
        target = self._now + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= target + 1e-9:
            deadline, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = max(self._now, deadline)
            timer.callback()
            fired += 1
        self._now = target
        return fired

    @property
    def pending(self) -> int:
        """Number of timers that are scheduled and not cancelled."""
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)


__all__ = [
    "TimerHandle",
    "Scheduler",
    "AsyncioScheduler",
    "VirtualScheduler",
    "VirtualTimer",
]
