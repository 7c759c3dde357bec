"""
Background prefetch of the next page.

After a successful read of page n reports that the following page is not
ready yet, the scheduler waits a fixed delay and then fetches page n+1 purely
to warm the cache, so the reader's next request is a cache hit. The warming
fetch is itself a read, so it keeps the lookahead one page ahead of the reader.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .models import PageRecord
from .scheduler import AsyncioScheduler, Scheduler, TimerHandle

logger = logging.getLogger("spelltale")


class PrefetchScheduler:
    """Delayed, best-effort warming of page n+1.

    Prefetches never raise: failures are logged and dropped. A prefetch whose
    page is already cached when its timer fires does nothing.

    Args:
        fetch_page: Coroutine function fetching (and caching) a page.
        is_cached: Predicate telling whether a page is already cached.
        scheduler: Timer capability. Defaults to the running event loop.
        delay: Seconds between the triggering fetch and the prefetch.

    Usage:
        prefetcher = PrefetchScheduler(fetch_page, is_cached, delay=1.0)
        prefetcher.schedule(3)        # warms page 4 after one second
        await prefetcher.wait_idle()  # wait for in-flight prefetches
        prefetcher.close()
    """

    def __init__(
        self,
        fetch_page: Callable[[int], Awaitable[PageRecord]],
        is_cached: Callable[[int], bool],
        scheduler: Scheduler | None = None,
        delay: float = 1.0,
    ) -> None:
        self.fetch_page = fetch_page
        self.is_cached = is_cached
        self.scheduler = scheduler or AsyncioScheduler()
        self.delay = delay
        self._timers: dict[int, TimerHandle] = {}
        self._tasks: dict[int, asyncio.Task] = {}
        self._closed = False

    def schedule(self, page_number: int) -> bool:
        """Schedule a prefetch of the page after ``page_number``.

        Args:
            page_number: The page that was just fetched.

        Returns:
            True if a new prefetch was scheduled.
        """
        target = page_number + 1
        if self._closed or target in self._timers or target in self._tasks:
            return False

        self._timers[target] = self.scheduler.call_later(
            self.delay, lambda: self._fire(target)
        )
        logger.debug(f"Prefetch of page {target} scheduled in {self.delay}s")
        return True

    def _fire(self, target: int) -> None:
        self._timers.pop(target, None)
        if self._closed:
            return
        if self.is_cached(target):
            logger.debug(f"Prefetch of page {target} skipped: already cached")
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, skipping prefetch of page {target}")
            return

        task = loop.create_task(self._prefetch(target))
        self._tasks[target] = task
        task.add_done_callback(lambda t: self._tasks.pop(target, None))

    async def _prefetch(self, target: int) -> None:
        logger.info(f"Preloading page {target}")
        try:
            await self.fetch_page(target)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Preload failed for page {target}: {e}")

    def cancel_all(self) -> int:
        """Cancel every pending timer and in-flight prefetch.

        Returns:
            Number of timers and tasks cancelled.
        """
        count = 0
        for handle in self._timers.values():
            handle.cancel()
            count += 1
        self._timers.clear()

        for task in list(self._tasks.values()):
            if not task.done():
                task.cancel()
                count += 1

        if count:
            logger.debug(f"Cancelled {count} pending prefetches")
        return count

    async def wait_idle(self) -> None:
        """Wait until every in-flight prefetch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
            # let the done callbacks drop finished tasks
            await asyncio.sleep(0)

    def close(self) -> None:
        """Cancel everything and refuse further scheduling."""
        self._closed = True
        self.cancel_all()

    @property
    def pending(self) -> list[int]:
        """Page numbers with a scheduled or in-flight prefetch."""
        return sorted(set(self._timers) | set(self._tasks))


__all__ = ["PrefetchScheduler"]
