"""
Typewriter reveal and continuation state machine.

The engine reveals the current page one character per tick. Once the page
is fully revealed it waits a fixed delay and then asks for more content,
which decouples "the reader finished this page" from "fetch the next one":

    IDLE -> REVEALING -> COMPLETE -> GENERATING -> REVEALING ...

New content at any point cancels the pending timers and restarts the reveal.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable

from .scheduler import AsyncioScheduler, Scheduler, TimerHandle

logger = logging.getLogger("spelltale")


class RevealState(str, Enum):
    """Reveal engine states."""
    IDLE = "idle"
    REVEALING = "revealing"
    COMPLETE = "complete"
    GENERATING = "generating"


class RevealEngine:
    """Drives the progressive reveal of a page and the "need more" signal.

    Args:
        on_need_more: Called once when a fully revealed page has been on
            screen for ``continuation_delay`` seconds. May return an awaitable,
            which is run as a background task.
        scheduler: Timer capability. Defaults to the running event loop.
        tick_interval: Seconds per revealed character.
        continuation_delay: Seconds between COMPLETE and the need-more signal.
        on_reveal: Optional callback receiving the revealed text after each tick.

    Usage:
        engine = RevealEngine(on_need_more=session.next_page)
        engine.set_content(page.content)
        ...
        engine.close()
    """

    def __init__(
        self,
        on_need_more: Callable[[], Any] | None = None,
        scheduler: Scheduler | None = None,
        tick_interval: float = 0.02,
        continuation_delay: float = 4.0,
        on_reveal: Callable[[str], None] | None = None,
    ) -> None:
        self.on_need_more = on_need_more
        self.on_reveal = on_reveal
        self.scheduler = scheduler or AsyncioScheduler()
        self.tick_interval = tick_interval
        self.continuation_delay = continuation_delay

        self._content = ""
        self._revealed = 0
        self._state = RevealState.IDLE
        self._tick_handle: TimerHandle | None = None
        self._continuation_handle: TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    # -- Read-only view ------------------------------------------------------

    @property
    def state(self) -> RevealState:
        return self._state

    @property
    def content(self) -> str:
        return self._content

    @property
    def revealed_length(self) -> int:
        return self._revealed

    @property
    def revealed_text(self) -> str:
        return self._content[:self._revealed]

    @property
    def is_generating(self) -> bool:
        return self._state is RevealState.GENERATING

    @property
    def is_complete(self) -> bool:
        """True once the whole page is visible (COMPLETE or GENERATING)."""
        return self._state in (RevealState.COMPLETE, RevealState.GENERATING)

    # -- Transitions ---------------------------------------------------------

    def set_content(self, content: str) -> None:
        """Deliver new page content.

        A different string restarts the reveal from zero. The same string
        while GENERATING ends the generation and re-arms the continuation
        timer; otherwise it changes nothing.
        """
        if self._closed:
            return

        if content == self._content and self._state is not RevealState.IDLE:
            if self._state is RevealState.GENERATING:
                self._state = RevealState.COMPLETE
                self._arm_continuation()
            return

        self._cancel_timers()
        self._content = content
        self._revealed = 0

        if not content:
            self._state = RevealState.IDLE
            return

        self._state = RevealState.REVEALING
        self._schedule_tick()

    def skip(self) -> None:
        """Reveal the rest of the page immediately."""
        if self._state is not RevealState.REVEALING:
            return
        self._cancel_tick()
        self._revealed = len(self._content)
        self._notify_reveal()
        self._enter_complete()

    def finish_generating(self) -> None:
        """Leave GENERATING without new content; the continuation is not re-armed."""
        if self._state is RevealState.GENERATING:
            self._state = RevealState.COMPLETE

    def close(self) -> None:
        """Cancel every timer and background task; no callback fires afterwards."""
        self._closed = True
        self._cancel_timers()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._state = RevealState.IDLE

    # -- Timers --------------------------------------------------------------

    def _schedule_tick(self) -> None:
        self._tick_handle = self.scheduler.call_later(self.tick_interval, self._tick)

    def _tick(self) -> None:
        self._tick_handle = None
        if self._closed or self._state is not RevealState.REVEALING:
            return

        self._revealed = min(self._revealed + 1, len(self._content))
        self._notify_reveal()

        if self._revealed >= len(self._content):
            self._enter_complete()
        else:
            self._schedule_tick()

    def _enter_complete(self) -> None:
        self._state = RevealState.COMPLETE
        logger.debug(f"Reveal complete ({len(self._content)} characters)")
        self._arm_continuation()

    def _arm_continuation(self) -> None:
        if self._continuation_handle is not None:
            self._continuation_handle.cancel()
        self._continuation_handle = self.scheduler.call_later(
            self.continuation_delay, self._on_continuation
        )

    def _on_continuation(self) -> None:
        self._continuation_handle = None
        if self._closed or self._state is not RevealState.COMPLETE:
            return

        self._state = RevealState.GENERATING
        logger.debug("Reader finished the page, requesting more content")
        if self.on_need_more is None:
            return

        try:
            result = self.on_need_more()
        except Exception as e:
            logger.error(f"Need-more handler failed: {e}", exc_info=True)
            self.finish_generating()
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Need-more handler failed: {error}", exc_info=error)
            self.finish_generating()

    def _notify_reveal(self) -> None:
        if self.on_reveal is not None:
            self.on_reveal(self.revealed_text)

    def _cancel_tick(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _cancel_timers(self) -> None:
        self._cancel_tick()
        if self._continuation_handle is not None:
            self._continuation_handle.cancel()
            self._continuation_handle = None


__all__ = ["RevealEngine", "RevealState"]
