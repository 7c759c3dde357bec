"""
Reading session: the loop between the content client and the reveal engine.

The session shows a page, lets the reveal engine disclose it, and when the
engine signals that the reader is done it fetches the next page, which starts
the reveal again. Navigation and chapter creation share one in-progress guard
so a slow request is never issued twice.
"""

from __future__ import annotations

import logging
from typing import Callable

from .client import ContentClient
from .models import Chapter, PageRecord
from .reveal import RevealEngine
from .scheduler import Scheduler

logger = logging.getLogger("spelltale")


class ReaderSession:
    """Page navigation state for one reading surface.

    Args:
        client: Content client used for every fetch.
        scheduler: Timer capability for the reveal engine. Defaults to the
            client's prefetch scheduler.
        on_reveal: Forwarded to the reveal engine; receives the revealed text.

    Usage:
        session = ReaderSession(client)
        await session.start()
        # the reveal engine now advances pages on its own
        await session.new_chapter()
        session.close()
    """

    def __init__(
        self,
        client: ContentClient,
        scheduler: Scheduler | None = None,
        on_reveal: Callable[[str], None] | None = None,
    ) -> None:
        self.client = client
        config = client.config
        self.engine = RevealEngine(
            on_need_more=self.next_page,
            scheduler=scheduler or client.prefetcher.scheduler,
            tick_interval=config.reveal_tick,
            continuation_delay=config.continuation_delay,
            on_reveal=on_reveal,
        )

        self.page: PageRecord | None = None
        self.chapter: Chapter | None = None
        self.current_page = 1
        self.current_chapter = 1
        self.total_pages = 0
        self.next_page_ready = False
        self.connection_error = False
        self._busy = False

    @property
    def is_generating(self) -> bool:
        """True while a next-page or new-chapter request is in progress."""
        return self._busy

    @property
    def revealed_text(self) -> str:
        return self.engine.revealed_text

    async def start(self) -> PageRecord:
        """Bootstrap: load the story state and show the reader's current page.

        ``connection_error`` is set when the service could not be reached at all.
        """
        page = await self.client.initialize_story()
        self.connection_error = self.client.reachable is False
        if self.connection_error:
            logger.error("Unable to connect to the story service")

        self.chapter = Chapter.from_page(page)
        self.total_pages = self.client.total_pages
        self._show(page)
        return page

    async def next_page(self) -> PageRecord | None:
        """Move to the next page. Ignored while another request is in progress."""
        if self._busy:
            self.engine.finish_generating()
            return None

        self._busy = True
        try:
            target = self.current_page + 1
            logger.info(f"Moving to page {target}")
            page = await self.client.get_page(target)
            self._show(page)
            await self.client.load_story_state()
            self.total_pages = self.client.total_pages
            return page
        finally:
            self._busy = False

    async def previous_page(self) -> PageRecord | None:
        """Move to the previous page; nothing happens on page 1."""
        if self.current_page <= 1:
            return None

        target = self.current_page - 1
        logger.info(f"Moving to page {target}")
        page = await self.client.get_page(target)
        self._show(page)
        return page

    async def new_chapter(self) -> PageRecord | None:
        """Start a new chapter. Ignored while another request is in progress."""
        if self._busy:
            return None

        self._busy = True
        try:
            page = await self.client.generate_new_chapter()
            self.chapter = Chapter.from_page(page, title=self.client.chapter_title)
            self._show(page)
            self.total_pages = self.client.total_pages
            return page
        finally:
            self._busy = False

    def skip(self) -> None:
        """Reveal the rest of the current page at once."""
        self.engine.skip()

    def close(self) -> None:
        self.engine.close()

    def _show(self, page: PageRecord) -> None:
        self.page = page
        self.current_page = page.page_number
        self.current_chapter = page.chapter_id
        self.next_page_ready = page.next_page_ready
        self.engine.set_content(page.content)
