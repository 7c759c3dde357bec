"""
Content client for the story service.

Issues page, state and chapter requests, consults and updates the page cache,
and substitutes deterministic fallback content whenever the service fails.
None of the public reading operations raise: callers only ever see real
content or story-shaped fallback text.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from .cache import PageCache
from .config import ClientConfig
from .errors import ContentServiceError
from .identity import SessionIdentity
from .models import NewChapterResponse, PageListing, PageRecord, StoryState
from .prefetch import PrefetchScheduler
from .scheduler import Scheduler

logger = logging.getLogger("spelltale")


# ---------------------------------------------------------------------------
# Fallback content
# ---------------------------------------------------------------------------

FALLBACK_OPENING = (
    "In the ancient kingdom of Aethermoor, where magic flowed through the very "
    "stones of the earth, a young apprentice discovered a peculiar book that "
    "seemed to write itself. As Lyra opened the leather-bound tome, golden "
    "letters began to appear on the parchment, telling her own story as it "
    "unfolded...\n\nThe book whispered secrets of forgotten spells and warned "
    "of a darkness stirring in the northern mountains."
)

FALLBACK_CONTINUATION = (
    "The magical journey continued as Lyra delved deeper into the mysteries of "
    "Aethermoor. Each turn of the page revealed new wonders and greater "
    "challenges that would test her courage and determination."
)

FALLBACK_NEW_CHAPTER = (
    "A new chapter in Lyra's journey began as she stepped through the mystical "
    "portal, leaving behind everything she had known..."
)

FALLBACK_NEW_CHAPTER_ID = 2
FALLBACK_NEW_CHAPTER_TITLE = "New Beginnings"


def fallback_page(page_number: int) -> PageRecord:
    """Deterministic stand-in for a page the service could not deliver."""
    content = FALLBACK_OPENING if page_number == 1 else FALLBACK_CONTINUATION
    return PageRecord(
        page_number=page_number,
        content=content,
        chapter_id=1,
        is_generated=True,
        next_page_ready=False,
    )


def fallback_new_chapter() -> PageRecord:
    """Deterministic stand-in for a chapter the service could not create."""
    return PageRecord(
        page_number=1,
        content=FALLBACK_NEW_CHAPTER,
        chapter_id=FALLBACK_NEW_CHAPTER_ID,
        is_generated=True,
        next_page_ready=False,
    )


# ---------------------------------------------------------------------------
# Content client
# ---------------------------------------------------------------------------


class ContentClient:
    """Cached, coalescing, fallback-safe access to the story service.

    Owns the PageCache and the mirrored StoryState; no other component
    mutates them.

    Args:
        config: Client configuration (base URL, timeouts, prefetch delay).
        identity: Session identity provider. A fresh one is created if omitted.
        scheduler: Timer capability used for prefetch delays.
        cache: Page cache to use. A fresh one is created if omitted.
        http_client: Pre-built httpx client. Not closed by ``aclose()``.
        transport: httpx transport for the internally built client (tests pass
            an ``httpx.MockTransport``).

    Usage:
        async with ContentClient(ClientConfig.from_env()) as client:
            page = await client.get_page(1)
            print(page.content)
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        identity: SessionIdentity | None = None,
        scheduler: Scheduler | None = None,
        cache: PageCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.identity = identity or SessionIdentity()
        self.cache = cache or PageCache()
        self.story_state: StoryState | None = None
        self.chapter_title: str | None = None
        self.reachable: bool | None = None

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.request_timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self._inflight: dict[tuple[int, int], asyncio.Task] = {}
        self.prefetcher = PrefetchScheduler(
            fetch_page=self.get_page,
            is_cached=lambda n: n in self.cache,
            scheduler=scheduler,
            delay=self.config.prefetch_delay,
        )

        logger.info(f"Content client initialized: {self.config.base_url}")

    @property
    def user_id(self) -> str:
        return self.identity.id()

    # -- HTTP seam -----------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            ContentServiceError: On timeout, transport failure, non-2xx status
                or a body that is not JSON.
        """
        try:
            response = await self._http.request(method, path, **kwargs)
            self.reachable = True
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException:
            self.reachable = False
            raise ContentServiceError(
                f"Story service did not respond to {method} {path}"
            ) from None
        except httpx.HTTPStatusError as e:
            raise ContentServiceError(
                f"Story service returned HTTP {e.response.status_code} for {method} {path}",
                status_code=e.response.status_code,
            ) from None
        except httpx.RequestError as e:
            self.reachable = False
            raise ContentServiceError(
                f"Failed to reach story service: {e}"
            ) from None
        except ValueError as e:
            raise ContentServiceError(
                f"Malformed response body for {method} {path}: {e}"
            ) from None

    # -- Pages ---------------------------------------------------------------

    async def get_page(self, page_number: int) -> PageRecord:
        """Return page ``page_number`` from the cache or the service.

        Concurrent calls for the same page within the same cache epoch share
        one request. On failure the deterministic fallback page is returned.
        Every successful read (cache hit or fetch stored in the current epoch)
        whose next page is not ready schedules a prefetch of the next page;
        the prefetcher ignores duplicates.

        Args:
            page_number: Page to read (1-based).

        Returns:
            The page record (real or fallback).
        """
        cached = self.cache.get(page_number)
        if cached is not None:
            logger.debug(f"Retrieved page {page_number} from cache")
            self._schedule_prefetch(page_number, cached)
            return cached

        epoch = self.cache.epoch
        key = (epoch, page_number)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._fetch_page(page_number, epoch)
            )
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._inflight.pop(key, None))
        else:
            logger.debug(f"Joining in-flight request for page {page_number}")

        record, stored = await asyncio.shield(task)
        if stored and epoch == self.cache.epoch:
            self._schedule_prefetch(page_number, record)
        return record

    async def _fetch_page(self, page_number: int, epoch: int) -> tuple[PageRecord, bool]:
        """Fetch a page; the flag tells whether it was stored in ``epoch``."""
        logger.info(f"Fetching page {page_number} from server")
        try:
            data = await self._request("GET", f"/page/{self.user_id}/{page_number}")
            record = PageRecord.model_validate(data)
        except (ContentServiceError, ValidationError) as e:
            logger.warning(f"Failed to get page {page_number}, using fallback: {e}")
            return fallback_page(page_number), False

        if not self.cache.store(record, epoch, page_number=page_number):
            return record, False

        logger.info(
            f"Page {page_number} loaded (next ready: {record.next_page_ready})"
        )
        return record, True

    def _schedule_prefetch(self, page_number: int, record: PageRecord) -> None:
        if not record.next_page_ready:
            self.prefetcher.schedule(page_number)

    async def generate_next_part(self) -> str:
        """Content of the page after the current one."""
        page = await self.get_page(self.current_page + 1)
        return page.content

    async def get_all_pages(self) -> PageListing:
        """Full page/chapter listing for diagnostics; empty on failure."""
        try:
            data = await self._request("GET", f"/pages/{self.user_id}")
            return PageListing.model_validate(data)
        except (ContentServiceError, ValidationError) as e:
            logger.warning(f"Failed to get all pages: {e}")
            return PageListing()

    # -- Story state and chapters --------------------------------------------

    async def load_story_state(self) -> StoryState | None:
        """Refresh the mirrored StoryState.

        Returns:
            The new state, or None if it could not be loaded (the previous
            state is kept).
        """
        try:
            data = await self._request("GET", f"/story/state/{self.user_id}")
            state = StoryState.model_validate(data)
        except (ContentServiceError, ValidationError) as e:
            logger.warning(f"Failed to load story state: {e}")
            return None

        self.story_state = state
        logger.info(
            f"Story state loaded: chapter {state.current_chapter}, page {state.current_page}"
        )
        return state

    async def generate_new_chapter(self) -> PageRecord:
        """Ask the service for a new chapter.

        On success the whole page cache is invalidated (new epoch), pending
        prefetches are cancelled and the story state is reloaded. On failure
        the cache is left alone and the "new beginnings" fallback is returned.

        Returns:
            The first page of the new chapter.
        """
        logger.info("Creating new chapter")
        try:
            data = await self._request("POST", f"/chapter/new/{self.user_id}")
            chapter = NewChapterResponse.model_validate(data)
        except (ContentServiceError, ValidationError) as e:
            logger.warning(f"Failed to generate new chapter, using fallback: {e}")
            self.chapter_title = FALLBACK_NEW_CHAPTER_TITLE
            return fallback_new_chapter()

        self.prefetcher.cancel_all()
        self.cache.clear()
        self.chapter_title = chapter.title
        await self.load_story_state()

        logger.info(f"New chapter {chapter.chapter_id} created")
        return chapter.to_page()

    async def initialize_story(self) -> PageRecord:
        """Load the story state and return the reader's current page."""
        logger.info(f"Initializing story from {self.config.base_url}")
        await self.load_story_state()
        page = await self.get_page(self.current_page)
        logger.info(f"Story initialized on page {page.page_number}")
        return page

    # -- Mirrored counters ---------------------------------------------------

    @property
    def current_page(self) -> int:
        return self.story_state.current_page if self.story_state else 1

    @property
    def current_chapter(self) -> int:
        return self.story_state.current_chapter if self.story_state else 1

    @property
    def total_pages(self) -> int:
        return self.story_state.total_pages if self.story_state else 0

    # -- Lifecycle -----------------------------------------------------------

    async def aclose(self) -> None:
        """Cancel prefetches and in-flight requests, close the HTTP client if owned."""
        self.prefetcher.close()
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "ContentClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


__all__ = [
    "ContentClient",
    "fallback_page",
    "fallback_new_chapter",
    "FALLBACK_OPENING",
    "FALLBACK_CONTINUATION",
    "FALLBACK_NEW_CHAPTER",
]
