"""
Tests for PrefetchScheduler and its wiring into ContentClient.

Tests cover:
- Warming page n+1 after the configured delay
- No prefetch when the service reports the next page ready
- Skipping pages that are already cached
- De-duplication of scheduled prefetches
- Failure isolation and cancellation
"""

from __future__ import annotations

import asyncio

import pytest

from spelltale.models import PageRecord
from spelltale.prefetch import PrefetchScheduler

from helpers import USER_ID, settle

pytestmark = pytest.mark.anyio


def _page(number: int) -> PageRecord:
    return PageRecord(page_number=number, content=f"page {number}", chapter_id=1)


class RecordingFetcher:
    """Fake fetch_page that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.calls: list[int] = []
        self.cached: set[int] = set()
        self.error: Exception | None = None

    async def __call__(self, page_number: int) -> PageRecord:
        self.calls.append(page_number)
        if self.error is not None:
            raise self.error
        self.cached.add(page_number)
        return _page(page_number)

    def is_cached(self, page_number: int) -> bool:
        return page_number in self.cached


@pytest.fixture
def fetcher() -> RecordingFetcher:
    return RecordingFetcher()


@pytest.fixture
def prefetcher(fetcher, scheduler) -> PrefetchScheduler:
    return PrefetchScheduler(
        fetch_page=fetcher,
        is_cached=fetcher.is_cached,
        scheduler=scheduler,
        delay=1.0,
    )


# ============================================================================
# Scheduler unit tests
# ============================================================================


class TestPrefetchScheduling:
    """Test delayed scheduling of page n+1."""

    async def test_fires_after_delay(self, prefetcher, fetcher, scheduler):
        assert prefetcher.schedule(3) is True
        assert prefetcher.pending == [4]

        scheduler.advance(0.5)
        await settle()
        assert fetcher.calls == []

        scheduler.advance(0.5)
        await prefetcher.wait_idle()

        assert fetcher.calls == [4]
        assert prefetcher.pending == []

    async def test_duplicate_schedule_is_ignored(self, prefetcher, fetcher, scheduler):
        assert prefetcher.schedule(1) is True
        assert prefetcher.schedule(1) is False

        scheduler.advance(1.0)
        await prefetcher.wait_idle()

        assert fetcher.calls == [2]

    async def test_already_cached_page_is_skipped(self, prefetcher, fetcher, scheduler):
        prefetcher.schedule(1)
        fetcher.cached.add(2)

        scheduler.advance(1.0)
        await prefetcher.wait_idle()

        assert fetcher.calls == []

    async def test_failure_is_swallowed(self, prefetcher, fetcher, scheduler, caplog):
        fetcher.error = RuntimeError("boom")
        prefetcher.schedule(1)

        scheduler.advance(1.0)
        await prefetcher.wait_idle()

        assert fetcher.calls == [2]
        assert "Preload failed for page 2" in caplog.text

    async def test_cancel_all(self, prefetcher, fetcher, scheduler):
        prefetcher.schedule(1)
        prefetcher.schedule(5)

        assert prefetcher.cancel_all() == 2
        scheduler.advance(5.0)
        await settle()

        assert fetcher.calls == []
        assert prefetcher.pending == []

    async def test_cancel_in_flight_prefetch(self, prefetcher, scheduler):
        started = asyncio.Event()

        async def slow_fetch(page_number: int) -> PageRecord:
            started.set()
            await asyncio.sleep(3600)
            return _page(page_number)

        prefetcher.fetch_page = slow_fetch
        prefetcher.schedule(1)
        scheduler.advance(1.0)
        await started.wait()
        assert prefetcher.pending == [2]

        assert prefetcher.cancel_all() == 1
        await prefetcher.wait_idle()
        assert prefetcher.pending == []

    async def test_closed_scheduler_refuses_work(self, prefetcher, fetcher, scheduler):
        prefetcher.close()

        assert prefetcher.schedule(1) is False
        scheduler.advance(1.0)
        await settle()
        assert fetcher.calls == []


def test_fire_without_event_loop_is_skipped(fetcher, scheduler):
    """A timer firing outside an event loop does nothing."""
    prefetcher = PrefetchScheduler(fetcher, fetcher.is_cached, scheduler=scheduler)
    prefetcher.schedule(1)

    scheduler.advance(1.0)

    assert fetcher.calls == []
    assert prefetcher.pending == []


# ============================================================================
# Integration with ContentClient
# ============================================================================


class TestClientPrefetch:
    """Test prefetching as driven by ContentClient page fetches."""

    async def test_next_page_is_warmed(self, client, service, scheduler):
        """Scenario: page 1 not followed by a ready page, page 2 is prefetched."""
        service.next_page_ready = False
        await client.get_page(1)
        assert service.page_requests(2) == 0

        scheduler.advance(1.0)
        await client.prefetcher.wait_idle()
        assert 2 in client.cache

        page = await client.get_page(2)

        assert page.content == "Chapter 1, page 2."
        assert service.page_requests(2) == 1

    async def test_page_four_requested_without_caller(self, client, service, scheduler):
        """Scenario: page 3 not followed by a ready page, page 4 is requested after the delay."""
        await client.get_page(3)

        scheduler.advance(0.99)
        await settle()
        assert service.page_requests(4) == 0

        scheduler.advance(0.01)
        await client.prefetcher.wait_idle()
        assert service.page_requests(4) == 1

    async def test_no_prefetch_when_next_page_ready(self, client, service, scheduler):
        service.next_page_ready = True
        await client.get_page(1)

        assert client.prefetcher.pending == []
        scheduler.advance(5.0)
        await client.prefetcher.wait_idle()
        assert service.page_requests(2) == 0

    async def test_prefetched_page_warms_the_next_one(self, client, service, scheduler):
        """A page fetched by the prefetcher schedules the page after it."""
        await client.get_page(1)
        scheduler.advance(1.0)
        await client.prefetcher.wait_idle()
        assert client.prefetcher.pending == [3]

        scheduler.advance(1.0)
        await client.prefetcher.wait_idle()

        assert service.page_requests(3) == 1

    async def test_reading_sequence_never_waits_on_network(self, client, service, scheduler):
        """Each cache hit keeps the following page warming."""
        await client.get_page(3)
        scheduler.advance(1.0)
        await client.prefetcher.wait_idle()

        for number in (4, 5, 6):
            requests_before = service.page_requests(number)
            page = await client.get_page(number)
            assert page.content == f"Chapter 1, page {number}."
            assert service.page_requests(number) == requests_before
            scheduler.advance(1.0)
            await client.prefetcher.wait_idle()

        assert service.page_requests(5) == 1
        assert service.page_requests(7) == 1

    async def test_cache_hit_schedules_next_page(self, client, service, scheduler):
        client.cache.store(_page(4))

        await client.get_page(4)

        assert client.prefetcher.pending == [5]
        scheduler.advance(1.0)
        await client.prefetcher.wait_idle()
        assert service.page_requests(5) == 1

    async def test_reader_joining_prefetch_schedules_next_page(self, client, service, scheduler):
        """An explicit read that joins an in-flight prefetch still warms the page after it."""
        await client.get_page(3)
        gate = service.held(f"/page/{USER_ID}/4")
        scheduler.advance(1.0)
        await settle(lambda: service.page_requests(4) == 1)

        reader = asyncio.create_task(client.get_page(4))
        await settle()
        gate.set()
        page = await reader
        await client.prefetcher.wait_idle()

        assert page.next_page_ready is False
        assert service.page_requests(4) == 1
        assert 5 in client.prefetcher.pending

        scheduler.advance(1.0)
        await client.prefetcher.wait_idle()
        assert service.page_requests(5) == 1

    async def test_fallback_page_does_not_schedule(self, client, service, scheduler):
        service.unreachable = True
        await client.get_page(2)

        assert client.prefetcher.pending == []

    async def test_page_cached_before_timer_is_not_refetched(self, client, service, scheduler):
        await client.get_page(1)
        await client.get_page(2)

        scheduler.advance(1.0)
        await client.prefetcher.wait_idle()

        assert service.page_requests(2) == 1

    async def test_prefetch_failure_never_reaches_reader(self, client, service, scheduler):
        await client.get_page(1)
        service.unreachable = True

        scheduler.advance(1.0)
        await client.prefetcher.wait_idle()

        assert 2 not in client.cache

    async def test_new_chapter_cancels_pending_prefetch(self, client, service, scheduler):
        await client.get_page(1)
        assert client.prefetcher.pending == [2]

        await client.generate_new_chapter()
        scheduler.advance(1.0)
        await client.prefetcher.wait_idle()

        assert client.prefetcher.pending == []
        assert service.page_requests(2) == 0
