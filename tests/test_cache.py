"""
Tests for PageCache.

Tests cover:
- Store and retrieve by page number
- Wholesale invalidation and epochs
- Discarding of stores from a stale epoch
- Cache statistics tracking
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from spelltale.cache import PageCache, PageCacheStats
from spelltale.models import PageRecord


def _page(number: int, chapter: int = 1, content: str | None = None) -> PageRecord:
    return PageRecord(
        page_number=number,
        content=content or f"page {number}",
        chapter_id=chapter,
    )


# ============================================================================
# Basic Store and Get Tests
# ============================================================================


class TestPageCacheBasic:
    """Test basic store and get operations."""

    def test_store_and_get(self):
        cache = PageCache()
        record = _page(3)

        assert cache.store(record) is True
        assert cache.get(3) is record
        assert 3 in cache

    def test_get_missing_returns_none(self):
        cache = PageCache()
        assert cache.get(1) is None
        assert 1 not in cache

    def test_store_replaces_existing_entry(self):
        cache = PageCache()
        cache.store(_page(1, content="draft"))
        cache.store(_page(1, content="final"))

        assert cache.get(1).content == "final"
        assert cache.size == 1

    def test_store_under_requested_number(self):
        """A record can be keyed by the page that was asked for."""
        cache = PageCache()
        cache.store(_page(7), page_number=2)

        assert cache.get(2).page_number == 7
        assert 7 not in cache

    def test_page_numbers_sorted(self):
        cache = PageCache()
        for number in (3, 1, 2):
            cache.store(_page(number))

        assert cache.page_numbers() == [1, 2, 3]

    def test_records_are_immutable(self):
        record = _page(1)
        with pytest.raises(ValidationError):
            record.content = "rewritten"


# ============================================================================
# Invalidation Tests
# ============================================================================


class TestPageCacheInvalidation:
    """Test clearing and epoch handling."""

    def test_clear_empties_cache_and_bumps_epoch(self):
        cache = PageCache()
        for number in (1, 2, 3):
            cache.store(_page(number))
        assert cache.epoch == 0

        new_epoch = cache.clear()

        assert new_epoch == 1
        assert cache.epoch == 1
        assert cache.size == 0
        assert cache.get(1) is None

    def test_store_with_current_epoch(self):
        cache = PageCache()
        cache.clear()

        assert cache.store(_page(1, chapter=2), epoch=1) is True
        assert cache.get(1).chapter_id == 2

    def test_stale_store_is_dropped(self):
        cache = PageCache()
        epoch = cache.epoch
        cache.clear()

        assert cache.store(_page(1), epoch=epoch) is False
        assert cache.size == 0

    def test_stale_store_does_not_overwrite_new_chapter(self):
        cache = PageCache()
        old_epoch = cache.epoch
        cache.clear()
        cache.store(_page(2, chapter=2, content="new chapter"), epoch=cache.epoch)

        cache.store(_page(2, chapter=1, content="old chapter"), epoch=old_epoch)

        assert cache.get(2).content == "new chapter"


# ============================================================================
# Statistics Tests
# ============================================================================


class TestPageCacheStats:
    """Test statistics tracking."""

    def test_empty_stats(self):
        stats = PageCache().get_stats()

        assert isinstance(stats, PageCacheStats)
        assert stats.total_entries == 0
        assert stats.hit_rate == 0.0

    def test_hits_misses_and_drops(self):
        cache = PageCache()
        cache.store(_page(1))
        cache.get(1)
        cache.get(1)
        cache.get(2)
        cache.clear()
        cache.store(_page(1), epoch=0)

        stats = cache.get_stats()

        assert stats.hit_count == 2
        assert stats.miss_count == 1
        assert stats.hit_rate == pytest.approx(2 / 3)
        assert stats.stale_drops == 1
        assert stats.clears == 1
        assert stats.epoch == 1
        assert stats.total_entries == 0

    def test_contains_does_not_count_as_lookup(self):
        cache = PageCache()
        cache.store(_page(1))

        assert 1 in cache
        stats = cache.get_stats()
        assert stats.hit_count == 0
        assert stats.miss_count == 0
