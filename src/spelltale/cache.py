"""
Epoch-tagged page cache.

The cache is the single source of truth for "have we already retrieved page N".
Entries are never expired or partially invalidated: the whole cache is cleared
when a new chapter is created, and each clear starts a new epoch. Writers tag
every store with the epoch their request was issued under so that responses
arriving after a clear are discarded instead of resurrecting the old chapter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import PageRecord

logger = logging.getLogger("spelltale")


@dataclass
class PageCacheStats:
    """Statistics for the page cache.

    Attributes:
        total_entries: Number of pages currently cached.
        epoch: Current cache epoch.
        hit_count: Number of successful lookups.
        miss_count: Number of failed lookups.
        stale_drops: Number of stores discarded because their epoch was stale.
        clears: Number of wholesale invalidations.
        hit_rate: Ratio of hits to total lookups (0.0-1.0).
    """
    total_entries: int
    epoch: int
    hit_count: int
    miss_count: int
    stale_drops: int
    clears: int
    hit_rate: float


class PageCache:
    """Mapping from page number to the latest PageRecord of the current epoch.

    Usage:
        cache = PageCache()
        epoch = cache.epoch             # capture before issuing a request
        ...
        cache.store(record, epoch)      # dropped if a clear happened meanwhile
        cache.get(3)                    # PageRecord or None
        cache.clear()                   # new chapter: epoch += 1
    """

    def __init__(self) -> None:
        self._pages: dict[int, PageRecord] = {}
        self._epoch = 0
        self._hit_count = 0
        self._miss_count = 0
        self._stale_drops = 0
        self._clears = 0

    @property
    def epoch(self) -> int:
        """Current cache epoch; incremented by every ``clear()``."""
        return self._epoch

    def get(self, page_number: int) -> PageRecord | None:
        """Return the cached record for a page, or None."""
        record = self._pages.get(page_number)
        if record is None:
            self._miss_count += 1
            return None
        self._hit_count += 1
        logger.debug(f"Page cache: hit for page {page_number}")
        return record

    def __contains__(self, page_number: object) -> bool:
        return page_number in self._pages

    def store(
        self,
        record: PageRecord,
        epoch: int | None = None,
        page_number: int | None = None,
    ) -> bool:
        """Store a record under its page number.

        Args:
            record: The page to cache. Replaces any existing entry.
            epoch: Epoch the producing request was issued under. ``None``
                means the current epoch.
            page_number: Key to store under when it differs from
                ``record.page_number`` (the number that was requested).

        Returns:
            True if stored, False if discarded as stale.
        """
        key = page_number if page_number is not None else record.page_number
        if epoch is not None and epoch != self._epoch:
            self._stale_drops += 1
            logger.debug(
                f"Page cache: dropped page {key} from stale epoch "
                f"{epoch} (current {self._epoch})"
            )
            return False

        self._pages[key] = record
        logger.debug(
            f"Page cache: stored page {key} "
            f"(chapter {record.chapter_id}, epoch {self._epoch})"
        )
        return True

    def clear(self) -> int:
        """Drop every entry and start a new epoch.

        Returns:
            The new epoch.
        """
        count = len(self._pages)
        self._pages.clear()
        self._epoch += 1
        self._clears += 1
        logger.debug(f"Page cache: cleared {count} entries, epoch now {self._epoch}")
        return self._epoch

    def page_numbers(self) -> list[int]:
        """Cached page numbers in ascending order."""
        return sorted(self._pages)

    def get_stats(self) -> PageCacheStats:
        total_lookups = self._hit_count + self._miss_count
        hit_rate = self._hit_count / total_lookups if total_lookups > 0 else 0.0
        return PageCacheStats(
            total_entries=len(self._pages),
            epoch=self._epoch,
            hit_count=self._hit_count,
            miss_count=self._miss_count,
            stale_drops=self._stale_drops,
            clears=self._clears,
            hit_rate=hit_rate,
        )

    @property
    def size(self) -> int:
        """Return the number of pages currently cached."""
        return len(self._pages)


__all__ = [
    "PageCache",
    "PageCacheStats",
]
