"""Page arithmetic for the paginated listing.

Processing always moves from newer (higher) to older (lower) pages. The
checkpoint records the last page fully committed, so the next window starts
one page below it.
"""

from __future__ import annotations

import logging

from .base import AllPagesProcessed, PageWindow

logger = logging.getLogger(__name__)


def total_pages(total_item_count: int, page_size: int) -> int:
    """Number of pages needed to hold ``total_item_count`` items.

    Exact multiples do not produce an extra empty trailing page.
    """
    if page_size <= 0:
        raise ValueError(f"page_size must be positive, got {page_size}")
    if total_item_count < 0:
        raise ValueError(f"total_item_count must be non-negative, got {total_item_count}")
    return -(-total_item_count // page_size)


def ensure_work_remaining(last_committed_page: int) -> None:
    """Raise AllPagesProcessed when the checkpoint already sits at page 1.

    Needs no listing metadata, so callers can check before any fetch.
    """
    if last_committed_page == 1:
        raise AllPagesProcessed("checkpoint is at page 1; the whole listing has been walked")


def compute_window(total_pages: int, last_committed_page: int, pages_per_run: int) -> PageWindow:
    """Plan the pages to process in this invocation.

    Raises AllPagesProcessed when there is nothing left to walk: either the
    checkpoint already sits at page 1 or the listing has no pages at all.
    """
    if pages_per_run <= 0:
        raise ValueError(f"pages_per_run must be positive, got {pages_per_run}")
    if last_committed_page < 0:
        raise ValueError(f"last_committed_page must be non-negative, got {last_committed_page}")

    ensure_work_remaining(last_committed_page)
    if total_pages <= 0:
        raise AllPagesProcessed("listing is empty")

    if last_committed_page == 0:
        start = total_pages
    else:
        start = last_committed_page - 1
        if start > total_pages:
            # The listing shrank since the checkpoint was written.
            logger.warning(
                "Checkpoint %d is beyond the listing (%d pages); clamping window start",
                last_committed_page,
                total_pages,
            )
            start = total_pages

    end = max(1, start - pages_per_run + 1)
    return PageWindow(start_page=start, end_page=end)
