"""Map the orchestrator's 1-based page numbers onto vendor paging."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PageWindow:
    """Which upstream page to request and which slice of it to return."""

    upstream_page: int
    upstream_size: int
    start: int
    page_size: int

    def slice(self, items: list) -> list:
        return items[self.start : self.start + self.page_size]


def plan_page_window(
    page: int, page_size: int, min_candidates: int, max_candidates: int
) -> PageWindow:
    """Plan an over-fetching window for locally ranked results.

    Upstream results are read in fixed blocks: a whole number of pages, at
    least ``min_candidates`` long where the vendor allows it. The block size
    depends only on the query, never on ``page``, so every page of one block
    is cut from the same ranked candidate set and consecutive pages neither
    overlap nor skip items. Later blocks map onto later vendor pages.
    """
    page = max(page, 1)
    page_size = max(page_size, 1)
    pages_per_block = max(
        1, min(-(-min_candidates // page_size), max_candidates // page_size)
    )
    block_size = pages_per_block * page_size
    offset = (page - 1) * page_size
    return PageWindow(
        upstream_page=offset // block_size + 1,
        upstream_size=block_size,
        start=offset % block_size,
        page_size=page_size,
    )
