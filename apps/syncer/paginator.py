"""
Paginator - Sequential Page Iteration

Produces pages one at a time as an async generator. The consumer handles
page N before page N+1 is requested, which is what makes "resume at
lastCompletedPage + 1" correct. Logical page numbers start at 1; the remote
page parameter is shifted by first_page_index (the Scorecard API is 0-based).

Termination:
- empty page, or metadata.total reached (is_last_page)
- page == max_pages, flagged as truncated when data may remain
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from apps.syncer.retrier import BackoffRetrier
from utils.schemas import PageResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageQuery:
    """Fixed query parameters shared by every page request."""

    fields: Sequence[str] = field(default_factory=tuple)
    page_size: int = 100
    first_page_index: int = 0
    filter_field: Optional[str] = None
    filter_value: Optional[str] = None

    def params_for(self, page: int) -> dict[str, Any]:
        params: dict[str, Any] = {
            "page": page - 1 + self.first_page_index,
            "per_page": self.page_size,
        }
        if self.fields:
            params["fields"] = ",".join(self.fields)
        if self.filter_field and self.filter_value:
            params[self.filter_field] = self.filter_value
        return params


@dataclass(frozen=True)
class Page:
    number: int
    result: PageResult
    is_last: bool = False
    truncated: bool = False

    @property
    def records(self) -> list[Any]:
        return self.result.results


def is_last_page(page: int, page_size: int, result: PageResult) -> bool:
    """True when no page after this one can hold records."""
    if not result.results:
        return True
    total = result.metadata.total
    return total is not None and page * page_size >= total


class Paginator:
    """Drives page requests through the retrier."""

    def __init__(
        self,
        fetch_page: Callable[[dict[str, Any]], Awaitable[PageResult]],
        retrier: BackoffRetrier,
        query: PageQuery,
        max_pages: int = 100,
        page_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fetch_page = fetch_page
        self.retrier = retrier
        self.query = query
        self.max_pages = max_pages
        self.page_delay = page_delay
        self._sleep = sleep

    async def pages(self, start_page: int = 1) -> AsyncIterator[Page]:
        """
        Yield pages from start_page until the source is exhausted.

        Args:
            start_page: First logical page to request (1-based)

        Yields:
            Page objects; the final one has is_last=True

        Raises:
            FatalFetchError: If a page exhausts its retries
        """
        page = max(start_page, 1)

        if page > self.max_pages:
            logger.warning(
                "Start page %d is beyond the page ceiling (%d), nothing to fetch",
                page, self.max_pages,
            )
            return

        while True:
            result = await self.retrier.call(
                self.fetch_page,
                self.query.params_for(page),
                description=f"page {page}",
            )

            exhausted = is_last_page(page, self.query.page_size, result)
            truncated = not exhausted and page >= self.max_pages

            logger.info(
                "Fetched page %d: records=%d, total=%s",
                page, len(result.results), result.metadata.total,
                extra={"page": page, "records": len(result.results)},
            )
            if truncated:
                logger.warning(
                    "Page ceiling reached at page %d, remaining pages are not fetched",
                    page,
                )

            yield Page(number=page, result=result, is_last=exhausted or truncated, truncated=truncated)

            if exhausted or truncated:
                return

            page += 1
            await self._sleep(self.page_delay)
