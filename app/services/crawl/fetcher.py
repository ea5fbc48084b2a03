from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

import httpx

from app.models.crawl import DEFAULT_USER_AGENT

from .base import CrawlStartupError, FetchError, ListingMetadata, PageResponse

logger = logging.getLogger(__name__)


class ListingClient:
    """HTTP access to the paginated listing.

    One httpx.Client is reused for the whole run. Transport failures surface
    as FetchError; status codes are returned as-is for the caller to classify.
    """

    def __init__(
        self,
        base_url: str,
        *,
        page_size: int,
        timeout: float = 15.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.page_size = int(page_size)
        self.headers = headers or {"User-Agent": DEFAULT_USER_AGENT}
        self._client = httpx.Client(
            timeout=float(timeout),
            headers=self.headers,
            follow_redirects=True,
            transport=transport,
        )

    def __enter__(self) -> "ListingClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # --- Public API ---
    def fetch_page(self, page: int) -> PageResponse:
        params = {"page": page, "pagesize": self.page_size}
        resp = self._get(params)
        return PageResponse(page=page, status_code=resp.status_code, text=resp.text)

    def fetch_metadata(self, count_parser: Callable[[str], int]) -> ListingMetadata:
        """Fetch the unpaginated landing page and read the total item count.

        Any failure here leaves the run without a valid window, so it is
        reported as CrawlStartupError.
        """
        try:
            resp = self._get(None)
        except FetchError as exc:
            raise CrawlStartupError(f"cannot reach listing {self.base_url}: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            raise CrawlStartupError(f"listing {self.base_url} returned HTTP {resp.status_code}")
        total = count_parser(resp.text)
        logger.info("Listing reports %d items (page size %d)", total, self.page_size)
        return ListingMetadata(total_item_count=total, page_size=self.page_size)

    # --- Internals ---
    def _get(self, params: Optional[Dict[str, int]]) -> httpx.Response:
        try:
            return self._client.get(self.base_url, params=params)
        except httpx.HTTPError as exc:
            raise FetchError(f"{type(exc).__name__}: {exc}") from exc
