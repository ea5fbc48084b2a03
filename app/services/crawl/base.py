from __future__ import annotations

import json
import time
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# External ids are stored as signed 64-bit integers (SQLite INTEGER, Postgres BIGINT).
MAX_EXTERNAL_ID = 2 ** 63 - 1


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


# --- Failure taxonomy ---

class FailureReason:
    TRANSPORT_ERROR = "transport-error"
    NON_SUCCESS_STATUS = "non-success-status"

    ALL = (TRANSPORT_ERROR, NON_SUCCESS_STATUS)


class FetchError(Exception):
    """Transport-level failure (connection refused, timeout, DNS)."""


class CrawlStartupError(RuntimeError):
    """The run cannot establish a valid page window and must abort."""


class ListingMetadataError(CrawlStartupError):
    """The listing did not expose a usable total item count."""


class CheckpointError(ValueError):
    """The checkpoint exists but does not hold a non-negative integer."""


class AllPagesProcessed(Exception):
    """Terminal signal: the collection has been walked down to page 1.

    Not an error; the run ends without further work.
    """


# --- Data model ---

@dataclass(frozen=True)
class ListingMetadata:
    total_item_count: int
    page_size: int


@dataclass(frozen=True)
class PageWindow:
    """Contiguous page range processed newest-first, start_page down to end_page."""

    start_page: int
    end_page: int

    def pages(self) -> List[int]:
        return list(range(self.start_page, self.end_page - 1, -1))

    def __len__(self) -> int:
        return self.start_page - self.end_page + 1


@dataclass
class QuestionRecord:
    external_id: int
    title: str
    source_page: int
    published_at: Optional[datetime] = None
    view_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if self.published_at is not None:
            d["published_at"] = self.published_at.isoformat()
        return d


@dataclass(frozen=True)
class FailureEntry:
    page: int
    reason: str


@dataclass
class PageResponse:
    page: Optional[int]
    status_code: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class RunSummary:
    pages_attempted: int = 0
    records_extracted: int = 0
    records_inserted: int = 0
    records_skipped: int = 0
    records_rejected: int = 0
    checkpoint: int = 0
    committed_pages: List[int] = field(default_factory=list)
    failed_pages: List[int] = field(default_factory=list)
    interrupted: bool = False

    @property
    def pages_committed(self) -> int:
        return len(self.committed_pages)

    @property
    def pages_failed(self) -> int:
        return len(self.failed_pages)


class Spider:
    """Minimal spider contract.

    Subclasses turn one fetched page body into normalized records and expose
    the listing's total item count from the unpaginated landing page.
    """

    name: str = "base"

    def parse_html(self, html: str, *, page: int, now: Optional[datetime] = None) -> List[QuestionRecord]:
        raise NotImplementedError

    def parse_total_count(self, html: str) -> int:
        raise NotImplementedError
