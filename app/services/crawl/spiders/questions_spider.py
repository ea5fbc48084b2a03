from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urlsplit

from selectolax.parser import HTMLParser, Node

from app.models.crawl import ExtractionPolicy

from ..base import MAX_EXTERNAL_ID, ListingMetadataError, QuestionRecord, Spider


_TIMESTAMP_FORMATS = ("%Y-%m-%d %H:%M:%SZ", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%SZ")
_COUNT_RE = re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*([kKmM])?")


class QuestionListSpider(Spider):
    """Selector-driven parser for one page of the question listing.

    Parsing is pure: no I/O and no state carried between calls. Malformed or
    unexpected markup degrades to fewer (or zero) records instead of raising.

    Policy (CSS, see ExtractionPolicy):
      - container_sel: block wrapping every question; absent -> no records
      - question_sel: one question block inside the container
      - title_sel / link_sel: title text and hyperlink carrying the id
      - views_sel / published_sel: optional attributes, defaulted when missing
    """

    name = "question_list"

    def __init__(self, policy: Optional[ExtractionPolicy] = None) -> None:
        self.policy = policy or ExtractionPolicy()

    # --- Public API ---
    def parse_html(self, html: str, *, page: int, now: Optional[datetime] = None) -> List[QuestionRecord]:
        extracted_at = now or datetime.now(timezone.utc)
        doc = HTMLParser(html or "")
        container = doc.css_first(self.policy.container_sel)
        if container is None:
            return []

        records: List[QuestionRecord] = []
        for block in container.css(self.policy.question_sel):
            title = self._title(block)
            if not title:
                continue
            records.append(
                QuestionRecord(
                    external_id=self._external_id(block),
                    title=title,
                    source_page=page,
                    published_at=self._published_at(block) or extracted_at,
                    view_count=self._view_count(block),
                )
            )
        return records

    def parse_total_count(self, html: str) -> int:
        doc = HTMLParser(html or "")
        container = doc.css_first(self.policy.container_sel)
        if container is None:
            raise ListingMetadataError(f"listing container {self.policy.container_sel!r} not found")
        node = container.css_first(self.policy.total_count_sel)
        if node is None:
            raise ListingMetadataError(f"total count node {self.policy.total_count_sel!r} not found")
        raw = (node.attributes.get(self.policy.total_count_attr) or "").strip().replace(",", "")
        try:
            count = int(raw)
        except ValueError:
            raise ListingMetadataError(f"total count {raw!r} is not an integer") from None
        if count < 0:
            raise ListingMetadataError(f"total count {count} is negative")
        return count

    # --- Internals ---
    def _title(self, block: Node) -> str:
        node = block.css_first(self.policy.title_sel)
        if node is None:
            return ""
        return " ".join((node.text() or "").split())

    def _external_id(self, block: Node) -> int:
        node = block.css_first(self.policy.link_sel)
        href = (node.attributes.get(self.policy.link_attr) or "") if node is not None else ""
        return self._parse_id(href, self.policy.id_path_index)

    def _view_count(self, block: Node) -> int:
        if not self.policy.views_sel:
            return 0
        node = block.css_first(self.policy.views_sel)
        if node is None:
            return 0
        raw = None
        if self.policy.views_attr:
            raw = node.attributes.get(self.policy.views_attr)
        return self._parse_count(raw or node.text() or "")

    def _published_at(self, block: Node) -> Optional[datetime]:
        if not self.policy.published_sel:
            return None
        node = block.css_first(self.policy.published_sel)
        if node is None:
            return None
        raw = None
        if self.policy.published_attr:
            raw = node.attributes.get(self.policy.published_attr)
        return self._parse_timestamp(raw or node.text() or "")

    @staticmethod
    def _parse_id(href: str, index: int) -> int:
        # '/questions/123/slug' and absolute URLs both split to ['', 'questions', '123', ...]
        parts = urlsplit(href.strip()).path.split("/")
        if index >= len(parts):
            return 0
        try:
            value = int(parts[index])
        except ValueError:
            return 0
        if not 0 < value <= MAX_EXTERNAL_ID:
            return 0
        return value

    @staticmethod
    def _parse_count(text: str) -> int:
        # '1,234 views', '12', '3.4k'
        m = _COUNT_RE.search(text or "")
        if not m:
            return 0
        num = float(m.group(1).replace(",", ""))
        suffix = (m.group(2) or "").lower()
        if suffix == "k":
            num *= 1_000
        elif suffix == "m":
            num *= 1_000_000
        return int(round(num))

    @staticmethod
    def _parse_timestamp(text: str) -> Optional[datetime]:
        t = (text or "").strip()
        if not t:
            return None
        for fmt in _TIMESTAMP_FORMATS:
            try:
                return datetime.strptime(t, fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
        try:
            dt = datetime.fromisoformat(t.replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
