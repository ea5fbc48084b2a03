from __future__ import annotations

import logging
import random
import time
from typing import Callable, Iterable, List, Optional, Tuple

from .base import (
    FailureEntry,
    FailureReason,
    FetchError,
    PageResponse,
    PageWindow,
    QuestionRecord,
    RunSummary,
)
from .sinks.base import Sink, SinkError
from .state import CheckpointStore, FailureLog

logger = logging.getLogger(__name__)

FetchFn = Callable[[int], PageResponse]
ExtractFn = Callable[[str, int], List[QuestionRecord]]


class CrawlOrchestrator:
    """Sequential page loop: pace, fetch, classify, extract, dedup, persist, commit.

    One page is fully committed (or logged as failed) before the next one is
    attempted. Only per-page and per-record errors are handled here; failures
    of the checkpoint or failure log themselves propagate.
    """

    def __init__(
        self,
        *,
        fetch: FetchFn,
        extract: ExtractFn,
        sink: Sink,
        checkpoints: CheckpointStore,
        failures: FailureLog,
        delay_range: Tuple[float, float] = (0.1, 1.9),
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> None:
        lo, hi = delay_range
        if lo < 0 or hi < lo:
            raise ValueError(f"Invalid delay range: {delay_range!r}")
        self.fetch = fetch
        self.extract = extract
        self.sink = sink
        self.checkpoints = checkpoints
        self.failures = failures
        self.delay_range = (float(lo), float(hi))
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.should_stop = should_stop or (lambda: False)

    # --- Public API ---
    def run(self, window: PageWindow) -> RunSummary:
        """Walk the window from start_page down to end_page, committing each page."""
        logger.info("Processing pages %d down to %d (%d pages)", window.start_page, window.end_page, len(window))
        summary = RunSummary(checkpoint=self.checkpoints.read())
        return self._walk(window.pages(), summary, commit=True)

    def retry(self, pages: Iterable[int]) -> RunSummary:
        """Re-process specific pages without moving the checkpoint.

        Used for pages a previous run logged as failed; they already lie above
        the checkpoint, so committing them would move it backwards.
        """
        ordered = sorted(set(pages), reverse=True)
        logger.info("Retrying %d previously failed pages: %s", len(ordered), ordered)
        summary = RunSummary(checkpoint=self.checkpoints.read())
        return self._walk(ordered, summary, commit=False)

    def process_page(self, page: int, summary: RunSummary) -> bool:
        """Handle one page; returns True when it is safe to commit."""
        self._pace()

        try:
            resp = self.fetch(page)
        except FetchError as exc:
            self._fail(page, FailureReason.TRANSPORT_ERROR, str(exc), summary)
            return False

        if not resp.ok:
            self._fail(page, FailureReason.NON_SUCCESS_STATUS, f"HTTP {resp.status_code}", summary)
            return False

        records = self.extract(resp.text, page)
        summary.records_extracted += len(records)
        if not records:
            # Empty extraction still advances the checkpoint; see DESIGN.md.
            logger.warning("Page %d: no records extracted (container missing or page empty)", page)

        inserted = skipped = rejected = 0
        for rec in records:
            try:
                if self.sink.exists(rec.external_id):
                    skipped += 1
                    continue
                if self.sink.insert(rec):
                    inserted += 1
                else:
                    skipped += 1
            except SinkError as exc:
                rejected += 1
                logger.warning("Page %d: record %s not persisted: %s", page, rec.external_id, exc)

        summary.records_inserted += inserted
        summary.records_skipped += skipped
        summary.records_rejected += rejected
        logger.info(
            "Page %d: extracted=%d inserted=%d skipped=%d rejected=%d",
            page,
            len(records),
            inserted,
            skipped,
            rejected,
        )
        return True

    # --- Internals ---
    def _walk(self, pages: List[int], summary: RunSummary, *, commit: bool) -> RunSummary:
        for page in pages:
            if self.should_stop():
                logger.info("Stop requested; leaving checkpoint at %d", summary.checkpoint)
                summary.interrupted = True
                break
            summary.pages_attempted += 1
            try:
                ok = self.process_page(page, summary)
            except KeyboardInterrupt:
                logger.warning("Interrupted while processing page %d; it stays uncommitted", page)
                summary.interrupted = True
                break
            if not ok:
                continue
            if commit:
                self.checkpoints.write(page)
                summary.checkpoint = page
                logger.info("Page %d committed; checkpoint=%d", page, page)
            summary.committed_pages.append(page)
        return summary

    def _pace(self) -> None:
        lo, hi = self.delay_range
        delay = self.rng.uniform(lo, hi)
        if delay > 0:
            self.sleep(delay)

    def _fail(self, page: int, reason: str, detail: str, summary: RunSummary) -> None:
        logger.warning("Page %d failed (%s): %s", page, reason, detail)
        self.failures.append(FailureEntry(page=page, reason=reason))
        summary.failed_pages.append(page)
