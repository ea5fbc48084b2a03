from __future__ import annotations

import argparse
import logging
import random
import signal
import sys
import threading
import time
from typing import Callable, List, Optional

import httpx
from pydantic import ValidationError

from app.models.crawl import CrawlSettings

from .base import AllPagesProcessed, CheckpointError, CrawlStartupError, FailureEntry, RunSummary
from .config import load_settings
from .fetcher import ListingClient
from .pipeline import CrawlOrchestrator
from .planner import compute_window, ensure_work_remaining, total_pages
from .sinks import Sink, SinkError, open_sink
from .spiders.questions_spider import QuestionListSpider
from .state import CheckpointStore, FailureLog

logger = logging.getLogger(__name__)

EXIT_COMPLETED = 0
EXIT_FATAL = 1
EXIT_ALL_PAGES_PROCESSED = 3
EXIT_INTERRUPTED = 130


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _fatal(message: str) -> int:
    logger.error("outcome=fatal reason=%s", message)
    return EXIT_FATAL


def _build_orchestrator(
    settings: CrawlSettings,
    client: ListingClient,
    sink: Sink,
    checkpoints: CheckpointStore,
    failures: FailureLog,
    *,
    sleep: Callable[[float], None],
    rng: Optional[random.Random],
    stop_event: Optional[threading.Event],
) -> CrawlOrchestrator:
    spider = QuestionListSpider(settings.extraction)
    return CrawlOrchestrator(
        fetch=client.fetch_page,
        extract=lambda html, page: spider.parse_html(html, page=page),
        sink=sink,
        checkpoints=checkpoints,
        failures=failures,
        delay_range=(settings.delay_min, settings.delay_max),
        sleep=sleep,
        rng=rng,
        should_stop=stop_event.is_set if stop_event is not None else None,
    )


def _client(settings: CrawlSettings, transport: Optional[httpx.BaseTransport]) -> ListingClient:
    return ListingClient(
        settings.base_url,
        page_size=settings.page_size,
        timeout=settings.timeout,
        headers={"User-Agent": settings.user_agent},
        transport=transport,
    )


def _report(summary: RunSummary, outcome: str) -> None:
    logger.info(
        "outcome=%s pages_committed=%d pages_failed=%d records_inserted=%d records_skipped=%d "
        "records_rejected=%d checkpoint=%d failed_pages=%s",
        outcome,
        summary.pages_committed,
        summary.pages_failed,
        summary.records_inserted,
        summary.records_skipped,
        summary.records_rejected,
        summary.checkpoint,
        summary.failed_pages,
    )


def run_crawl(
    settings: CrawlSettings,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    sleep: Callable[[float], None] = time.sleep,
    rng: Optional[random.Random] = None,
    stop_event: Optional[threading.Event] = None,
) -> int:
    """One invocation: plan the window from the checkpoint and process it.

    Returns one of the EXIT_* codes.
    """
    checkpoints = CheckpointStore(settings.checkpoint_path)
    failures = FailureLog(settings.failure_log_path)
    failures.reset()

    try:
        last_committed = checkpoints.read()
    except CheckpointError as exc:
        return _fatal(str(exc))

    try:
        ensure_work_remaining(last_committed)
    except AllPagesProcessed as exc:
        logger.info("outcome=all_pages_processed checkpoint=%d reason=%s", last_committed, exc)
        return EXIT_ALL_PAGES_PROCESSED

    try:
        sink = open_sink(settings)
    except SinkError as exc:
        return _fatal(str(exc))

    try:
        with _client(settings, transport) as client:
            spider = QuestionListSpider(settings.extraction)
            try:
                meta = client.fetch_metadata(spider.parse_total_count)
            except CrawlStartupError as exc:
                return _fatal(str(exc))

            pages = total_pages(meta.total_item_count, meta.page_size)
            logger.info("Listing has %d pages; checkpoint=%d", pages, last_committed)
            try:
                window = compute_window(pages, last_committed, settings.pages_per_run)
            except AllPagesProcessed as exc:
                logger.info("outcome=all_pages_processed checkpoint=%d reason=%s", last_committed, exc)
                return EXIT_ALL_PAGES_PROCESSED

            orchestrator = _build_orchestrator(
                settings, client, sink, checkpoints, failures, sleep=sleep, rng=rng, stop_event=stop_event
            )
            summary = orchestrator.run(window)
    finally:
        sink.close()

    if summary.interrupted:
        _report(summary, "interrupted")
        return EXIT_INTERRUPTED
    _report(summary, "completed")
    return EXIT_COMPLETED


def retry_failed(
    settings: CrawlSettings,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    sleep: Callable[[float], None] = time.sleep,
    rng: Optional[random.Random] = None,
    stop_event: Optional[threading.Event] = None,
) -> int:
    """Re-process the pages logged as failed by the previous run.

    The checkpoint is not touched. Pages that fail again, and pages not
    reached because of an interruption, stay in the failure log.
    """
    checkpoints = CheckpointStore(settings.checkpoint_path)
    failures = FailureLog(settings.failure_log_path)
    previous = failures.entries()
    if not previous:
        logger.info("outcome=completed retried=0 reason=failure log is empty")
        return EXIT_COMPLETED

    try:
        sink = open_sink(settings)
    except SinkError as exc:
        return _fatal(str(exc))

    failures.reset()
    try:
        with _client(settings, transport) as client:
            orchestrator = _build_orchestrator(
                settings, client, sink, checkpoints, failures, sleep=sleep, rng=rng, stop_event=stop_event
            )
            summary = orchestrator.retry(e.page for e in previous)
    finally:
        sink.close()

    if summary.interrupted:
        done = set(summary.committed_pages) | set(summary.failed_pages)
        reasons = {e.page: e.reason for e in previous}
        for page in sorted(reasons, reverse=True):
            if page not in done:
                failures.append(FailureEntry(page=page, reason=reasons[page]))
        _report(summary, "interrupted")
        return EXIT_INTERRUPTED
    _report(summary, "completed")
    return EXIT_COMPLETED


def show_status(settings: CrawlSettings) -> int:
    try:
        checkpoint = CheckpointStore(settings.checkpoint_path).read()
    except CheckpointError as exc:
        return _fatal(str(exc))
    failed = FailureLog(settings.failure_log_path).entries()
    print(f"checkpoint={checkpoint}")
    print(f"failed_pages={','.join(str(e.page) for e in failed)}")
    return EXIT_COMPLETED


def reset_checkpoint(settings: CrawlSettings) -> int:
    CheckpointStore(settings.checkpoint_path).write(0)
    logger.info("Checkpoint %s reset to 0; sink left untouched", settings.checkpoint_path)
    return EXIT_COMPLETED


def _install_stop_handler(stop_event: threading.Event) -> None:
    def signal_handler(signum: int, frame: object) -> None:
        logger.info("Received signal %d, stopping after the current page", signum)
        stop_event.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, signal_handler)


def _add_common_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--base-url", help="Listing URL (without page parameters)")
    p.add_argument("--page-size", type=int, help="Items per page requested from the listing")
    p.add_argument("--checkpoint", dest="checkpoint_path", help="Checkpoint file path")
    p.add_argument("--failure-log", dest="failure_log_path", help="Failure log file path")
    p.add_argument("--sink", choices=["jsonl", "sqlite", "postgres"], help="Persistence backend")
    p.add_argument("--jsonl-path", help="Output file for the jsonl sink")
    p.add_argument("--sqlite-path", help="Database file for the sqlite sink")
    p.add_argument("--sink-table", help="Table name for relational sinks")
    p.add_argument("--pg-dsn", help="Connection string for the postgres sink")
    p.add_argument("--policy", help="JSON file with extraction selectors")
    p.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    p.add_argument("--env-file", help="KEY=value file read before the environment (default ./.env)")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Resumable paginated question harvester")
    sub = parser.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Process the next window of pages and advance the checkpoint")
    _add_common_options(run)
    run.add_argument("--pages-per-run", type=int, help="Maximum pages processed in this invocation")

    retry = sub.add_parser("retry-failed", help="Re-process pages logged as failed by the previous run")
    _add_common_options(retry)

    status = sub.add_parser("status", help="Show checkpoint and failed pages")
    _add_common_options(status)

    reset = sub.add_parser("reset", help="Reset the checkpoint to 0 (sink untouched)")
    _add_common_options(reset)

    args = parser.parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if k != "cmd"}

    try:
        settings = load_settings(**overrides)
    except (ValidationError, OSError) as exc:
        configure_logging("INFO")
        return _fatal(f"invalid configuration: {exc}")

    configure_logging(settings.log_level)

    if args.cmd == "status":
        return show_status(settings)
    if args.cmd == "reset":
        return reset_checkpoint(settings)

    stop_event = threading.Event()
    _install_stop_handler(stop_event)
    try:
        if args.cmd == "retry-failed":
            return retry_failed(settings, stop_event=stop_event)
        return run_crawl(settings, stop_event=stop_event)
    except KeyboardInterrupt:
        # Interrupted before the page loop started; nothing was committed.
        logger.info("outcome=interrupted reason=interrupted during startup")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    raise SystemExit(main())
