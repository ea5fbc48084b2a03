import random
from typing import Dict, List

import httpx
import pytest

from app.models.crawl import CrawlSettings
from app.services.crawl.base import CrawlStartupError, FetchError, ListingMetadataError
from app.services.crawl.fetcher import ListingClient
from app.services.crawl.runner import (
    EXIT_ALL_PAGES_PROCESSED,
    EXIT_COMPLETED,
    EXIT_FATAL,
    main,
    reset_checkpoint,
    retry_failed,
    run_crawl,
)
from app.services.crawl.sinks.sqlite_sink import SqliteSink
from app.services.crawl.spiders.questions_spider import QuestionListSpider
from app.services.crawl.state import CheckpointStore, FailureLog


BASE_URL = "https://listing.test/questions"


def listing_html(total: int, ids: List[int]) -> str:
    blocks = "".join(
        f'<div class="s-post-summary js-post-summary"><h3 class="s-post-summary--content-title">'
        f'<a class="s-link" href="/questions/{qid}/q"><span itemprop="name">Q {qid}</span></a></h3></div>'
        for qid in ids
    )
    return (
        "<html><body><div id='questions'>"
        f"<meta itemprop='numberOfItems' content='{total}'>{blocks}"
        "</div></body></html>"
    )


def make_transport(total: int, pages: Dict[int, object], seen: List[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        page = request.url.params.get("page")
        if page is None:
            return httpx.Response(200, text=listing_html(total, []))
        planned = pages.get(int(page), [])
        if planned == "refused":
            raise httpx.ConnectError("connection refused", request=request)
        if isinstance(planned, int):
            return httpx.Response(planned, text="busy")
        return httpx.Response(200, text=listing_html(total, planned))

    return httpx.MockTransport(handler)


def settings_for(tmp_path, **kw) -> CrawlSettings:
    values = dict(
        base_url=BASE_URL,
        checkpoint_path=str(tmp_path / "state" / "last_page.txt"),
        failure_log_path=str(tmp_path / "state" / "failed_pages.txt"),
        sink="sqlite",
        sqlite_path=str(tmp_path / "questions.db"),
        delay_min=0.0,
        delay_max=0.0,
    )
    values.update(kw)
    return CrawlSettings(**values)


def count_rows(path) -> int:
    with SqliteSink(str(path)) as sink:
        return sink.count()


def test_client_encodes_page_and_size_and_user_agent():
    seen: List[httpx.Request] = []
    transport = make_transport(100, {2: [7]}, seen)
    with ListingClient(BASE_URL, page_size=50, headers={"User-Agent": "Mozilla/5.0 test"}, transport=transport) as c:
        resp = c.fetch_page(2)
    assert resp.ok and resp.page == 2
    assert seen[0].url.params["page"] == "2"
    assert seen[0].url.params["pagesize"] == "50"
    assert seen[0].headers["User-Agent"] == "Mozilla/5.0 test"


def test_client_wraps_transport_errors():
    transport = make_transport(100, {3: "refused"}, [])
    with ListingClient(BASE_URL, page_size=50, transport=transport) as c:
        with pytest.raises(FetchError):
            c.fetch_page(3)


def test_client_metadata_failures_are_startup_errors():
    def down(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    def error_page(request):
        return httpx.Response(500, text="oops")

    def no_count(request):
        return httpx.Response(200, text="<html><body>captcha</body></html>")

    spider = QuestionListSpider()
    for handler in (down, error_page):
        with ListingClient(BASE_URL, page_size=50, transport=httpx.MockTransport(handler)) as c:
            with pytest.raises(CrawlStartupError):
                c.fetch_metadata(spider.parse_total_count)
    with ListingClient(BASE_URL, page_size=50, transport=httpx.MockTransport(no_count)) as c:
        with pytest.raises(ListingMetadataError):
            c.fetch_metadata(spider.parse_total_count)


def test_run_crawl_end_to_end(tmp_path):
    seen: List[httpx.Request] = []
    transport = make_transport(125, {3: [301, 302], 2: 503, 1: [101]}, seen)
    settings = settings_for(tmp_path)

    code = run_crawl(settings, transport=transport, sleep=lambda s: None, rng=random.Random(0))

    assert code == EXIT_COMPLETED
    assert [r.url.params.get("page") for r in seen] == [None, "3", "2", "1"]
    assert CheckpointStore(settings.checkpoint_path).read() == 1
    assert FailureLog(settings.failure_log_path).pages() == [2]
    assert count_rows(settings.sqlite_path) == 3


def test_run_crawl_respects_pages_per_run_and_resumes(tmp_path):
    seen: List[httpx.Request] = []
    transport = make_transport(200, {4: [4], 3: [3], 2: [2], 1: [1]}, seen)
    settings = settings_for(tmp_path, pages_per_run=2)

    assert run_crawl(settings, transport=transport, sleep=lambda s: None) == EXIT_COMPLETED
    assert CheckpointStore(settings.checkpoint_path).read() == 3
    assert run_crawl(settings, transport=transport, sleep=lambda s: None) == EXIT_COMPLETED
    assert CheckpointStore(settings.checkpoint_path).read() == 1

    seen.clear()
    assert run_crawl(settings, transport=transport, sleep=lambda s: None) == EXIT_ALL_PAGES_PROCESSED
    # terminal state is detected before any request
    assert seen == []
    assert count_rows(settings.sqlite_path) == 4


def test_run_crawl_truncates_previous_failure_log(tmp_path):
    settings = settings_for(tmp_path)
    path = tmp_path / "state" / "failed_pages.txt"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("99\tnon-success-status\n", encoding="utf-8")
    transport = make_transport(50, {1: [1]}, [])

    assert run_crawl(settings, transport=transport, sleep=lambda s: None) == EXIT_COMPLETED
    assert FailureLog(path).pages() == []


def test_run_crawl_fatal_when_listing_unreachable(tmp_path):
    def down(request):
        raise httpx.ConnectError("dns failure", request=request)

    settings = settings_for(tmp_path)
    code = run_crawl(settings, transport=httpx.MockTransport(down), sleep=lambda s: None)
    assert code == EXIT_FATAL
    assert CheckpointStore(settings.checkpoint_path).read() == 0


def test_run_crawl_fatal_on_corrupt_checkpoint(tmp_path):
    settings = settings_for(tmp_path)
    path = tmp_path / "state" / "last_page.txt"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("garbage", encoding="utf-8")
    seen: List[httpx.Request] = []
    code = run_crawl(settings, transport=make_transport(100, {}, seen), sleep=lambda s: None)
    assert code == EXIT_FATAL
    assert seen == []


def test_retry_failed_reprocesses_logged_pages_only(tmp_path):
    settings = settings_for(tmp_path)
    first = make_transport(125, {3: [31], 2: 503, 1: [11]}, [])
    assert run_crawl(settings, transport=first, sleep=lambda s: None) == EXIT_COMPLETED
    assert FailureLog(settings.failure_log_path).pages() == [2]

    seen: List[httpx.Request] = []
    second = make_transport(125, {2: [21, 22]}, seen)
    assert retry_failed(settings, transport=second, sleep=lambda s: None) == EXIT_COMPLETED
    assert [r.url.params.get("page") for r in seen] == ["2"]
    assert FailureLog(settings.failure_log_path).pages() == []
    assert CheckpointStore(settings.checkpoint_path).read() == 1
    assert count_rows(settings.sqlite_path) == 4


def test_reset_then_rerun_is_idempotent(tmp_path):
    settings = settings_for(tmp_path)
    transport = make_transport(100, {2: [20], 1: [10]}, [])
    assert run_crawl(settings, transport=transport, sleep=lambda s: None) == EXIT_COMPLETED
    assert count_rows(settings.sqlite_path) == 2

    assert reset_checkpoint(settings) == EXIT_COMPLETED
    assert CheckpointStore(settings.checkpoint_path).read() == 0
    assert run_crawl(settings, transport=transport, sleep=lambda s: None) == EXIT_COMPLETED
    assert count_rows(settings.sqlite_path) == 2


def test_main_status_and_reset(tmp_path, capsys, monkeypatch):
    monkeypatch.chdir(tmp_path)
    ckpt = tmp_path / "last_page.txt"
    flog = tmp_path / "failed.txt"
    CheckpointStore(ckpt).write(5)
    flog.write_text("6\ttransport-error\n", encoding="utf-8")

    args = ["--checkpoint", str(ckpt), "--failure-log", str(flog)]
    assert main(["status"] + args) == 0
    out = capsys.readouterr().out
    assert "checkpoint=5" in out
    assert "failed_pages=6" in out

    assert main(["reset"] + args) == 0
    assert CheckpointStore(ckpt).read() == 0


def test_main_invalid_configuration_is_fatal(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["run", "--pages-per-run", "0", "--checkpoint", str(tmp_path / "c.txt")]) == EXIT_FATAL


def test_main_env_file_sets_paths(tmp_path, capsys, monkeypatch):
    monkeypatch.chdir(tmp_path)
    ckpt = tmp_path / "from_env_file.txt"
    CheckpointStore(ckpt).write(4)
    env_path = tmp_path / "harvest.env"
    env_path.write_text(f"HARVEST_CHECKPOINT_PATH={ckpt}\n", encoding="utf-8")
    # an empty value is filled from the file; setenv restores the variable afterwards
    monkeypatch.setenv("HARVEST_CHECKPOINT_PATH", "")

    assert main(["status", "--env-file", str(env_path), "--failure-log", str(tmp_path / "f.txt")]) == 0
    assert "checkpoint=4" in capsys.readouterr().out


def test_main_missing_env_file_is_fatal(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["status", "--env-file", str(tmp_path / "missing.env")]) == EXIT_FATAL
