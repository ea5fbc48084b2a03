from app.models.crawl import ExtractionPolicy
from app.services.crawl.base import ListingMetadataError
from app.services.crawl.spiders.questions_spider import QuestionListSpider

from datetime import datetime, timezone
from pathlib import Path

import pytest


NOW = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def read_fixture(name: str) -> str:
    p = Path(__file__).parent / "fixtures" / name
    return p.read_text(encoding="utf-8")


def test_parse_sample_page_drops_block_without_title():
    html = read_fixture("questions_page_sample.html")
    spider = QuestionListSpider()
    records = spider.parse_html(html, page=7, now=NOW)
    assert len(records) == 3
    assert [r.external_id for r in records] == [78001, 78002, 0]
    assert all(r.source_page == 7 for r in records)
    # whitespace inside the title is normalized
    assert records[0].title == "How do I parse HTML in Python?"


def test_parse_optional_fields_and_defaults():
    html = read_fixture("questions_page_sample.html")
    records = QuestionListSpider().parse_html(html, page=1, now=NOW)
    first, second, third = records
    assert first.view_count == 1234
    assert first.published_at == datetime(2024, 5, 1, 10, 20, 30, tzinfo=timezone.utc)
    # no timestamp node -> extraction instant
    assert second.view_count == 87
    assert second.published_at == NOW
    # unparsable timestamp and missing views
    assert third.view_count == 0
    assert third.published_at == NOW


def test_parse_absolute_link_yields_id():
    html = read_fixture("questions_page_sample.html")
    records = QuestionListSpider().parse_html(html, page=1, now=NOW)
    assert records[1].external_id == 78002
    assert records[1].title == "SQLite unique constraint on insert"


def test_parse_missing_container_returns_empty():
    html = "<html><body><h1>Too many requests</h1></body></html>"
    assert QuestionListSpider().parse_html(html, page=3) == []
    assert QuestionListSpider().parse_html("", page=3) == []


def test_parse_total_count_from_container():
    html = read_fixture("questions_page_sample.html")
    assert QuestionListSpider().parse_total_count(html) == 24118305


def test_parse_total_count_missing_raises():
    spider = QuestionListSpider()
    with pytest.raises(ListingMetadataError):
        spider.parse_total_count("<html><body><div id='questions'></div></body></html>")
    with pytest.raises(ListingMetadataError):
        spider.parse_total_count("<html><body>captcha</body></html>")
    with pytest.raises(ListingMetadataError):
        spider.parse_total_count(
            "<div id='questions'><meta itemprop='numberOfItems' content='lots'></div>"
        )


def test_custom_policy_selects_other_markup():
    html = """
    <ul class="listing">
      <li class="q"><a class="t" href="/q/55/first">First</a><em class="v">12 views</em></li>
      <li class="q"><a class="t" href="/q/56/second">Second</a></li>
    </ul>
    """
    policy = ExtractionPolicy(
        container_sel="ul.listing",
        question_sel="li.q",
        title_sel="a.t",
        link_sel="a.t",
        views_sel="em.v",
        views_attr=None,
        published_sel=None,
    )
    records = QuestionListSpider(policy).parse_html(html, page=2, now=NOW)
    assert [(r.external_id, r.title, r.view_count) for r in records] == [(55, "First", 12), (56, "Second", 0)]


@pytest.mark.parametrize(
    "text,expected",
    [("1,234 views", 1234), ("3.4k views", 3400), ("2m", 2000000), ("", 0), ("no views yet", 0)],
)
def test_parse_count_variants(text, expected):
    assert QuestionListSpider._parse_count(text) == expected


@pytest.mark.parametrize(
    "href,expected",
    [
        ("/questions/123/slug", 123),
        ("https://example.com/questions/9223372036854775807/max", 9223372036854775807),
        ("/questions/9223372036854775808/too-big", 0),
        ("/questions/99999999999999999999/way-too-big", 0),
        ("/questions/-5/negative", 0),
        ("/questions/0/zero", 0),
        ("/questions", 0),
    ],
)
def test_parse_id_stays_within_signed_64_bits(href, expected):
    assert QuestionListSpider._parse_id(href, 2) == expected


def test_parse_html_oversized_id_becomes_zero():
    html = (
        "<div id='questions'><div class='s-post-summary js-post-summary'>"
        "<h3 class='s-post-summary--content-title'>"
        "<a class='s-link' href='/questions/99999999999999999999/x'><span itemprop='name'>Big</span></a>"
        "</h3></div></div>"
    )
    records = QuestionListSpider().parse_html(html, page=1, now=NOW)
    assert [(r.external_id, r.title) for r in records] == [(0, "Big")]
