from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class ExtractionPolicy(BaseModel):
    """CSS paths used to locate question blocks and their fields.

    Markup changes on the listing are handled by editing these values (or a
    JSON policy file), not the extractor.
    """

    container_sel: str = Field("div#questions", description="Container holding all question blocks")
    question_sel: str = Field("div.s-post-summary.js-post-summary", description="One question block")
    title_sel: str = Field(
        "h3.s-post-summary--content-title a span[itemprop='name'], h3.s-post-summary--content-title a",
        description="Title node, relative to a question block",
    )
    link_sel: str = Field("h3.s-post-summary--content-title a", description="Hyperlink carrying the question id")
    link_attr: str = "href"
    id_path_index: int = Field(2, ge=0, description="Path segment holding the id: /questions/<id>/slug")
    views_sel: Optional[str] = ".s-post-summary--stats-item[title$='views']"
    views_attr: Optional[str] = "title"
    published_sel: Optional[str] = "span.relativetime"
    published_attr: Optional[str] = "title"
    total_count_sel: str = "meta[itemprop='numberOfItems']"
    total_count_attr: str = "content"


SinkKind = Literal["jsonl", "sqlite", "postgres"]


class CrawlSettings(BaseModel):
    base_url: str = "https://stackoverflow.com/questions"
    page_size: int = Field(50, gt=0)
    pages_per_run: int = Field(10, gt=0)
    delay_min: float = Field(0.1, ge=0)
    delay_max: float = Field(1.9, ge=0)
    timeout: float = Field(15.0, gt=0)
    user_agent: str = DEFAULT_USER_AGENT

    checkpoint_path: str = "output/last_page.txt"
    failure_log_path: str = "output/failed_pages.txt"

    sink: SinkKind = "sqlite"
    jsonl_path: str = "output/questions.jsonl"
    sqlite_path: str = "output/questions.db"
    sink_table: str = Field("questions", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    pg_dsn: Optional[str] = None

    log_level: str = "INFO"
    extraction: ExtractionPolicy = Field(default_factory=ExtractionPolicy)

    @model_validator(mode="after")
    def _check_delay_range(self) -> "CrawlSettings":
        if self.delay_max < self.delay_min:
            raise ValueError(f"delay_max ({self.delay_max}) must be >= delay_min ({self.delay_min})")
        return self
