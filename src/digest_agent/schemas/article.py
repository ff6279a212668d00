from __future__ import annotations

from pydantic import BaseModel, Field


class FeedSource(BaseModel):
    url: str


class ArticleCandidate(BaseModel):
    id: str
    source_title: str
    item_title: str
    raw_text: str
    feed_url: str

    def render_block(self) -> str:
        return (
            f"Source: {self.source_title}\n"
            f"Article Title: {self.item_title}\n\n"
            f"{self.raw_text}\n\n"
            "---\n\n"
        )


class FetchBudget(BaseModel):
    max_chars: int = 25_000
    max_items_per_feed: int = 10
    max_articles_total: int = 3


class FetchStats(BaseModel):
    feeds_checked: int = 0
    feeds_failed: int = 0
    articles_checked: int = 0
    articles_accepted: int = 0
    chars: int = 0
    errors: list[str] = Field(default_factory=list)


class FetchBatch(BaseModel):
    combined_text: str = ""
    new_ids: list[str] = Field(default_factory=list)
    articles: list[ArticleCandidate] = Field(default_factory=list)
    stats: FetchStats = Field(default_factory=FetchStats)

    @property
    def is_empty(self) -> bool:
        return not self.combined_text


class FeedCheck(BaseModel):
    url: str
    status: str
    message: str
    items: int = 0


def sources_from_urls(urls: list[str]) -> list[FeedSource]:
    return [FeedSource(url=url) for url in urls]
