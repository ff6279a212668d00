from __future__ import annotations

import asyncio
import logging
import warnings
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import feedparser
import httpx
from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

from digest_agent.config import Settings
from digest_agent.errors import FetchError
from digest_agent.schemas.article import (
    ArticleCandidate,
    FeedCheck,
    FeedSource,
    FetchBatch,
    FetchBudget,
    FetchStats,
)
from digest_agent.services.dedup_store import DedupStore

logger = logging.getLogger(__name__)


def entry_id(entry: dict[str, Any]) -> str | None:
    """Feed-provided GUID, falling back to the permalink for feeds without one."""
    value = str(entry.get("id") or entry.get("guid") or entry.get("link") or "").strip()
    return value or None


def normalize_text(markup: str) -> str:
    if not markup:
        return ""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
        text = BeautifulSoup(markup, "lxml").get_text(" ")
    return " ".join(text.split())


def entry_body(entry: dict[str, Any]) -> str:
    content = entry.get("content") or []
    for part in content:
        value = part.get("value") if isinstance(part, dict) else None
        if value and value.strip():
            return str(value)
    return str(entry.get("summary") or entry.get("description") or "")


def entry_published_at(entry: dict[str, Any]) -> datetime | None:
    parsed_struct = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed_struct is not None:
        try:
            return datetime(*parsed_struct[:6], tzinfo=timezone.utc)
        except (TypeError, ValueError):
            pass

    date_text = entry.get("published") or entry.get("updated")
    if not date_text:
        return None
    try:
        parsed = parsedate_to_datetime(str(date_text))
    except (TypeError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def newest_first(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Sort by publish date, newest first. Undated entries keep document order, after dated ones."""

    def sort_key(pair: tuple[int, dict[str, Any]]) -> tuple[bool, float, int]:
        index, entry = pair
        published_at = entry_published_at(entry)
        timestamp = published_at.timestamp() if published_at else 0.0
        return (published_at is not None, timestamp, -index)

    return [entry for _, entry in sorted(enumerate(entries), key=sort_key, reverse=True)]


class FeedFetcher:
    def __init__(
        self,
        settings: Settings,
        dedup: DedupStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.dedup = dedup
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.request_timeout_seconds),
            follow_redirects=True,
            headers={"User-Agent": self.settings.user_agent},
            transport=self.transport,
        )

    async def fetch_source(
        self,
        client: httpx.AsyncClient,
        source: FeedSource,
    ) -> tuple[str, list[dict[str, Any]]]:
        try:
            response = await client.get(source.url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FetchError(source.url, str(exc)) from exc

        parsed = feedparser.parse(response.content)
        if parsed.bozo and not parsed.entries:
            raise FetchError(source.url, f"unparseable feed: {parsed.get('bozo_exception')}")

        feed_title = str(parsed.feed.get("title") or source.url).strip()
        return feed_title, [dict(entry) for entry in parsed.entries]

    async def fetch_batch(
        self,
        sources: list[FeedSource],
        force_fetch: bool = False,
        budget: FetchBudget | None = None,
    ) -> FetchBatch:
        budget = budget or FetchBudget()
        stats = FetchStats()
        accepted: list[ArticleCandidate] = []
        accepted_ids: set[str] = set()
        chunks: list[str] = []
        chars = 0

        seen: set[str] = set() if force_fetch else await asyncio.to_thread(self.dedup.seen_ids)

        async with self._client() as client:
            for source in sources:
                if len(accepted) >= budget.max_articles_total:
                    logger.info("Article limit of %s reached, skipping remaining feeds", budget.max_articles_total)
                    break
                if chars >= budget.max_chars:
                    logger.info("Character budget of %s reached, skipping remaining feeds", budget.max_chars)
                    break

                try:
                    feed_title, entries = await self.fetch_source(client, source)
                except FetchError as exc:
                    stats.feeds_failed += 1
                    stats.errors.append(str(exc))
                    logger.warning("%s", exc)
                    continue

                stats.feeds_checked += 1
                for entry in newest_first(entries)[: budget.max_items_per_feed]:
                    stats.articles_checked += 1
                    item_id = entry_id(entry)
                    if item_id is None or item_id in accepted_ids:
                        continue
                    if item_id in seen:
                        logger.debug("Skipping already processed item %s", item_id)
                        continue

                    text = normalize_text(entry_body(entry))
                    if not text:
                        continue

                    candidate = ArticleCandidate(
                        id=item_id,
                        source_title=feed_title,
                        item_title=str(entry.get("title") or "Untitled Article").strip(),
                        raw_text=text,
                        feed_url=source.url,
                    )
                    block = candidate.render_block()
                    if chars + len(block) > budget.max_chars:
                        logger.info("Item %s would exceed the character budget, leaving %s", item_id, source.url)
                        break

                    chunks.append(block)
                    chars += len(block)
                    accepted.append(candidate)
                    accepted_ids.add(item_id)
                    # one article per feed per run
                    break

                logger.info("Checked %s: %s accepted so far", source.url, len(accepted))

        stats.articles_accepted = len(accepted)
        stats.chars = chars
        return FetchBatch(
            combined_text="".join(chunks),
            new_ids=[article.id for article in accepted],
            articles=accepted,
            stats=stats,
        )

    async def test_feeds(self, sources: list[FeedSource]) -> list[FeedCheck]:
        results: list[FeedCheck] = []
        async with self._client() as client:
            for source in sources:
                try:
                    _, entries = await self.fetch_source(client, source)
                except FetchError as exc:
                    results.append(FeedCheck(url=source.url, status="error", message=exc.reason))
                    continue
                results.append(
                    FeedCheck(
                        url=source.url,
                        status="success",
                        message=f"Found {len(entries)} items",
                        items=len(entries),
                    )
                )
        return results
