import asyncio

from conftest import build_rss, feed_transport, make_settings

from digest_agent.schemas.article import FeedSource, FetchBudget
from digest_agent.services.rss_client import FeedFetcher, entry_body, entry_id, newest_first, normalize_text

FEED_A = "https://feeds.example.com/a.xml"
FEED_B = "https://feeds.example.com/b.xml"
FEED_C = "https://feeds.example.com/c.xml"


def _fetch(dedup, feeds, urls, force_fetch=False, budget=None, calls=None):
    fetcher = FeedFetcher(make_settings(feed_urls=urls), dedup, transport=feed_transport(feeds, calls))
    sources = [FeedSource(url=url) for url in urls]
    return asyncio.run(fetcher.fetch_batch(sources, force_fetch=force_fetch, budget=budget))


def test_normalize_text_strips_markup_and_collapses_whitespace() -> None:
    html = "<p>Hello   <b>world</b></p>\n\n<div>again</div>"
    assert normalize_text(html) == "Hello world again"


def test_entry_body_prefers_full_content() -> None:
    entry = {"content": [{"value": "<p>full text</p>"}], "summary": "short"}
    assert entry_body(entry) == "<p>full text</p>"
    assert entry_body({"summary": "short"}) == "short"


def test_entry_id_uses_guid_before_link() -> None:
    assert entry_id({"id": "tag:example.com,1", "link": "https://example.com/1"}) == "tag:example.com,1"
    assert entry_id({"link": "https://example.com/1"}) == "https://example.com/1"
    assert entry_id({}) is None


def test_two_feeds_with_one_new_item_each(dedup) -> None:
    body = "x" * 500
    feeds = {
        FEED_A: build_rss("Feed A", [("a-1", "First A", body)]),
        FEED_B: build_rss("Feed B", [("b-1", "First B", body)]),
    }

    batch = _fetch(dedup, feeds, [FEED_A, FEED_B])

    assert batch.new_ids == ["a-1", "b-1"]
    assert "Source: Feed A\nArticle Title: First A" in batch.combined_text
    assert "Source: Feed B\nArticle Title: First B" in batch.combined_text
    assert batch.combined_text.index("Feed A") < batch.combined_text.index("Feed B")
    assert batch.stats.articles_accepted == 2


def test_one_article_per_feed_and_total_cap(dedup) -> None:
    feeds = {
        url: build_rss(f"Feed {n}", [(f"{n}-1", "one", "body one"), (f"{n}-2", "two", "body two")])
        for n, url in enumerate([FEED_A, FEED_B, FEED_C])
    }

    batch = _fetch(dedup, feeds, [FEED_A, FEED_B, FEED_C])

    assert batch.new_ids == ["0-1", "1-1", "2-1"]
    assert not dedup.has_seen("0-2")

    capped = _fetch(dedup, feeds, [FEED_A, FEED_B, FEED_C], budget=FetchBudget(max_articles_total=2))
    assert capped.new_ids == ["0-1", "1-1"]


def test_seen_items_are_skipped_unless_forced(dedup) -> None:
    feeds = {FEED_A: build_rss("Feed A", [("a-1", "old", "old body"), ("a-2", "new", "new body")])}
    dedup.mark_seen(["a-1"])

    batch = _fetch(dedup, feeds, [FEED_A])
    assert batch.new_ids == ["a-2"]

    dedup.mark_seen(["a-2"])
    nothing = _fetch(dedup, feeds, [FEED_A])
    assert nothing.is_empty
    assert nothing.new_ids == []
    assert nothing.stats.articles_checked == 2

    forced = _fetch(dedup, feeds, [FEED_A], force_fetch=True)
    assert forced.new_ids == ["a-1"]


def test_character_budget_is_never_exceeded(dedup) -> None:
    feeds = {
        FEED_A: build_rss("Feed A", [("a-1", "big", "a" * 700)]),
        FEED_B: build_rss("Feed B", [("b-1", "big", "b" * 700)]),
        FEED_C: build_rss("Feed C", [("c-1", "small", "c" * 50)]),
    }
    budget = FetchBudget(max_chars=1000)

    batch = _fetch(dedup, feeds, [FEED_A, FEED_B, FEED_C], budget=budget)

    assert len(batch.combined_text) <= 1000
    assert batch.new_ids == ["a-1", "c-1"]


def test_fetching_stops_once_budget_is_spent(dedup) -> None:
    calls: list[str] = []
    feeds = {
        FEED_A: build_rss("Feed A", [("a-1", "big", "a" * 200)]),
        FEED_B: build_rss("Feed B", [("b-1", "big", "b" * 200)]),
    }

    batch = _fetch(dedup, feeds, [FEED_A, FEED_B], budget=FetchBudget(max_chars=242), calls=calls)

    assert batch.new_ids == ["a-1"]
    assert calls == [FEED_A]


def test_failing_feed_is_skipped(dedup) -> None:
    feeds = {FEED_B: build_rss("Feed B", [("b-1", "ok", "fine")])}

    batch = _fetch(dedup, feeds, [FEED_A, FEED_B])

    assert batch.new_ids == ["b-1"]
    assert batch.stats.feeds_failed == 1
    assert FEED_A in batch.stats.errors[0]


def test_items_with_empty_text_are_skipped(dedup) -> None:
    feeds = {FEED_A: build_rss("Feed A", [("a-1", "empty", "<p> </p>"), ("a-2", "real", "text")])}

    batch = _fetch(dedup, feeds, [FEED_A])

    assert batch.new_ids == ["a-2"]


def test_test_feeds_reports_item_counts(dedup) -> None:
    feeds = {FEED_A: build_rss("Feed A", [("a-1", "one", "x"), ("a-2", "two", "y")])}
    fetcher = FeedFetcher(make_settings(), dedup, transport=feed_transport(feeds))

    results = asyncio.run(fetcher.test_feeds([FeedSource(url=FEED_A), FeedSource(url=FEED_B)]))

    assert [result.status for result in results] == ["success", "error"]
    assert results[0].items == 2
    assert not dedup.has_seen("a-1")


def test_newest_item_is_taken_from_oldest_first_feed(dedup) -> None:
    feeds = {
        FEED_A: build_rss(
            "Feed A",
            [
                ("old", "January", "old body", "Thu, 15 Jan 2026 08:00:00 GMT"),
                ("new", "October", "new body", "Thu, 15 Oct 2026 08:00:00 GMT"),
            ],
        )
    }

    batch = _fetch(dedup, feeds, [FEED_A])

    assert batch.new_ids == ["new"]


def test_per_feed_limit_keeps_most_recent_items(dedup) -> None:
    items = [(f"a-{day}", f"day {day}", f"body {day}", f"{day:02d} Jan 2026 08:00:00 GMT") for day in range(1, 6)]
    feeds = {FEED_A: build_rss("Feed A", items)}
    dedup.mark_seen(["a-5", "a-4"])

    batch = _fetch(dedup, feeds, [FEED_A], budget=FetchBudget(max_items_per_feed=2))

    # both of the two newest are already seen, older ones are out of range
    assert batch.is_empty
    assert batch.stats.articles_checked == 2


def test_newest_first_keeps_document_order_for_undated_entries() -> None:
    entries = [
        {"id": "undated-1"},
        {"id": "dated", "published": "Thu, 15 Jan 2026 08:00:00 GMT"},
        {"id": "undated-2"},
    ]
    assert [entry["id"] for entry in newest_first(entries)] == ["dated", "undated-1", "undated-2"]
