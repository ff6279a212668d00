from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from digest_agent.config import Settings
from digest_agent.services.dedup_store import DedupStore
from digest_agent.services.kv_store import MemoryKeyValueStore


def build_rss(title: str, items: list[tuple[str, ...]]) -> str:
    """RSS 2.0 document; each item is (guid, title, html body[, RFC 822 pubDate])."""
    rendered = ""
    for guid, item_title, body, *published in items:
        pub_date = f"<pubDate>{published[0]}</pubDate>" if published else ""
        rendered += (
            f"<item><guid>{guid}</guid><title>{item_title}</title>{pub_date}"
            f"<description><![CDATA[{body}]]></description></item>"
        )
    return f'<?xml version="1.0"?><rss version="2.0"><channel><title>{title}</title>{rendered}</channel></rss>'


def feed_transport(feeds: dict[str, str], calls: list[str] | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if calls is not None:
            calls.append(url)
        if url not in feeds:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, text=feeds[url], headers={"content-type": "application/rss+xml"})

    return httpx.MockTransport(handler)


def completion_response(content: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


def llm_transport(
    title: str = "Daily Digest",
    summary: str = "Three things happened today.",
    requests: list[dict] | None = None,
    responder: Callable[[httpx.Request], httpx.Response] | None = None,
) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(json.loads(request.content))
        if responder is not None:
            return responder(request)
        return completion_response(json.dumps({"title": title, "summary": summary}))

    return httpx.MockTransport(handler)


def make_settings(**overrides) -> Settings:
    values = {
        "feed_urls": ["https://feeds.example.com/a.xml"],
        "openai_api_key": "sk-test",
        "openai_base_url": "https://llm.example.com/v1",
        "post_signature": "",
        "draft_mode": True,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def kv_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def dedup(kv_store: MemoryKeyValueStore) -> DedupStore:
    return DedupStore(kv_store)
