from __future__ import annotations

from dataclasses import dataclass

import httpx

from digest_agent.config import Settings
from digest_agent.pipeline.dispatch import Dispatcher
from digest_agent.pipeline.orchestrator import GenerationOrchestrator
from digest_agent.pipeline.trigger import RunTrigger
from digest_agent.services.dedup_store import DedupStore
from digest_agent.services.kv_store import FileKeyValueStore, KeyValueStore
from digest_agent.services.openai_client import SummarizerClient
from digest_agent.services.publisher import FilePostSink, PostSink, Publisher
from digest_agent.services.rss_client import FeedFetcher
from digest_agent.services.status_store import StatusStore


@dataclass
class Services:
    settings: Settings
    store: KeyValueStore
    dedup: DedupStore
    status: StatusStore
    fetcher: FeedFetcher
    summarizer: SummarizerClient
    publisher: Publisher
    orchestrator: GenerationOrchestrator
    trigger: RunTrigger


def build_services(
    settings: Settings,
    store: KeyValueStore | None = None,
    sink: PostSink | None = None,
    feed_transport: httpx.AsyncBaseTransport | None = None,
    llm_transport: httpx.AsyncBaseTransport | None = None,
    dispatcher: Dispatcher | None = None,
) -> Services:
    store = store or FileKeyValueStore(settings.state_path / "kv")
    dedup = DedupStore(store, ttl_seconds=settings.dedup_ttl_seconds)
    status = StatusStore(store, ttl_seconds=settings.status_ttl_seconds)
    fetcher = FeedFetcher(settings, dedup, transport=feed_transport)
    summarizer = SummarizerClient(settings, transport=llm_transport)
    publisher = Publisher(sink or FilePostSink(settings.posts_dir), default_author=settings.post_author)
    orchestrator = GenerationOrchestrator(settings, fetcher, summarizer, publisher, dedup, status)
    trigger = RunTrigger(orchestrator, store, dispatcher=dispatcher, lock_ttl_seconds=settings.lock_ttl_seconds)
    return Services(
        settings=settings,
        store=store,
        dedup=dedup,
        status=status,
        fetcher=fetcher,
        summarizer=summarizer,
        publisher=publisher,
        orchestrator=orchestrator,
        trigger=trigger,
    )
