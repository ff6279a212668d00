from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypedDict

from langchain_core.runnables import RunnableConfig

from digest_agent.config import Settings
from digest_agent.services.dedup_store import DedupStore
from digest_agent.services.openai_client import SummarizerClient
from digest_agent.services.publisher import Publisher
from digest_agent.services.rss_client import FeedFetcher
from digest_agent.services.status_store import StatusStore


class RunState(TypedDict, total=False):
    run: dict[str, Any]
    force_fetch: bool
    draft_mode: bool
    author: str | None
    batch: dict[str, Any]
    summary: dict[str, Any]
    record_id: str


@dataclass
class PipelineDeps:
    """Collaborators handed to every node through ``config["configurable"]``."""

    settings: Settings
    fetcher: FeedFetcher
    summarizer: SummarizerClient
    publisher: Publisher
    dedup: DedupStore
    status: StatusStore


def get_deps(config: RunnableConfig) -> PipelineDeps:
    return config["configurable"]["deps"]
