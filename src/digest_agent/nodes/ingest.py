from __future__ import annotations

import asyncio
import logging

from langchain_core.runnables import RunnableConfig
from langsmith import traceable

from digest_agent.graph.state import RunState, get_deps
from digest_agent.schemas.article import FetchBudget, sources_from_urls
from digest_agent.schemas.run import GenerationRun, RunStage

logger = logging.getLogger(__name__)


@traceable(name="ingest_node")
async def ingest_node(state: RunState, config: RunnableConfig) -> RunState:
    deps = get_deps(config)
    settings = deps.settings
    force_fetch = bool(state.get("force_fetch", False))

    run = GenerationRun.model_validate(state["run"])
    run = await asyncio.to_thread(
        deps.status.update,
        run,
        RunStage.FETCHING,
        "Fetching RSS feeds...",
        {"feeds": len(settings.feed_urls), "force_fetch": force_fetch},
    )

    budget = FetchBudget(
        max_chars=settings.max_chars,
        max_items_per_feed=settings.max_items_per_feed,
        max_articles_total=settings.max_articles_total,
    )
    batch = await deps.fetcher.fetch_batch(
        sources_from_urls(settings.feed_urls),
        force_fetch=force_fetch,
        budget=budget,
    )

    next_state: RunState = dict(state)
    next_state["batch"] = batch.model_dump(mode="json")

    if batch.is_empty:
        run = await asyncio.to_thread(
            deps.status.update,
            run,
            RunStage.COMPLETE,
            "No new articles found since the last run.",
            {
                "articles_checked": batch.stats.articles_checked,
                "feeds_failed": batch.stats.feeds_failed,
                "errors": batch.stats.errors,
            },
        )
        logger.info("Nothing new: %s items checked", batch.stats.articles_checked)
    else:
        logger.info(
            "Ingestion complete: %s articles, %s chars",
            batch.stats.articles_accepted,
            batch.stats.chars,
        )

    next_state["run"] = run.model_dump(mode="json")
    return next_state


def route_after_ingest(state: RunState) -> str:
    batch = state.get("batch") or {}
    return "summarize" if batch.get("combined_text") else "done"
