from __future__ import annotations

import asyncio
import logging

from langchain_core.runnables import RunnableConfig
from langsmith import traceable

from digest_agent.graph.state import RunState, get_deps
from digest_agent.schemas.article import FetchBatch
from digest_agent.schemas.run import GenerationRun, RunStage

logger = logging.getLogger(__name__)


@traceable(name="summarize_node")
async def summarize_node(state: RunState, config: RunnableConfig) -> RunState:
    deps = get_deps(config)
    settings = deps.settings

    batch = FetchBatch.model_validate(state["batch"])
    run = GenerationRun.model_validate(state["run"])
    run = await asyncio.to_thread(
        deps.status.update,
        run,
        RunStage.SUMMARIZING,
        "Generating summary with AI...",
        {"articles": batch.stats.articles_accepted, "chars": batch.stats.chars},
    )

    summary = await deps.summarizer.summarize(
        batch.combined_text,
        settings.context_prompt,
        settings.title_prompt,
        (settings.openai_api_key or "").strip(),
    )

    next_state: RunState = dict(state)
    next_state["run"] = run.model_dump(mode="json")
    next_state["summary"] = summary.model_dump(mode="json")

    logger.info("Summarization complete: %r", summary.title)
    return next_state
