from __future__ import annotations

import asyncio
import logging

from langchain_core.runnables import RunnableConfig
from langsmith import traceable

from digest_agent.graph.state import RunState, get_deps
from digest_agent.schemas.run import GenerationRun, RunStage, SummaryResult

logger = logging.getLogger(__name__)


@traceable(name="publish_node")
async def publish_node(state: RunState, config: RunnableConfig) -> RunState:
    deps = get_deps(config)
    settings = deps.settings
    draft_mode = bool(state.get("draft_mode", settings.draft_mode))

    summary = SummaryResult.model_validate(state["summary"])
    run = GenerationRun.model_validate(state["run"])
    run = await asyncio.to_thread(
        deps.status.update,
        run,
        RunStage.PUBLISHING,
        "Creating post...",
        {"title": summary.title},
    )

    record_id = await asyncio.to_thread(
        deps.publisher.publish,
        summary.title,
        summary.body,
        settings.post_signature,
        draft_mode,
        state.get("author"),
    )

    next_state: RunState = dict(state)
    next_state["run"] = run.model_dump(mode="json")
    next_state["record_id"] = record_id

    logger.info("Publish complete: record %s", record_id)
    return next_state
