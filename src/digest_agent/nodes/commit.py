from __future__ import annotations

import asyncio
import logging

from langchain_core.runnables import RunnableConfig
from langsmith import traceable

from digest_agent.graph.state import RunState, get_deps
from digest_agent.schemas.run import GenerationRun, PostStatus, RunStage

logger = logging.getLogger(__name__)


@traceable(name="commit_node")
async def commit_node(state: RunState, config: RunnableConfig) -> RunState:
    """Record the published articles as seen. Only reached after a durable publish."""
    deps = get_deps(config)
    draft_mode = bool(state.get("draft_mode", deps.settings.draft_mode))

    new_ids = list(state["batch"].get("new_ids", []))
    await asyncio.to_thread(deps.dedup.mark_seen, new_ids)

    title = state["summary"]["title"]
    run = GenerationRun.model_validate(state["run"])
    run = await asyncio.to_thread(
        deps.status.update,
        run,
        RunStage.COMPLETE,
        f"Post created: {title}",
        {
            "record_id": state["record_id"],
            "title": title,
            "status": (PostStatus.DRAFT if draft_mode else PostStatus.PUBLISHED).value,
            "articles": len(new_ids),
        },
    )

    next_state: RunState = dict(state)
    next_state["run"] = run.model_dump(mode="json")
    return next_state
