from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import uuid4

from pydantic import ValidationError

from digest_agent.config import MAX_FEED_SOURCES, Settings
from digest_agent.errors import ConfigError, DigestError
from digest_agent.graph.state import PipelineDeps, RunState
from digest_agent.graph.workflow import build_workflow
from digest_agent.schemas.run import GenerationRun, RunStage
from digest_agent.services.dedup_store import DedupStore
from digest_agent.services.openai_client import SummarizerClient
from digest_agent.services.publisher import Publisher
from digest_agent.services.rss_client import FeedFetcher
from digest_agent.services.status_store import StatusStore

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    return uuid4().hex


def validate_settings(settings: Settings) -> None:
    if not settings.feed_urls:
        raise ConfigError("No feed URLs configured")
    if len(settings.feed_urls) > MAX_FEED_SOURCES:
        raise ConfigError(f"At most {MAX_FEED_SOURCES} feed URLs are supported, got {len(settings.feed_urls)}")
    if not (settings.openai_api_key or "").strip():
        raise ConfigError("OpenAI API key is not configured")


class GenerationOrchestrator:
    """Runs one fetch -> summarize -> publish -> commit pass and reports progress.

    Every stage change is written to the status store before the blocking call
    of that stage. Articles are marked as seen only after the post was saved.
    """

    def __init__(
        self,
        settings: Settings,
        fetcher: FeedFetcher,
        summarizer: SummarizerClient,
        publisher: Publisher,
        dedup: DedupStore,
        status: StatusStore,
    ) -> None:
        self.settings = settings
        self.deps = PipelineDeps(
            settings=settings,
            fetcher=fetcher,
            summarizer=summarizer,
            publisher=publisher,
            dedup=dedup,
            status=status,
        )
        self.status = status
        self.workflow = build_workflow()

    def _new_run(self, run_id: str | None = None) -> GenerationRun:
        return GenerationRun(
            run_id=run_id or new_run_id(),
            stage=RunStage.PENDING,
            message="Starting content generation...",
            started_at=datetime.now(timezone.utc),
        )

    def start(self, run_id: str | None = None) -> GenerationRun:
        return self.status.save(self._new_run(run_id))

    async def run(
        self,
        run_id: str | None = None,
        force_fetch: bool = False,
        draft_mode: bool | None = None,
        author: str | None = None,
    ) -> GenerationRun:
        """Run the pipeline once. Failures end in an ``error`` snapshot instead of raising."""
        run = self._new_run(run_id)
        logger.info("Run %s started (force_fetch=%s)", run.run_id, force_fetch)
        try:
            existing = self.status.get(run_id) if run_id else None
            run = existing or self.status.save(run)
            validate_settings(self.settings)

            initial_state: RunState = {
                "run": run.model_dump(mode="json"),
                "force_fetch": force_fetch,
                "draft_mode": self.settings.draft_mode if draft_mode is None else draft_mode,
                "author": author,
            }
            final_state = await self.workflow.ainvoke(
                initial_state,
                config={"configurable": {"deps": self.deps}},
            )
            final = GenerationRun.model_validate(final_state["run"])
        except DigestError as exc:
            logger.error("Run %s failed: %s", run.run_id, exc)
            final = self._fail(run, str(exc))
        except Exception as exc:
            logger.exception("Run %s crashed", run.run_id)
            final = self._fail(run, f"Unexpected error: {exc}")

        logger.info("Run %s finished: %s - %s", final.run_id, final.stage.value, final.message)
        return final

    def _fail(self, run: GenerationRun, message: str) -> GenerationRun:
        try:
            latest = self.status.get(run.run_id) or run
        except (DigestError, ValidationError):
            logger.warning("Could not read the latest snapshot of run %s", run.run_id)
            latest = run
        data = {"failed_stage": latest.stage.value}
        try:
            return self.status.update(latest, RunStage.ERROR, message, data=data)
        except (DigestError, ValidationError):
            logger.exception("Could not record failure of run %s", run.run_id)
            return latest.model_copy(update={"stage": RunStage.ERROR, "message": message, "data": data})
