from __future__ import annotations

import logging

from digest_agent.pipeline.dispatch import Dispatcher
from digest_agent.pipeline.orchestrator import GenerationOrchestrator, new_run_id
from digest_agent.schemas.run import GenerationRun, TriggerResult
from digest_agent.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

RUN_LOCK_KEY = "lock:generation"
RUN_LOCK_TTL_SECONDS = 5 * 60


class RunTrigger:
    """Single entry point for manual, cron-URL and scheduled runs.

    A run holds the lock key for its whole lifetime (bounded by the lock
    TTL). A trigger that finds the lock taken gets the id of the run that
    holds it and starts nothing.
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        store: KeyValueStore,
        dispatcher: Dispatcher | None = None,
        lock_ttl_seconds: float = RUN_LOCK_TTL_SECONDS,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.dispatcher = dispatcher or Dispatcher()
        self.lock_ttl_seconds = lock_ttl_seconds

    def current_run_id(self) -> str | None:
        value = self.store.get(RUN_LOCK_KEY)
        return str(value) if value else None

    def trigger(
        self,
        force_fetch: bool = False,
        draft_mode: bool | None = None,
        author: str | None = None,
    ) -> TriggerResult:
        run_id = new_run_id()
        if not self.store.add(RUN_LOCK_KEY, run_id, ttl=self.lock_ttl_seconds):
            in_flight = self.current_run_id()
            if in_flight:
                logger.info("Run %s already in progress, not starting another", in_flight)
                return TriggerResult(run_id=in_flight, started=False)
            # lock expired between add and get
            if not self.store.add(RUN_LOCK_KEY, run_id, ttl=self.lock_ttl_seconds):
                return TriggerResult(run_id=self.current_run_id() or run_id, started=False)

        try:
            self.orchestrator.start(run_id)
        except Exception:
            self._release(run_id)
            raise

        async def job() -> GenerationRun:
            try:
                return await self.orchestrator.run(
                    run_id=run_id,
                    force_fetch=force_fetch,
                    draft_mode=draft_mode,
                    author=author,
                )
            finally:
                self._release(run_id)

        self.dispatcher.dispatch(job, name=f"generation-{run_id}")
        return TriggerResult(run_id=run_id, started=True)

    def _release(self, run_id: str) -> None:
        if self.current_run_id() == run_id:
            self.store.delete(RUN_LOCK_KEY)
