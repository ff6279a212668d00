from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from digest_agent.schemas.run import GenerationRun, RunStage
from digest_agent.services.kv_store import KeyValueStore

STATUS_TTL_SECONDS = 60 * 60


def _status_key(run_id: str) -> str:
    return f"status:{run_id}"


class StatusStore:
    """Latest progress snapshot per run, expiring after an hour."""

    def __init__(self, store: KeyValueStore, ttl_seconds: float = STATUS_TTL_SECONDS) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds

    def save(self, run: GenerationRun) -> GenerationRun:
        self.store.set(_status_key(run.run_id), run.model_dump(mode="json"), ttl=self.ttl_seconds)
        return run

    def update(
        self,
        run: GenerationRun,
        stage: RunStage,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> GenerationRun:
        snapshot = run.model_copy(
            update={
                "stage": stage,
                "message": message,
                "updated_at": datetime.now(timezone.utc),
                "data": dict(data) if data is not None else dict(run.data),
            }
        )
        return self.save(snapshot)

    def get(self, run_id: str) -> GenerationRun | None:
        payload = self.store.get(_status_key(run_id))
        if payload is None:
            return None
        return GenerationRun.model_validate(payload)
