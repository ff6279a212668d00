"""HTTP surface: manual trigger, status polling, cron URL and dedup admin."""

from __future__ import annotations

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from pydantic import BaseModel

from digest_agent.pipeline.factory import Services
from digest_agent.scheduler import DailyScheduler
from digest_agent.schemas.article import FeedCheck, sources_from_urls
from digest_agent.schemas.run import GenerationRun, ProcessedPage, TriggerResult

logger = logging.getLogger(__name__)


class TriggerRequest(BaseModel):
    force_fetch: bool = False
    draft_mode: bool | None = None


class ClearResponse(BaseModel):
    cleared: int


def get_services(request: Request) -> Services:
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(get_services)]


def create_app(services: Services, run_scheduler: bool = False) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler_task: asyncio.Task[None] | None = None
        if run_scheduler:
            scheduler = DailyScheduler(services.trigger, lambda: services.settings)
            scheduler_task = asyncio.create_task(scheduler.serve(), name="daily-scheduler")
        yield
        if scheduler_task is not None:
            scheduler_task.cancel()

    app = FastAPI(
        title="Digest Agent",
        description="Fetches new RSS items, summarizes them with an LLM and publishes one post",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/runs", response_model=TriggerResult, status_code=status.HTTP_202_ACCEPTED)
    async def trigger_run(services: ServicesDep, body: TriggerRequest | None = None):
        """Start a run in the background and return its id for polling."""
        body = body or TriggerRequest()
        return services.trigger.trigger(force_fetch=body.force_fetch, draft_mode=body.draft_mode)

    @app.get("/runs/{run_id}", response_model=GenerationRun)
    async def get_run(run_id: str, services: ServicesDep):
        run = services.status.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found or expired")
        return run

    @app.get("/cron", response_model=TriggerResult, status_code=status.HTTP_202_ACCEPTED)
    async def cron_trigger(services: ServicesDep, token: Annotated[str, Query()] = ""):
        expected = services.settings.cron_token or ""
        if not expected or not secrets.compare_digest(token.encode(), expected.encode()):
            logger.warning("Rejected cron trigger with invalid token")
            raise HTTPException(status_code=403, detail="Invalid cron token")
        return services.trigger.trigger()

    @app.post("/feeds/test", response_model=list[FeedCheck])
    async def test_feeds(services: ServicesDep):
        urls = services.settings.feed_urls
        if not urls:
            raise HTTPException(status_code=400, detail="No feed URLs configured")
        return await services.fetcher.test_feeds(sources_from_urls(urls))

    @app.get("/processed", response_model=ProcessedPage)
    async def list_processed(
        services: ServicesDep,
        search: Annotated[str, Query(description="Substring of the article id")] = "",
        page: Annotated[int, Query(ge=1)] = 1,
        per_page: Annotated[int, Query(ge=1, le=200)] = 20,
    ):
        return services.dedup.entries(search=search, page=page, per_page=per_page)

    @app.delete("/processed", response_model=ClearResponse)
    async def clear_processed(services: ServicesDep):
        return ClearResponse(cleared=services.dedup.clear())

    @app.delete("/processed/{item_id:path}", response_model=ClearResponse)
    async def forget_processed(item_id: str, services: ServicesDep):
        if not services.dedup.forget(item_id):
            raise HTTPException(status_code=404, detail="Article not found")
        return ClearResponse(cleared=1)

    return app
