from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RunStage(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    SUMMARIZING = "summarizing"
    PUBLISHING = "publishing"
    COMPLETE = "complete"
    ERROR = "error"


class GenerationRun(BaseModel):
    run_id: str
    stage: RunStage = RunStage.PENDING
    message: str = ""
    started_at: datetime
    updated_at: datetime | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class SummaryResult(BaseModel):
    title: str
    body: str


class PostStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class PublishedRecord(BaseModel):
    id: str
    title: str
    body: str
    status: PostStatus
    author: str
    created_at: datetime


class TriggerResult(BaseModel):
    run_id: str
    started: bool


class ProcessedEntry(BaseModel):
    id: str
    first_seen: datetime


class ProcessedPage(BaseModel):
    entries: list[ProcessedEntry]
    page: int
    per_page: int
    total_items: int
    total_pages: int
