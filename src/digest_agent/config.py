from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

MAX_FEED_SOURCES = 3

_SCHEDULE_TIME = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class Settings(BaseSettings):
    feed_urls: Annotated[list[str], NoDecode] = []
    context_prompt: str = "Summarize the key points of the following articles."
    title_prompt: str = "Write a short, engaging title for the summary."
    post_signature: str = ""
    post_author: str = "system"
    draft_mode: bool = True

    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    summary_max_tokens: int = 1500
    summary_temperature: float = 0.7

    schedule_time: str = "03:00"
    schedule_timezone: str = "UTC"
    scheduler_poll_seconds: int = 60
    cron_token: str | None = None

    max_chars: int = 25_000
    max_items_per_feed: int = 10
    max_articles_total: int = 3

    state_dir: str = ".state"
    posts_dir: str = ".state/posts"
    dedup_ttl_seconds: int = 30 * 24 * 60 * 60
    status_ttl_seconds: int = 60 * 60
    lock_ttl_seconds: int = 5 * 60

    request_timeout_seconds: int = 30
    user_agent: str = "DigestAgent/0.1"

    langsmith_api_key: str | None = None
    langsmith_project: str = "digest-agent"
    langsmith_tracing: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("feed_urls", mode="before")
    @classmethod
    def split_feed_urls(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = re.split(r"[\n,]", value)
        return [str(url).strip() for url in value if str(url).strip()]

    @field_validator("schedule_time")
    @classmethod
    def validate_schedule_time(cls, value: str) -> str:
        value = value.strip()
        if not _SCHEDULE_TIME.match(value):
            raise ValueError(f"schedule_time must be HH:MM, got {value!r}")
        return value

    def missing_required_runtime_fields(self) -> list[str]:
        missing: list[str] = []

        if not self.feed_urls:
            missing.append("FEED_URLS")
        if not (self.openai_api_key or "").strip():
            missing.append("OPENAI_API_KEY")

        return missing

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_langsmith_env(settings: Settings) -> None:
    if settings.langsmith_api_key:
        os.environ["LANGSMITH_API_KEY"] = settings.langsmith_api_key
    os.environ["LANGSMITH_PROJECT"] = settings.langsmith_project
    os.environ["LANGSMITH_TRACING"] = "true" if settings.langsmith_tracing else "false"
