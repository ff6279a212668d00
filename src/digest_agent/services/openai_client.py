from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from digest_agent.config import Settings
from digest_agent.errors import SummarizeError
from digest_agent.schemas.run import SummaryResult

logger = logging.getLogger(__name__)

_TITLE_QUOTES = "\"'“”‘’"

_JSON_INSTRUCTION = (
    'Respond with a single JSON object with exactly two string fields: "title" and "summary". '
    "Do not include any other text."
)


def clean_title(title: str) -> str:
    return title.strip().strip(_TITLE_QUOTES).strip()


def build_system_prompt(context_prompt: str, title_prompt: str) -> str:
    parts = [context_prompt.strip(), title_prompt.strip(), _JSON_INSTRUCTION]
    return "\n\n".join(part for part in parts if part)


def parse_summary_response(data: Any) -> SummaryResult:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise SummarizeError("Invalid API response: missing message content") from exc

    try:
        parsed = json.loads(content)
    except (TypeError, json.JSONDecodeError) as exc:
        raise SummarizeError(f"Model returned invalid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise SummarizeError("Model returned JSON that is not an object")

    title = parsed.get("title")
    summary = parsed.get("summary")
    if not isinstance(title, str) or not isinstance(summary, str):
        raise SummarizeError("Model response is missing 'title' or 'summary'")

    title = clean_title(title)
    summary = summary.strip()
    if not title or not summary:
        raise SummarizeError("Model response has an empty 'title' or 'summary'")

    return SummaryResult(title=title, body=summary)


class SummarizerClient:
    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.openai_base_url,
            timeout=httpx.Timeout(self.settings.request_timeout_seconds),
            transport=self.transport,
        )

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, text: str, context_prompt: str, title_prompt: str) -> dict[str, Any]:
        return {
            "model": self.settings.openai_model,
            "messages": [
                {"role": "system", "content": build_system_prompt(context_prompt, title_prompt)},
                {"role": "user", "content": text},
            ],
            "max_tokens": self.settings.summary_max_tokens,
            "temperature": self.settings.summary_temperature,
            "response_format": {"type": "json_object"},
        }

    async def summarize(
        self,
        text: str,
        context_prompt: str,
        title_prompt: str,
        api_key: str,
    ) -> SummaryResult:
        if not text.strip():
            raise SummarizeError("Nothing to summarize")
        if len(text) > self.settings.max_chars:
            logger.warning("Input of %s chars truncated to %s", len(text), self.settings.max_chars)
            text = text[: self.settings.max_chars]

        payload = self.build_payload(text, context_prompt, title_prompt)
        try:
            async with self._client() as client:
                response = await client.post("/chat/completions", headers=self._headers(api_key), json=payload)
        except httpx.HTTPError as exc:
            raise SummarizeError(f"Summary request failed: {exc}") from exc

        if response.status_code != 200:
            raise SummarizeError(f"Summary request failed: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise SummarizeError("Summary response body is not JSON") from exc

        result = parse_summary_response(data)
        logger.info("Summary generated: %r (%s chars)", result.title, len(result.body))
        return result

    async def verify_api_key(self, api_key: str) -> bool:
        if not api_key.strip():
            return False
        try:
            async with self._client() as client:
                response = await client.get("/models", headers=self._headers(api_key))
        except httpx.HTTPError as exc:
            logger.warning("API key check failed: %s", exc)
            return False
        return response.status_code == 200
