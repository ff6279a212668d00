from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from digest_agent.errors import PublishError
from digest_agent.schemas.run import PostStatus, PublishedRecord

logger = logging.getLogger(__name__)

SIGNATURE_DIVIDER = '\n\n<hr class="signature-divider" />\n'


class PostSink(Protocol):
    def save(self, title: str, body: str, status: PostStatus, author: str) -> str: ...


def append_signature(body: str, signature: str) -> str:
    signature = signature.strip()
    if not signature or signature in body:
        return body
    return f"{body}{SIGNATURE_DIVIDER}{signature}"


class FilePostSink:
    """Stores each post as ``<id>.json`` in a directory."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def save(self, title: str, body: str, status: PostStatus, author: str) -> str:
        record = PublishedRecord(
            id=uuid4().hex,
            title=title,
            body=body,
            status=status,
            author=author,
            created_at=datetime.now(timezone.utc),
        )
        path = self.root / f"{record.id}.json"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(record.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        except OSError as exc:
            raise PublishError(f"Cannot write post {path.name}: {exc}") from exc
        return record.id

    def load(self, record_id: str) -> PublishedRecord | None:
        path = self.root / f"{record_id}.json"
        if not path.exists():
            return None
        return PublishedRecord.model_validate_json(path.read_text(encoding="utf-8"))


class Publisher:
    def __init__(self, sink: PostSink, default_author: str = "system") -> None:
        self.sink = sink
        self.default_author = default_author

    def publish(
        self,
        title: str,
        body: str,
        signature: str = "",
        draft_mode: bool = True,
        author: str | None = None,
    ) -> str:
        status = PostStatus.DRAFT if draft_mode else PostStatus.PUBLISHED
        content = append_signature(body, signature)
        try:
            record_id = self.sink.save(title, content, status, author or self.default_author)
        except PublishError:
            raise
        except Exception as exc:
            raise PublishError(f"Failed to create post: {exc}") from exc

        if not record_id:
            raise PublishError("Failed to create post: sink returned no record id")

        logger.info("Post %s saved as %s", record_id, status.value)
        return record_id
