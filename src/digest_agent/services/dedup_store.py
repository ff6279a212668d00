from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Callable

from digest_agent.schemas.run import ProcessedEntry, ProcessedPage
from digest_agent.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

DEDUP_KEY = "dedup:processed_guids"
DEDUP_TTL_SECONDS = 30 * 24 * 60 * 60


class DedupStore:
    """Ids of articles that already went into a published post.

    The whole map lives under one key so every write is a single replace.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: float = DEDUP_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _load(self) -> dict[str, float]:
        return dict(self.store.get(DEDUP_KEY) or {})

    def _live(self, now: float) -> dict[str, float]:
        cutoff = now - self.ttl_seconds
        return {item_id: seen for item_id, seen in self._load().items() if seen >= cutoff}

    def seen_ids(self, now: float | None = None) -> set[str]:
        return set(self._live(self._clock() if now is None else now))

    def has_seen(self, item_id: str) -> bool:
        return item_id in self.seen_ids()

    def mark_seen(self, ids: Iterable[str], now: float | None = None) -> None:
        now = self._clock() if now is None else now
        batch = [item_id for item_id in ids if item_id]
        if not batch:
            return

        current = self._load()
        cutoff = now - self.ttl_seconds
        kept = {item_id: seen for item_id, seen in current.items() if seen >= cutoff}
        pruned = len(current) - len(kept)
        for item_id in batch:
            kept.setdefault(item_id, now)

        self.store.set(DEDUP_KEY, kept)
        logger.info("Marked %s ids as seen (pruned %s expired)", len(batch), pruned)

    def prune(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        current = self._load()
        kept = self._live(now)
        removed = len(current) - len(kept)
        if removed:
            self.store.set(DEDUP_KEY, kept)
        return removed

    def entries(self, search: str = "", page: int = 1, per_page: int = 20) -> ProcessedPage:
        items = sorted(self._live(self._clock()).items(), key=lambda pair: pair[1], reverse=True)
        needle = search.strip().lower()
        if needle:
            items = [pair for pair in items if needle in pair[0].lower()]

        per_page = max(1, per_page)
        total_items = len(items)
        total_pages = max(1, math.ceil(total_items / per_page))
        page = max(1, min(page, total_pages))
        offset = (page - 1) * per_page

        return ProcessedPage(
            entries=[
                ProcessedEntry(id=item_id, first_seen=datetime.fromtimestamp(seen, tz=timezone.utc))
                for item_id, seen in items[offset : offset + per_page]
            ],
            page=page,
            per_page=per_page,
            total_items=total_items,
            total_pages=total_pages,
        )

    def forget(self, item_id: str) -> bool:
        current = self._load()
        if item_id not in current:
            return False
        del current[item_id]
        self.store.set(DEDUP_KEY, current)
        logger.info("Forgot processed id %s", item_id)
        return True

    def clear(self) -> int:
        count = len(self._load())
        self.store.set(DEDUP_KEY, {})
        logger.info("Cleared %s processed ids", count)
        return count
