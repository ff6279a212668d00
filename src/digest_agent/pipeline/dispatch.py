from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Coroutine[Any, Any, Any]]


class Dispatcher:
    """Fire-and-forget execution of pipeline jobs.

    Inside a running event loop the job becomes a background task and
    ``dispatch`` returns at once. Without one, the job runs to completion in
    the caller. Both paths await the same coroutine.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @staticmethod
    def background_available() -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def dispatch(self, job: JobFactory, name: str = "job") -> bool:
        """Return True when the job was scheduled in the background."""
        if self.background_available():
            task = asyncio.get_running_loop().create_task(job(), name=name)
            self._tasks.add(task)
            task.add_done_callback(self._finished)
            logger.debug("Dispatched %s to the background", name)
            return True

        logger.info("No event loop running, executing %s synchronously", name)
        asyncio.run(job())
        return False

    def _finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background job %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background job %s failed: %s", task.get_name(), exc, exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
