"""Fire-and-forget background coroutines.

asyncio only keeps weak references to running tasks, so a task created and
dropped can be garbage collected mid-flight. BackgroundTasks holds strong
references until each task finishes and logs (never raises) failures.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from shared.logging import get_logger

log = get_logger(__name__)


class BackgroundTasks:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning(
                "background_task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight task (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
