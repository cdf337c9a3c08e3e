"""Supervised fire-and-forget tasks.

Tasks spawned here are never awaited by the request that spawns them. The
runner keeps a reference to each task until it finishes, routes failures
to one error handler, and can drain whatever is still pending at shutdown.
"""

import asyncio
from typing import Any, Callable, Coroutine, Optional

import structlog

logger = structlog.get_logger(__name__)

ErrorHandler = Callable[[str, BaseException], None]


def log_task_error(name: str, exc: BaseException) -> None:
    logger.error("background_task_failed", task=name, error=str(exc), error_type=type(exc).__name__)


class BackgroundRunner:
    """Runs detached coroutines on the current event loop."""

    def __init__(self, on_error: Optional[ErrorHandler] = None):
        self._tasks: set[asyncio.Task] = set()
        self._on_error = on_error or log_task_error

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, work: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedule ``work`` and return immediately."""
        task = asyncio.get_running_loop().create_task(work, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        logger.debug("background_task_spawned", task=name)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("background_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self._on_error(task.get_name(), exc)

    async def drain(self, timeout: Optional[float] = 10.0) -> None:
        """Wait for pending tasks; cancel whatever is left after ``timeout``."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        logger.info("background_tasks_draining", count=len(tasks))
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("background_tasks_cancelled", count=len(pending))
