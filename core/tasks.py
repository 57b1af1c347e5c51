"""
Detached background tasks.

Work that must never block a request (storage cleanup, late mirror fixes) is
handed to a BackgroundTaskRunner. The runner returns immediately, caps how
many tasks run at once, and routes every failure to the logger instead of
letting it surface as an unhandled task exception.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[object]]


class BackgroundTaskRunner:
    """Bounded runner for fire-and-forget coroutines."""

    def __init__(self, max_concurrent: int = 3):
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: dict[str, asyncio.Task] = {}
        self._closed = False

    @property
    def pending(self) -> list[str]:
        """Names of tasks that have not finished yet."""
        return [name for name, task in self._tasks.items() if not task.done()]

    def spawn(self, name: str, factory: TaskFactory) -> asyncio.Task | None:
        """
        Schedule ``factory()`` in the background and return at once.

        A task whose name is already running is skipped.

        Args:
            name: Unique task name, used for de-duplication and logging
            factory: Zero-argument callable returning the coroutine to run

        Returns:
            The scheduled task, or None if skipped
        """
        if self._closed:
            logger.warning(f"Background runner closed, dropping task {name}")
            return None

        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            logger.info(f"Background task {name} already running, skipping")
            return None

        task = asyncio.create_task(self._run(name, factory), name=name)
        self._tasks[name] = task
        task.add_done_callback(lambda t, n=name: self._forget(n, t))
        return task

    async def _run(self, name: str, factory: TaskFactory) -> None:
        async with self._semaphore:
            try:
                await factory()
                logger.debug(f"Background task {name} completed")
            except asyncio.CancelledError:
                logger.warning(f"Background task {name} cancelled")
                raise
            except Exception:
                logger.exception(f"Background task {name} failed")

    def _forget(self, name: str, task: asyncio.Task) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]

    async def drain(self) -> None:
        """Wait until every scheduled task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Stop accepting work and wait (bounded) for outstanding tasks."""
        self._closed = True
        if not self._tasks:
            return

        logger.info(f"Waiting for {len(self._tasks)} background task(s)")
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            for name, task in list(self._tasks.items()):
                logger.warning(f"Cancelling background task {name} on shutdown")
                task.cancel()
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
