"""
Mirror queue consumer.

Drains the mirror queue in batches. Tasks of one history id are applied
strictly in enqueue order; different history ids are processed
concurrently.
"""

import asyncio
import logging
from collections import Counter

from database.models import utcnow
from database.repositories import MirrorQueueRepository, MirrorTask

from .mirror_sync import MirrorReconciler

logger = logging.getLogger(__name__)


class MirrorQueueWorker:
    """Polls the queue and applies tasks through a MirrorReconciler."""

    def __init__(
        self,
        queue: MirrorQueueRepository,
        reconciler: MirrorReconciler,
        batch_limit: int = 12,
        concurrency: int = 4,
        max_attempts: int = 5,
        retry_base_delay: float = 2.0,
        retry_max_delay: float = 300.0,
    ):
        self.queue = queue
        self.reconciler = reconciler
        self.batch_limit = batch_limit
        self.concurrency = max(1, concurrency)
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    def retry_delay(self, attempts: int) -> float:
        """Backoff before the next attempt, after ``attempts`` failed ones."""
        return min(self.retry_base_delay * (2 ** max(attempts - 1, 0)), self.retry_max_delay)

    @staticmethod
    def runnable_groups(tasks: list[MirrorTask], now=None) -> list[list[MirrorTask]]:
        """
        Group tasks by history id, keeping only each group's runnable prefix.

        A task still waiting for its retry time blocks every later task of the
        same history id.
        """
        now = now or utcnow()
        groups: dict[str, list[MirrorTask]] = {}
        blocked: set[str] = set()

        for task in sorted(tasks, key=lambda t: t.seq):
            if task.history_id in blocked:
                continue
            if task.available_at > now:
                blocked.add(task.history_id)
                continue
            groups.setdefault(task.history_id, []).append(task)

        return list(groups.values())

    async def process_pending(self) -> dict[str, int]:
        """
        Process one batch.

        Returns:
            Counts per outcome (completed, retried, failed, skipped) plus polled
        """
        tasks = await self.queue.poll_pending(self.batch_limit)
        counts: Counter = Counter(polled=len(tasks))
        if not tasks:
            return dict(counts)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_group(group: list[MirrorTask]) -> None:
            async with semaphore:
                for task in group:
                    outcome = await self._run_task(task)
                    counts[outcome] += 1
                    if outcome != "completed":
                        # Later tasks of this history id must wait
                        break

        await asyncio.gather(*(run_group(group) for group in self.runnable_groups(tasks)))

        logger.info(f"Mirror queue batch: {dict(counts)}")
        return dict(counts)

    async def _run_task(self, task: MirrorTask) -> str:
        if not await self.queue.claim(task.seq):
            return "skipped"

        attempts = task.attempts + 1
        try:
            result = await self.reconciler.apply(task)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            if attempts >= self.max_attempts:
                logger.error(
                    f"Mirror task {task.seq} ({task.op} {task.history_id}) failed "
                    f"permanently after {attempts} attempts: {error}"
                )
                await self.queue.mark_failed(task.seq, error)
                return "failed"

            delay = self.retry_delay(attempts)
            logger.warning(
                f"Mirror task {task.seq} ({task.op} {task.history_id}) attempt {attempts} "
                f"failed, retrying in {delay:.1f}s: {error}"
            )
            await self.queue.mark_retry(task.seq, error, delay)
            return "retried"

        await self.queue.mark_completed(task.seq)
        logger.debug(f"Mirror task {task.seq} {task.op} {task.history_id}: {result}")
        return "completed"
