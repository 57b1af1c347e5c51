"""
Mirror queue repository.

Tasks are rows ordered by ``seq``; a row is deleted only after its mirror
write succeeded.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import MirrorOp, MirrorQueueTask, MirrorTaskStatus, as_utc, utcnow


@dataclass
class MirrorTask:
    """Detached view of a queue row."""

    seq: int
    op: str
    uid: str
    history_id: str
    payload: dict[str, Any]
    status: str
    attempts: int
    available_at: datetime
    enqueued_at: datetime
    error: str | None = None

    @classmethod
    def from_row(cls, row: MirrorQueueTask) -> "MirrorTask":
        return cls(
            seq=row.seq,
            op=row.op,
            uid=row.uid,
            history_id=row.history_id,
            payload=dict(row.payload or {}),
            status=row.status,
            attempts=row.attempts,
            available_at=as_utc(row.available_at),
            enqueued_at=as_utc(row.enqueued_at),
            error=row.error,
        )


class MirrorQueueRepository:
    """Durable FIFO of mirror operations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        stale_after: int = 300,
    ):
        self.session_factory = session_factory
        self.stale_after = stale_after

    async def enqueue_upsert(self, uid: str, history_id: str, item_snapshot: dict[str, Any]) -> int:
        return await self._enqueue(MirrorOp.UPSERT, uid, history_id, {"item": item_snapshot})

    async def enqueue_update(self, uid: str, history_id: str, updates: dict[str, Any]) -> int:
        return await self._enqueue(MirrorOp.UPDATE, uid, history_id, {"updates": updates})

    async def enqueue_remove(self, history_id: str, uid: str = "") -> int:
        return await self._enqueue(MirrorOp.DELETE, uid, history_id, {})

    async def _enqueue(self, op: str, uid: str, history_id: str, payload: dict[str, Any]) -> int:
        now = utcnow()
        task = MirrorQueueTask(
            op=op,
            uid=uid,
            history_id=history_id,
            payload=payload,
            status=MirrorTaskStatus.PENDING,
            attempts=0,
            enqueued_at=now,
            available_at=now,
        )
        async with self.session_factory() as session:
            async with session.begin():
                session.add(task)
                await session.flush()
                return task.seq

    def _claimable(self, now: datetime):
        stale_before = now - timedelta(seconds=self.stale_after)
        return or_(
            MirrorQueueTask.status == MirrorTaskStatus.PENDING,
            and_(
                MirrorQueueTask.status == MirrorTaskStatus.PROCESSING,
                MirrorQueueTask.claimed_at < stale_before,
            ),
        )

    async def poll_pending(self, limit: int = 12) -> list[MirrorTask]:
        """
        Return claimable tasks in enqueue order.

        Tasks still waiting on a retry delay are included so the consumer can
        keep per-history ordering; it decides what is runnable.
        """
        query = (
            select(MirrorQueueTask)
            .where(self._claimable(utcnow()))
            .order_by(MirrorQueueTask.seq)
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [MirrorTask.from_row(row) for row in result.scalars().all()]

    async def claim(self, seq: int) -> bool:
        """
        Atomically move a task to ``processing``.

        Returns:
            False if another consumer already holds it
        """
        now = utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(MirrorQueueTask)
                    .where(MirrorQueueTask.seq == seq, self._claimable(now))
                    .values(
                        status=MirrorTaskStatus.PROCESSING,
                        attempts=MirrorQueueTask.attempts + 1,
                        claimed_at=now,
                    )
                )
                return result.rowcount == 1

    async def mark_completed(self, seq: int) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(delete(MirrorQueueTask).where(MirrorQueueTask.seq == seq))

    async def mark_retry(self, seq: int, error: str, delay: float) -> None:
        """Return a task to ``pending`` after ``delay`` seconds."""
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(MirrorQueueTask)
                    .where(MirrorQueueTask.seq == seq)
                    .values(
                        status=MirrorTaskStatus.PENDING,
                        error=error[:2000],
                        available_at=utcnow() + timedelta(seconds=delay),
                        claimed_at=None,
                    )
                )

    async def mark_failed(self, seq: int, error: str) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(MirrorQueueTask)
                    .where(MirrorQueueTask.seq == seq)
                    .values(status=MirrorTaskStatus.FAILED, error=error[:2000])
                )

    async def count_by_status(self) -> dict[str, int]:
        """Queue depth per status, for the detailed health check."""
        query = select(MirrorQueueTask.status, func.count()).group_by(MirrorQueueTask.status)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return {status: count for status, count in result.all()}
