"""
MirrorQueueTask model: durable queue of pending mirror writes.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class MirrorOp:
    UPSERT = "upsert"
    UPDATE = "update"
    DELETE = "delete"


class MirrorTaskStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"


class MirrorQueueTask(Base):
    """
    One pending operation against the public mirror.

    ``seq`` is the global enqueue order; the consumer applies tasks for the
    same history id strictly in ``seq`` order. Rows are deleted once applied.
    """

    __tablename__ = "mirror_queue"

    seq: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    op: Mapped[str] = mapped_column(String(16), nullable=False)
    uid: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    history_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=MirrorTaskStatus.PENDING)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_mirror_queue_status_seq", "status", "seq"),
    )

    def __repr__(self) -> str:
        return f"<MirrorQueueTask(seq={self.seq}, op={self.op}, history_id={self.history_id})>"
