"""
GenerationHistory model: one row per generation, owned by a single user.
"""

from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


def new_history_id() -> str:
    return uuid4().hex


class GenerationHistory(TimestampMixin, Base):
    """
    Per-user generation history item.

    Media lists are stored as JSON arrays of canonical entry dicts (see
    services.image_normalizer). Provider-specific fields that the lifecycle
    does not interpret live in ``extra``.
    """

    __tablename__ = "generation_history"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_history_id)
    uid: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # Descriptive metadata (immutable after creation)
    prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    model: Mapped[str | None] = mapped_column(String(200), nullable=True)
    generation_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="generating", index=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Outputs and provenance
    images: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    videos: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    input_images: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    input_videos: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    nsfw: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Visibility (visibility is always derived from is_public)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    visibility: Mapped[str] = mapped_column(String(16), nullable=False, default="private")
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)

    created_by: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    extra: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("idx_generation_history_uid_created", "uid", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<GenerationHistory(id={self.id}, uid={self.uid}, status={self.status})>"
