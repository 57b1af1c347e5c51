"""
SQLAlchemy models for the generation history service.
"""

from .base import Base, TimestampMixin, as_utc, utcnow
from .generation import GenerationHistory, new_history_id
from .mirror_queue import MirrorOp, MirrorQueueTask, MirrorTaskStatus
from .public_generation import PublicGeneration

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "utcnow",
    "as_utc",
    # Models
    "GenerationHistory",
    "PublicGeneration",
    "MirrorQueueTask",
    # Constants
    "MirrorOp",
    "MirrorTaskStatus",
    "new_history_id",
]
