"""Generation history, public mirror and mirror queue tables.

Revision ID: 001
Revises:
Create Date: 2026-09-28

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Per-user history
    op.create_table(
        "generation_history",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("uid", sa.String(128), nullable=False),
        sa.Column("prompt", sa.Text(), server_default="", nullable=False),
        sa.Column("model", sa.String(200), nullable=True),
        sa.Column("generation_type", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), server_default="generating", nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("images", sa.JSON(), server_default="[]", nullable=False),
        sa.Column("videos", sa.JSON(), server_default="[]", nullable=False),
        sa.Column("input_images", sa.JSON(), server_default="[]", nullable=False),
        sa.Column("input_videos", sa.JSON(), server_default="[]", nullable=False),
        sa.Column("tags", sa.JSON(), server_default="[]", nullable=False),
        sa.Column("nsfw", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("is_public", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("visibility", sa.String(16), server_default="private", nullable=False),
        sa.Column("is_deleted", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("created_by", sa.JSON(), server_default="{}", nullable=False),
        sa.Column("extra", sa.JSON(), server_default="{}", nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_history_uid", "generation_history", ["uid"])
    op.create_index(
        "ix_generation_history_generation_type", "generation_history", ["generation_type"]
    )
    op.create_index("ix_generation_history_status", "generation_history", ["status"])
    op.create_index("ix_generation_history_is_deleted", "generation_history", ["is_deleted"])
    op.create_index(
        "idx_generation_history_uid_created", "generation_history", ["uid", "created_at"]
    )

    # 2. Public mirror
    op.create_table(
        "public_generations",
        sa.Column("history_id", sa.String(64), nullable=False),
        sa.Column("uid", sa.String(128), nullable=False),
        sa.Column("generation_type", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("is_public", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("document", sa.JSON(), server_default="{}", nullable=False),
        sa.Column("created_by", sa.JSON(), server_default="{}", nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.PrimaryKeyConstraint("history_id"),
    )
    op.create_index("ix_public_generations_uid", "public_generations", ["uid"])
    op.create_index(
        "ix_public_generations_generation_type", "public_generations", ["generation_type"]
    )
    op.create_index("ix_public_generations_created_at", "public_generations", ["created_at"])

    # 3. Mirror queue
    op.create_table(
        "mirror_queue",
        sa.Column("seq", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("op", sa.String(16), nullable=False),
        sa.Column("uid", sa.String(128), server_default="", nullable=False),
        sa.Column("history_id", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), server_default="{}", nullable=False),
        sa.Column("status", sa.String(16), server_default="pending", nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "enqueued_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "available_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("seq"),
    )
    op.create_index("ix_mirror_queue_history_id", "mirror_queue", ["history_id"])
    op.create_index("idx_mirror_queue_status_seq", "mirror_queue", ["status", "seq"])


def downgrade() -> None:
    op.drop_index("idx_mirror_queue_status_seq", table_name="mirror_queue")
    op.drop_index("ix_mirror_queue_history_id", table_name="mirror_queue")
    op.drop_table("mirror_queue")

    op.drop_index("ix_public_generations_created_at", table_name="public_generations")
    op.drop_index("ix_public_generations_generation_type", table_name="public_generations")
    op.drop_index("ix_public_generations_uid", table_name="public_generations")
    op.drop_table("public_generations")

    op.drop_index("idx_generation_history_uid_created", table_name="generation_history")
    op.drop_index("ix_generation_history_is_deleted", table_name="generation_history")
    op.drop_index("ix_generation_history_status", table_name="generation_history")
    op.drop_index("ix_generation_history_generation_type", table_name="generation_history")
    op.drop_index("ix_generation_history_uid", table_name="generation_history")
    op.drop_table("generation_history")
