"""Chat schema baseline.

Revision ID: 20260301_00
Revises:
Create Date: 2026-03-01 00:00:00.000000
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "20260301_00"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def _owner_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "message_id",
            sa.Uuid(),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "chat_id",
            sa.Uuid(),
            sa.ForeignKey("chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_email", sa.String(255), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "chats",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("user_email", sa.String(255), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_chats_user_id", "chats", ["user_id"])
    op.create_index("ix_chats_user_email", "chats", ["user_email"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "chat_id",
            sa.Uuid(),
            sa.ForeignKey("chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, comment="user, assistant"),
        sa.Column("content", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_messages_chat_id", "messages", ["chat_id"])
    op.create_index("ix_messages_user_email", "messages", ["user_email"])

    op.create_table(
        "message_rewrites",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_owner_columns(),
        sa.Column("original_question", sa.Text(), nullable=False),
        sa.Column("rewritten_question", sa.Text(), nullable=False),
        sa.Column("applied", sa.Boolean(), nullable=False),
        sa.Column("rationale", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_message_rewrites_message_id", "message_rewrites", ["message_id"])
    op.create_index("ix_message_rewrites_chat_id", "message_rewrites", ["chat_id"])

    op.create_table(
        "message_sources",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_owner_columns(),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("snippet", sa.Text(), nullable=True),
        sa.Column("score", sa.Float(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_message_sources_message_id", "message_sources", ["message_id"])
    op.create_index("ix_message_sources_chat_id", "message_sources", ["chat_id"])

    op.create_table(
        "message_visualizations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_owner_columns(),
        sa.Column("visualizations", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "message_id",
            "chat_id",
            "user_email",
            name="uq_message_visualizations_owner",
        ),
    )
    op.create_index(
        "ix_message_visualizations_chat_id", "message_visualizations", ["chat_id"]
    )


def downgrade() -> None:
    op.drop_table("message_visualizations")
    op.drop_table("message_sources")
    op.drop_table("message_rewrites")
    op.drop_table("messages")
    op.drop_table("chats")
