"""Lead notification tables: conversations, chat messages, events, timeline, logs.

Revision ID: 001_lead_notifications
Revises:
Create Date: 2026-03-02

"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_lead_notifications"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(bind, name: str) -> bool:
    return sa.inspect(bind).has_table(name)


def _has_index(bind, table_name: str, index_name: str) -> bool:
    indexes = sa.inspect(bind).get_indexes(table_name)
    return any(idx.get("name") == index_name for idx in indexes)


def _create_index(bind, table_name: str, column: str) -> None:
    name = f"ix_{table_name}_{column}"
    if _has_table(bind, table_name) and not _has_index(bind, table_name, name):
        op.create_index(name, table_name, [column], unique=False)


def _timestamps(updated: bool = True) -> list[sa.Column]:
    cols = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]
    if updated:
        cols.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
        )
    return cols


def upgrade() -> None:
    bind = op.get_bind()

    if not _has_table(bind, "conversations"):
        op.create_table(
            "conversations",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("customer_id", sa.Uuid(), nullable=False),
            sa.Column("customer_name", sa.String(length=200), nullable=False),
            sa.Column("customer_phone", sa.String(length=50), nullable=False),
            sa.Column("customer_email", sa.String(length=320), nullable=True),
            sa.Column("source", sa.String(length=30), nullable=False, server_default="chatbot"),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="new"),
            sa.Column("intent", sa.String(length=20), nullable=True),
            sa.Column("budget", sa.String(length=100), nullable=True),
            sa.Column("property_type", sa.String(length=100), nullable=True),
            sa.Column("preferred_area", sa.String(length=200), nullable=True),
            sa.Column("lead_score", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("lead_quality", sa.String(length=10), nullable=False, server_default="cold"),
            sa.Column("tags", sa.JSON(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("lead_score_breakdown", sa.JSON(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
            sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="1"),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_index(bind, "conversations", "customer_id")
    _create_index(bind, "conversations", "created_at")

    if not _has_table(bind, "chat_messages"):
        op.create_table(
            "chat_messages",
            sa.Column("id", sa.String(length=100), nullable=False),
            sa.Column("conversation_id", sa.Uuid(), nullable=False),
            sa.Column("sender", sa.String(length=20), nullable=False),
            sa.Column("message_text", sa.Text(), nullable=False),
            sa.Column("message_type", sa.String(length=30), nullable=False, server_default="text"),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("metadata", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_index(bind, "chat_messages", "conversation_id")
    _create_index(bind, "chat_messages", "created_at")

    if not _has_table(bind, "lead_events"):
        op.create_table(
            "lead_events",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("event_type", sa.String(length=50), nullable=False),
            sa.Column("conversation_id", sa.Uuid(), nullable=False),
            sa.Column("payload", sa.JSON(), nullable=False),
            sa.Column("idempotency_key", sa.String(length=255), nullable=True),
            sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("available_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("claimed_by", sa.String(length=100), nullable=True),
            sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(updated=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("idempotency_key"),
        )
    for column in ("event_type", "conversation_id", "processed", "available_at", "created_at"):
        _create_index(bind, "lead_events", column)

    if not _has_table(bind, "conversation_timeline"):
        op.create_table(
            "conversation_timeline",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("conversation_id", sa.Uuid(), nullable=False),
            sa.Column("event_type", sa.String(length=50), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("actor_type", sa.String(length=20), nullable=False, server_default="system"),
            sa.Column("actor_id", sa.String(length=100), nullable=True),
            sa.Column("actor_name", sa.String(length=200), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=False),
            *_timestamps(updated=False),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_index(bind, "conversation_timeline", "conversation_id")
    _create_index(bind, "conversation_timeline", "created_at")

    if not _has_table(bind, "notification_logs"):
        op.create_table(
            "notification_logs",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("lead_event_id", sa.Uuid(), nullable=True),
            sa.Column("conversation_id", sa.Uuid(), nullable=False),
            sa.Column("channel", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("payload", sa.JSON(), nullable=False),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(updated=False),
            sa.PrimaryKeyConstraint("id"),
        )
    for column in ("lead_event_id", "conversation_id", "created_at"):
        _create_index(bind, "notification_logs", column)


def downgrade() -> None:
    bind = op.get_bind()
    for table in (
        "notification_logs",
        "conversation_timeline",
        "lead_events",
        "chat_messages",
        "conversations",
    ):
        if _has_table(bind, table):
            op.drop_table(table)
