"""baseline schema

Revision ID: 0001_baseline_schema
Revises: None
Create Date: 2026-10-18

Memories, relations, query events and user profiles.

Local dev databases may already carry these tables from
``Base.metadata.create_all()``; the online upgrade skips what exists.
"""

from __future__ import annotations

from alembic import context, op
import sqlalchemy as sa


revision = "0001_baseline_schema"
down_revision = None
branch_labels = None
depends_on = None


def _is_offline() -> bool:
    try:
        return bool(context.is_offline_mode())
    except Exception:
        return False


def _has_table(name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(name)


def _needs(table: str) -> bool:
    return _is_offline() or not _has_table(table)


def upgrade() -> None:
    if _needs("memories"):
        op.create_table(
            "memories",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("content", sa.Text(), server_default="", nullable=False),
            sa.Column("summary", sa.Text(), server_default="", nullable=False),
            sa.Column("canonical_text", sa.Text(), server_default="", nullable=False),
            sa.Column("canonical_hash", sa.String(length=64), nullable=False),
            sa.Column("url", sa.String(length=2048), nullable=True),
            sa.Column("normalized_url", sa.String(length=2048), nullable=True),
            sa.Column("title", sa.String(length=512), nullable=True),
            sa.Column("source", sa.String(length=64), server_default="capture", nullable=False),
            sa.Column("memory_type", sa.String(length=32), server_default="REFERENCE", nullable=False),
            sa.Column("metadata_json", sa.Text(), server_default="{}", nullable=False),
            sa.Column("importance_score", sa.Float(), server_default="0.5", nullable=False),
            sa.Column("confidence_score", sa.Float(), server_default="0.5", nullable=False),
            sa.Column("access_count", sa.Integer(), server_default="0", nullable=False),
            sa.Column("last_accessed", sa.DateTime(timezone=True), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.UniqueConstraint("user_id", "canonical_hash", name="uq_memory_user_canonical"),
        )
        op.create_index("ix_memories_user_id", "memories", ["user_id"])
        op.create_index("ix_memories_canonical_hash", "memories", ["canonical_hash"])
        op.create_index("ix_memories_normalized_url", "memories", ["normalized_url"])
        op.create_index("ix_memories_memory_type", "memories", ["memory_type"])
        op.create_index("ix_memories_timestamp", "memories", ["timestamp"])
        op.create_index("ix_memories_created_at", "memories", ["created_at"])

    if _needs("memory_relations"):
        op.create_table(
            "memory_relations",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("memory_id", sa.String(length=36), sa.ForeignKey("memories.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "related_memory_id",
                sa.String(length=36),
                sa.ForeignKey("memories.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("similarity_score", sa.Float(), server_default="0", nullable=False),
            sa.Column("relation_type", sa.String(length=32), server_default="semantic", nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("memory_id", "related_memory_id", name="uq_memory_relation_pair"),
        )
        op.create_index("ix_memory_relations_memory_id", "memory_relations", ["memory_id"])
        op.create_index("ix_memory_relations_related_memory_id", "memory_relations", ["related_memory_id"])

    if _needs("query_events"):
        op.create_table(
            "query_events",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("user_id", sa.String(length=64), nullable=False),
            sa.Column("query", sa.Text(), server_default="", nullable=False),
            sa.Column("embedding_hash", sa.String(length=64), server_default="", nullable=False),
            sa.Column("policy", sa.String(length=32), server_default="chat", nullable=False),
            sa.Column("result_count", sa.Integer(), server_default="0", nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_query_events_user_id", "query_events", ["user_id"])
        op.create_index("ix_query_events_created_at", "query_events", ["created_at"])

    if _needs("query_related_memories"):
        op.create_table(
            "query_related_memories",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "query_event_id",
                sa.String(length=36),
                sa.ForeignKey("query_events.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("memory_id", sa.String(length=36), nullable=False),
            sa.Column("rank", sa.Integer(), server_default="0", nullable=False),
            sa.Column("score", sa.Float(), server_default="0", nullable=False),
        )
        op.create_index("ix_query_related_memories_query_event_id", "query_related_memories", ["query_event_id"])
        op.create_index("ix_query_related_memories_memory_id", "query_related_memories", ["memory_id"])

    if _needs("user_profiles"):
        op.create_table(
            "user_profiles",
            sa.Column("user_id", sa.String(length=64), primary_key=True),
            sa.Column("profile_text", sa.Text(), server_default="", nullable=False),
            sa.Column("profile_json", sa.Text(), server_default="{}", nullable=False),
            sa.Column("memory_count", sa.Integer(), server_default="0", nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_user_profiles_updated_at", "user_profiles", ["updated_at"])


def downgrade() -> None:
    op.drop_table("user_profiles")
    op.drop_table("query_related_memories")
    op.drop_table("query_events")
    op.drop_table("memory_relations")
    op.drop_table("memories")
