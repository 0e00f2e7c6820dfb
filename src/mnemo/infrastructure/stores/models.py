from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class MemoryModel(Base):
    """
    A captured piece of content after canonicalization and enrichment.

    (user_id, canonical_hash) is unique: two captures of the same normalized
    text collapse into one row through the merge path.
    """

    __tablename__ = "memories"
    __table_args__ = (UniqueConstraint("user_id", "canonical_hash", name="uq_memory_user_canonical"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)

    content: Mapped[str] = mapped_column(Text, default="")
    summary: Mapped[str] = mapped_column(Text, default="")
    canonical_text: Mapped[str] = mapped_column(Text, default="")
    canonical_hash: Mapped[str] = mapped_column(String(64), index=True)

    url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    normalized_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True, index=True)
    title: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    source: Mapped[str] = mapped_column(String(64), default="capture")
    memory_type: Mapped[str] = mapped_column(String(32), default="REFERENCE", index=True)

    metadata_json: Mapped[str] = mapped_column(Text, default="{}")

    importance_score: Mapped[float] = mapped_column(Float, default=0.5)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.5)
    access_count: Mapped[int] = mapped_column(Integer, default=0)
    last_accessed: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    relations = relationship(
        "MemoryRelationModel",
        foreign_keys="MemoryRelationModel.memory_id",
        back_populates="memory",
        cascade="all, delete-orphan",
    )

    def set_metadata(self, data: Dict[str, Any]) -> None:
        self.metadata_json = json.dumps(data or {}, ensure_ascii=False, default=str)

    def get_metadata(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.metadata_json or "{}")
            return data if isinstance(data, dict) else {}
        except Exception:
            return {}


class MemoryRelationModel(Base):
    __tablename__ = "memory_relations"
    __table_args__ = (UniqueConstraint("memory_id", "related_memory_id", name="uq_memory_relation_pair"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    memory_id: Mapped[str] = mapped_column(String(36), ForeignKey("memories.id", ondelete="CASCADE"), index=True)
    related_memory_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("memories.id", ondelete="CASCADE"), index=True
    )
    similarity_score: Mapped[float] = mapped_column(Float, default=0.0)
    relation_type: Mapped[str] = mapped_column(String(32), default="semantic")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    memory = relationship("MemoryModel", foreign_keys=[memory_id], back_populates="relations")


class QueryEventModel(Base):
    """One executed search; kept for relevance feedback."""

    __tablename__ = "query_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    query: Mapped[str] = mapped_column(Text, default="")
    embedding_hash: Mapped[str] = mapped_column(String(64), default="")
    policy: Mapped[str] = mapped_column(String(32), default="chat")
    result_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    related = relationship("QueryRelatedMemoryModel", back_populates="event", cascade="all, delete-orphan")


class QueryRelatedMemoryModel(Base):
    __tablename__ = "query_related_memories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    query_event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("query_events.id", ondelete="CASCADE"), index=True
    )
    memory_id: Mapped[str] = mapped_column(String(36), index=True)
    rank: Mapped[int] = mapped_column(Integer, default=0)
    score: Mapped[float] = mapped_column(Float, default=0.0)

    event = relationship("QueryEventModel", back_populates="related")


class UserProfileModel(Base):
    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    profile_text: Mapped[str] = mapped_column(Text, default="")
    profile_json: Mapped[str] = mapped_column(Text, default="{}")
    memory_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    def set_profile(self, data: Dict[str, Any]) -> None:
        self.profile_json = json.dumps(data or {}, ensure_ascii=False, default=str)

    def get_profile(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.profile_json or "{}")
            return data if isinstance(data, dict) else {}
        except Exception:
            return {}
