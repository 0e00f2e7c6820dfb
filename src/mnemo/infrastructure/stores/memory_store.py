from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, desc, func, select
from sqlalchemy.exc import IntegrityError

from mnemo.core.errors import StoreError
from mnemo.domain.memory import CanonicalContent, ExtractedMetadata, MemoryRecord, MemoryType
from mnemo.infrastructure.stores.models import (
    Base,
    MemoryModel,
    MemoryRelationModel,
    QueryEventModel,
    QueryRelatedMemoryModel,
    UserProfileModel,
)
from mnemo.infrastructure.stores.sqlalchemy_db import SessionProvider, get_db_url
from mnemo.memory.scoring import clamp, merge_metadata

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlAlchemyMemoryStore:
    """
    Relational store for memories, relations, query events and user profiles.

    Notes:
    - (user_id, canonical_hash) is unique; ``create_memory`` resolves a conflict
      by re-reading the existing row instead of failing.
    - Search never mutates memories; only ingestion writes to ``memories``.
    """

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self.db_url = db_url or get_db_url()
        self._provider = SessionProvider(self.db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    # ------------------------------------------------------------------ reads

    def count_memories(self, user_id: str) -> int:
        with self._provider.session() as session:
            return int(
                session.execute(
                    select(func.count()).select_from(MemoryModel).where(MemoryModel.user_id == user_id)
                ).scalar_one()
            )

    def list_memory_ids(self, user_id: str) -> List[str]:
        with self._provider.session() as session:
            rows = session.execute(select(MemoryModel.id).where(MemoryModel.user_id == user_id)).scalars().all()
            return list(rows)

    def get_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        with self._provider.session() as session:
            row = session.get(MemoryModel, memory_id)
            return self._row_to_record(row) if row is not None else None

    def get_memories(self, memory_ids: Sequence[str]) -> List[MemoryRecord]:
        if not memory_ids:
            return []
        with self._provider.session() as session:
            rows = session.execute(select(MemoryModel).where(MemoryModel.id.in_(list(memory_ids)))).scalars().all()
            return [self._row_to_record(r) for r in rows]

    def list_memories(self, user_id: str, limit: int = 100) -> List[MemoryRecord]:
        with self._provider.session() as session:
            rows = (
                session.execute(
                    select(MemoryModel)
                    .where(MemoryModel.user_id == user_id)
                    .order_by(desc(MemoryModel.created_at))
                    .limit(int(limit))
                )
                .scalars()
                .all()
            )
            return [self._row_to_record(r) for r in rows]

    def top_memories(self, user_id: str, limit: int = 30) -> List[MemoryRecord]:
        with self._provider.session() as session:
            rows = (
                session.execute(
                    select(MemoryModel)
                    .where(MemoryModel.user_id == user_id)
                    .order_by(desc(MemoryModel.importance_score), desc(MemoryModel.created_at))
                    .limit(int(limit))
                )
                .scalars()
                .all()
            )
            return [self._row_to_record(r) for r in rows]

    def find_by_canonical_hash(self, user_id: str, canonical_hash: str) -> Optional[MemoryRecord]:
        with self._provider.session() as session:
            row = session.execute(
                select(MemoryModel).where(
                    MemoryModel.user_id == user_id,
                    MemoryModel.canonical_hash == canonical_hash,
                )
            ).scalar_one_or_none()
            return self._row_to_record(row) if row is not None else None

    def find_recent_by_url(
        self,
        user_id: str,
        normalized_url: str,
        *,
        since: datetime,
        limit: int = 50,
    ) -> List[MemoryRecord]:
        with self._provider.session() as session:
            rows = (
                session.execute(
                    select(MemoryModel)
                    .where(
                        MemoryModel.user_id == user_id,
                        MemoryModel.normalized_url == normalized_url,
                        MemoryModel.created_at >= since,
                    )
                    .order_by(desc(MemoryModel.created_at))
                    .limit(int(limit))
                )
                .scalars()
                .all()
            )
            return [self._row_to_record(r) for r in rows]

    # ----------------------------------------------------------------- writes

    def create_memory(
        self,
        *,
        user_id: str,
        content: str,
        summary: str,
        canonical: CanonicalContent,
        url: Optional[str] = None,
        title: Optional[str] = None,
        source: str = "capture",
        memory_type: MemoryType = MemoryType.REFERENCE,
        metadata: Optional[ExtractedMetadata] = None,
        importance_score: float = 0.5,
        confidence_score: float = 0.5,
        timestamp: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
    ) -> Tuple[MemoryRecord, bool]:
        """
        Insert a memory, or return the row that already owns its canonical hash.

        Returns: (record, created)
        """
        now = _utcnow()
        row = MemoryModel(
            id=str(uuid.uuid4()),
            user_id=user_id,
            content=content,
            summary=summary or "",
            canonical_text=canonical.canonical_text,
            canonical_hash=canonical.canonical_hash,
            url=url,
            normalized_url=canonical.normalized_url,
            title=title,
            source=source or "capture",
            memory_type=memory_type.value,
            importance_score=float(importance_score),
            confidence_score=float(confidence_score),
            access_count=0,
            timestamp=timestamp or now,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )
        row.set_metadata((metadata or ExtractedMetadata()).to_dict())

        with self._provider.session() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                existing = self.find_by_canonical_hash(user_id, canonical.canonical_hash)
                if existing is None:
                    raise StoreError(
                        f"memory insert failed: {exc.orig}",
                        context={"user_id": user_id, "canonical_hash": canonical.canonical_hash},
                    ) from exc
                logger.info(f"canonical hash conflict for user {user_id}; merged into {existing.id}")
                return existing, False
            session.refresh(row)
            return self._row_to_record(row), True

    def merge_duplicate(
        self,
        memory_id: str,
        incoming_metadata: Optional[Dict[str, Any]] = None,
        *,
        importance_boost: float = 0.05,
        confidence_boost: float = 0.03,
    ) -> Optional[MemoryRecord]:
        """Reinforce an existing memory that was captured again."""
        now = _utcnow()
        with self._provider.session() as session:
            row = session.get(MemoryModel, memory_id)
            if row is None:
                return None
            importance = row.importance_score if row.importance_score is not None else 0.35
            confidence = row.confidence_score if row.confidence_score is not None else 0.5
            row.access_count = int(row.access_count or 0) + 1
            row.last_accessed = now
            row.importance_score = clamp(importance + importance_boost)
            row.confidence_score = clamp(confidence + confidence_boost)
            if incoming_metadata:
                row.set_metadata(merge_metadata(row.get_metadata(), incoming_metadata))
            row.updated_at = now
            session.commit()
            session.refresh(row)
            return self._row_to_record(row)

    def update_memory_content(
        self,
        memory_id: str,
        *,
        summary: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        importance_score: Optional[float] = None,
        confidence_score: Optional[float] = None,
    ) -> Optional[MemoryRecord]:
        with self._provider.session() as session:
            row = session.get(MemoryModel, memory_id)
            if row is None:
                return None
            if summary is not None:
                row.summary = summary
            if metadata:
                row.set_metadata(merge_metadata(row.get_metadata(), metadata))
            if importance_score is not None:
                row.importance_score = clamp(importance_score)
            if confidence_score is not None:
                row.confidence_score = clamp(confidence_score)
            row.updated_at = _utcnow()
            session.commit()
            session.refresh(row)
            return self._row_to_record(row)

    def delete_memory(self, memory_id: str) -> bool:
        with self._provider.session() as session:
            row = session.get(MemoryModel, memory_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    # -------------------------------------------------------------- relations

    def add_relations(
        self,
        memory_id: str,
        relations: Iterable[Tuple[str, float]],
        relation_type: str = "semantic",
    ) -> int:
        """Upsert relations from ``memory_id``; returns the number written."""
        now = _utcnow()
        written = 0
        with self._provider.session() as session:
            existing = {
                r.related_memory_id: r
                for r in session.execute(
                    select(MemoryRelationModel).where(MemoryRelationModel.memory_id == memory_id)
                ).scalars()
            }
            for related_id, score in relations:
                if not related_id or related_id == memory_id:
                    continue
                current = existing.get(related_id)
                if current is not None:
                    current.similarity_score = float(score)
                else:
                    row = MemoryRelationModel(
                        memory_id=memory_id,
                        related_memory_id=related_id,
                        similarity_score=float(score),
                        relation_type=relation_type,
                        created_at=now,
                    )
                    session.add(row)
                    existing[related_id] = row
                written += 1
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.warning(f"relation upsert for {memory_id} lost a race; skipped")
                return 0
        return written

    def related_memory_ids(self, memory_ids: Sequence[str], limit_per_memory: int = 5) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {mid: [] for mid in memory_ids}
        if not memory_ids:
            return out
        with self._provider.session() as session:
            rows = (
                session.execute(
                    select(MemoryRelationModel)
                    .where(MemoryRelationModel.memory_id.in_(list(memory_ids)))
                    .order_by(desc(MemoryRelationModel.similarity_score))
                )
                .scalars()
                .all()
            )
            for r in rows:
                bucket = out.setdefault(r.memory_id, [])
                if len(bucket) < limit_per_memory:
                    bucket.append(r.related_memory_id)
        return out

    # ----------------------------------------------------------- query events

    def record_query_event(
        self,
        *,
        user_id: str,
        query: str,
        embedding_hash: str,
        results: Sequence[Tuple[str, float]] = (),
        policy: str = "chat",
    ) -> str:
        event_id = str(uuid.uuid4())
        with self._provider.session() as session:
            event = QueryEventModel(
                id=event_id,
                user_id=user_id,
                query=query,
                embedding_hash=embedding_hash,
                policy=policy,
                result_count=len(results),
                created_at=_utcnow(),
            )
            session.add(event)
            for rank, (memory_id, score) in enumerate(results, start=1):
                session.add(
                    QueryRelatedMemoryModel(
                        query_event_id=event_id,
                        memory_id=memory_id,
                        rank=rank,
                        score=float(score),
                    )
                )
            session.commit()
        return event_id

    def list_query_events(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        with self._provider.session() as session:
            events = (
                session.execute(
                    select(QueryEventModel)
                    .where(QueryEventModel.user_id == user_id)
                    .order_by(desc(QueryEventModel.created_at))
                    .limit(int(limit))
                )
                .scalars()
                .all()
            )
            out = []
            for e in events:
                related = sorted(e.related, key=lambda r: r.rank)
                out.append(
                    {
                        "id": e.id,
                        "query": e.query,
                        "embedding_hash": e.embedding_hash,
                        "policy": e.policy,
                        "result_count": e.result_count,
                        "created_at": _as_utc(e.created_at),
                        "results": [
                            {"memory_id": r.memory_id, "rank": r.rank, "score": r.score} for r in related
                        ],
                    }
                )
            return out

    def prune_query_events(self, older_than: datetime) -> int:
        with self._provider.session() as session:
            result = session.execute(delete(QueryEventModel).where(QueryEventModel.created_at < older_than))
            session.commit()
            return int(result.rowcount or 0)

    # --------------------------------------------------------------- profiles

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._provider.session() as session:
            row = session.get(UserProfileModel, user_id)
            if row is None:
                return None
            return {
                "user_id": row.user_id,
                "profile_text": row.profile_text,
                "profile": row.get_profile(),
                "memory_count": row.memory_count,
                "updated_at": _as_utc(row.updated_at),
            }

    def upsert_profile(
        self,
        user_id: str,
        *,
        profile_text: str,
        profile: Optional[Dict[str, Any]] = None,
        memory_count: int = 0,
    ) -> None:
        with self._provider.session() as session:
            row = session.get(UserProfileModel, user_id)
            if row is None:
                row = UserProfileModel(user_id=user_id)
                session.add(row)
            row.profile_text = profile_text
            row.set_profile(profile or {})
            row.memory_count = int(memory_count)
            row.updated_at = _utcnow()
            session.commit()

    def close(self) -> None:
        try:
            self._provider.dispose()
        except Exception as exc:
            logger.warning(f"error disposing engine for {self.db_url}: {exc}")

    @staticmethod
    def _row_to_record(row: MemoryModel) -> MemoryRecord:
        return MemoryRecord(
            id=row.id,
            user_id=row.user_id,
            content=row.content or "",
            summary=row.summary or "",
            canonical_text=row.canonical_text or "",
            canonical_hash=row.canonical_hash,
            url=row.url,
            title=row.title,
            source=row.source or "capture",
            memory_type=MemoryType.parse(row.memory_type, MemoryType.REFERENCE),
            metadata=ExtractedMetadata.from_dict(row.get_metadata()),
            importance_score=float(row.importance_score if row.importance_score is not None else 0.5),
            confidence_score=float(row.confidence_score if row.confidence_score is not None else 0.5),
            access_count=int(row.access_count or 0),
            last_accessed=_as_utc(row.last_accessed),
            timestamp=_as_utc(row.timestamp),
            created_at=_as_utc(row.created_at),
            expires_at=_as_utc(row.expires_at),
        )
