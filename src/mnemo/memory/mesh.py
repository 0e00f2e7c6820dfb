"""
Memory mesh: embeddings in the vector index plus relations between memories.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from mnemo.application.ports.ai_port import Embedder
from mnemo.application.ports.vector_index_port import VectorIndex
from mnemo.domain.memory import MemoryRecord
from mnemo.infrastructure.llm.ai_services import fallback_embedding
from mnemo.infrastructure.stores.memory_store import SqlAlchemyMemoryStore

logger = logging.getLogger(__name__)

TOPICAL_MIN_SCORE = 0.25
TOPICAL_SCAN = 60


def embedding_text(record: MemoryRecord, max_content: int = 2000) -> str:
    parts = [record.title or "", record.summary or "", (record.content or "")[:max_content]]
    return "\n".join(p for p in parts if p).strip()


def topic_overlap(a: Sequence[str], b: Sequence[str]) -> float:
    left = {t.lower() for t in a if t}
    right = {t.lower() for t in b if t}
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


class MemoryMesh:
    def __init__(
        self,
        store: SqlAlchemyMemoryStore,
        embedder: Optional[Embedder],
        index: VectorIndex,
        *,
        relation_threshold: float = 0.4,
        relation_limit: int = 5,
        dimension: int = 768,
    ):
        self.store = store
        self.embedder = embedder
        self.index = index
        self.relation_threshold = relation_threshold
        self.relation_limit = relation_limit
        self.dimension = dimension

    async def embed_text(self, text: str) -> List[float]:
        if self.embedder is not None:
            try:
                return await self.embedder.embed(text)
            except Exception as exc:
                logger.warning(f"embedding failed, using fallback vector: {exc}")
        return fallback_embedding(text, self.dimension)

    async def index_memory(self, memory_id: str) -> Optional[List[float]]:
        record = self.store.get_memory(memory_id)
        if record is None:
            logger.warning(f"index_memory: memory {memory_id} not found")
            return None
        vector = await self.embed_text(embedding_text(record))
        await self.index.upsert(
            record.id,
            vector,
            {
                "user_id": record.user_id,
                "memory_type": record.memory_type.value,
                "created_at": record.created_at.isoformat() if record.created_at else None,
            },
        )
        return vector

    async def build_relations(self, memory_id: str, vector: Optional[Sequence[float]] = None) -> int:
        record = self.store.get_memory(memory_id)
        if record is None or self.relation_limit <= 0:
            return 0

        others = [mid for mid in self.store.list_memory_ids(record.user_id) if mid != memory_id]
        if not others:
            return 0

        scores: Dict[str, float] = {}
        if vector is None:
            vector = await self.embed_text(embedding_text(record))
        hits = await self.index.search(
            vector,
            allowed_ids=others,
            limit=self.relation_limit * 2,
            score_threshold=self.relation_threshold,
        )
        for hit in hits:
            scores[hit.memory_id] = max(scores.get(hit.memory_id, 0.0), hit.score)

        if record.metadata.topics:
            for other in self.store.list_memories(record.user_id, limit=TOPICAL_SCAN):
                if other.id == memory_id:
                    continue
                overlap = topic_overlap(record.metadata.topics, other.metadata.topics)
                if record.url and other.url and record.url == other.url:
                    overlap = min(1.0, overlap + 0.1)
                if overlap > TOPICAL_MIN_SCORE:
                    scores[other.id] = max(scores.get(other.id, 0.0), overlap)

        ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)[: self.relation_limit]
        written = self.store.add_relations(memory_id, ranked)
        logger.debug(f"memory {memory_id}: {written} relation(s) written")
        return written

    async def process_memory(self, memory_id: str) -> int:
        vector = await self.index_memory(memory_id)
        if vector is None:
            return 0
        return await self.build_relations(memory_id, vector)
