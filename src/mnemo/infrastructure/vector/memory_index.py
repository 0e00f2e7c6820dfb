from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

from mnemo.application.ports.vector_index_port import VectorHit, VectorIndex


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


class InMemoryVectorIndex(VectorIndex):
    """Brute-force cosine index for tests and small local corpora."""

    def __init__(self) -> None:
        self._points: Dict[str, Tuple[List[float], Dict[str, Any]]] = {}

    async def upsert(
        self,
        memory_id: str,
        vector: Sequence[float],
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._points[memory_id] = (list(vector), dict(payload or {}))

    async def search(
        self,
        vector: Sequence[float],
        *,
        allowed_ids: Sequence[str],
        limit: int,
        score_threshold: Optional[float] = None,
    ) -> List[VectorHit]:
        allowed = set(allowed_ids)
        hits = []
        for memory_id, (stored, _) in self._points.items():
            if memory_id not in allowed:
                continue
            score = cosine_similarity(vector, stored)
            if score_threshold is not None and score < score_threshold:
                continue
            hits.append(VectorHit(memory_id=memory_id, score=score))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[: max(0, int(limit))]

    async def delete(self, memory_id: str) -> None:
        self._points.pop(memory_id, None)

    def __len__(self) -> int:
        return len(self._points)
