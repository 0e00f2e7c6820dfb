from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class VectorHit:
    memory_id: str
    score: float


@runtime_checkable
class VectorIndex(Protocol):
    """External similarity store keyed by memory id."""

    async def upsert(
        self,
        memory_id: str,
        vector: Sequence[float],
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...

    async def search(
        self,
        vector: Sequence[float],
        *,
        allowed_ids: Sequence[str],
        limit: int,
        score_threshold: Optional[float] = None,
    ) -> List[VectorHit]:
        ...

    async def delete(self, memory_id: str) -> None:
        ...
