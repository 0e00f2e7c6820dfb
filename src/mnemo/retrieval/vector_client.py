from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from mnemo.application.ports.vector_index_port import VectorHit, VectorIndex

from .planner import STRATEGY_BROAD, SearchPlan

logger = logging.getLogger(__name__)


def dedupe_hits(hits: Sequence[VectorHit]) -> List[VectorHit]:
    """Keep the best score per memory id, ordered by score."""
    best: Dict[str, float] = {}
    for hit in hits:
        if not hit.memory_id:
            continue
        if hit.memory_id not in best or hit.score > best[hit.memory_id]:
            best[hit.memory_id] = hit.score
    return [VectorHit(mid, score) for mid, score in sorted(best.items(), key=lambda kv: kv[1], reverse=True)]


class VectorRetrievalClient:
    """Nearest-neighbour candidates restricted to one user's memory ids."""

    def __init__(self, index: VectorIndex):
        self.index = index

    async def retrieve(
        self,
        vector: Sequence[float],
        allowed_ids: Sequence[str],
        plan: SearchPlan,
    ) -> List[VectorHit]:
        if not allowed_ids or plan.retrieval_limit <= 0:
            return []

        threshold = plan.score_floor if plan.strategy == STRATEGY_BROAD else None
        hits = dedupe_hits(
            await self.index.search(
                vector,
                allowed_ids=list(allowed_ids),
                limit=plan.retrieval_limit,
                score_threshold=threshold,
            )
        )

        if plan.strategy == STRATEGY_BROAD and plan.high_quality_score is not None:
            if len(hits) > plan.max_results * 2:
                strong = [h for h in hits if h.score > plan.high_quality_score]
                if len(strong) >= plan.max_results:
                    logger.debug(f"broad search narrowed from {len(hits)} to {len(strong)} high-quality hits")
                    hits = strong
        return hits
