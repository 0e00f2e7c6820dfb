"""
Hybrid scoring: vector similarity blended with weighted keyword matches.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Dict, List, Sequence

from mnemo.domain.memory import MemoryRecord

from .planner import SearchPlan

TITLE_WEIGHT = 0.5
SUMMARY_WEIGHT = 0.3
CONTENT_WEIGHT = 0.2
SEMANTIC_BLEND = 0.6
KEYWORD_BLEND = 0.4
COVERAGE_BOOST = 0.3
NEAR_TIE = 0.01

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class ScoredCandidate:
    memory: MemoryRecord
    semantic_score: float
    keyword_score: float = 0.0
    coverage_ratio: float = 0.0
    final_score: float = 0.0

    @property
    def memory_id(self) -> str:
        return self.memory.id

    @property
    def sort_time(self) -> datetime:
        moment = self.memory.timestamp or self.memory.created_at or _EPOCH
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment


def keyword_signals(tokens: Sequence[str], memory: MemoryRecord):
    """Return (keyword_score, coverage_ratio) for one memory."""
    if not tokens:
        return 0.0, 0.0
    title = (memory.title or "").lower()
    summary = (memory.summary or "").lower()
    content = (memory.content or "").lower()

    score = 0.0
    matched = set()
    for token in tokens:
        pattern = re.compile(r"\b" + re.escape(token) + r"\b")
        for text, weight in ((title, TITLE_WEIGHT), (summary, SUMMARY_WEIGHT), (content, CONTENT_WEIGHT)):
            if pattern.search(text):
                score += weight
                matched.add(token)
    return score / len(tokens), len(matched) / len(tokens)


def score_candidate(memory: MemoryRecord, semantic_score: float, tokens: Sequence[str]) -> ScoredCandidate:
    keyword, coverage = keyword_signals(tokens, memory)
    hybrid = semantic_score * SEMANTIC_BLEND + keyword * KEYWORD_BLEND
    return ScoredCandidate(
        memory=memory,
        semantic_score=semantic_score,
        keyword_score=keyword,
        coverage_ratio=coverage,
        final_score=hybrid * (1 + coverage * COVERAGE_BOOST),
    )


def passes_thresholds(candidate: ScoredCandidate, plan: SearchPlan) -> bool:
    relevant = (
        candidate.semantic_score >= plan.semantic_threshold
        or candidate.keyword_score >= plan.keyword_threshold
        or candidate.coverage_ratio >= plan.coverage_threshold
    )
    return relevant and candidate.final_score >= plan.min_score


def rank_candidates(
    memories: Dict[str, MemoryRecord],
    semantic_scores: Dict[str, float],
    tokens: Sequence[str],
    plan: SearchPlan,
    estimated_memory_age: str = "any",
) -> List[ScoredCandidate]:
    scored = [
        score_candidate(memories[mid], score, tokens)
        for mid, score in semantic_scores.items()
        if mid in memories
    ]
    survivors = [c for c in scored if passes_thresholds(c, plan)]
    prefer_newer = estimated_memory_age == "old"

    def compare(a: ScoredCandidate, b: ScoredCandidate) -> int:
        if prefer_newer and abs(a.final_score - b.final_score) < NEAR_TIE:
            if a.sort_time != b.sort_time:
                return -1 if a.sort_time > b.sort_time else 1
        if a.final_score == b.final_score:
            return 0
        return -1 if a.final_score > b.final_score else 1

    survivors.sort(key=cmp_to_key(compare))
    return survivors[: plan.max_results]
