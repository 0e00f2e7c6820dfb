"""
Retrieval policies: named weightings applied after hybrid scoring.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional

from mnemo.domain.memory import MemoryRecord, MemoryType
from mnemo.memory.scoring import clamp

from .scorer import ScoredCandidate

DEFAULT_POLICY_NAME = "chat"
RECENCY_WEIGHT = 0.2


@dataclass(frozen=True)
class RetrievalPolicy:
    name: str
    description: str
    semantic_weight: float
    keyword_weight: float
    importance_weight: float
    recency_half_life_days: float
    max_results: int
    time_range_days: Optional[int] = None
    allowed_types: Optional[FrozenSet[MemoryType]] = None
    context_budget: Optional[int] = None
    recency_weight: float = RECENCY_WEIGHT


POLICIES: Dict[str, RetrievalPolicy] = {
    "chat": RetrievalPolicy(
        name="chat",
        description="Balanced retrieval for conversational responses",
        semantic_weight=0.55,
        keyword_weight=0.25,
        importance_weight=0.2,
        recency_half_life_days=21,
        max_results=12,
        context_budget=1800,
    ),
    "planning": RetrievalPolicy(
        name="planning",
        description="Focus on ongoing projects and actionable items",
        semantic_weight=0.4,
        keyword_weight=0.2,
        importance_weight=0.4,
        recency_half_life_days=14,
        max_results=15,
        time_range_days=45,
        allowed_types=frozenset({MemoryType.PROJECT, MemoryType.LOG_EVENT}),
        context_budget=2200,
    ),
    "profile": RetrievalPolicy(
        name="profile",
        description="Surface long-term facts and preferences",
        semantic_weight=0.35,
        keyword_weight=0.25,
        importance_weight=0.4,
        recency_half_life_days=90,
        max_results=10,
        allowed_types=frozenset({MemoryType.FACT, MemoryType.PREFERENCE, MemoryType.REFERENCE}),
        context_budget=1500,
    ),
    "summarization": RetrievalPolicy(
        name="summarization",
        description="Generate concise summaries of recent activity",
        semantic_weight=0.5,
        keyword_weight=0.2,
        importance_weight=0.3,
        recency_half_life_days=10,
        max_results=8,
        time_range_days=14,
        allowed_types=frozenset({MemoryType.LOG_EVENT, MemoryType.PROJECT}),
        context_budget=1200,
    ),
    "insight": RetrievalPolicy(
        name="insight",
        description="Blend diverse memory types for insights/analytics",
        semantic_weight=0.5,
        keyword_weight=0.2,
        importance_weight=0.3,
        recency_half_life_days=30,
        max_results=20,
        context_budget=2500,
    ),
}


def get_policy(name: Optional[str] = None) -> RetrievalPolicy:
    """Unknown or empty names resolve to the chat policy."""
    if not name:
        return POLICIES[DEFAULT_POLICY_NAME]
    return POLICIES.get(name.strip().lower(), POLICIES[DEFAULT_POLICY_NAME])


def memory_time(memory: MemoryRecord) -> Optional[datetime]:
    moment = memory.timestamp or memory.created_at
    if moment is not None and moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def age_days(memory: MemoryRecord, now: Optional[datetime] = None) -> float:
    moment = memory_time(memory)
    if moment is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    return max(0.0, (now - moment).total_seconds() / 86400)


def policy_score(
    semantic: float,
    keyword: float,
    importance: float,
    recency_days: float,
    policy: RetrievalPolicy,
) -> float:
    if policy.recency_half_life_days > 0:
        recency = 0.5 ** (recency_days / policy.recency_half_life_days)
    else:
        recency = 1.0
    base = (
        semantic * policy.semantic_weight
        + keyword * policy.keyword_weight
        + clamp(importance or 0.0) * policy.importance_weight
    )
    return base * ((1 - policy.recency_weight) + policy.recency_weight * recency)


def allowed_by_policy(memory: MemoryRecord, policy: RetrievalPolicy, now: Optional[datetime] = None) -> bool:
    if policy.allowed_types and memory.memory_type not in policy.allowed_types:
        return False
    if policy.time_range_days and memory_time(memory) is not None:
        if age_days(memory, now) > policy.time_range_days:
            return False
    return True


def apply_policy(
    candidates: List[ScoredCandidate],
    policy: RetrievalPolicy,
    now: Optional[datetime] = None,
) -> List[ScoredCandidate]:
    """Re-score with the policy weights, filter by type and time range, sort and truncate."""
    now = now or datetime.now(timezone.utc)
    rescored = [
        replace(
            c,
            final_score=policy_score(
                c.semantic_score,
                c.keyword_score,
                c.memory.importance_score,
                age_days(c.memory, now),
                policy,
            ),
        )
        for c in candidates
        if allowed_by_policy(c.memory, policy, now)
    ]
    rescored.sort(key=lambda c: c.final_score, reverse=True)
    return rescored[: policy.max_results]
