"""
Query analysis and search planning.

The plan decides how many candidates to pull from the vector index and which
thresholds a candidate must pass. Broad plans catch old or rare memories in
large corpora; narrow plans keep precise queries from flooding with noise.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "has", "he",
        "in", "is", "it", "its", "of", "on", "that", "the", "to", "was", "will", "with",
        "this", "but", "they", "have", "had", "what", "when", "where", "who", "which",
        "why", "how",
    }
)

TEMPORAL_KEYWORDS: Tuple[str, ...] = (
    "yesterday", "today", "last week", "last month", "last year", "years ago",
    "recent", "old", "ancient", "when", "ago",
)
SPECIFIC_INDICATORS: Tuple[str, ...] = (
    "what", "who", "where", "when", "how", "why", "which", "name", "list", "show",
)

_PUNCT = re.compile(r"[?!.,;:()]")
_WS = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w\s]")

STRATEGY_NARROW = "narrow"
STRATEGY_BALANCED = "balanced"
STRATEGY_BROAD = "broad"


def normalize_query(query: str, max_length: int = 8000) -> str:
    text = _PUNCT.sub(" ", (query or "").strip())
    return _WS.sub(" ", text).strip()[:max_length]


def tokenize_query(query: str) -> List[str]:
    text = _NON_WORD.sub(" ", (query or "").lower())
    return [t for t in text.split() if len(t) > 2 and t not in STOP_WORDS]


def _has_phrase(text: str, phrase: str) -> bool:
    return re.search(r"\b" + re.escape(phrase) + r"\b", text) is not None


@dataclass
class QueryAnalysis:
    query_type: str  # specific / general / temporal / exploratory
    token_count: int
    specificity: float
    temporal_indicators: bool
    specific_indicators: bool
    keyword_density: float
    estimated_memory_age: str  # recent / medium / old / any
    requires_deep_search: bool

    def to_dict(self) -> dict:
        return {
            "query_type": self.query_type,
            "token_count": self.token_count,
            "specificity": round(self.specificity, 4),
            "temporal_indicators": self.temporal_indicators,
            "specific_indicators": self.specific_indicators,
            "keyword_density": round(self.keyword_density, 4),
            "estimated_memory_age": self.estimated_memory_age,
            "requires_deep_search": self.requires_deep_search,
        }


@dataclass(frozen=True)
class StrategyThresholds:
    pool_multiplier: float
    semantic: float
    keyword: float
    coverage: float
    min_score: float


@dataclass
class PlannerConfig:
    """Tunable constants for strategy selection and candidate pool sizing."""

    default_limit: int = 50
    max_limit: int = 1000
    max_retrieval: int = 10000
    broad: StrategyThresholds = field(default_factory=lambda: StrategyThresholds(10, 0.1, 0.2, 0.3, 0.1))
    narrow: StrategyThresholds = field(default_factory=lambda: StrategyThresholds(2, 0.2, 0.4, 0.6, 0.2))
    balanced: StrategyThresholds = field(default_factory=lambda: StrategyThresholds(3, 0.15, 0.3, 0.5, 0.15))
    broad_min_pool: int = 500
    broad_corpus_fraction: float = 0.5
    narrow_specificity: float = 0.7
    deep_search_specificity: float = 0.4
    deep_search_corpus: int = 1000
    large_corpus: int = 5000
    large_corpus_growth: float = 1.5
    large_corpus_fraction: float = 0.3
    small_corpus: int = 100
    dense_keywords: float = 0.7
    sparse_keywords: float = 0.3
    broad_score_floor: float = 0.1
    high_quality_score: float = 0.3


@dataclass
class SearchPlan:
    strategy: str
    retrieval_limit: int
    semantic_threshold: float
    keyword_threshold: float
    coverage_threshold: float
    min_score: float
    max_results: int
    score_floor: Optional[float] = None
    high_quality_score: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "strategy": self.strategy,
            "retrieval_limit": self.retrieval_limit,
            "semantic_threshold": round(self.semantic_threshold, 4),
            "keyword_threshold": round(self.keyword_threshold, 4),
            "coverage_threshold": round(self.coverage_threshold, 4),
            "min_score": self.min_score,
            "max_results": self.max_results,
        }


def analyze_query(query: str, corpus_size: int, config: Optional[PlannerConfig] = None) -> QueryAnalysis:
    config = config or PlannerConfig()
    lowered = (query or "").lower()
    tokens = tokenize_query(query)
    token_count = len(tokens)
    words = max(1, len(lowered.split()))
    keyword_density = token_count / words

    temporal = any(_has_phrase(lowered, k) for k in TEMPORAL_KEYWORDS)
    specific = any(_has_phrase(lowered, k) for k in SPECIFIC_INDICATORS)

    specificity = (0.3 if specific else 0.0)
    specificity += 0.2 if token_count > 5 else 0.1 if token_count > 3 else 0.0
    specificity += 0.2 if len(query or "") > 50 else 0.1 if len(query or "") > 20 else 0.0
    specificity += keyword_density * 0.3
    specificity = min(1.0, specificity)

    if temporal:
        query_type = "temporal"
    elif specificity > 0.6:
        query_type = "specific"
    elif specificity < 0.3:
        query_type = "exploratory"
    else:
        query_type = "general"

    if any(_has_phrase(lowered, k) for k in ("years ago", "old", "ancient")):
        age = "old"
    elif any(_has_phrase(lowered, k) for k in ("recent", "last week", "last month")):
        age = "recent"
    elif _has_phrase(lowered, "last year"):
        age = "medium"
    else:
        age = "any"

    requires_deep_search = (
        age == "old"
        or specificity < config.deep_search_specificity
        or corpus_size > config.deep_search_corpus
        or query_type == "exploratory"
    )

    return QueryAnalysis(
        query_type=query_type,
        token_count=token_count,
        specificity=specificity,
        temporal_indicators=temporal,
        specific_indicators=specific,
        keyword_density=keyword_density,
        estimated_memory_age=age,
        requires_deep_search=requires_deep_search,
    )


def choose_strategy(analysis: QueryAnalysis, config: Optional[PlannerConfig] = None) -> str:
    """
    Old-memory queries are always broad. Otherwise a highly specific query is
    narrow even in a large corpus; the remaining deep-search signals mean broad.
    """
    config = config or PlannerConfig()
    if analysis.estimated_memory_age == "old":
        return STRATEGY_BROAD
    if analysis.specificity > config.narrow_specificity:
        return STRATEGY_NARROW
    if analysis.requires_deep_search:
        return STRATEGY_BROAD
    return STRATEGY_BALANCED


def plan_search(
    analysis: QueryAnalysis,
    corpus_size: int,
    requested_limit: Optional[int] = None,
    config: Optional[PlannerConfig] = None,
) -> SearchPlan:
    config = config or PlannerConfig()
    base = requested_limit if requested_limit and requested_limit > 0 else config.default_limit
    limit = min(int(base), config.max_limit)

    strategy = choose_strategy(analysis, config)
    thresholds = getattr(config, strategy)

    if strategy == STRATEGY_BROAD:
        pool = min(limit * thresholds.pool_multiplier, max(config.broad_min_pool, corpus_size * config.broad_corpus_fraction))
    else:
        pool = limit * thresholds.pool_multiplier

    if corpus_size > config.large_corpus:
        pool = min(pool * config.large_corpus_growth, corpus_size * config.large_corpus_fraction)
    elif corpus_size < config.small_corpus:
        pool = min(pool, corpus_size)

    semantic = thresholds.semantic
    keyword = thresholds.keyword
    if analysis.keyword_density > config.dense_keywords:
        keyword *= 0.8
        semantic *= 1.1
    elif analysis.keyword_density < config.sparse_keywords:
        semantic *= 0.8
        keyword *= 1.2

    broad = strategy == STRATEGY_BROAD
    return SearchPlan(
        strategy=strategy,
        retrieval_limit=int(max(limit, min(pool, config.max_retrieval))),
        semantic_threshold=semantic,
        keyword_threshold=keyword,
        coverage_threshold=thresholds.coverage,
        min_score=thresholds.min_score,
        max_results=limit,
        score_floor=config.broad_score_floor if broad else None,
        high_quality_score=config.high_quality_score if broad else None,
    )
