from .answer import AnswerSynthesizer, Citation, extract_citation_order, fallback_answer
from .cache import SearchCache, search_cache_key
from .classifier import QueryClassification, QueryClassifier, rule_based_classification
from .context_builder import ContextBlock, build_context
from .engine import SearchEngine, SearchRequest, SearchResponse
from .jobs import SearchJob, SearchJobStore
from .planner import PlannerConfig, QueryAnalysis, SearchPlan, analyze_query, normalize_query, plan_search, tokenize_query
from .policy import POLICIES, RetrievalPolicy, apply_policy, get_policy, policy_score
from .scorer import ScoredCandidate, rank_candidates
from .vector_client import VectorRetrievalClient

__all__ = [
    "AnswerSynthesizer",
    "Citation",
    "extract_citation_order",
    "fallback_answer",
    "SearchCache",
    "search_cache_key",
    "QueryClassification",
    "QueryClassifier",
    "rule_based_classification",
    "ContextBlock",
    "build_context",
    "SearchEngine",
    "SearchRequest",
    "SearchResponse",
    "SearchJob",
    "SearchJobStore",
    "PlannerConfig",
    "QueryAnalysis",
    "SearchPlan",
    "analyze_query",
    "normalize_query",
    "plan_search",
    "tokenize_query",
    "POLICIES",
    "RetrievalPolicy",
    "apply_policy",
    "get_policy",
    "policy_score",
    "ScoredCandidate",
    "rank_candidates",
    "VectorRetrievalClient",
]
