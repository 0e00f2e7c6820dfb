"""
Query classification: recall / search / plan / profile / metric.

Rule patterns answer most queries. Ambiguous ones go to the Generator, and
any AI failure falls back to the rule result. Classifications are cached.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import asdict, dataclass
from typing import List, Optional, Pattern, Tuple

from mnemo.application.ports.ai_port import Generator
from mnemo.application.ports.cache_port import KeyValueCache
from mnemo.core.errors import MalformedOutputError
from mnemo.core.json_utils import extract_json_object

logger = logging.getLogger(__name__)

CLASSIFICATION_CACHE_PREFIX = "query_classification:"
CLASSIFICATION_CACHE_TTL = 24 * 60 * 60

QUERY_CLASSES = ("recall", "search", "plan", "profile", "metric")
RULE_CONFIDENCE = 0.85
AI_THRESHOLD = 0.8


@dataclass
class QueryClassification:
    query_class: str
    confidence: float
    suggested_policy: str
    reasoning: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "QueryClassification":
        return cls(
            query_class=str(data.get("query_class") or data.get("class") or "search"),
            confidence=float(data.get("confidence") or 0.5),
            suggested_policy=str(data.get("suggested_policy") or data.get("suggestedPolicy") or "search"),
            reasoning=data.get("reasoning"),
        )


def _compile(*patterns: str) -> List[Pattern[str]]:
    return [re.compile(p, re.I) for p in patterns]


# Checked in order; the first family with a matching pattern wins.
_RULES: List[Tuple[str, str, List[Pattern[str]]]] = [
    (
        "recall",
        "chat",
        _compile(
            r"\b(what|when|where|who|which)\s+(did|do|was|is|are|were)\s+(i|you|we|they)\s+",
            r"\b(remember|recall|remind|what\s+was|tell\s+me\s+about)\b",
            r"\b(show\s+me|find\s+me|get\s+me)\s+(the|that|my|our)\b",
            r"\b(i\s+remember|i\s+think|i\s+know|i\s+saw)\b",
        ),
    ),
    (
        "search",
        "search",
        _compile(
            r"\b(search|find|look\s+for|explore|discover|browse)\b",
            r"\b(what\s+is|what\s+are|how\s+to|how\s+does)\b",
            r"\b(related\s+to|similar\s+to|about|regarding)\b",
            r"\b(anything|everything|all|list|show\s+all)\b",
        ),
    ),
    (
        "plan",
        "planning",
        _compile(
            r"\b(plan|planning|next\s+steps|what\s+should|how\s+should|strategy|roadmap)\b",
            r"\b(prepare|organize|schedule|timeline|milestone)\b",
            r"\b(what\s+to\s+do|what\s+needs|prioritize|focus)\b",
        ),
    ),
    (
        "profile",
        "profile",
        _compile(
            r"\b(my\s+profile|my\s+preferences|my\s+interests|about\s+me|who\s+am\s+i)\b",
            r"\b(what\s+do\s+i\s+like|what\s+am\s+i\s+interested|my\s+goals|my\s+skills)\b",
            r"\b(summarize\s+me|describe\s+me|my\s+characteristics)\b",
        ),
    ),
    (
        "metric",
        "chat",
        _compile(
            r"\b(how\s+many|count|statistics|stats|metrics|analytics|dashboard)\b",
            r"\b(total|average|percentage|rate|frequency|trend)\b",
            r"\b(most|least|top|bottom|highest|lowest)\b",
        ),
    ),
]

_CLASSIFY_PROMPT = """Classify the following user query into one of these categories:
- recall: User is asking to recall/remember specific information they know exists
- search: User is exploring or searching for information
- plan: User is asking for planning, next steps, or strategy
- profile: User is asking about their own characteristics, preferences, or profile
- metric: User is asking for statistics, counts, or metrics

Query: "{query}"

Respond with ONLY a JSON object in this exact format:
{{
  "class": "recall|search|plan|profile|metric",
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation",
  "suggestedPolicy": "chat|search|planning|profile"
}}"""


def classification_cache_key(query: str) -> str:
    normalized = (query or "").lower().strip()
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]
    return f"{CLASSIFICATION_CACHE_PREFIX}{digest}"


def rule_based_classification(query: str) -> QueryClassification:
    normalized = (query or "").lower().strip()
    for query_class, policy, patterns in _RULES:
        if any(p.search(normalized) for p in patterns):
            return QueryClassification(
                query_class=query_class,
                confidence=RULE_CONFIDENCE,
                suggested_policy=policy,
                reasoning=f"Pattern matches {query_class} query",
            )
    return QueryClassification(
        query_class="search",
        confidence=0.5,
        suggested_policy="search",
        reasoning="No clear pattern match, defaulting to search",
    )


def parse_ai_classification(raw: str) -> QueryClassification:
    data = extract_json_object(raw)
    query_class = str(data.get("class") or "search").lower()
    if query_class not in QUERY_CLASSES:
        raise MalformedOutputError(f"unknown query class {query_class!r}")
    try:
        confidence = float(data.get("confidence") or 0.7)
    except (TypeError, ValueError):
        confidence = 0.7
    return QueryClassification(
        query_class=query_class,
        confidence=max(0.0, min(1.0, confidence)),
        suggested_policy=str(data.get("suggestedPolicy") or data.get("suggested_policy") or "search"),
        reasoning=data.get("reasoning"),
    )


class QueryClassifier:
    def __init__(
        self,
        generator: Optional[Generator] = None,
        cache: Optional[KeyValueCache] = None,
        *,
        ttl_seconds: int = CLASSIFICATION_CACHE_TTL,
        timeout: float = 15.0,
    ):
        self.generator = generator
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout

    async def classify(self, query: str) -> QueryClassification:
        key = classification_cache_key(query)
        cached = await self._read(key)
        if cached is not None:
            return cached

        ruled = rule_based_classification(query)
        if ruled.confidence > AI_THRESHOLD or self.generator is None:
            await self._write(key, ruled)
            return ruled

        try:
            raw = await self.generator.generate(_CLASSIFY_PROMPT.format(query=query), timeout=self.timeout)
            classification = parse_ai_classification(raw)
        except Exception as exc:
            logger.warning(f"AI classification failed, using rule result: {exc}")
            return ruled

        await self._write(key, classification)
        return classification

    async def _read(self, key: str) -> Optional[QueryClassification]:
        if self.cache is None:
            return None
        try:
            cached = await self.cache.get(key)
        except Exception as exc:
            logger.warning(f"classification cache read failed: {exc}")
            return None
        if not cached:
            return None
        try:
            return QueryClassification.from_dict(json.loads(cached))
        except (ValueError, TypeError):
            return None

    async def _write(self, key: str, classification: QueryClassification) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(key, json.dumps(classification.to_dict()), self.ttl_seconds)
        except Exception as exc:
            logger.warning(f"classification cache write failed: {exc}")
