"""
Importance / confidence heuristics for stored memories.

Scores are derived from the memory type, content length, topical richness and
the importance the extractor reported. Importance decays with a half-life when
memories are rescored.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Sequence

from mnemo.domain.memory import MemoryType

MEMORY_TYPE_WEIGHTS: Dict[MemoryType, float] = {
    MemoryType.FACT: 0.95,
    MemoryType.PREFERENCE: 0.75,
    MemoryType.LOG_EVENT: 0.55,
    MemoryType.REFERENCE: 0.7,
    MemoryType.PROJECT: 0.8,
}
_DEFAULT_TYPE_WEIGHT = 0.6

_TYPE_HINTS = [
    (re.compile(r"(preference|likes|favorite|habit|routine)", re.I), MemoryType.PREFERENCE),
    (re.compile(r"(fact|definition|reference|glossary)", re.I), MemoryType.FACT),
    (
        re.compile(r"(todo|task|project|milestone|roadmap|meeting|call|email|conversation|chat|thread)", re.I),
        MemoryType.LOG_EVENT,
    ),
    (re.compile(r"(article|doc|documentation|guide|tutorial)", re.I), MemoryType.REFERENCE),
]

_CONTENT_TYPE_RULES = [
    (re.compile(r"(email|chat|message|meeting|call|task|project|ticket|issue)"), MemoryType.LOG_EVENT),
    (re.compile(r"(preference|habit|routine)"), MemoryType.PREFERENCE),
    (re.compile(r"(fact|reference|snippet)"), MemoryType.FACT),
]

MAX_MERGED_LIST = 50


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return low
    return min(high, max(low, value))


def normalize_importance(raw: Any) -> float:
    """Extractor importance may come as 0..1 or 0..100."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw):
        return 0.0
    if raw > 1:
        return clamp(raw / 100)
    return clamp(raw)


def type_weight(memory_type: MemoryType) -> float:
    return MEMORY_TYPE_WEIGHTS.get(memory_type, _DEFAULT_TYPE_WEIGHT)


def infer_memory_type(
    explicit_type: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    title: Optional[str] = None,
    content_preview: Optional[str] = None,
) -> MemoryType:
    explicit = MemoryType.parse(explicit_type)
    if explicit:
        return explicit

    metadata = metadata or {}
    meta_type = MemoryType.parse(metadata.get("memory_type"))
    if meta_type:
        return meta_type

    content_type = metadata.get("content_type")
    if isinstance(content_type, str) and content_type:
        lowered = content_type.lower()
        for pattern, mtype in _CONTENT_TYPE_RULES:
            if pattern.search(lowered):
                return mtype

    haystack = f"{title or ''} {content_preview or ''}".strip()
    for pattern, mtype in _TYPE_HINTS:
        if pattern.search(haystack):
            return mtype

    if metadata.get("is_fact") is True:
        return MemoryType.FACT
    if metadata.get("preference") or metadata.get("preference_type"):
        return MemoryType.PREFERENCE
    if metadata.get("thread_id") or metadata.get("email_id"):
        return MemoryType.LOG_EVENT
    return MemoryType.REFERENCE


def importance_score(
    memory_type: MemoryType,
    content_length: int,
    topics: Sequence[str] = (),
    categories: Sequence[str] = (),
    extracted_importance: Any = None,
) -> float:
    meta_importance = normalize_importance(extracted_importance)
    length_boost = clamp(content_length / 6000, 0, 0.35)
    topical_boost = clamp((len(topics) + len(categories)) / 40, 0, 0.2)
    base = 0.25 + type_weight(memory_type) * 0.4 + length_boost + topical_boost + meta_importance * 0.4
    return clamp(base, 0.05, 1)


def confidence_score(
    memory_type: MemoryType,
    content_length: int,
    importance: float,
    extracted_importance: Any = None,
    access_count: int = 0,
) -> float:
    score = (
        0.35
        + clamp(content_length / 4000, 0, 0.25)
        + importance * 0.25
        + normalize_importance(extracted_importance) * 0.15
        + type_weight(memory_type) * 0.1
        + clamp((access_count or 0) / 50, 0, 0.15)
    )
    return clamp(score, 0.1, 1)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


def expires_at_from(metadata: Optional[Dict[str, Any]]) -> Optional[datetime]:
    if not metadata:
        return None
    for key in ("expires_at", "expiry", "valid_until", "deadline", "period_end"):
        parsed = _parse_datetime(metadata.get(key))
        if parsed:
            return parsed
    if metadata.get("content_type") == "calendar_event":
        return _parse_datetime(metadata.get("event_end"))
    return None


def merge_metadata(existing: Optional[Dict[str, Any]], incoming: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Lists: deduplicated union capped at 50. Dicts: shallow merge. Scalars: incoming wins."""
    base = dict(existing or {})
    merged = dict(base)
    for key, value in (incoming or {}).items():
        if value is None:
            continue
        current = base.get(key)
        if isinstance(value, list) and isinstance(current, list):
            merged[key] = _dedupe(list(current) + list(value))[:MAX_MERGED_LIST]
        elif isinstance(value, dict):
            merged[key] = {**(current if isinstance(current, dict) else {}), **value}
        else:
            merged[key] = value
    return merged


def _dedupe(items: Iterable[Any]) -> list:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def apply_decay(
    base_score: float,
    last_accessed: Optional[datetime],
    created_at: Optional[datetime],
    now: Optional[datetime] = None,
    half_life_days: float = 21.0,
) -> float:
    reference = last_accessed or created_at
    if reference is None:
        return clamp(base_score)
    now = now or datetime.now(timezone.utc)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    age_days = max(0.0, (now - reference).total_seconds() / 86400)
    if age_days == 0:
        return clamp(base_score)
    return clamp(base_score * math.pow(0.5, age_days / half_life_days), 0.02, 1)
