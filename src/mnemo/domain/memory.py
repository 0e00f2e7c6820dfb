"""
Memory data model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class MemoryType(str, Enum):
    FACT = "FACT"
    PREFERENCE = "PREFERENCE"
    LOG_EVENT = "LOG_EVENT"
    REFERENCE = "REFERENCE"
    PROJECT = "PROJECT"

    @classmethod
    def parse(cls, value: Any, default: "MemoryType" = None) -> Optional["MemoryType"]:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                return default
        return default


@dataclass(frozen=True)
class CanonicalContent:
    canonical_text: str
    canonical_hash: str
    normalized_url: Optional[str] = None


def _str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if v is not None and str(v).strip()]
    return []


def _opt_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class ExtractedMetadata:
    """
    Structured signals extracted from captured content.

    Known fields are typed; anything else the extractor (or the capture client)
    produced is kept in ``extra`` and round-trips through ``to_dict``.
    """

    topics: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    key_points: List[str] = field(default_factory=list)
    searchable_terms: List[str] = field(default_factory=list)
    sentiment: Optional[str] = None
    importance: Optional[float] = None
    usefulness: Optional[float] = None
    content_type: Optional[str] = None
    memory_type: Optional[str] = None
    expires_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _LIST_FIELDS = ("topics", "categories", "key_points", "searchable_terms")
    _ALIASES = {
        "key_topics": "topics",
        "keyTopics": "topics",
        "keyPoints": "key_points",
        "searchableTerms": "searchable_terms",
        "contentType": "content_type",
        "content_type": "content_type",
        "memoryType": "memory_type",
        "type": "memory_type",
        "expiry": "expires_at",
        "valid_until": "expires_at",
        "deadline": "expires_at",
        "period_end": "expires_at",
        "expiresAt": "expires_at",
    }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExtractedMetadata":
        if not data:
            return cls()
        known: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in data.items():
            target = cls._ALIASES.get(key, key)
            if target in cls._LIST_FIELDS:
                known[target] = _str_list(value)
            elif target in ("importance", "usefulness"):
                known[target] = _opt_float(value)
            elif target in ("sentiment", "content_type", "memory_type", "expires_at"):
                if target not in known and value is not None:
                    known[target] = str(value)
            elif key == "extra" and isinstance(value, dict):
                extra.update(value)
            else:
                extra[key] = value
        return cls(**known, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.extra)
        out.update(
            {
                "topics": list(self.topics),
                "categories": list(self.categories),
                "key_points": list(self.key_points),
                "searchable_terms": list(self.searchable_terms),
            }
        )
        for name in ("sentiment", "importance", "usefulness", "content_type", "memory_type", "expires_at"):
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        return out

    def is_empty(self) -> bool:
        return not any(self.to_dict().values())


@dataclass
class CaptureMetadata:
    """Client-supplied context attached to a capture."""

    url: Optional[str] = None
    title: Optional[str] = None
    source: Optional[str] = None
    existing_memory_id: Optional[str] = None
    content_type: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CaptureMetadata":
        data = dict(data or {})
        url = data.pop("url", None)
        if url == "unknown":
            url = None
        return cls(
            url=url or None,
            title=data.pop("title", None) or None,
            source=data.pop("source", None) or None,
            existing_memory_id=data.pop("existing_memory_id", None) or data.pop("memory_id", None) or None,
            content_type=data.pop("content_type", None) or None,
            tags=_str_list(data.pop("tags", None)),
            extra=dict(data.pop("extra", None) or {}, **data),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "url": self.url,
            "title": self.title,
            "source": self.source,
            "existing_memory_id": self.existing_memory_id,
            "content_type": self.content_type,
            "tags": list(self.tags),
        }
        if self.extra:
            out["extra"] = dict(self.extra)
        return out


@dataclass
class MemoryRecord:
    """A stored memory as seen by the ingestion and retrieval pipelines."""

    id: str
    user_id: str
    content: str
    summary: str = ""
    canonical_text: str = ""
    canonical_hash: str = ""
    url: Optional[str] = None
    title: Optional[str] = None
    source: str = "capture"
    memory_type: MemoryType = MemoryType.REFERENCE
    metadata: ExtractedMetadata = field(default_factory=ExtractedMetadata)
    importance_score: float = 0.5
    confidence_score: float = 0.5
    access_count: int = 0
    last_accessed: Optional[datetime] = None
    timestamp: Optional[datetime] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @property
    def display_title(self) -> str:
        return (self.title or "").strip() or "Untitled Memory"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "summary": self.summary,
            "canonical_hash": self.canonical_hash,
            "url": self.url,
            "title": self.title,
            "source": self.source,
            "memory_type": self.memory_type.value,
            "metadata": self.metadata.to_dict(),
            "importance_score": self.importance_score,
            "confidence_score": self.confidence_score,
            "access_count": self.access_count,
            "last_accessed": self.last_accessed.isoformat() if self.last_accessed else None,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
