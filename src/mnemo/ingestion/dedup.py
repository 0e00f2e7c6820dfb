"""
Duplicate detection, at enqueue time (against pending jobs) and at processing
time (against stored memories).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from mnemo.domain.memory import CanonicalContent, MemoryRecord
from mnemo.infrastructure.stores.memory_store import SqlAlchemyMemoryStore
from mnemo.memory.canonical import text_similarity


@dataclass(frozen=True)
class PendingJob:
    job_id: str
    user_id: str
    canonical_hash: str
    canonical_text: str = ""
    normalized_url: Optional[str] = None
    state: str = "waiting"


@dataclass(frozen=True)
class DuplicateMatch:
    memory: MemoryRecord
    reason: str  # canonical_hash / url_similarity


def find_duplicate_job(
    pending: Iterable[PendingJob],
    canonical: CanonicalContent,
    similarity_threshold: float = 0.9,
) -> Optional[PendingJob]:
    """Exact canonical hash wins; otherwise same normalized URL and similarity above the threshold."""
    candidates = list(pending)
    for job in candidates:
        if job.canonical_hash == canonical.canonical_hash:
            return job
    if not canonical.normalized_url:
        return None
    for job in candidates:
        if job.normalized_url and job.normalized_url == canonical.normalized_url:
            if text_similarity(job.canonical_text, canonical.canonical_text) > similarity_threshold:
                return job
    return None


def find_duplicate_memory(
    store: SqlAlchemyMemoryStore,
    user_id: str,
    canonical: CanonicalContent,
    *,
    window_minutes: int = 60,
    scan_limit: int = 50,
    similarity_threshold: float = 0.9,
    now: Optional[datetime] = None,
) -> Optional[DuplicateMatch]:
    existing = store.find_by_canonical_hash(user_id, canonical.canonical_hash)
    if existing is not None:
        return DuplicateMatch(memory=existing, reason="canonical_hash")

    if not canonical.normalized_url or scan_limit <= 0:
        return None

    since = (now or datetime.now(timezone.utc)) - timedelta(minutes=window_minutes)
    for memory in store.find_recent_by_url(user_id, canonical.normalized_url, since=since, limit=scan_limit):
        if text_similarity(memory.canonical_text, canonical.canonical_text) >= similarity_threshold:
            return DuplicateMatch(memory=memory, reason="url_similarity")
    return None
