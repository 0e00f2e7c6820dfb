"""
User profile snapshot derived from the highest-signal memories.

The snapshot feeds the answer prompt and the context builder.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from mnemo.application.ports.ai_port import Generator
from mnemo.application.ports.cache_port import KeyValueCache
from mnemo.core.json_utils import extract_json_object
from mnemo.domain.memory import MemoryRecord, MemoryType
from mnemo.infrastructure.stores.memory_store import SqlAlchemyMemoryStore

logger = logging.getLogger(__name__)

PROFILE_CONTEXT_PREFIX = "user_profile_context:"
PROFILE_CONTEXT_TTL = 5 * 60
PROFILE_SCAN_LIMIT = 200
PROFILE_PROMPT_ITEMS = 40


def _profile_prompt(memories: List[MemoryRecord]) -> str:
    lines = []
    for m in memories[:PROFILE_PROMPT_ITEMS]:
        summary = (m.summary or m.content or "")[:240].replace("\n", " ")
        lines.append(f"- [{m.memory_type.value}] {m.display_title}: {summary}")
    return (
        "Build a short profile of this user from their saved memories.\n"
        'Respond with ONLY JSON: {"summary": "...", "interests": [], "projects": [], "preferences": []}\n'
        "summary: 2-4 plain sentences. Lists: at most 8 short items each.\n\n"
        "Memories:\n" + "\n".join(lines)
    )


def heuristic_profile(memories: List[MemoryRecord]) -> Dict[str, Any]:
    topics = Counter()
    projects = []
    preferences = []
    for m in memories:
        topics.update(t.lower() for t in m.metadata.topics)
        if m.memory_type == MemoryType.PROJECT and m.title:
            projects.append(m.title)
        if m.memory_type == MemoryType.PREFERENCE and m.title:
            preferences.append(m.title)
    interests = [t for t, _ in topics.most_common(8)]
    summary = f"Interested in {', '.join(interests[:5])}." if interests else ""
    return {
        "summary": summary,
        "interests": interests,
        "projects": projects[:8],
        "preferences": preferences[:8],
    }


def render_profile(profile: Dict[str, Any]) -> str:
    parts = []
    if profile.get("summary"):
        parts.append(str(profile["summary"]).strip())
    for label, key in (("Interests", "interests"), ("Projects", "projects"), ("Preferences", "preferences")):
        values = [str(v) for v in profile.get(key) or [] if str(v).strip()]
        if values:
            parts.append(f"{label}: {', '.join(values[:8])}")
    return "\n".join(parts)


class ProfileService:
    def __init__(
        self,
        store: SqlAlchemyMemoryStore,
        generator: Optional[Generator] = None,
        cache: Optional[KeyValueCache] = None,
        *,
        timeout: float = 120.0,
    ):
        self.store = store
        self.generator = generator
        self.cache = cache
        self.timeout = timeout

    def is_stale(self, user_id: str, stale_days: int, now: Optional[datetime] = None) -> bool:
        profile = self.store.get_profile(user_id)
        if profile is None or profile.get("updated_at") is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - profile["updated_at"] > timedelta(days=stale_days)

    async def update_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        memories = self.store.top_memories(user_id, limit=PROFILE_SCAN_LIMIT)
        if not memories:
            return None

        profile: Optional[Dict[str, Any]] = None
        if self.generator is not None:
            for attempt in (1, 2):
                try:
                    raw = await self.generator.generate(_profile_prompt(memories), timeout=self.timeout)
                    profile = extract_json_object(raw)
                    break
                except Exception as exc:
                    logger.warning(f"profile extraction attempt {attempt} failed for {user_id}: {exc}")
        if profile is None:
            profile = heuristic_profile(memories)

        text = render_profile(profile)
        self.store.upsert_profile(user_id, profile_text=text, profile=profile, memory_count=len(memories))
        if self.cache is not None:
            try:
                await self.cache.delete(PROFILE_CONTEXT_PREFIX + user_id)
            except Exception as exc:
                logger.warning(f"profile cache invalidation failed: {exc}")
        logger.info(f"profile refreshed for {user_id} from {len(memories)} memories")
        return profile

    async def get_profile_context(self, user_id: str) -> str:
        key = PROFILE_CONTEXT_PREFIX + user_id
        if self.cache is not None:
            try:
                cached = await self.cache.get(key)
                if cached is not None:
                    return cached
            except Exception as exc:
                logger.warning(f"profile cache read failed: {exc}")

        profile = self.store.get_profile(user_id)
        text = (profile or {}).get("profile_text") or ""
        if self.cache is not None and text:
            try:
                await self.cache.set(key, text, PROFILE_CONTEXT_TTL)
            except Exception as exc:
                logger.warning(f"profile cache write failed: {exc}")
        return text
