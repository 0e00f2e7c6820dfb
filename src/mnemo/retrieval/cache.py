from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, Optional

from mnemo.application.ports.cache_port import KeyValueCache

from .planner import normalize_query

logger = logging.getLogger(__name__)

SEARCH_CACHE_PREFIX = "search_cache:"
SEARCH_CACHE_TTL = 5 * 60


def search_cache_key(user_id: str, query: str, limit: int, policy: Optional[str] = None) -> str:
    digest = hashlib.sha256(
        f"{user_id}:{normalize_query(query)}:{limit}:{policy or 'auto'}".encode("utf-8")
    ).hexdigest()
    return f"{SEARCH_CACHE_PREFIX}{digest}"


class SearchCache:
    """Serialized search responses; read and write failures are logged, never raised."""

    def __init__(self, cache: KeyValueCache, ttl_seconds: int = SEARCH_CACHE_TTL):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.cache.get(key)
        except Exception as exc:
            logger.warning(f"search cache read error, continuing without cache: {exc}")
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"discarding unreadable search cache entry {key}")
            return None

    async def set(self, key: str, response: Dict[str, Any]) -> None:
        try:
            await self.cache.set(key, json.dumps(response, default=str), self.ttl_seconds)
        except Exception as exc:
            logger.warning(f"search cache write error: {exc}")
