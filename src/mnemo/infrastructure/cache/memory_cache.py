from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Tuple

from mnemo.application.ports.cache_port import KeyValueCache


class InMemoryKeyValueCache(KeyValueCache):
    """Process-local TTL cache; used for tests and single-process dev runs."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _alive(self, key: str) -> bool:
        item = self._data.get(key)
        if item is None:
            return False
        _, expires = item
        if expires is not None and self._clock() >= expires:
            self._data.pop(key, None)
            return False
        return True

    async def get(self, key: str) -> Optional[str]:
        if not self._alive(key):
            return None
        return self._data[key][0]

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def exists(self, key: str) -> bool:
        return self._alive(key)

    async def close(self) -> None:
        self._data.clear()
