from __future__ import annotations

import logging
from typing import Optional

from redis.asyncio import Redis

from mnemo.application.ports.cache_port import KeyValueCache
from mnemo.config.settings import RedisConfig

logger = logging.getLogger(__name__)


class RedisKeyValueCache(KeyValueCache):
    """KeyValueCache over redis.asyncio; values are stored as UTF-8 strings."""

    def __init__(self, client: Redis):
        self._client = client

    @classmethod
    def from_config(cls, config: RedisConfig) -> "RedisKeyValueCache":
        client = Redis(
            host=config.host,
            port=config.port,
            db=config.database,
            password=config.password,
            decode_responses=True,
        )
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        value = await self._client.get(key)
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds:
            await self._client.set(key, value, ex=int(ttl_seconds))
        else:
            await self._client.set(key, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def exists(self, key: str) -> bool:
        return bool(await self._client.exists(key))

    async def close(self) -> None:
        await self._client.aclose()
