"""
Cooperative cancellation for ingestion jobs.

A cancel request is a flag in the shared key-value store keyed by job id.
Workers hold a CancellationToken and check it at fixed checkpoints; the flag
is consumed by the check that observes it.
"""

from __future__ import annotations

import logging
from typing import Optional

from mnemo.application.ports.cache_port import KeyValueCache
from mnemo.core.errors import JobCancelledError

logger = logging.getLogger(__name__)

CANCEL_KEY_PREFIX = "mnemo:process-content:cancelled:"
DEFAULT_FLAG_TTL = 3600


def cancellation_key(job_id: str) -> str:
    return f"{CANCEL_KEY_PREFIX}{job_id}"


class CancellationRegistry:
    def __init__(self, cache: KeyValueCache, ttl_seconds: int = DEFAULT_FLAG_TTL):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def request(self, job_id: str) -> None:
        await self.cache.set(cancellation_key(job_id), "1", self.ttl_seconds)
        logger.info(f"cancellation requested for job {job_id}")

    async def is_requested(self, job_id: str) -> bool:
        return await self.cache.exists(cancellation_key(job_id))

    async def clear(self, job_id: str) -> None:
        await self.cache.delete(cancellation_key(job_id))

    def token(self, job_id: str) -> "CancellationToken":
        return CancellationToken(job_id, self)


class CancellationToken:
    """Passed through the worker; ``checkpoint`` raises JobCancelledError once cancelled."""

    def __init__(self, job_id: str, registry: Optional[CancellationRegistry] = None):
        self.job_id = job_id
        self._registry = registry
        self._cancelled = False

    @classmethod
    def none(cls, job_id: str = "") -> "CancellationToken":
        return cls(job_id, None)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    async def poll(self) -> bool:
        if self._cancelled:
            return True
        if self._registry is None:
            return False
        if await self._registry.is_requested(self.job_id):
            await self._registry.clear(self.job_id)
            self._cancelled = True
        return self._cancelled

    async def checkpoint(self, stage: str = "") -> None:
        if await self.poll():
            raise JobCancelledError(
                f"job {self.job_id} cancelled by user request",
                context={"job_id": self.job_id, "stage": stage},
            )
