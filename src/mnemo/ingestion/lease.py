"""
Lease renewal for running arq jobs.

arq marks a running job with an in-progress key. The lease shortens that key's
expiry to ``lease_seconds`` and renews it every third of the lease; if the
worker process dies the key lapses and another worker picks the job up again.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from arq.constants import in_progress_key_prefix

logger = logging.getLogger(__name__)


class JobLease:
    def __init__(self, redis: Any, job_id: str, lease_seconds: float = 30.0):
        self.redis = redis
        self.job_id = job_id
        self.lease_seconds = max(3.0, float(lease_seconds))
        self.key = in_progress_key_prefix + job_id
        self.renewals = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def interval(self) -> float:
        return self.lease_seconds / 3

    async def renew(self) -> bool:
        ok = await self.redis.pexpire(self.key, int(self.lease_seconds * 1000))
        if ok:
            self.renewals += 1
        return bool(ok)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                if not await self.renew():
                    logger.warning(f"lease for job {self.job_id} lost; stopping renewal")
                    return
            except Exception as exc:
                logger.warning(f"lease renewal for job {self.job_id} failed: {exc}")

    async def __aenter__(self) -> "JobLease":
        await self.renew()
        self._task = asyncio.create_task(self._run(), name=f"lease:{self.job_id}")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
