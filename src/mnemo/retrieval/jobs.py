from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mnemo.application.ports.cache_port import KeyValueCache

logger = logging.getLogger(__name__)

JOB_PREFIX = "search_job:"
JOB_TTL = 15 * 60
JOB_STATUSES = ("pending", "processing", "completed", "failed")


@dataclass
class SearchJob:
    id: str
    status: str = "pending"
    answer: Optional[str] = None
    citations: Optional[List[Dict[str, Any]]] = None
    results: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    expires_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "status": self.status,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }
        for name in ("answer", "citations", "results", "error"):
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchJob":
        return cls(
            id=data["id"],
            status=data.get("status") or "pending",
            answer=data.get("answer"),
            citations=data.get("citations"),
            results=data.get("results"),
            error=data.get("error"),
            created_at=float(data.get("created_at") or 0.0),
            expires_at=float(data.get("expires_at") or 0.0),
        )


class SearchJobStore:
    """
    Search job records in the key-value cache.

    Store errors are logged and swallowed: a lost job record only costs the
    client its polling handle, never the search itself.
    """

    def __init__(self, cache: KeyValueCache, ttl_seconds: int = JOB_TTL):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(job_id: str) -> str:
        return f"{JOB_PREFIX}{job_id}"

    async def create(self) -> SearchJob:
        now = time.time()
        job = SearchJob(id=str(uuid.uuid4()), created_at=now, expires_at=now + self.ttl_seconds)
        try:
            await self.cache.set(self.key(job.id), json.dumps(job.to_dict()), self.ttl_seconds)
        except Exception as exc:
            logger.error(f"search job {job.id} could not be stored: {exc}")
        return job

    async def get(self, job_id: str) -> Optional[SearchJob]:
        try:
            raw = await self.cache.get(self.key(job_id))
        except Exception as exc:
            logger.error(f"search job {job_id} could not be read: {exc}")
            return None
        if not raw:
            return None
        try:
            return SearchJob.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(f"search job {job_id} record unreadable: {exc}")
            return None

    async def update(self, job_id: str, **fields: Any) -> Optional[SearchJob]:
        """Merge the given fields into the record and refresh its TTL."""
        job = await self.get(job_id)
        if job is None:
            logger.error(f"search job not found: {job_id}")
            return None
        status = fields.pop("status", None)
        if status is not None:
            if status not in JOB_STATUSES:
                raise ValueError(f"unknown search job status {status!r}")
            job.status = status
        for name in ("answer", "citations", "results", "error"):
            if fields.get(name) is not None:
                setattr(job, name, fields[name])
        job.expires_at = time.time() + self.ttl_seconds
        try:
            await self.cache.set(self.key(job_id), json.dumps(job.to_dict()), self.ttl_seconds)
        except Exception as exc:
            logger.error(f"search job {job_id} could not be updated: {exc}")
        return job
