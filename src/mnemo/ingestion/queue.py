"""
Ingestion queue on arq / Redis.

Provides:
- duplicate-aware enqueue (canonical hash, then URL + text similarity)
- cancellation (flag + immediate removal of jobs that have not started)
- queue inspection and cleanup of completed jobs
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from arq.connections import ArqRedis, RedisSettings, create_pool
from arq.constants import in_progress_key_prefix, job_key_prefix, result_key_prefix
from arq.jobs import DeserializationError, Job, JobDef, JobStatus, deserialize_job

from mnemo.config.settings import RedisConfig
from mnemo.domain.memory import CanonicalContent, CaptureMetadata
from mnemo.ingestion.cancellation import CancellationRegistry
from mnemo.ingestion.dedup import PendingJob, find_duplicate_job
from mnemo.memory.canonical import DEFAULT_MAX_LENGTH, canonicalize

logger = logging.getLogger(__name__)

INGEST_FUNCTION = "ingest_content_job"
DEFAULT_QUEUE_NAME = "mnemo:process-content"


def redis_settings_from(config: RedisConfig) -> RedisSettings:
    return RedisSettings(
        host=config.host,
        port=config.port,
        database=config.database,
        password=config.password,
    )


@dataclass
class EnqueueResult:
    id: str
    is_duplicate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "is_duplicate": self.is_duplicate}


@dataclass
class JobInfo:
    """Job information structure"""
    job_id: str
    function: str
    status: str  # waiting, active, delayed, completed, failed, not_found
    user_id: Optional[str] = None
    enqueue_time: Optional[datetime] = None
    start_time: Optional[datetime] = None
    finish_time: Optional[datetime] = None
    job_try: Optional[int] = None
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        result = self.result
        if isinstance(result, BaseException):
            result = str(result)
        return {
            "job_id": self.job_id,
            "function": self.function,
            "status": self.status,
            "user_id": self.user_id,
            "enqueue_time": self.enqueue_time.isoformat() if self.enqueue_time else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "finish_time": self.finish_time.isoformat() if self.finish_time else None,
            "job_try": self.job_try,
            "result": result,
        }


@dataclass
class QueueCounts:
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.waiting + self.active + self.delayed + self.completed + self.failed

    def to_dict(self) -> Dict[str, int]:
        return {
            "waiting": self.waiting,
            "active": self.active,
            "delayed": self.delayed,
            "completed": self.completed,
            "failed": self.failed,
            "total": self.total,
        }


@dataclass
class CleanupReport:
    before: QueueCounts
    after: QueueCounts
    removed: int

    @property
    def remaining(self) -> int:
        return self.after.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "before": self.before.to_dict(),
            "after": self.after.to_dict(),
            "removed": self.removed,
            "remaining": self.remaining,
        }


@dataclass
class QueueStatus:
    counts: QueueCounts
    waiting: List[JobInfo] = field(default_factory=list)
    active: List[JobInfo] = field(default_factory=list)
    delayed: List[JobInfo] = field(default_factory=list)
    failed: List[JobInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counts": self.counts.to_dict(),
            "waiting": [j.to_dict() for j in self.waiting],
            "active": [j.to_dict() for j in self.active],
            "delayed": [j.to_dict() for j in self.delayed],
            "failed": [j.to_dict() for j in self.failed],
        }


class IngestionQueue:
    """
    Usage:
        queue = IngestionQueue(redis_settings, cancellations=registry)
        await queue.connect()
        result = await queue.enqueue("user-1", raw_text, {"url": "https://..."})
        await queue.close()
    """

    def __init__(
        self,
        redis_settings: Optional[RedisSettings] = None,
        *,
        cancellations: CancellationRegistry,
        queue_name: str = DEFAULT_QUEUE_NAME,
        dedup_similarity: float = 0.9,
        max_canonical_length: int = DEFAULT_MAX_LENGTH,
        pool: Optional[ArqRedis] = None,
    ):
        self.redis_settings = redis_settings or RedisSettings()
        self.cancellations = cancellations
        self.queue_name = queue_name
        self.dedup_similarity = dedup_similarity
        self.max_canonical_length = max_canonical_length
        self._pool = pool
        self._enqueue_lock = asyncio.Lock()

    async def connect(self) -> None:
        if self._pool is None:
            self._pool = await create_pool(self.redis_settings, default_queue_name=self.queue_name)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def _ensure_connected(self) -> ArqRedis:
        if self._pool is None:
            await self.connect()
        return self._pool  # type: ignore[return-value]

    @property
    def pool(self) -> Optional[ArqRedis]:
        return self._pool

    # ------------------------------------------------------------------ scan

    async def _queued(self) -> List[Tuple[JobDef, str]]:
        """Queued job definitions with their state (waiting / active / delayed)."""
        pool = await self._ensure_connected()
        now_ms = int(time.time() * 1000)
        out: List[Tuple[JobDef, str]] = []
        entries = await pool.zrange(self.queue_name, 0, -1, withscores=True)
        for raw_id, score in entries:
            job_id = raw_id.decode() if isinstance(raw_id, bytes) else str(raw_id)
            raw = await pool.get(job_key_prefix + job_id)
            if raw is None:
                # finished or cancelled between ZRANGE and GET
                logger.warning(f"queued job {job_id} vanished during scan, skipped")
                continue
            try:
                job_def = deserialize_job(raw, deserializer=pool.job_deserializer)
            except DeserializationError as exc:
                logger.warning(f"queued job {job_id} could not be deserialized, skipped: {exc}")
                continue
            job_def.job_id = job_id
            job_def.score = int(score)
            if job_def.function != INGEST_FUNCTION:
                continue
            if await pool.exists(in_progress_key_prefix + job_id):
                state = "active"
            elif job_def.score > now_ms:
                state = "delayed"
            else:
                state = "waiting"
            out.append((job_def, state))
        return out

    def _pending_from(self, job_def: JobDef, state: str) -> PendingJob:
        kwargs = job_def.kwargs or {}
        capture = CaptureMetadata.from_dict(kwargs.get("metadata"))
        canonical = canonicalize(kwargs.get("raw_text") or "", capture.url, self.max_canonical_length)
        return PendingJob(
            job_id=job_def.job_id,
            user_id=str(kwargs.get("user_id") or ""),
            canonical_hash=canonical.canonical_hash,
            canonical_text=canonical.canonical_text,
            normalized_url=canonical.normalized_url,
            state=state,
        )

    async def pending_jobs(self, user_id: Optional[str] = None) -> List[PendingJob]:
        pending = []
        for job_def, state in await self._queued():
            if user_id is not None and (job_def.kwargs or {}).get("user_id") != user_id:
                continue
            pending.append(self._pending_from(job_def, state))
        return pending

    # --------------------------------------------------------------- enqueue

    async def enqueue(
        self,
        user_id: str,
        raw_text: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EnqueueResult:
        capture = CaptureMetadata.from_dict(metadata)
        canonical: CanonicalContent = canonicalize(raw_text, capture.url, self.max_canonical_length)

        async with self._enqueue_lock:
            if not capture.existing_memory_id:
                duplicate = find_duplicate_job(
                    await self.pending_jobs(user_id),
                    canonical,
                    similarity_threshold=self.dedup_similarity,
                )
                if duplicate is not None:
                    logger.info(f"capture for {user_id} matches pending job {duplicate.job_id}")
                    return EnqueueResult(id=duplicate.job_id, is_duplicate=True)

            pool = await self._ensure_connected()
            job_id = str(uuid.uuid4())
            job = await pool.enqueue_job(
                INGEST_FUNCTION,
                _job_id=job_id,
                _queue_name=self.queue_name,
                user_id=user_id,
                raw_text=raw_text,
                metadata=capture.to_dict(),
                canonical_hash=canonical.canonical_hash,
            )
            if job is None:
                raise RuntimeError(f"job id collision for {job_id}")
            logger.info(f"enqueued ingestion job {job_id} for {user_id}")
            return EnqueueResult(id=job_id, is_duplicate=False)

    # ---------------------------------------------------------------- cancel

    async def cancel(self, job_id: str) -> Dict[str, Any]:
        """
        Flag the job as cancelled; a job that has not started is also removed
        from the queue right away. A running job stops at its next checkpoint.
        """
        pool = await self._ensure_connected()
        await self.cancellations.request(job_id)

        removed = False
        if not await pool.exists(in_progress_key_prefix + job_id):
            if await pool.zrem(self.queue_name, job_id):
                await pool.delete(job_key_prefix + job_id)
                await self.cancellations.clear(job_id)
                removed = True
                logger.info(f"removed queued job {job_id}")
        return {"job_id": job_id, "cancelled": True, "removed": removed}

    # ------------------------------------------------------------ inspection

    async def get_job(self, job_id: str) -> Optional[JobInfo]:
        pool = await self._ensure_connected()
        job = Job(job_id, pool, _queue_name=self.queue_name)
        status = await job.status()
        if status == JobStatus.not_found:
            return None

        info = await job.info()
        if info is None:
            return JobInfo(job_id=job_id, function="unknown", status=status.value)

        if status == JobStatus.complete:
            label = "completed" if getattr(info, "success", True) else "failed"
        elif status == JobStatus.in_progress:
            label = "active"
        elif status == JobStatus.deferred:
            label = "delayed"
        else:
            label = "waiting"

        return JobInfo(
            job_id=job_id,
            function=info.function,
            status=label,
            user_id=(info.kwargs or {}).get("user_id"),
            enqueue_time=info.enqueue_time,
            start_time=getattr(info, "start_time", None),
            finish_time=getattr(info, "finish_time", None),
            job_try=info.job_try,
            result=getattr(info, "result", None),
        )

    async def _results(self) -> List[Any]:
        pool = await self._ensure_connected()
        return [r for r in await pool.all_job_results() if r.function == INGEST_FUNCTION]

    async def counts(self) -> QueueCounts:
        counts = QueueCounts()
        for _, state in await self._queued():
            setattr(counts, state, getattr(counts, state) + 1)
        for result in await self._results():
            if result.success:
                counts.completed += 1
            else:
                counts.failed += 1
        return counts

    async def status(self, limit: int = 20) -> QueueStatus:
        status = QueueStatus(counts=QueueCounts())
        for job_def, state in await self._queued():
            info = JobInfo(
                job_id=job_def.job_id,
                function=job_def.function,
                status=state,
                user_id=(job_def.kwargs or {}).get("user_id"),
                enqueue_time=job_def.enqueue_time,
                job_try=job_def.job_try,
            )
            setattr(status.counts, state, getattr(status.counts, state) + 1)
            bucket = getattr(status, state)
            if len(bucket) < limit:
                bucket.append(info)
        for result in await self._results():
            if result.success:
                status.counts.completed += 1
                continue
            status.counts.failed += 1
            if len(status.failed) < limit:
                status.failed.append(
                    JobInfo(
                        job_id=result.job_id,
                        function=result.function,
                        status="failed",
                        user_id=(result.kwargs or {}).get("user_id"),
                        enqueue_time=result.enqueue_time,
                        start_time=result.start_time,
                        finish_time=result.finish_time,
                        job_try=result.job_try,
                        result=result.result,
                    )
                )
        return status

    async def cleanup(self) -> CleanupReport:
        """Remove completed jobs only; waiting, active, delayed and failed jobs are kept."""
        pool = await self._ensure_connected()
        before = await self.counts()
        removed = 0
        for result in await self._results():
            if result.success and result.job_id:
                removed += int(await pool.delete(result_key_prefix + result.job_id) or 0)
        after = await self.counts()
        logger.info(f"queue cleanup removed {removed} completed job(s)")
        return CleanupReport(before=before, after=after, removed=removed)
