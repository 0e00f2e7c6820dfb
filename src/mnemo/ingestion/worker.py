"""
Ingestion worker: turns one captured text into a stored memory.

Flow:
    received -> cancellation check -> duplicate check -> {merge | create}
    -> cancellation check -> summary + metadata extraction -> persist
    -> background (embed, relate, profile refresh)

A cancelled job ends with a CANCELLED outcome. Duplicates are merged into the
existing memory. Summary generation gets one retry on transient errors and then
falls back to a content preview; metadata extraction never fails the job.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from mnemo.application.job_events import JobStage, make_job_event
from mnemo.application.ports.event_log_port import EventLogPort
from mnemo.config.settings import IngestionConfig
from mnemo.core.errors import JobCancelledError, MalformedOutputError, ValidationError, is_transient
from mnemo.domain.memory import CanonicalContent, CaptureMetadata, ExtractedMetadata, MemoryRecord
from mnemo.infrastructure.event_log import LoggingEventLog
from mnemo.infrastructure.stores.memory_store import SqlAlchemyMemoryStore
from mnemo.ingestion.cancellation import CancellationToken
from mnemo.ingestion.dedup import find_duplicate_memory
from mnemo.memory.canonical import build_content_preview, canonicalize, sanitize_content_for_storage
from mnemo.memory.extractor import ContentExtractor, heuristic_metadata, merge_capture_metadata
from mnemo.memory.mesh import MemoryMesh
from mnemo.memory.profile import ProfileService
from mnemo.memory.scoring import confidence_score, expires_at_from, importance_score, infer_memory_type

logger = logging.getLogger(__name__)

SUMMARY_PREVIEW_LENGTH = 400


class IngestionStatus(str, Enum):
    CREATED = "created"
    MERGED = "merged"
    UPDATED = "updated"
    CANCELLED = "cancelled"


@dataclass
class IngestionJob:
    job_id: str
    user_id: str
    raw_text: str
    metadata: CaptureMetadata = field(default_factory=CaptureMetadata)
    attempt: int = 1

    @classmethod
    def from_kwargs(cls, job_id: str, kwargs: Dict[str, Any], attempt: int = 1) -> "IngestionJob":
        user_id = str(kwargs.get("user_id") or "").strip()
        if not user_id:
            raise ValidationError("ingestion job without user_id", context={"job_id": job_id})
        return cls(
            job_id=job_id,
            user_id=user_id,
            raw_text=kwargs.get("raw_text") or "",
            metadata=CaptureMetadata.from_dict(kwargs.get("metadata")),
            attempt=attempt,
        )


@dataclass
class IngestionOutcome:
    status: IngestionStatus
    job_id: str
    memory_id: Optional[str] = None
    summary: str = ""
    is_duplicate: bool = False

    @property
    def success(self) -> bool:
        return self.status != IngestionStatus.CANCELLED

    def to_dict(self) -> Dict[str, Any]:
        summary = self.summary
        if len(summary) > 100:
            summary = summary[:100] + "..."
        return {
            "success": self.success,
            "status": self.status.value,
            "job_id": self.job_id,
            "memory_id": self.memory_id,
            "is_duplicate": self.is_duplicate,
            "summary": summary,
        }


class BackgroundTasks:
    """Fire-and-forget tasks whose failures are logged, never raised."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable[Any], name: str = "background") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.warning(f"{name} failed: {exc}")

        task.add_done_callback(_done)
        return task

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class IngestionWorker:
    def __init__(
        self,
        store: SqlAlchemyMemoryStore,
        extractor: Optional[ContentExtractor],
        mesh: Optional[MemoryMesh] = None,
        profiles: Optional[ProfileService] = None,
        *,
        config: Optional[IngestionConfig] = None,
        event_log: Optional[EventLogPort] = None,
        background: Optional[BackgroundTasks] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.extractor = extractor
        self.mesh = mesh
        self.profiles = profiles
        self.config = config or IngestionConfig()
        self.event_log = event_log or LoggingEventLog()
        self.background = background or BackgroundTasks()
        self._sleep = sleep

    def _emit(self, job: IngestionJob, stage: JobStage, **payload: Any) -> None:
        self.event_log.append(
            make_job_event(job.job_id, stage, user_id=job.user_id, attempt=job.attempt, **payload)
        )

    async def process(self, job: IngestionJob, token: Optional[CancellationToken] = None) -> IngestionOutcome:
        token = token or CancellationToken.none(job.job_id)
        self._emit(job, JobStage.RECEIVED, chars=len(job.raw_text))
        try:
            outcome = await self._run(job, token)
        except JobCancelledError as exc:
            stage = (exc.context or {}).get("stage")
            logger.info(f"job {job.job_id} cancelled at {stage}")
            self._emit(job, JobStage.CANCELLED, checkpoint=stage)
            return IngestionOutcome(status=IngestionStatus.CANCELLED, job_id=job.job_id)
        except Exception as exc:
            self._emit(job, JobStage.FAILED, error=str(exc))
            raise
        self._emit(job, JobStage.COMPLETED, status=outcome.status.value, memory_id=outcome.memory_id)
        return outcome

    async def _run(self, job: IngestionJob, token: CancellationToken) -> IngestionOutcome:
        capture = job.metadata
        canonical = canonicalize(job.raw_text, capture.url, self.config.max_canonical_length)
        if not canonical.canonical_text:
            raise ValidationError("captured content is empty after canonicalization", context={"job_id": job.job_id})

        self._emit(job, JobStage.CANCELLATION_CHECK, checkpoint="before_processing")
        await token.checkpoint("before_processing")

        if capture.existing_memory_id:
            existing = self.store.get_memory(capture.existing_memory_id)
            if existing is not None and existing.user_id == job.user_id:
                return await self._resummarize(job, existing, token)
            logger.warning(
                f"job {job.job_id}: memory {capture.existing_memory_id} not found for {job.user_id}, "
                "processing as a new capture"
            )

        self._emit(job, JobStage.DUPLICATE_CHECK, canonical_hash=canonical.canonical_hash)
        match = find_duplicate_memory(
            self.store,
            job.user_id,
            canonical,
            window_minutes=self.config.duplicate_window_minutes,
            scan_limit=self.config.duplicate_scan_limit,
            similarity_threshold=self.config.duplicate_similarity,
        )
        if match is not None:
            merged = self._merge(job, match.memory, reason=match.reason)
            return IngestionOutcome(
                status=IngestionStatus.MERGED,
                job_id=job.job_id,
                memory_id=merged.id,
                summary=merged.summary,
                is_duplicate=True,
            )

        return await self._create(job, canonical, token)

    def _merge(self, job: IngestionJob, memory: MemoryRecord, reason: str) -> MemoryRecord:
        incoming = merge_capture_metadata(ExtractedMetadata(), job.metadata).to_dict()
        merged = self.store.merge_duplicate(memory.id, {k: v for k, v in incoming.items() if v})
        self._emit(job, JobStage.MERGED, memory_id=memory.id, reason=reason)
        logger.info(f"job {job.job_id}: duplicate of memory {memory.id} ({reason}), merged")
        return merged or memory

    async def _extract(self, job: IngestionJob, content: str):
        self._emit(job, JobStage.EXTRACTING)
        if self.extractor is None:
            return build_content_preview(content, SUMMARY_PREVIEW_LENGTH), heuristic_metadata(content, job.metadata)
        summary, metadata = await asyncio.gather(
            self._summarize_with_retry(job, content),
            self.extractor.extract_metadata(content, job.metadata),
        )
        return summary, metadata

    async def _summarize_with_retry(self, job: IngestionJob, content: str) -> str:
        attempts = 1 + max(0, self.config.summary_retries)
        for attempt in range(1, attempts + 1):
            try:
                return await self.extractor.summarize(content, job.metadata)
            except MalformedOutputError as exc:
                logger.warning(f"job {job.job_id}: unusable summary output ({exc}), using preview")
                break
            except Exception as exc:
                if not is_transient(exc):
                    raise
                if attempt >= attempts:
                    logger.warning(f"job {job.job_id}: summary failed after {attempt} attempt(s): {exc}")
                    break
                delay = min(self.config.retry_base_delay * (2 ** (attempt - 1)), self.config.retry_max_delay)
                logger.info(f"job {job.job_id}: transient summary failure, retrying in {delay:.1f}s: {exc}")
                await self._sleep(delay)
        return build_content_preview(content, SUMMARY_PREVIEW_LENGTH)

    def _scores(self, job: IngestionJob, content: str, metadata: ExtractedMetadata):
        meta = metadata.to_dict()
        memory_type = infer_memory_type(
            job.metadata.extra.get("memory_type"),
            meta,
            job.metadata.title,
            build_content_preview(content, SUMMARY_PREVIEW_LENGTH),
        )
        importance = importance_score(
            memory_type, len(content), metadata.topics, metadata.categories, metadata.importance
        )
        confidence = confidence_score(memory_type, len(content), importance, metadata.importance)
        return memory_type, importance, confidence

    async def _create(self, job: IngestionJob, canonical: CanonicalContent, token: CancellationToken) -> IngestionOutcome:
        content = sanitize_content_for_storage(job.raw_text)
        summary, metadata = await self._extract(job, content)

        self._emit(job, JobStage.CANCELLATION_CHECK, checkpoint="before_persist")
        await token.checkpoint("before_persist")

        metadata = merge_capture_metadata(metadata, job.metadata)
        memory_type, importance, confidence = self._scores(job, content, metadata)
        record, created = self.store.create_memory(
            user_id=job.user_id,
            content=content,
            summary=summary,
            canonical=canonical,
            url=job.metadata.url,
            title=job.metadata.title,
            source=job.metadata.source or "capture",
            memory_type=memory_type,
            metadata=metadata,
            importance_score=importance,
            confidence_score=confidence,
            expires_at=expires_at_from(metadata.to_dict()),
        )
        if not created:
            # lost a concurrent insert race; the winner's row absorbs this capture
            merged = self._merge(job, record, reason="unique_conflict")
            return IngestionOutcome(
                status=IngestionStatus.MERGED,
                job_id=job.job_id,
                memory_id=merged.id,
                summary=merged.summary,
                is_duplicate=True,
            )

        self._emit(job, JobStage.PERSISTED, memory_id=record.id, memory_type=memory_type.value)
        self._schedule_background(job, record, self.config.profile_stale_days)
        return IngestionOutcome(
            status=IngestionStatus.CREATED,
            job_id=job.job_id,
            memory_id=record.id,
            summary=record.summary,
        )

    async def _resummarize(self, job: IngestionJob, existing: MemoryRecord, token: CancellationToken) -> IngestionOutcome:
        content = sanitize_content_for_storage(job.raw_text) or existing.content
        summary, metadata = await self._extract(job, content)

        self._emit(job, JobStage.CANCELLATION_CHECK, checkpoint="before_persist")
        await token.checkpoint("before_persist")

        metadata = merge_capture_metadata(metadata, job.metadata)
        _, importance, confidence = self._scores(job, content, metadata)
        updated = self.store.update_memory_content(
            existing.id,
            summary=summary,
            metadata=metadata.to_dict(),
            importance_score=importance,
            confidence_score=confidence,
        )
        record = updated or existing
        self._emit(job, JobStage.PERSISTED, memory_id=record.id, resummarized=True)
        self._schedule_background(job, record, self.config.resummarize_profile_stale_days)
        return IngestionOutcome(
            status=IngestionStatus.UPDATED,
            job_id=job.job_id,
            memory_id=record.id,
            summary=record.summary,
        )

    def _schedule_background(self, job: IngestionJob, record: MemoryRecord, profile_stale_days: int) -> None:
        self._emit(job, JobStage.BACKGROUND, memory_id=record.id)
        self.background.spawn(
            self._background(job, record, profile_stale_days),
            name=f"background for memory {record.id}",
        )

    async def _background(self, job: IngestionJob, record: MemoryRecord, profile_stale_days: int) -> None:
        if self.mesh is not None:
            relations = await self.mesh.process_memory(record.id)
            logger.debug(f"memory {record.id}: indexed, {relations} relation(s)")
        if (
            self.profiles is not None
            and record.importance_score >= self.config.profile_importance_threshold
            and self.profiles.is_stale(job.user_id, profile_stale_days)
        ):
            await self.profiles.update_profile(job.user_id)
