from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from arq.connections import RedisSettings
from arq.worker import Retry

from mnemo.application.job_events import JobStage, make_job_event
from mnemo.config.log_config import configure_logging
from mnemo.config.settings import RedisConfig, Settings, get_settings
from mnemo.core.errors import is_transient
from mnemo.ingestion.lease import JobLease
from mnemo.ingestion.queue import redis_settings_from
from mnemo.ingestion.worker import IngestionJob, IngestionOutcome, IngestionStatus

logger = logging.getLogger(__name__)


def _redis_settings(config: Optional[RedisConfig] = None) -> RedisSettings:
    return redis_settings_from(config or get_settings().redis)


async def startup(ctx) -> None:
    # Import inside startup to keep worker import lightweight.
    from mnemo.core.di.container import build_container

    settings: Settings = ctx.get("settings") or get_settings()
    configure_logging(settings.logging)
    ctx["settings"] = settings
    ctx["container"] = await build_container(settings, redis=ctx.get("redis"))
    logger.info(f"ingestion worker started on queue {settings.queue.queue_name}")


async def shutdown(ctx) -> None:
    container = ctx.get("container")
    if container is None:
        return
    await container.background.drain()
    await container.close()
    logger.info("ingestion worker stopped")


async def ingest_content_job(
    ctx,
    *,
    user_id: str,
    raw_text: str,
    metadata: Optional[Dict[str, Any]] = None,
    canonical_hash: Optional[str] = None,
) -> Dict[str, Any]:
    """
    ARQ job: process one captured text into a memory.

    A pick-up with job_try > 1 is either a retry or a recovery after the
    previous worker's lease lapsed; a pending cancellation discards it.
    """
    container = ctx["container"]
    settings: Settings = ctx["settings"]
    job_id: str = ctx["job_id"]
    job_try: int = int(ctx.get("job_try") or 1)

    job = IngestionJob.from_kwargs(
        job_id,
        {"user_id": user_id, "raw_text": raw_text, "metadata": metadata},
        attempt=job_try,
    )
    token = container.cancellations.token(job_id)

    if job_try > 1:
        container.event_log.append(
            make_job_event(job_id, JobStage.RECOVERED, user_id=user_id, attempt=job_try, canonical_hash=canonical_hash)
        )
        if await token.poll():
            logger.info(f"job {job_id} recovered with a pending cancellation; discarding")
            container.event_log.append(
                make_job_event(job_id, JobStage.CANCELLED, user_id=user_id, attempt=job_try, checkpoint="recovered")
            )
            return IngestionOutcome(status=IngestionStatus.CANCELLED, job_id=job_id).to_dict()

    try:
        async with JobLease(ctx["redis"], job_id, settings.queue.lease_seconds):
            outcome = await container.worker.process(job, token)
    except Exception as exc:
        if is_transient(exc) and job_try < settings.queue.max_tries:
            logger.warning(f"job {job_id} hit a transient error on try {job_try}, retrying: {exc}")
            raise Retry(defer=settings.queue.retry_defer_seconds) from exc
        logger.error(f"job {job_id} failed on try {job_try}: {exc}")
        raise

    return outcome.to_dict()


_queue = get_settings().queue


class WorkerSettings:
    """
    Run with:
      arq mnemo.infrastructure.queue.arq_worker.WorkerSettings
    """

    functions = [ingest_content_job]
    redis_settings = _redis_settings()
    queue_name = _queue.queue_name
    max_jobs = _queue.concurrency
    job_timeout = _queue.job_timeout_seconds
    max_tries = _queue.max_tries
    keep_result = _queue.keep_result_seconds
    on_startup = startup
    on_shutdown = shutdown
