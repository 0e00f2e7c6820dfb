"""
arq job function: outcome dicts, recovery of re-delivered jobs, retry on transient errors.
"""

import pytest
from arq.worker import Retry

from mnemo.core.errors import RateLimitedError, ValidationError
from mnemo.infrastructure.queue.arq_worker import WorkerSettings, ingest_content_job

TEXT = "Rust ownership rules keep memory safe without a garbage collector."


def _ctx(container, arq_pool, job_id, job_try=1):
    arq_pool.mark_active(job_id)
    return {
        "container": container,
        "settings": container.settings,
        "job_id": job_id,
        "job_try": job_try,
        "redis": arq_pool,
    }


class TestIngestContentJob:
    @pytest.mark.asyncio
    async def test_creates_memory(self, container, arq_pool):
        result = await ingest_content_job(
            _ctx(container, arq_pool, "job-1"),
            user_id="u1",
            raw_text=TEXT,
            metadata={"url": "https://doc.rust-lang.org/book", "title": "The Book"},
        )
        assert result["success"] is True
        assert result["status"] == "created"
        assert result["job_id"] == "job-1"
        assert container.store.get_memory(result["memory_id"]).title == "The Book"

    @pytest.mark.asyncio
    async def test_recovered_job_with_pending_cancel_is_discarded(self, container, arq_pool, event_log):
        await container.cancellations.request("job-2")
        result = await ingest_content_job(_ctx(container, arq_pool, "job-2", job_try=2), user_id="u1", raw_text=TEXT)

        assert result["status"] == "cancelled"
        assert result["success"] is False
        assert event_log.stages("job-2") == ["recovered", "cancelled"]
        assert container.store.count_memories("u1") == 0

    @pytest.mark.asyncio
    async def test_recovered_job_runs_again(self, container, arq_pool, event_log):
        result = await ingest_content_job(_ctx(container, arq_pool, "job-3", job_try=2), user_id="u1", raw_text=TEXT)
        assert result["status"] == "created"
        assert event_log.stages("job-3")[0] == "recovered"

    @pytest.mark.asyncio
    async def test_transient_error_retries_until_last_try(self, container, arq_pool, monkeypatch):
        async def rate_limited(job, token=None):
            raise RateLimitedError("slow down")

        monkeypatch.setattr(container.worker, "process", rate_limited)

        with pytest.raises(Retry):
            await ingest_content_job(_ctx(container, arq_pool, "job-4"), user_id="u1", raw_text=TEXT)
        with pytest.raises(RateLimitedError):
            await ingest_content_job(_ctx(container, arq_pool, "job-4", job_try=2), user_id="u1", raw_text=TEXT)

    @pytest.mark.asyncio
    async def test_missing_user_is_rejected(self, container, arq_pool):
        with pytest.raises(ValidationError):
            await ingest_content_job(_ctx(container, arq_pool, "job-5"), user_id="", raw_text=TEXT)


def test_worker_settings_registers_ingest_function():
    assert ingest_content_job in WorkerSettings.functions
    assert WorkerSettings.max_tries >= 1
    assert WorkerSettings.on_startup is not None
