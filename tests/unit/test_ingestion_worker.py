"""
Ingestion worker: create, merge, cancel, summary retries and re-summarization.
"""

from __future__ import annotations

import pytest

from conftest import FakeEmbedder, FakeGenerator, seed_memory, summary_and_metadata
from mnemo.config.settings import IngestionConfig
from mnemo.core.errors import GenerationTimeoutError, ValidationError
from mnemo.domain.memory import CaptureMetadata
from mnemo.infrastructure.cache import InMemoryKeyValueCache
from mnemo.ingestion.cancellation import CancellationRegistry
from mnemo.ingestion.worker import BackgroundTasks, IngestionJob, IngestionStatus, IngestionWorker
from mnemo.memory.extractor import ContentExtractor
from mnemo.memory.mesh import MemoryMesh
from mnemo.memory.profile import ProfileService

ARTICLE = (
    "Rust ownership rules: each value has a single owner, borrowing lets code use a value "
    "without taking ownership, and the borrow checker enforces these rules at compile time."
)


class _Sleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _job(job_id="job-1", user_id="u1", text=ARTICLE, **metadata) -> IngestionJob:
    return IngestionJob(job_id=job_id, user_id=user_id, raw_text=text, metadata=CaptureMetadata.from_dict(metadata))


@pytest.fixture
def sleeper():
    return _Sleep()


@pytest.fixture
def make_worker(store, index, event_log, sleeper):
    def _make(responder=None, *, extractor=True, config=None):
        generator = FakeGenerator(responder or summary_and_metadata())
        mesh = MemoryMesh(store, FakeEmbedder(), index, dimension=256)
        worker = IngestionWorker(
            store,
            ContentExtractor(generator) if extractor else None,
            mesh,
            ProfileService(store),
            config=config or IngestionConfig(),
            event_log=event_log,
            background=BackgroundTasks(),
            sleep=sleeper,
        )
        worker.generator = generator
        return worker

    return _make


class TestIngestionJob:
    def test_from_kwargs(self):
        job = IngestionJob.from_kwargs("j1", {"user_id": "u1", "raw_text": "x", "metadata": {"url": "unknown"}}, 2)
        assert (job.user_id, job.attempt, job.metadata.url) == ("u1", 2, None)

    def test_requires_user(self):
        with pytest.raises(ValidationError):
            IngestionJob.from_kwargs("j1", {"raw_text": "x"})


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_memory_and_indexes_in_background(self, make_worker, store, index, event_log):
        worker = make_worker()
        outcome = await worker.process(_job(url="https://blog.example.com/rust?utm_source=x", title="Rust ownership"))
        await worker.background.drain()

        assert outcome.status == IngestionStatus.CREATED
        assert outcome.success and not outcome.is_duplicate
        memory = store.get_memory(outcome.memory_id)
        assert memory.summary == "A short summary of the page."
        assert memory.title == "Rust ownership"
        assert memory.metadata.topics == ["rust", "memory"]
        assert memory.metadata.sentiment == "technical"
        assert 0 < memory.importance_score <= 1
        assert len(index) == 1
        assert event_log.stages("job-1") == [
            "received",
            "cancellation_check",
            "duplicate_check",
            "extracting",
            "cancellation_check",
            "persisted",
            "background",
            "completed",
        ]

    @pytest.mark.asyncio
    async def test_without_extractor_uses_preview_and_heuristics(self, make_worker, store):
        worker = make_worker(extractor=False)
        outcome = await worker.process(_job())
        memory = store.get_memory(outcome.memory_id)
        assert memory.summary == ARTICLE[:400]
        assert "ownership" in memory.metadata.searchable_terms

    @pytest.mark.asyncio
    async def test_empty_content_is_rejected(self, make_worker, event_log):
        worker = make_worker()
        with pytest.raises(ValidationError):
            await worker.process(_job(text="<script>track()</script>"))
        assert event_log.stages("job-1")[-1] == "failed"

    @pytest.mark.asyncio
    async def test_outcome_dict_truncates_summary(self, make_worker):
        worker = make_worker(summary_and_metadata(summary="s" * 150))
        data = (await worker.process(_job())).to_dict()
        assert data["summary"] == "s" * 100 + "..."
        assert data["status"] == "created"


class TestDuplicates:
    @pytest.mark.asyncio
    async def test_same_content_merges(self, make_worker, store, event_log):
        worker = make_worker()
        first = await worker.process(_job("job-1"))
        second = await worker.process(_job("job-2", text=ARTICLE.upper(), tags=["lang"]))

        assert second.status == IngestionStatus.MERGED
        assert second.is_duplicate
        assert second.memory_id == first.memory_id
        merged = store.get_memory(first.memory_id)
        assert merged.access_count == 1
        assert "lang" in merged.metadata.topics
        assert "merged" in event_log.stages("job-2")
        assert store.count_memories("u1") == 1

    @pytest.mark.asyncio
    async def test_concurrent_insert_of_same_hash_merges(self, make_worker, store, event_log):
        answer = summary_and_metadata()
        winner = {}

        def respond(prompt, system):
            # another worker persists the same content while this one is extracting
            if not winner:
                winner["record"] = seed_memory(store, "u1", ARTICLE)
            return answer(prompt, system)

        worker = make_worker(respond)
        outcome = await worker.process(_job("job-1"))

        assert outcome.status == IngestionStatus.MERGED
        assert outcome.is_duplicate
        assert outcome.memory_id == winner["record"].id
        assert store.count_memories("u1") == 1
        assert store.get_memory(outcome.memory_id).access_count == 1
        merged_events = [e for e in event_log.stream("job-1") if e["stage"] == "merged"]
        assert merged_events and merged_events[0]["payload"]["reason"] == "unique_conflict"
        assert "persisted" not in event_log.stages("job-1")

    @pytest.mark.asyncio
    async def test_other_user_is_not_a_duplicate(self, make_worker, store):
        worker = make_worker()
        await worker.process(_job("job-1", user_id="u1"))
        outcome = await worker.process(_job("job-2", user_id="u2"))
        assert outcome.status == IngestionStatus.CREATED

    @pytest.mark.asyncio
    async def test_same_url_similar_text_merges(self, make_worker):
        worker = make_worker()
        url = "https://docs.example.com/rust"
        first = await worker.process(_job("job-1", url=url))
        second = await worker.process(_job("job-2", text=ARTICLE + " Extra", url=url + "?ref=feed"))
        assert second.status == IngestionStatus.MERGED
        assert second.memory_id == first.memory_id


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_processing(self, make_worker, store, event_log):
        registry = CancellationRegistry(InMemoryKeyValueCache())
        await registry.request("job-1")
        worker = make_worker()
        outcome = await worker.process(_job(), registry.token("job-1"))

        assert outcome.status == IngestionStatus.CANCELLED
        assert not outcome.success
        assert store.count_memories("u1") == 0
        assert event_log.stages("job-1")[-1] == "cancelled"
        assert not await registry.is_requested("job-1")

    @pytest.mark.asyncio
    async def test_cancel_during_extraction_stops_before_persist(self, make_worker, store, event_log):
        registry = CancellationRegistry(InMemoryKeyValueCache())
        token = registry.token("job-1")
        respond = summary_and_metadata()

        def cancelling(prompt, system):
            token.cancel()
            return respond(prompt, system)

        outcome = await make_worker(cancelling).process(_job(), token)
        assert outcome.status == IngestionStatus.CANCELLED
        assert store.count_memories("u1") == 0
        cancelled = [e for e in event_log.stream("job-1") if e["stage"] == "cancelled"]
        assert cancelled[0]["payload"]["checkpoint"] == "before_persist"


class TestSummaryRetry:
    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_once(self, make_worker, store, sleeper):
        attempts = []
        respond = summary_and_metadata(summary="Recovered summary.")

        def flaky(prompt, system):
            if system and "JSON" in system:
                return respond(prompt, system)
            attempts.append(1)
            if len(attempts) == 1:
                raise GenerationTimeoutError("summary timed out")
            return respond(prompt, system)

        outcome = await make_worker(flaky).process(_job())
        assert store.get_memory(outcome.memory_id).summary == "Recovered summary."
        assert sleeper.delays == [2.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted_fall_back_to_preview(self, make_worker, store, sleeper):
        respond = summary_and_metadata()

        def always_timeout(prompt, system):
            if system and "JSON" in system:
                return respond(prompt, system)
            raise GenerationTimeoutError("summary timed out")

        config = IngestionConfig(summary_retries=2, retry_base_delay=1.0, retry_max_delay=1.5)
        outcome = await make_worker(always_timeout, config=config).process(_job())
        assert store.get_memory(outcome.memory_id).summary == ARTICLE[:400]
        assert sleeper.delays == [1.0, 1.5]

    @pytest.mark.asyncio
    async def test_malformed_summary_uses_preview_without_retry(self, make_worker, store, sleeper):
        outcome = await make_worker(summary_and_metadata(summary="**  **")).process(_job())
        assert store.get_memory(outcome.memory_id).summary == ARTICLE[:400]
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_permanent_failure_fails_the_job(self, make_worker, event_log):
        respond = summary_and_metadata()

        def broken(prompt, system):
            if system and "JSON" in system:
                return respond(prompt, system)
            raise ValueError("invalid api key")

        with pytest.raises(ValueError):
            await make_worker(broken).process(_job())
        assert event_log.stages("job-1")[-1] == "failed"

    @pytest.mark.asyncio
    async def test_unparseable_metadata_uses_heuristics(self, make_worker, store):
        def respond(prompt, system):
            if system and "JSON" in system:
                return "I cannot produce JSON today"
            return "Fine summary."

        outcome = await make_worker(respond).process(_job())
        memory = store.get_memory(outcome.memory_id)
        assert memory.summary == "Fine summary."
        assert memory.metadata.sentiment == "neutral"
        assert memory.metadata.topics


class TestResummarize:
    @pytest.mark.asyncio
    async def test_updates_existing_memory(self, make_worker, store):
        existing = seed_memory(store, "u1", "old text about rust", summary="old summary")
        worker = make_worker(summary_and_metadata(summary="New summary."))
        outcome = await worker.process(_job(existing_memory_id=existing.id))

        assert outcome.status == IngestionStatus.UPDATED
        assert outcome.memory_id == existing.id
        assert store.get_memory(existing.id).summary == "New summary."
        assert store.count_memories("u1") == 1

    @pytest.mark.asyncio
    async def test_foreign_memory_id_is_processed_as_new(self, make_worker, store):
        foreign = seed_memory(store, "someone-else", "their text", summary="theirs")
        outcome = await make_worker().process(_job(existing_memory_id=foreign.id))
        assert outcome.status == IngestionStatus.CREATED
        assert outcome.memory_id != foreign.id
        assert store.get_memory(foreign.id).summary == "theirs"


class TestBackground:
    @pytest.mark.asyncio
    async def test_background_failures_do_not_fail_the_job(self, make_worker, store):
        worker = make_worker()

        async def explode(memory_id):
            raise RuntimeError("vector store offline")

        worker.mesh.process_memory = explode
        outcome = await worker.process(_job())
        await worker.background.drain()
        assert outcome.status == IngestionStatus.CREATED
        assert len(worker.background) == 0

    @pytest.mark.asyncio
    async def test_important_memory_refreshes_stale_profile(self, make_worker, store):
        worker = make_worker(summary_and_metadata(metadata={"importance": 10, "memory_type": "FACT", "topics": ["rust"]}))
        outcome = await worker.process(_job())
        await worker.background.drain()
        assert store.get_memory(outcome.memory_id).importance_score >= 0.7
        profile = store.get_profile("u1")
        assert profile is not None
        assert "rust" in profile["profile"]["interests"]
