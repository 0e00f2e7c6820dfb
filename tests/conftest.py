# tests/conftest.py
"""
Pytest configuration and shared fakes.
Adds src to sys.path so `import mnemo` works without installing the package.
"""

import sys
import time
from pathlib import Path
from types import SimpleNamespace

project_root = Path(__file__).parent.parent
src_root = project_root / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from arq.constants import in_progress_key_prefix, job_key_prefix, result_key_prefix  # noqa: E402
from arq.jobs import serialize_job  # noqa: E402

from mnemo.config.settings import Settings  # noqa: E402
from mnemo.infrastructure.cache import InMemoryKeyValueCache  # noqa: E402
from mnemo.infrastructure.event_log import InMemoryEventLog  # noqa: E402
from mnemo.infrastructure.llm.ai_services import fallback_embedding  # noqa: E402
from mnemo.infrastructure.stores.memory_store import SqlAlchemyMemoryStore  # noqa: E402
from mnemo.infrastructure.vector import InMemoryVectorIndex  # noqa: E402
from mnemo.memory.canonical import canonicalize  # noqa: E402

TEST_DIMENSION = 256


class FakeEmbedder:
    """Deterministic hashing embedder; ``fail=True`` makes every call raise."""

    model_name = "fake-embedding"

    def __init__(self, dimension: int = TEST_DIMENSION, fail: bool = False):
        self.dimension = dimension
        self.fail = fail
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding backend down")
        return fallback_embedding(text, self.dimension)


class FakeGenerator:
    """
    Scripted generator.

    ``responder`` is a string (always returned), a list (consumed in order;
    exception instances are raised) or a callable ``(prompt, system) -> str``.
    """

    def __init__(self, responder="ok"):
        self.responder = responder
        self.calls = []

    async def generate(self, prompt, *, system=None, timeout=None):
        self.calls.append({"prompt": prompt, "system": system, "timeout": timeout})
        if callable(self.responder):
            value = self.responder(prompt, system)
        elif isinstance(self.responder, list):
            value = self.responder.pop(0)
        else:
            value = self.responder
        if isinstance(value, BaseException):
            raise value
        return value


class FakeArqPool:
    """The slice of ArqRedis used by the ingestion queue and job leases."""

    def __init__(self):
        self.jobs = {}
        self.queue = {}
        self.keys = set()
        self.results = []
        self.raw = {}
        self.closed = False
        self.job_deserializer = None

    def _now_ms(self):
        return int(time.time() * 1000)

    async def enqueue_job(self, function, *args, _job_id=None, _queue_name=None, _defer_by=None, **kwargs):
        if _job_id in self.jobs:
            return None
        score = self._now_ms() - 1
        if _defer_by:
            score += int(_defer_by * 1000)
        self.jobs[_job_id] = SimpleNamespace(
            job_id=_job_id,
            function=function,
            args=args,
            kwargs=kwargs,
            job_try=None,
            enqueue_time=None,
            score=score,
        )
        self.queue[_job_id] = score
        self.keys.add(job_key_prefix + _job_id)
        return SimpleNamespace(job_id=_job_id)

    async def zrange(self, name, start, end, withscores=False):
        ids = [job_id.encode() for job_id in self.queue]
        if withscores:
            return [(raw, float(self.queue[raw.decode()])) for raw in ids]
        return ids

    async def get(self, key):
        if key in self.raw:
            return self.raw[key]
        if not key.startswith(job_key_prefix):
            return None
        job = self.jobs.get(key[len(job_key_prefix):])
        if job is None:
            return None
        return serialize_job(job.function, job.args, job.kwargs, job.job_try, self._now_ms())

    async def exists(self, *keys):
        return sum(1 for k in keys if k in self.keys)

    async def zrem(self, name, *members):
        removed = 0
        for member in members:
            if self.queue.pop(member, None) is not None:
                removed += 1
        return removed

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.keys:
                self.keys.discard(key)
                removed += 1
            if key.startswith(job_key_prefix):
                self.jobs.pop(key[len(job_key_prefix):], None)
            if key.startswith(result_key_prefix):
                job_id = key[len(result_key_prefix):]
                self.results = [r for r in self.results if r.job_id != job_id]
        return removed

    async def all_job_results(self):
        return list(self.results)

    async def pexpire(self, key, ms):
        return key in self.keys

    async def close(self):
        self.closed = True

    # helpers for arranging queue state

    def vanish(self, job_id):
        """Drop the job key but leave the queue entry, as when a job finishes mid-scan."""
        self.jobs.pop(job_id, None)
        self.keys.discard(job_key_prefix + job_id)

    def corrupt(self, job_id):
        self.raw[job_key_prefix + job_id] = b"not a pickled job"

    def mark_active(self, job_id):
        self.keys.add(in_progress_key_prefix + job_id)

    def defer(self, job_id, seconds=3600):
        self.queue[job_id] = self._now_ms() + int(seconds * 1000)
        self.jobs[job_id].score = self.queue[job_id]

    def add_result(self, job_id, success=True, function="ingest_content_job", user_id="u1"):
        self.results.append(
            SimpleNamespace(
                job_id=job_id,
                function=function,
                success=success,
                kwargs={"user_id": user_id},
                enqueue_time=None,
                start_time=None,
                finish_time=None,
                job_try=1,
                result=None if success else "boom",
            )
        )
        self.keys.add(result_key_prefix + job_id)


def summary_and_metadata(summary="A short summary of the page.", metadata=None):
    """Responder answering metadata prompts with JSON and everything else with ``summary``."""
    import json

    payload = json.dumps(
        metadata
        or {
            "topics": ["rust", "memory"],
            "categories": ["web_page"],
            "key_points": ["ownership"],
            "sentiment": "technical",
            "importance": 7,
            "usefulness": 6,
            "searchable_terms": ["rust", "ownership"],
            "memory_type": "REFERENCE",
        }
    )

    def respond(prompt, system):
        if system and "JSON" in system:
            return payload
        return summary

    return respond


def seed_memory(store, user_id, text, *, title=None, url=None, summary=None, memory_type=None, importance=0.5):
    from mnemo.domain.memory import MemoryType

    record, _ = store.create_memory(
        user_id=user_id,
        content=text,
        summary=summary if summary is not None else text[:200],
        canonical=canonicalize(text, url),
        url=url,
        title=title,
        memory_type=memory_type or MemoryType.REFERENCE,
        importance_score=importance,
    )
    return record


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'mnemo_test.db'}"


@pytest.fixture
def store(db_url):
    s = SqlAlchemyMemoryStore(db_url, auto_create_schema=True)
    yield s
    s.close()


@pytest.fixture
def cache():
    return InMemoryKeyValueCache()


@pytest.fixture
def index():
    return InMemoryVectorIndex()


@pytest.fixture
def event_log():
    return InMemoryEventLog()


@pytest.fixture
def arq_pool():
    return FakeArqPool()


@pytest.fixture
def settings(db_url):
    s = Settings()
    s.database.url = db_url
    s.cache.backend = "memory"
    s.vector.backend = "memory"
    s.vector.dimension = TEST_DIMENSION
    s.llm.provider = "none"
    return s


@pytest_asyncio.fixture
async def container(settings, store, cache, index, event_log, arq_pool):
    from mnemo.core.di import build_container

    c = await build_container(
        settings,
        store=store,
        cache=cache,
        index=index,
        embedder=FakeEmbedder(),
        generator=FakeGenerator(summary_and_metadata()),
        event_log=event_log,
        queue_pool=arq_pool,
    )
    yield c
    await c.background.drain()
