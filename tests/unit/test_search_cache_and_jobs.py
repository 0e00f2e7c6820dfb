from __future__ import annotations

import json

import pytest

from mnemo.infrastructure.cache import InMemoryKeyValueCache
from mnemo.retrieval.cache import SEARCH_CACHE_PREFIX, SearchCache, search_cache_key
from mnemo.retrieval.jobs import JOB_PREFIX, SearchJobStore


class _BrokenCache:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ttl_seconds=None):
        raise ConnectionError("redis down")

    async def delete(self, key):
        raise ConnectionError("redis down")

    async def exists(self, key):
        raise ConnectionError("redis down")


class TestSearchCacheKey:
    def test_normalizes_query(self):
        assert search_cache_key("u1", "rust?", 10) == search_cache_key("u1", "  rust ", 10)
        assert search_cache_key("u1", "rust", 10).startswith(SEARCH_CACHE_PREFIX)

    def test_varies_with_parameters(self):
        base = search_cache_key("u1", "rust", 10)
        assert base != search_cache_key("u2", "rust", 10)
        assert base != search_cache_key("u1", "rust", 20)
        assert base != search_cache_key("u1", "rust", 10, "planning")
        assert base == search_cache_key("u1", "rust", 10, None)


class TestSearchCache:
    @pytest.mark.asyncio
    async def test_roundtrip(self):
        cache = SearchCache(InMemoryKeyValueCache())
        await cache.set("k", {"query": "rust", "results": []})
        assert await cache.get("k") == {"query": "rust", "results": []}

    @pytest.mark.asyncio
    async def test_errors_are_swallowed(self):
        cache = SearchCache(_BrokenCache())
        await cache.set("k", {"a": 1})
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_unreadable_entry(self):
        backing = InMemoryKeyValueCache()
        await backing.set("k", "{not json")
        assert await SearchCache(backing).get("k") is None


class TestSearchJobStore:
    @pytest.mark.asyncio
    async def test_lifecycle(self):
        backing = InMemoryKeyValueCache()
        jobs = SearchJobStore(backing, ttl_seconds=900)
        job = await jobs.create()
        assert job.status == "pending"
        assert job.expires_at == pytest.approx(job.created_at + 900)
        assert json.loads(await backing.get(JOB_PREFIX + job.id))["status"] == "pending"

        await jobs.update(job.id, status="processing")
        done = await jobs.update(job.id, status="completed", answer="A [1]", citations=[{"label": 1}], results=[])
        assert done.status == "completed"

        stored = await jobs.get(job.id)
        assert stored.answer == "A [1]"
        assert stored.citations == [{"label": 1}]
        assert stored.results == []
        assert "error" not in stored.to_dict()

    @pytest.mark.asyncio
    async def test_failed_job_keeps_error(self):
        jobs = SearchJobStore(InMemoryKeyValueCache())
        job = await jobs.create()
        await jobs.update(job.id, status="failed", error="no embedder")
        stored = await jobs.get(job.id)
        assert (stored.status, stored.error) == ("failed", "no embedder")

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self):
        jobs = SearchJobStore(InMemoryKeyValueCache())
        job = await jobs.create()
        with pytest.raises(ValueError):
            await jobs.update(job.id, status="exploded")

    @pytest.mark.asyncio
    async def test_missing_job(self):
        jobs = SearchJobStore(InMemoryKeyValueCache())
        assert await jobs.get("nope") is None
        assert await jobs.update("nope", status="completed") is None

    @pytest.mark.asyncio
    async def test_store_errors_are_logged_not_raised(self):
        jobs = SearchJobStore(_BrokenCache())
        job = await jobs.create()
        assert job.status == "pending"
        assert await jobs.get(job.id) is None
