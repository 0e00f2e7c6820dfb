"""
HTTP surface with every backend replaced by an in-process fake.

No Redis, no model provider: the container is wired with the shared test
doubles and handed to create_app.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import FakeEmbedder, FakeGenerator, seed_memory
from mnemo.api.main import create_app
from mnemo.core.di import build_container
from mnemo.ingestion.queue import JobInfo

ANSWER = "You saved a guide on Rust ownership [1]."
PAGE = "Rust ownership and borrowing rules explained with examples."


@pytest.fixture
def container(settings, store, cache, index, event_log, arq_pool):
    return asyncio.run(
        build_container(
            settings,
            store=store,
            cache=cache,
            index=index,
            embedder=FakeEmbedder(),
            generator=FakeGenerator(ANSWER),
            event_log=event_log,
            queue_pool=arq_pool,
        )
    )


@pytest.fixture
def client(container):
    return TestClient(create_app(container))


@pytest.fixture
def rust_memory(container, store):
    record = seed_memory(store, "u1", PAGE, title="Rust ownership", url="https://doc.rust-lang.org/book/")
    asyncio.run(container.mesh.process_memory(record.id))
    return record


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestCapture:
    def test_capture_then_duplicate(self, client, arq_pool):
        body = {"user_id": "u1", "raw_text": PAGE, "metadata": {"url": "https://doc.rust-lang.org/book/"}}
        first = client.post("/api/memory/capture", json=body)
        second = client.post("/api/memory/capture", json=body)

        assert first.status_code == 200
        assert first.json()["is_duplicate"] is False
        assert second.json() == {"id": first.json()["id"], "is_duplicate": True}
        assert len(arq_pool.queue) == 1

    def test_capture_requires_text(self, client):
        response = client.post("/api/memory/capture", json={"user_id": "u1", "raw_text": ""})
        assert response.status_code == 422

    def test_queue_status_and_cancel(self, client, arq_pool):
        job_id = client.post("/api/memory/capture", json={"user_id": "u1", "raw_text": PAGE}).json()["id"]

        status = client.get("/api/memory/queue").json()
        assert status["counts"]["waiting"] == 1
        assert status["waiting"][0]["job_id"] == job_id

        cancelled = client.delete(f"/api/memory/jobs/{job_id}")
        assert cancelled.json() == {"job_id": job_id, "cancelled": True, "removed": True}
        assert client.get("/api/memory/queue").json()["counts"]["waiting"] == 0

    def test_clean_queue(self, client, arq_pool):
        arq_pool.add_result("done-1", success=True)
        arq_pool.add_result("failed-1", success=False)
        report = client.post("/api/memory/queue/clean").json()
        assert report["removed"] == 1
        assert report["before"]["completed"] == 1
        assert report["after"]["failed"] == 1
        assert report["remaining"] == 1

    def test_job_lookup(self, client, container, monkeypatch):
        async def get_job(job_id):
            if job_id == "known":
                return JobInfo(job_id="known", function="ingest_content_job", status="active", user_id="u1")
            return None

        monkeypatch.setattr(container.queue, "get_job", get_job)
        assert client.get("/api/memory/jobs/known").json()["status"] == "active"
        assert client.get("/api/memory/jobs/missing").status_code == 404


class TestSearch:
    def test_search(self, client, rust_memory):
        response = client.post("/api/search", json={"user_id": "u1", "query": "rust ownership", "policy": "chat"})
        assert response.status_code == 200
        data = response.json()
        assert data["results"][0]["memory_id"] == rust_memory.id
        assert data["answer"] == ANSWER
        assert data["citations"][0]["memory_id"] == rust_memory.id
        assert data["policy"] == "chat"

    def test_punctuation_only_query_is_rejected(self, client):
        response = client.post("/api/search", json={"user_id": "u1", "query": "???"})
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_missing_provider_is_503(self, client, container, monkeypatch, rust_memory):
        monkeypatch.setattr(container.search_engine, "embedder", None)
        response = client.post("/api/search", json={"user_id": "u1", "query": "rust ownership", "policy": "chat"})
        assert response.status_code == 503
        assert response.json()["error"] == "CAPABILITY_UNAVAILABLE"

    def test_async_job(self, client, rust_memory):
        created = client.post(
            "/api/search",
            json={"user_id": "u1", "query": "rust ownership", "policy": "chat", "async_job": True},
        )
        assert created.status_code == 200
        job_id = created.json()["job_id"]
        assert created.json()["status"] == "pending"

        # TestClient runs background tasks before returning the response
        job = client.get(f"/api/search/jobs/{job_id}").json()
        assert job["status"] == "completed"
        assert job["answer"] == ANSWER
        assert job["results"][0]["memory_id"] == rust_memory.id

    def test_unknown_search_job(self, client):
        assert client.get("/api/search/jobs/nope").status_code == 404
