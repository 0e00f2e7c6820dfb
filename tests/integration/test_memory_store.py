"""
SQLAlchemy memory store against a temporary SQLite database.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import seed_memory
from mnemo.domain.memory import ExtractedMetadata, MemoryType
from mnemo.memory.canonical import canonicalize


class TestMemories:
    def test_create_and_read(self, store):
        record = seed_memory(store, "u1", "Notes on tokio runtimes", title="Tokio", url="https://tokio.rs/")
        loaded = store.get_memory(record.id)
        assert loaded.title == "Tokio"
        assert loaded.url == "https://tokio.rs/"
        assert loaded.canonical_text == "notes on tokio runtimes"
        assert loaded.memory_type == MemoryType.REFERENCE
        assert store.count_memories("u1") == 1
        assert store.list_memory_ids("u1") == [record.id]
        assert store.list_memory_ids("u2") == []

    def test_canonical_hash_conflict_returns_existing(self, store):
        first, created = store.create_memory(
            user_id="u1", content="Same text", summary="s", canonical=canonicalize("Same text")
        )
        second, created_again = store.create_memory(
            user_id="u1", content="SAME   text", summary="s2", canonical=canonicalize("SAME   text")
        )
        assert created and not created_again
        assert second.id == first.id
        assert store.count_memories("u1") == 1

    def test_same_content_for_other_user_is_separate(self, store):
        seed_memory(store, "u1", "shared text")
        seed_memory(store, "u2", "shared text")
        assert store.count_memories("u1") == 1
        assert store.count_memories("u2") == 1

    def test_find_by_hash_and_url(self, store):
        record = seed_memory(store, "u1", "page body", url="https://a.com/post?utm_source=x")
        assert store.find_by_canonical_hash("u1", record.canonical_hash).id == record.id
        assert store.find_by_canonical_hash("u2", record.canonical_hash) is None

        since = datetime.now(timezone.utc) - timedelta(minutes=5)
        found = store.find_recent_by_url("u1", "https://a.com/post", since=since)
        assert [m.id for m in found] == [record.id]
        later = datetime.now(timezone.utc) + timedelta(minutes=5)
        assert store.find_recent_by_url("u1", "https://a.com/post", since=later) == []

    def test_merge_duplicate_reinforces(self, store):
        record = seed_memory(store, "u1", "merge me", importance=0.5)
        store.update_memory_content(record.id, metadata={"topics": ["a"]})
        merged = store.merge_duplicate(record.id, {"topics": ["a", "b"], "sentiment": "positive"})

        assert merged.importance_score == pytest.approx(0.55)
        assert merged.confidence_score == pytest.approx(0.53)
        assert merged.access_count == 1
        assert merged.last_accessed is not None
        assert merged.metadata.topics == ["a", "b"]
        assert merged.metadata.sentiment == "positive"
        assert store.merge_duplicate("missing") is None

    def test_update_content_clamps_scores(self, store):
        record = seed_memory(store, "u1", "to be updated")
        updated = store.update_memory_content(record.id, summary="fresh", importance_score=1.7)
        assert updated.summary == "fresh"
        assert updated.importance_score == 1.0

    def test_top_memories_by_importance(self, store):
        low = seed_memory(store, "u1", "low", importance=0.2)
        high = seed_memory(store, "u1", "high", importance=0.9)
        assert [m.id for m in store.top_memories("u1", limit=2)] == [high.id, low.id]

    def test_delete(self, store):
        record = seed_memory(store, "u1", "delete me")
        assert store.delete_memory(record.id) is True
        assert store.get_memory(record.id) is None
        assert store.delete_memory(record.id) is False

    def test_metadata_round_trip(self, store):
        record, _ = store.create_memory(
            user_id="u1",
            content="typed content",
            summary="s",
            canonical=canonicalize("typed content"),
            metadata=ExtractedMetadata(topics=["x"], sentiment="neutral", importance=0.4),
            memory_type=MemoryType.FACT,
        )
        loaded = store.get_memory(record.id)
        assert loaded.metadata.topics == ["x"]
        assert loaded.metadata.importance == 0.4
        assert loaded.memory_type == MemoryType.FACT


class TestRelations:
    def test_add_and_read_relations(self, store):
        a = seed_memory(store, "u1", "alpha")
        b = seed_memory(store, "u1", "beta")
        c = seed_memory(store, "u1", "gamma")

        assert store.add_relations(a.id, [(b.id, 0.5), (c.id, 0.9), (a.id, 1.0)]) == 2
        assert store.related_memory_ids([a.id, b.id]) == {a.id: [c.id, b.id], b.id: []}

        # upsert updates the score instead of duplicating the pair
        assert store.add_relations(a.id, [(b.id, 0.95)]) == 1
        assert store.related_memory_ids([a.id])[a.id] == [b.id, c.id]


class TestQueryEvents:
    def test_record_and_list(self, store):
        a = seed_memory(store, "u1", "alpha")
        b = seed_memory(store, "u1", "beta")
        store.record_query_event(
            user_id="u1", query="first", embedding_hash="h1", results=[(a.id, 0.9), (b.id, 0.7)], policy="chat"
        )
        store.record_query_event(user_id="u1", query="empty", embedding_hash="h2", results=[], policy="planning")

        events = {e["query"]: e for e in store.list_query_events("u1")}
        assert events["first"]["result_count"] == 2
        assert [r["memory_id"] for r in events["first"]["results"]] == [a.id, b.id]
        assert [r["rank"] for r in events["first"]["results"]] == [1, 2]
        assert events["empty"]["result_count"] == 0
        assert events["empty"]["policy"] == "planning"
        assert store.list_query_events("u2") == []

    def test_prune(self, store):
        store.record_query_event(user_id="u1", query="old", embedding_hash="h")
        future = datetime.now(timezone.utc) + timedelta(minutes=1)
        assert store.prune_query_events(future) == 1
        assert store.list_query_events("u1") == []


class TestProfiles:
    def test_upsert_and_get(self, store):
        assert store.get_profile("u1") is None
        store.upsert_profile("u1", profile_text="Likes Rust", profile={"interests": ["rust"]}, memory_count=3)
        store.upsert_profile("u1", profile_text="Likes Rust and Go", profile={"interests": ["rust", "go"]}, memory_count=4)

        profile = store.get_profile("u1")
        assert profile["profile_text"] == "Likes Rust and Go"
        assert profile["profile"]["interests"] == ["rust", "go"]
        assert profile["memory_count"] == 4
        assert profile["updated_at"].tzinfo is not None
