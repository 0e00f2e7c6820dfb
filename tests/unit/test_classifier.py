from __future__ import annotations

import json

import pytest

from conftest import FakeGenerator
from mnemo.core.errors import MalformedOutputError
from mnemo.infrastructure.cache import InMemoryKeyValueCache
from mnemo.retrieval.classifier import (
    QueryClassifier,
    classification_cache_key,
    parse_ai_classification,
    rule_based_classification,
)


class TestRules:
    @pytest.mark.parametrize(
        "query, expected_class, expected_policy",
        [
            ("What did I save about kafka?", "recall", "chat"),
            ("remind me of the meeting notes", "recall", "chat"),
            ("how to configure nginx", "search", "search"),
            ("next steps for the launch", "plan", "planning"),
            ("who am i", "profile", "profile"),
            ("how many articles this month", "metric", "chat"),
        ],
    )
    def test_families(self, query, expected_class, expected_policy):
        result = rule_based_classification(query)
        assert result.query_class == expected_class
        assert result.suggested_policy == expected_policy
        assert result.confidence == 0.85

    def test_no_match_defaults_to_search(self):
        result = rule_based_classification("rust ownership")
        assert (result.query_class, result.confidence, result.suggested_policy) == ("search", 0.5, "search")

    def test_cache_key_is_case_insensitive(self):
        assert classification_cache_key(" Rust ") == classification_cache_key("rust")


class TestParse:
    def test_parses_ai_output(self):
        result = parse_ai_classification('{"class": "plan", "confidence": 1.7, "suggestedPolicy": "planning"}')
        assert (result.query_class, result.confidence, result.suggested_policy) == ("plan", 1.0, "planning")

    def test_unknown_class(self):
        with pytest.raises(MalformedOutputError):
            parse_ai_classification('{"class": "banana"}')


class TestQueryClassifier:
    @pytest.mark.asyncio
    async def test_confident_rule_skips_generator_and_caches(self):
        cache = InMemoryKeyValueCache()
        generator = FakeGenerator("unused")
        classifier = QueryClassifier(generator, cache)
        result = await classifier.classify("how to configure nginx")
        assert result.query_class == "search"
        assert generator.calls == []
        assert json.loads(await cache.get(classification_cache_key("how to configure nginx")))["query_class"] == "search"

    @pytest.mark.asyncio
    async def test_ambiguous_query_uses_generator_once(self):
        cache = InMemoryKeyValueCache()
        generator = FakeGenerator('{"class": "plan", "confidence": 0.9, "suggestedPolicy": "planning"}')
        classifier = QueryClassifier(generator, cache)
        first = await classifier.classify("rust ownership")
        second = await classifier.classify("Rust ownership")
        assert first.query_class == second.query_class == "plan"
        assert second.suggested_policy == "planning"
        assert len(generator.calls) == 1

    @pytest.mark.asyncio
    async def test_generator_failure_falls_back_without_caching(self):
        cache = InMemoryKeyValueCache()
        classifier = QueryClassifier(FakeGenerator("not json at all"), cache)
        result = await classifier.classify("rust ownership")
        assert result.query_class == "search"
        assert result.confidence == 0.5
        assert await cache.get(classification_cache_key("rust ownership")) is None

    @pytest.mark.asyncio
    async def test_without_generator_or_cache(self):
        result = await QueryClassifier().classify("rust ownership")
        assert result.suggested_policy == "search"
