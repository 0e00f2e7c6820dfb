"""
Model router and the async generator/embedder ports built on it.
"""

import time
from typing import List, Optional

import pytest

from mnemo.config.settings import LLMConfig
from mnemo.core.errors import GenerationTimeoutError, LLMError, RateLimitedError
from mnemo.infrastructure.llm import (
    LLMProvider,
    ModelRouter,
    ProviderEmbedder,
    ProviderInfo,
    RouterConfig,
    RouterGenerator,
    TaskType,
)
from mnemo.infrastructure.llm.providers import OllamaProvider

ROUTER_YAML = """
models:
  default: {provider: ollama, model: llama3}
  small: {provider: ollama, model: phi3, embedding_model: nomic-embed-text}
routing:
  classification: small
  embedding: small
  summary: missing
fallback: default
"""


class StubProvider(LLMProvider):
    def __init__(self, reply="ok", error: Optional[Exception] = None, delay: float = 0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls = []

    def complete(self, prompt, *, system=None, temperature=None, max_tokens=None, timeout=None):
        self.calls.append({"prompt": prompt, "system": system, "temperature": temperature})
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply

    def embed(self, text, *, timeout=None) -> List[float]:
        if self.error is not None:
            raise self.error
        return [1.0, 0.0] if text else []

    @property
    def info(self) -> ProviderInfo:
        return ProviderInfo(provider_name="stub", model_name="stub-1", embedding_model="stub-embed")


class StubRouter:
    def __init__(self, provider: StubProvider):
        self.provider = provider
        self.tasks = []

    def provider_for(self, task=TaskType.DEFAULT):
        self.tasks.append(task)
        return self.provider


class TestModelRouter:
    def test_none_provider_is_unconfigured(self):
        router = ModelRouter.from_settings(LLMConfig(provider="none"))
        assert router.configured is False

    def test_openai_without_key_is_unconfigured(self, monkeypatch):
        monkeypatch.delenv("MNEMO_TEST_MISSING_KEY", raising=False)
        router = ModelRouter.from_settings(LLMConfig(provider="openai", api_key_env="MNEMO_TEST_MISSING_KEY"))
        assert router.configured is False

    def test_single_model_from_settings(self):
        router = ModelRouter.from_settings(LLMConfig(provider="ollama", model="llama3"))
        assert router.configured
        provider = router.provider_for(TaskType.ANSWER)
        assert isinstance(provider, OllamaProvider)
        assert provider.info.model_name == "llama3"

    def test_routing_from_yaml(self, tmp_path):
        path = tmp_path / "router.yaml"
        path.write_text(ROUTER_YAML, encoding="utf-8")
        router = ModelRouter.from_yaml(str(path))

        assert router.provider_for(TaskType.CLASSIFICATION).info.model_name == "phi3"
        assert router.provider_for(TaskType.ANSWER).info.model_name == "llama3"
        # unknown target model falls back
        assert router.provider_for(TaskType.SUMMARY).info.model_name == "llama3"
        # providers are shared by model name
        assert router.provider_for(TaskType.EMBEDDING) is router.provider_for(TaskType.CLASSIFICATION)

    def test_missing_fallback_raises(self):
        router = ModelRouter(RouterConfig())
        with pytest.raises(ValueError):
            router.provider_for(TaskType.ANSWER)


class TestRouterGenerator:
    @pytest.mark.asyncio
    async def test_generate_passes_system_and_options(self):
        provider = StubProvider(reply="answer")
        router = StubRouter(provider)
        generator = RouterGenerator(router, TaskType.DEFAULT).for_task(TaskType.ANSWER, temperature=0.2)

        text = await generator.generate("question", system="be brief")

        assert text == "answer"
        assert router.tasks == [TaskType.ANSWER]
        assert provider.calls == [{"prompt": "question", "system": "be brief", "temperature": 0.2}]

    @pytest.mark.asyncio
    async def test_slow_provider_times_out(self):
        generator = RouterGenerator(StubRouter(StubProvider(delay=0.5)), TaskType.ANSWER)
        with pytest.raises(GenerationTimeoutError):
            await generator.generate("question", timeout=0.05)

    @pytest.mark.asyncio
    async def test_mnemo_errors_pass_through(self):
        generator = RouterGenerator(StubRouter(StubProvider(error=RateLimitedError("slow down"))))
        with pytest.raises(RateLimitedError):
            await generator.generate("question")

    @pytest.mark.asyncio
    async def test_foreign_errors_become_llm_errors(self):
        generator = RouterGenerator(StubRouter(StubProvider(error=KeyError("choices"))))
        with pytest.raises(LLMError):
            await generator.generate("question")


class TestProviderEmbedder:
    @pytest.mark.asyncio
    async def test_embed_uses_embedding_model_name(self):
        embedder = ProviderEmbedder(StubRouter(StubProvider()))
        assert embedder.model_name == "stub-embed"
        assert await embedder.embed("hello") == [1.0, 0.0]

    @pytest.mark.asyncio
    async def test_empty_vector_is_an_error(self):
        embedder = ProviderEmbedder(StubRouter(StubProvider()))
        with pytest.raises(LLMError):
            await embedder.embed("")
