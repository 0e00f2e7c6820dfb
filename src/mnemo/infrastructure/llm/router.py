"""
Model router: maps pipeline tasks (classification, summary, answer, ...) to
configured models.

A router file lets cheap models take classification and summaries while
answers go to a stronger one:

    models:
      default: {provider: openai, model: gpt-4o-mini}
      local: {provider: ollama, model: llama3, embedding_model: nomic-embed-text}
    routing:
      classification: local
      embedding: local
    fallback: default

Providers are built on first use and shared between tasks routed to the same model.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import yaml

from mnemo.config.settings import LLMConfig

from .providers.base import LLMProvider

logger = logging.getLogger(__name__)


class TaskType(str, Enum):
    DEFAULT = "default"
    CLASSIFICATION = "classification"
    SUMMARY = "summary"
    ANSWER = "answer"
    PROFILE = "profile"
    EMBEDDING = "embedding"


@dataclass
class ModelConfig:
    provider: str  # openai / ollama
    model: str
    embedding_model: Optional[str] = None
    api_key_env: str = "OPENAI_API_KEY"
    base_url: Optional[str] = None
    embedding_dim: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelConfig":
        return cls(
            provider=str(data.get("provider") or "openai"),
            model=str(data.get("model") or "gpt-4o-mini"),
            embedding_model=data.get("embedding_model"),
            api_key_env=data.get("api_key_env") or "OPENAI_API_KEY",
            base_url=data.get("base_url"),
            embedding_dim=data.get("embedding_dim"),
        )

    @property
    def usable(self) -> bool:
        return self.provider != "openai" or bool(os.getenv(self.api_key_env))


@dataclass
class RouterConfig:
    models: Dict[str, ModelConfig] = field(default_factory=dict)
    routing: Dict[str, str] = field(default_factory=dict)  # task -> model name
    fallback_model: str = "default"

    def model_name_for(self, task: str) -> str:
        name = self.routing.get(task, self.fallback_model)
        return name if name in self.models else self.fallback_model


def _openai(config: ModelConfig, timeout: float) -> LLMProvider:
    from .providers.openai_provider import DEFAULT_EMBEDDING_MODEL, OpenAIProvider

    return OpenAIProvider(
        api_key=os.getenv(config.api_key_env, ""),
        model_name=config.model,
        embedding_model=config.embedding_model or DEFAULT_EMBEDDING_MODEL,
        embedding_dim=config.embedding_dim,
        base_url=config.base_url,
        timeout=timeout,
    )


def _ollama(config: ModelConfig, timeout: float) -> LLMProvider:
    from .providers.ollama_provider import OllamaProvider

    return OllamaProvider(
        config.model,
        base_url=config.base_url,
        embedding_model=config.embedding_model,
        timeout=timeout,
    )


PROVIDER_BUILDERS: Dict[str, Callable[[ModelConfig, float], LLMProvider]] = {
    "openai": _openai,
    "ollama": _ollama,
}


class ModelRouter:
    def __init__(self, config: RouterConfig, *, timeout: float = 300.0):
        self.config = config
        self.timeout = timeout
        self._providers: Dict[str, LLMProvider] = {}

    @property
    def configured(self) -> bool:
        return self.config.fallback_model in self.config.models

    def provider_for(self, task: Union[TaskType, str] = TaskType.DEFAULT) -> LLMProvider:
        key = task.value if isinstance(task, TaskType) else str(task)
        name = self.config.model_name_for(key)
        if name not in self._providers:
            model = self.config.models.get(name)
            if model is None:
                raise ValueError(f"no model configured for task {key!r}")
            builder = PROVIDER_BUILDERS.get(model.provider)
            if builder is None:
                raise ValueError(f"unknown provider type: {model.provider}")
            self._providers[name] = builder(model, self.timeout)
            logger.info(f"model {name!r} ({model.provider}:{model.model}) serves task {key!r}")
        return self._providers[name]

    @classmethod
    def from_settings(cls, llm: LLMConfig) -> "ModelRouter":
        """Single-model router from LLMConfig; ``provider: none`` yields an empty router."""
        if llm.router_config:
            return cls.from_yaml(llm.router_config)
        if not llm.provider or llm.provider == "none":
            return cls(RouterConfig())
        model = ModelConfig(
            provider=llm.provider,
            model=llm.model,
            embedding_model=llm.embedding_model,
            api_key_env=llm.api_key_env,
            base_url=llm.base_url,
            embedding_dim=llm.embedding_dim,
        )
        if not model.usable:
            logger.warning(f"{llm.api_key_env} is not set; AI capabilities disabled")
            return cls(RouterConfig())
        return cls(RouterConfig(models={"default": model}))

    @classmethod
    def from_yaml(cls, path: str) -> "ModelRouter":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        models = {}
        for name, raw in (data.get("models") or {}).items():
            model = ModelConfig.from_dict(raw or {})
            if model.usable:
                models[name] = model
            else:
                logger.warning(f"router model {name!r} skipped: {model.api_key_env} is not set")

        routing = {str(task): str(name) for task, name in (data.get("routing") or {}).items()}
        return cls(RouterConfig(models=models, routing=routing, fallback_model=data.get("fallback") or "default"))
