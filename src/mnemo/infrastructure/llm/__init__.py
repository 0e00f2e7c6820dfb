"""
LLM access layer: providers, model router and async AI ports.
"""

from .ai_services import (
    FALLBACK_EMBEDDING_MODEL,
    ProviderEmbedder,
    RouterGenerator,
    embedding_hash,
    fallback_embedding,
    with_timeout,
)
from .providers.base import LLMProvider, ProviderInfo
from .router import ModelConfig, ModelRouter, RouterConfig, TaskType

__all__ = [
    "FALLBACK_EMBEDDING_MODEL",
    "ProviderEmbedder",
    "RouterGenerator",
    "embedding_hash",
    "fallback_embedding",
    "with_timeout",
    "LLMProvider",
    "ProviderInfo",
    "ModelConfig",
    "ModelRouter",
    "RouterConfig",
    "TaskType",
]
