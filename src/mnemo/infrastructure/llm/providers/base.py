"""
Provider contract for chat completion and embeddings.

Providers are synchronous and raise mnemo errors: timeouts become
GenerationTimeoutError, throttling and upstream 5xx become RateLimitedError,
everything else LLMError. The async ports in ``ai_services`` run them in a
thread.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class ProviderInfo:
    provider_name: str
    model_name: str
    embedding_model: Optional[str] = None
    api_base: Optional[str] = None


class LLMProvider(ABC):
    @abstractmethod
    def complete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Single-turn completion; returns the stripped response text."""

    @abstractmethod
    def embed(self, text: str, *, timeout: Optional[float] = None) -> List[float]:
        ...

    @property
    @abstractmethod
    def info(self) -> ProviderInfo:
        ...

    def __repr__(self) -> str:
        info = self.info
        return f"{type(self).__name__}({info.provider_name}:{info.model_name})"
