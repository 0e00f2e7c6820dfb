"""
Async Generator / Embedder ports on top of the synchronous provider layer.

Provider calls run in a worker thread under ``asyncio.wait_for``; timeouts
surface as GenerationTimeoutError and rate-limit style failures as
RateLimitedError so callers can tell transient errors apart.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
import re
from typing import Awaitable, List, Optional, Sequence, TypeVar

from mnemo.application.ports.ai_port import Embedder, Generator
from mnemo.core.errors import GenerationTimeoutError, LLMError, MnemoError, RateLimitedError, is_transient

from .router import ModelRouter, TaskType

logger = logging.getLogger(__name__)

T = TypeVar("T")

FALLBACK_EMBEDDING_MODEL = "fallback-hash"


async def with_timeout(awaitable: Awaitable[T], seconds: Optional[float], what: str = "generation") -> T:
    if not seconds:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise GenerationTimeoutError(f"{what} timed out after {seconds:.0f}s") from exc


def _translate(exc: Exception, what: str) -> MnemoError:
    if isinstance(exc, MnemoError):
        return exc
    if is_transient(exc):
        return RateLimitedError(f"{what} failed transiently: {exc}")
    return LLMError(f"{what} failed: {exc}")


class RouterGenerator(Generator):
    """Generator bound to one task type of a ModelRouter."""

    def __init__(
        self,
        router: ModelRouter,
        task: TaskType = TaskType.DEFAULT,
        default_timeout: Optional[float] = 300.0,
        **invoke_kwargs,
    ):
        self.router = router
        self.task = task
        self.default_timeout = default_timeout
        self._invoke_kwargs = invoke_kwargs

    def for_task(self, task: TaskType, **invoke_kwargs) -> "RouterGenerator":
        return RouterGenerator(self.router, task, self.default_timeout, **invoke_kwargs)

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        provider = self.router.provider_for(self.task)
        limit = timeout if timeout is not None else self.default_timeout
        try:
            return await with_timeout(
                asyncio.to_thread(provider.complete, prompt, system=system, timeout=limit, **self._invoke_kwargs),
                limit,
                what=f"{self.task.value} generation",
            )
        except Exception as exc:
            raise _translate(exc, f"{self.task.value} generation") from exc


class ProviderEmbedder(Embedder):
    """Embedder backed by the provider routed for TaskType.EMBEDDING."""

    def __init__(self, router: ModelRouter, default_timeout: Optional[float] = 30.0):
        self.router = router
        self.default_timeout = default_timeout
        provider = router.provider_for(TaskType.EMBEDDING)
        self._provider = provider
        self.model_name = provider.info.embedding_model or provider.info.model_name

    async def embed(self, text: str) -> List[float]:
        try:
            vector = await with_timeout(
                asyncio.to_thread(self._provider.embed, text, timeout=self.default_timeout),
                self.default_timeout,
                what="embedding",
            )
        except Exception as exc:
            raise _translate(exc, "embedding") from exc
        if not vector:
            raise LLMError("embedding provider returned an empty vector")
        return vector


_TOKEN = re.compile(r"\w+", re.UNICODE)


def fallback_embedding(text: str, dim: int = 768) -> List[float]:
    """
    Deterministic feature-hashing embedding.

    Used when the embedding provider fails so search still ranks by token
    overlap instead of failing outright.
    """
    vector = [0.0] * dim
    tokens = _TOKEN.findall((text or "").lower())
    for token in tokens:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "big") % dim
        sign = 1.0 if digest[4] & 1 else -1.0
        vector[index] += sign
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return vector
    return [v / norm for v in vector]


def embedding_hash(model: str, values: Sequence[float], salt: str = "") -> str:
    """Stable fingerprint of a query embedding, stored with query events."""
    payload = json.dumps(
        {"model": model, "values": [round(float(v), 6) for v in list(values)[:64]], "salt": salt},
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
