"""
OpenAI-compatible provider: api.openai.com or any gateway speaking the same API
(``base_url``).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from mnemo.core.errors import GenerationTimeoutError, LLMError, MnemoError, RateLimitedError

from .base import LLMProvider, ProviderInfo

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


def translate_openai_error(exc: Exception, what: str) -> MnemoError:
    if isinstance(exc, openai.APITimeoutError):
        return GenerationTimeoutError(f"{what} timed out: {exc}")
    if isinstance(exc, (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError)):
        return RateLimitedError(f"{what} failed transiently: {exc}")
    return LLMError(f"{what} failed: {exc}")


class OpenAIProvider(LLMProvider):
    def __init__(
        self,
        api_key: str,
        model_name: str,
        *,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
        embedding_dim: Optional[int] = None,
        base_url: Optional[str] = None,
        timeout: float = 300.0,
    ):
        if not api_key:
            raise ValueError("API key must not be empty")
        self.model_name = model_name
        self.embedding_model = embedding_model
        self.embedding_dim = embedding_dim
        self.base_url = base_url
        self.timeout = timeout
        # retries are owned by the job queue
        self.client = OpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        logger.info(f"openai provider ready: {self}")

    def complete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> str:
        messages = [{"role": "user", "content": prompt}]
        if system:
            messages.insert(0, {"role": "system", "content": system})
        options: Dict[str, Any] = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["max_tokens"] = max_tokens

        try:
            response = self.client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                timeout=timeout or self.timeout,
                **options,
            )
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, "completion") from exc

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    def embed(self, text: str, *, timeout: Optional[float] = None) -> List[float]:
        params: Dict[str, Any] = {"model": self.embedding_model, "input": text}
        # only the v3 embedding models accept a target dimension
        if self.embedding_dim and self.embedding_model.startswith("text-embedding-3"):
            params["dimensions"] = self.embedding_dim
        try:
            response = self.client.embeddings.create(timeout=timeout or self.timeout, **params)
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, "embedding") from exc
        return list(response.data[0].embedding) if response.data else []

    @property
    def info(self) -> ProviderInfo:
        return ProviderInfo(
            provider_name="openai",
            model_name=self.model_name,
            embedding_model=self.embedding_model,
            api_base=self.base_url,
        )
