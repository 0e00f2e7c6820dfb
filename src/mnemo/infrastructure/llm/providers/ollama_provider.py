"""
Ollama provider for locally served models (https://ollama.ai).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from mnemo.core.errors import GenerationTimeoutError, LLMError, MnemoError, RateLimitedError

from .base import LLMProvider, ProviderInfo

logger = logging.getLogger(__name__)


def translate_request_error(exc: requests.RequestException, what: str) -> MnemoError:
    if isinstance(exc, requests.Timeout):
        return GenerationTimeoutError(f"ollama {what} timed out: {exc}")
    if isinstance(exc, requests.ConnectionError):
        return RateLimitedError(f"ollama unreachable during {what}: {exc}")
    status = exc.response.status_code if exc.response is not None else None
    if status is not None and (status == 429 or status >= 500):
        return RateLimitedError(f"ollama {what} returned {status}")
    return LLMError(f"ollama {what} failed: {exc}")


class OllamaProvider(LLMProvider):
    DEFAULT_MODEL = "llama3"
    DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"
    DEFAULT_BASE_URL = "http://localhost:11434"

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        *,
        base_url: Optional[str] = None,
        embedding_model: Optional[str] = None,
        timeout: float = 300.0,
    ):
        self.model_name = model_name
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.embedding_model = embedding_model or self.DEFAULT_EMBEDDING_MODEL
        self.timeout = timeout
        self.session = requests.Session()

    def _post(self, path: str, payload: Dict[str, Any], timeout: Optional[float], what: str) -> Dict[str, Any]:
        try:
            resp = self.session.post(f"{self.base_url}{path}", json=payload, timeout=timeout or self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as exc:
            raise translate_request_error(exc, what) from exc
        except ValueError as exc:
            raise LLMError(f"ollama {what} returned invalid JSON") from exc

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
            options["num_predict"] = max_tokens

        data = self._post(
            "/api/chat",
            {"model": self.model_name, "messages": messages, "stream": False, "options": options},
            timeout,
            "completion",
        )
        return ((data.get("message") or {}).get("content") or "").strip()

    def embed(self, text: str, *, timeout: Optional[float] = None) -> List[float]:
        data = self._post(
            "/api/embeddings",
            {"model": self.embedding_model, "prompt": text},
            timeout,
            "embedding",
        )
        return [float(v) for v in data.get("embedding") or []]

    @property
    def info(self) -> ProviderInfo:
        return ProviderInfo(
            provider_name="ollama",
            model_name=self.model_name,
            embedding_model=self.embedding_model,
            api_base=self.base_url,
        )
