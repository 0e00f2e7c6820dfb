from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable


@runtime_checkable
class Embedder(Protocol):
    """Text -> dense vector. Implementations raise LLMError subclasses on failure."""

    model_name: str

    async def embed(self, text: str) -> List[float]:
        ...


@runtime_checkable
class Generator(Protocol):
    """Prompt -> text completion."""

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        ...
