from .base import LLMProvider, ProviderInfo
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "ProviderInfo", "OllamaProvider", "OpenAIProvider"]
