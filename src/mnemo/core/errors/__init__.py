"""
Unified error module.
"""

from .errors import (
    ErrorSeverity,
    MnemoError,
    LLMError,
    GenerationTimeoutError,
    RateLimitedError,
    MalformedOutputError,
    CapabilityUnavailableError,
    JobCancelledError,
    StoreError,
    ValidationError,
    is_transient,
)

__all__ = [
    "ErrorSeverity",
    "MnemoError",
    "LLMError",
    "GenerationTimeoutError",
    "RateLimitedError",
    "MalformedOutputError",
    "CapabilityUnavailableError",
    "JobCancelledError",
    "StoreError",
    "ValidationError",
    "is_transient",
]
