"""
Unified error types, so the pipeline can degrade or abort by severity.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    WARNING = "warning"      # degrade and continue
    ERROR = "error"          # stage failed
    CRITICAL = "critical"    # abort the request / job


@dataclass
class MnemoError(Exception):
    message: str
    severity: ErrorSeverity = ErrorSeverity.ERROR
    code: str = "UNKNOWN"
    context: Optional[Dict[str, Any]] = None

    # Transient errors get one retry per job before the caller falls back.
    transient = False

    def __post_init__(self) -> None:
        # keeps args populated so the error survives pickling into arq results
        Exception.__init__(self, self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


@dataclass
class LLMError(MnemoError):
    code: str = "LLM_ERROR"


@dataclass
class GenerationTimeoutError(LLMError):
    code: str = "GENERATION_TIMEOUT"
    severity: ErrorSeverity = ErrorSeverity.WARNING

    transient = True


@dataclass
class RateLimitedError(LLMError):
    code: str = "RATE_LIMITED"
    severity: ErrorSeverity = ErrorSeverity.WARNING

    transient = True


@dataclass
class MalformedOutputError(LLMError):
    code: str = "MALFORMED_OUTPUT"
    severity: ErrorSeverity = ErrorSeverity.WARNING


@dataclass
class CapabilityUnavailableError(MnemoError):
    code: str = "CAPABILITY_UNAVAILABLE"
    severity: ErrorSeverity = ErrorSeverity.CRITICAL


@dataclass
class JobCancelledError(MnemoError):
    code: str = "JOB_CANCELLED"
    severity: ErrorSeverity = ErrorSeverity.WARNING


@dataclass
class StoreError(MnemoError):
    code: str = "STORE_ERROR"


@dataclass
class ValidationError(MnemoError):
    code: str = "VALIDATION_ERROR"
    severity: ErrorSeverity = ErrorSeverity.WARNING


_RETRYABLE_MARKERS = (
    "429",
    "500",
    "502",
    "503",
    "504",
    "overloaded",
    "unavailable",
    "rate limit",
    "quota",
    "timeout",
    "timed out",
)


def is_transient(exc: BaseException) -> bool:
    """True for errors worth a single retry (timeouts, rate limits, upstream 5xx)."""
    if isinstance(exc, MnemoError):
        return exc.transient
    text = str(exc).lower()
    return any(marker in text for marker in _RETRYABLE_MARKERS)
