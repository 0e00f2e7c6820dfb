"""
Error types and transient-error detection.
"""

import pickle

from mnemo.core.errors import (
    CapabilityUnavailableError,
    ErrorSeverity,
    GenerationTimeoutError,
    LLMError,
    MalformedOutputError,
    MnemoError,
    RateLimitedError,
    ValidationError,
    is_transient,
)


class TestMnemoError:
    def test_error_str(self):
        err = MnemoError(message="Test error", code="TEST")
        assert str(err) == "[TEST] Test error"

    def test_error_with_context(self):
        err = MnemoError(message="Failed", context={"key": "value"})
        assert err.context == {"key": "value"}

    def test_codes_and_severity(self):
        assert LLMError("x").code == "LLM_ERROR"
        assert CapabilityUnavailableError("x").severity == ErrorSeverity.CRITICAL
        assert ValidationError("x").severity == ErrorSeverity.WARNING

    def test_survives_pickling(self):
        err = pickle.loads(pickle.dumps(ValidationError("bad input")))
        assert err.message == "bad input"


class TestTransient:
    def test_typed_errors(self):
        assert is_transient(GenerationTimeoutError("slow"))
        assert is_transient(RateLimitedError("429"))
        assert not is_transient(MalformedOutputError("junk"))
        assert not is_transient(LLMError("503 upstream"))

    def test_untyped_errors_by_message(self):
        assert is_transient(RuntimeError("HTTP 503 Service Unavailable"))
        assert is_transient(RuntimeError("Rate limit exceeded"))
        assert not is_transient(RuntimeError("invalid api key"))
