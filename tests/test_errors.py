"""
Error taxonomy tests.

Covers:
1. HTTP status -> typed error mapping
2. Transport exception normalization
3. Retry classification and backoff
4. Display formatting

Run with:
    python -m pytest tests/test_errors.py -v
"""

import os
import sys

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import (
    APIKeyError,
    APITimeoutError,
    ConfigurationError,
    ContentPolicyViolationError,
    ErrorCode,
    GenerationFailedError,
    InvalidParameterError,
    MultiMediaError,
    NetworkError,
    ProviderNotConfiguredError,
    QuotaExceededError,
    RateLimitError,
    ServiceUnavailableError,
    UnsupportedFunctionError,
    error_from_exception,
    error_from_http_response,
    format_error_message,
    is_retryable,
    retry_delay,
)


class TestHttpMapping:
    """Non-2xx responses map onto the taxonomy."""

    def test_401_is_api_key_error(self):
        error = error_from_http_response(401, {"error": {"message": "bad key"}}, "shenma")
        assert isinstance(error, APIKeyError)
        assert error.message == "bad key"
        assert not error.retryable

    def test_429_is_retryable_rate_limit(self):
        error = error_from_http_response(429, {}, "shenma", retry_after=5)
        assert isinstance(error, RateLimitError)
        assert error.retryable
        assert error.status_code == 429
        assert error.retry_after == 5

    def test_400_content_policy(self):
        error = error_from_http_response(400, {"error": {"message": "Rejected by content policy"}}, "openai")
        assert isinstance(error, ContentPolicyViolationError)
        assert not error.retryable
        assert error.is_permanent

    def test_400_other_is_invalid_parameter(self):
        error = error_from_http_response(400, {"message": "size must be 1024x1024"}, "openai")
        assert isinstance(error, InvalidParameterError)
        assert error.code == ErrorCode.INVALID_PARAMETER

    def test_402_and_quota_messages(self):
        assert isinstance(error_from_http_response(402, {}, "zhipu"), QuotaExceededError)
        assert isinstance(
            error_from_http_response(403, {"error": {"message": "quota exhausted"}}, "zhipu"),
            QuotaExceededError,
        )

    def test_403_is_configuration_error(self):
        assert isinstance(error_from_http_response(403, "forbidden", "gemini"), ConfigurationError)

    def test_404_is_not_retryable(self):
        error = error_from_http_response(404, {}, "dayuyu")
        assert error.code == ErrorCode.API_ERROR
        assert error.status_code == 404
        assert not error.retryable

    def test_gateway_errors_are_service_unavailable(self):
        for status in (502, 503, 504):
            error = error_from_http_response(status, "", "shenma")
            assert isinstance(error, ServiceUnavailableError)
            assert error.retryable

    def test_500_is_retryable_internal_error(self):
        error = error_from_http_response(500, {"detail": "boom"}, "shenma")
        assert error.code == ErrorCode.INTERNAL_ERROR
        assert error.retryable
        assert "boom" in error.message


class TestExceptionNormalization:
    """Arbitrary exceptions become MultiMediaErrors."""

    def test_timeout(self):
        error = error_from_exception(httpx.ReadTimeout("slow"), "zhipu")
        assert isinstance(error, APITimeoutError)
        assert error.retryable

    def test_connect_error(self):
        error = error_from_exception(httpx.ConnectError("refused"), "zhipu")
        assert isinstance(error, NetworkError)
        assert error.retryable

    def test_passthrough(self):
        original = QuotaExceededError("openai")
        assert error_from_exception(original) is original

    def test_unknown_exception(self):
        error = error_from_exception(KeyError("x"), "custom")
        assert error.code == ErrorCode.INTERNAL_ERROR
        assert not error.retryable
        assert error.details["type"] == "KeyError"


class TestRetryClassification:
    """Which errors the bounded retry policy retries."""

    def test_retryable_errors(self):
        assert is_retryable(APITimeoutError("shenma", 30))
        assert is_retryable(RateLimitError("shenma"))
        assert is_retryable(NetworkError("reset"))
        assert is_retryable(ServiceUnavailableError("shenma", 503))

    def test_configuration_errors_are_never_retried(self):
        assert not is_retryable(ConfigurationError("bad"))
        assert not is_retryable(ProviderNotConfiguredError("demo", "textToImage"))
        assert not is_retryable(UnsupportedFunctionError("dayuyu", "textToImage"))

    def test_content_and_quota_errors_are_not_retried(self):
        assert not is_retryable(ContentPolicyViolationError())
        assert not is_retryable(QuotaExceededError("openai"))

    def test_plain_exceptions(self):
        assert not is_retryable(ValueError("nope"))
        assert is_retryable(httpx.ConnectTimeout("t"))

    def test_generation_failure_is_not_permanent(self):
        error = GenerationFailedError("render crashed", "task-1")
        assert not error.retryable
        assert not error.is_permanent
        assert error.details == {"task_id": "task-1"}

    def test_backoff(self):
        assert retry_delay(0) == 1.0
        assert retry_delay(1) == 2.0
        assert retry_delay(2) == 4.0
        assert retry_delay(10) == 30.0
        assert retry_delay(1, initial_delay=0.5, multiplier=3) == 1.5


class TestFormatting:
    """Human-readable error lines."""

    def test_format_retryable(self):
        message = format_error_message(RateLimitError("shenma"))
        assert message.startswith("[RATE_LIMIT_EXCEEDED] Rate limit exceeded for shenma")
        assert "provider=shenma" in message
        assert message.endswith("[Retryable]")

    def test_format_drops_empty_details(self):
        message = format_error_message(ProviderNotConfiguredError("demo"))
        assert message == "[PROVIDER_NOT_CONFIGURED] Provider not configured: demo (Details: provider=demo)"

    def test_format_plain_exception(self):
        assert format_error_message(ValueError("broken")) == "broken"

    def test_to_dict(self):
        data = MultiMediaError("oops", ErrorCode.API_ERROR, details={"a": 1}, status_code=418).to_dict()
        assert data == {
            "name": "MultiMediaError",
            "message": "oops",
            "code": "API_ERROR",
            "retryable": False,
            "details": {"a": 1},
            "status_code": 418,
        }
