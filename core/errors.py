"""
Error taxonomy for provider orchestration.

Every failure that crosses a component boundary is one of these typed
errors. Each carries:
- a stable machine code (``code``)
- a human-readable message suitable for display
- a ``retryable`` flag consumed by the retry policy and batch scheduler

HTTP and transport failures from adapters are normalized through
``error_from_http_response`` / ``error_from_exception``.
"""

import logging
from enum import Enum
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Stable error codes."""
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    INVALID_API_KEY = "INVALID_API_KEY"
    PROVIDER_NOT_CONFIGURED = "PROVIDER_NOT_CONFIGURED"
    UNSUPPORTED_FUNCTION = "UNSUPPORTED_FUNCTION"
    INVALID_PARAMETER = "INVALID_PARAMETER"
    API_TIMEOUT = "API_TIMEOUT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    CONTENT_POLICY_VIOLATION = "CONTENT_POLICY_VIOLATION"
    NETWORK_ERROR = "NETWORK_ERROR"
    GENERATION_FAILED = "GENERATION_FAILED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    API_ERROR = "API_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


RETRYABLE_CODES = frozenset({
    ErrorCode.API_TIMEOUT,
    ErrorCode.RATE_LIMIT_EXCEEDED,
    ErrorCode.SERVICE_UNAVAILABLE,
    ErrorCode.NETWORK_ERROR,
})

# Errors that no amount of retrying can fix
PERMANENT_CODES = frozenset({
    ErrorCode.INVALID_CONFIGURATION,
    ErrorCode.INVALID_API_KEY,
    ErrorCode.PROVIDER_NOT_CONFIGURED,
    ErrorCode.UNSUPPORTED_FUNCTION,
    ErrorCode.CONTENT_POLICY_VIOLATION,
    ErrorCode.QUOTA_EXCEEDED,
})


class MultiMediaError(Exception):
    """Base class for all orchestration errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.API_ERROR,
        retryable: bool = False,
        details: Optional[dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.code = code
        self.retryable = retryable
        self.details = details or {}
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_permanent(self) -> bool:
        return self.code in PERMANENT_CODES

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code.value,
            "retryable": self.retryable,
            "details": self.details,
            "status_code": self.status_code,
        }


class ConfigurationError(MultiMediaError):
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.INVALID_CONFIGURATION, False, details)


class APIKeyError(MultiMediaError):
    def __init__(self, provider: str, message: Optional[str] = None):
        super().__init__(
            message or f"Invalid API key for provider: {provider}",
            ErrorCode.INVALID_API_KEY,
            False,
            {"provider": provider},
        )
        self.provider = provider


class ProviderNotConfiguredError(MultiMediaError):
    def __init__(self, provider: str, function: Optional[str] = None):
        if function:
            message = f"No configured provider '{provider}' for function '{function}'"
        else:
            message = f"Provider not configured: {provider}"
        super().__init__(
            message,
            ErrorCode.PROVIDER_NOT_CONFIGURED,
            False,
            {"provider": provider, "function": function},
        )
        self.provider = provider
        self.function = function


class UnsupportedFunctionError(MultiMediaError):
    def __init__(self, provider: str, function: str):
        super().__init__(
            f"Provider {provider} does not support function {function}",
            ErrorCode.UNSUPPORTED_FUNCTION,
            False,
            {"provider": provider, "function": function},
        )
        self.provider = provider
        self.function = function


class InvalidParameterError(MultiMediaError):
    def __init__(self, message: str, parameter: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(
            message,
            ErrorCode.INVALID_PARAMETER,
            False,
            {"parameter": parameter} if parameter else None,
            status_code,
        )


class APITimeoutError(MultiMediaError):
    def __init__(self, provider: str, timeout: Optional[float] = None):
        suffix = f" after {timeout}s" if timeout else ""
        super().__init__(
            f"Request to {provider} timed out{suffix}",
            ErrorCode.API_TIMEOUT,
            True,
            {"provider": provider, "timeout": timeout},
        )


class RateLimitError(MultiMediaError):
    def __init__(self, provider: str, retry_after: Optional[float] = None):
        message = f"Rate limit exceeded for {provider}"
        if retry_after:
            message += f", retry after {retry_after:g}s"
        super().__init__(
            message,
            ErrorCode.RATE_LIMIT_EXCEEDED,
            True,
            {"provider": provider, "retry_after": retry_after},
            429,
        )
        self.retry_after = retry_after


class QuotaExceededError(MultiMediaError):
    def __init__(self, provider: str):
        super().__init__(
            f"Quota exceeded for {provider}",
            ErrorCode.QUOTA_EXCEEDED,
            False,
            {"provider": provider},
        )


class ContentPolicyViolationError(MultiMediaError):
    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(
            message or "Content was rejected by the provider's content policy",
            ErrorCode.CONTENT_POLICY_VIOLATION,
            False,
            details,
            400,
        )


class GenerationFailedError(MultiMediaError):
    """The provider accepted the job but reported it as failed."""

    def __init__(self, reason: str, task_id: Optional[str] = None):
        super().__init__(
            reason,
            ErrorCode.GENERATION_FAILED,
            False,
            {"task_id": task_id} if task_id else None,
        )


class NetworkError(MultiMediaError):
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.NETWORK_ERROR, True, details)


class ServiceUnavailableError(MultiMediaError):
    def __init__(self, provider: str, status_code: Optional[int] = None, message: Optional[str] = None):
        super().__init__(
            message or f"Service unavailable: {provider}",
            ErrorCode.SERVICE_UNAVAILABLE,
            True,
            {"provider": provider},
            status_code,
        )


def _extract_message(body: Any) -> str:
    """Pull a readable message out of a vendor error body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        for key in ("message", "msg", "detail", "fail_reason"):
            if body.get(key):
                return str(body[key])
    if isinstance(body, str) and body:
        return body[:500]
    return ""


def error_from_http_response(
    status_code: int,
    body: Any = None,
    provider: str = "unknown",
    retry_after: Optional[float] = None,
) -> MultiMediaError:
    """Map a non-2xx HTTP response onto the error taxonomy."""
    message = _extract_message(body) or f"HTTP {status_code}"
    lowered = message.lower()

    if status_code == 400:
        if "content policy" in lowered or "content_policy" in lowered or "safety" in lowered:
            return ContentPolicyViolationError(message, {"provider": provider})
        return InvalidParameterError(message, status_code=400)
    if status_code == 401:
        return APIKeyError(provider, message)
    if status_code == 402 or "quota" in lowered or "insufficient" in lowered:
        return QuotaExceededError(provider)
    if status_code == 403:
        return ConfigurationError(f"Access denied: {message}", {"provider": provider})
    if status_code == 404:
        return MultiMediaError(
            f"Resource not found: {message}", ErrorCode.API_ERROR, False,
            {"provider": provider}, 404,
        )
    if status_code == 408:
        return APITimeoutError(provider)
    if status_code == 429:
        return RateLimitError(provider, retry_after)
    if status_code in (502, 503, 504):
        return ServiceUnavailableError(provider, status_code, message)
    if status_code >= 500:
        return MultiMediaError(
            f"Internal server error: {message}", ErrorCode.INTERNAL_ERROR, True,
            {"provider": provider}, status_code,
        )
    return MultiMediaError(message, ErrorCode.API_ERROR, False, {"provider": provider}, status_code)


def error_from_exception(error: BaseException, provider: str = "unknown") -> MultiMediaError:
    """Normalize an arbitrary exception into a MultiMediaError."""
    if isinstance(error, MultiMediaError):
        return error
    if isinstance(error, httpx.TimeoutException):
        return APITimeoutError(provider)
    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        try:
            body = response.json()
        except ValueError:
            body = response.text
        return error_from_http_response(response.status_code, body, provider)
    if isinstance(error, httpx.RequestError):
        return NetworkError(f"Network error: {error}", {"provider": provider})
    return MultiMediaError(
        str(error) or type(error).__name__,
        ErrorCode.INTERNAL_ERROR,
        False,
        {"provider": provider, "type": type(error).__name__},
    )


def is_retryable(error: BaseException) -> bool:
    """Whether an error should be retried by the bounded retry policy."""
    if isinstance(error, MultiMediaError):
        return error.retryable
    return isinstance(error, (httpx.TimeoutException, httpx.NetworkError))


def retry_delay(
    attempt: int,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    multiplier: float = 2.0,
) -> float:
    """Exponential backoff delay for the given zero-based attempt."""
    return min(initial_delay * (multiplier ** attempt), max_delay)


def format_error_message(error: BaseException) -> str:
    """Human-readable one-liner, e.g. ``[API_TIMEOUT] ... [Retryable]``."""
    if not isinstance(error, MultiMediaError):
        return str(error) or type(error).__name__

    message = f"[{error.code.value}] {error.message}"
    details = {k: v for k, v in error.details.items() if v is not None}
    if details:
        rendered = ", ".join(f"{k}={v}" for k, v in details.items())
        message += f" (Details: {rendered})"
    if error.retryable:
        message += " [Retryable]"
    return message
