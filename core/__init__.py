"""
Storyflow Core Components

Foundational infrastructure shared by the orchestration services:
- Error taxonomy and HTTP error normalization
- Circuit breaker for provider resilience
- Environment-driven configuration
"""

from .circuit_breaker import BreakerRegistry, CircuitBreaker, CircuitBreakerOpen, CircuitState
from .config import Config, get_config
from .errors import (
    APIKeyError,
    APITimeoutError,
    ConfigurationError,
    ContentPolicyViolationError,
    ErrorCode,
    MultiMediaError,
    NetworkError,
    ProviderNotConfiguredError,
    QuotaExceededError,
    RateLimitError,
    ServiceUnavailableError,
    UnsupportedFunctionError,
)

__all__ = [
    "BreakerRegistry",
    "CircuitBreaker",
    "CircuitBreakerOpen",
    "CircuitState",
    "Config",
    "get_config",
    "APIKeyError",
    "APITimeoutError",
    "ConfigurationError",
    "ContentPolicyViolationError",
    "ErrorCode",
    "MultiMediaError",
    "NetworkError",
    "ProviderNotConfiguredError",
    "QuotaExceededError",
    "RateLimitError",
    "ServiceUnavailableError",
    "UnsupportedFunctionError",
]
