"""
Circuit Breaker for provider calls.

Stops hammering a provider that keeps failing with transient errors.

States:
- CLOSED: calls pass through
- OPEN: calls are rejected with ``CircuitBreakerOpen`` until the recovery
  window has elapsed
- HALF_OPEN: a limited number of trial calls decide whether to close again

Only errors that say something about provider health count as failures.
Permanent errors (bad key, unsupported function, content policy, ...) are
listed in ``excluded_exceptions`` by the caller or detected through
``counts_as_failure``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""
    failure_threshold: int = 5  # Consecutive failures before opening
    recovery_timeout: float = 30.0  # Seconds spent OPEN before a trial call
    half_open_max_calls: int = 3
    success_threshold: int = 2  # Trial successes needed to close
    timeout: Optional[float] = None  # Per-call timeout, None = adapter decides
    excluded_exceptions: tuple = ()


@dataclass
class CircuitBreakerStats:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    half_open_calls: int = 0
    last_failure_time: float = 0
    state_changed_at: float = 0
    total_calls: int = 0
    total_failures: int = 0
    total_successes: int = 0


class CircuitBreakerOpen(Exception):
    """Raised when the breaker rejects a call."""

    def __init__(self, service_name: str, retry_after: float):
        self.service_name = service_name
        self.retry_after = max(retry_after, 0.0)
        super().__init__(
            f"Circuit breaker is OPEN for {service_name}. "
            f"Retry after {self.retry_after:.1f} seconds."
        )


class CircuitBreaker:
    """
    Per-provider circuit breaker.

    Usage:
        breaker = CircuitBreaker("shenma")
        result = await breaker.call(adapter.generate_video, request)
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[CircuitBreakerConfig] = None,
        counts_as_failure: Optional[Callable[[BaseException], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._counts_as_failure = counts_as_failure
        self._clock = clock
        self.stats = CircuitBreakerStats(state_changed_at=clock())
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self.stats.state

    @property
    def is_open(self) -> bool:
        return self.stats.state == CircuitState.OPEN

    def _transition_to(self, new_state: CircuitState):
        old_state = self.stats.state
        self.stats.state = new_state
        self.stats.state_changed_at = self._clock()

        if new_state == CircuitState.HALF_OPEN:
            self.stats.half_open_calls = 0
            self.stats.success_count = 0
        elif new_state == CircuitState.CLOSED:
            self.stats.failure_count = 0

        logger.info(
            f"Circuit breaker [{self.service_name}]: {old_state.value} -> {new_state.value}"
        )

    async def _before_call(self):
        async with self._lock:
            self.stats.total_calls += 1

            if self.stats.state == CircuitState.OPEN:
                elapsed = self._clock() - self.stats.state_changed_at
                if elapsed >= self.config.recovery_timeout:
                    self._transition_to(CircuitState.HALF_OPEN)
                else:
                    raise CircuitBreakerOpen(
                        self.service_name, self.config.recovery_timeout - elapsed
                    )

            if self.stats.state == CircuitState.HALF_OPEN:
                if self.stats.half_open_calls >= self.config.half_open_max_calls:
                    raise CircuitBreakerOpen(self.service_name, self.config.recovery_timeout)
                self.stats.half_open_calls += 1

    async def _on_success(self):
        async with self._lock:
            self.stats.success_count += 1
            self.stats.total_successes += 1
            self.stats.failure_count = 0

            if self.stats.state == CircuitState.HALF_OPEN:
                if self.stats.success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)

    def _is_failure(self, error: BaseException) -> bool:
        if isinstance(error, self.config.excluded_exceptions):
            return False
        if self._counts_as_failure is not None:
            return self._counts_as_failure(error)
        return True

    async def _on_failure(self, error: BaseException):
        if not self._is_failure(error):
            return

        async with self._lock:
            self.stats.failure_count += 1
            self.stats.total_failures += 1
            self.stats.last_failure_time = self._clock()

            if self.stats.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif (
                self.stats.state == CircuitState.CLOSED
                and self.stats.failure_count >= self.config.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)

            logger.warning(
                f"Circuit breaker [{self.service_name}] failure: {error}. "
                f"Failure count: {self.stats.failure_count}/{self.config.failure_threshold}"
            )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Execute an async function under breaker protection.

        Raises:
            CircuitBreakerOpen: If the circuit is open
            Exception: Anything raised by ``func``
        """
        await self._before_call()

        try:
            if self.config.timeout:
                result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.timeout)
            else:
                result = await func(*args, **kwargs)
        except Exception as e:
            await self._on_failure(e)
            raise

        await self._on_success()
        return result

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        self.stats = CircuitBreakerStats(state_changed_at=self._clock())
        logger.info(f"Circuit breaker [{self.service_name}] manually reset")

    def get_status(self) -> dict:
        return {
            "service": self.service_name,
            "state": self.stats.state.value,
            "failure_count": self.stats.failure_count,
            "total_calls": self.stats.total_calls,
            "total_failures": self.stats.total_failures,
            "total_successes": self.stats.total_successes,
        }


# Provider-specific tuning. Video providers queue work and are slow to
# recover, chat-style endpoints recover quickly.
PROVIDER_BREAKER_CONFIGS = {
    "openai": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=30.0),
    "gemini": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=30.0),
    "zhipu": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=45.0),
    "shenma": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=60.0),
    "dayuyu": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=60.0),
}


class BreakerRegistry:
    """Owns one breaker per provider id."""

    def __init__(self, counts_as_failure: Optional[Callable[[BaseException], bool]] = None):
        self._counts_as_failure = counts_as_failure
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, provider: str) -> CircuitBreaker:
        if provider not in self._breakers:
            config = PROVIDER_BREAKER_CONFIGS.get(provider, CircuitBreakerConfig())
            self._breakers[provider] = CircuitBreaker(
                provider, config, counts_as_failure=self._counts_as_failure
            )
        return self._breakers[provider]

    def get_all_status(self) -> dict[str, dict]:
        return {name: breaker.get_status() for name, breaker in self._breakers.items()}
