"""
Generation Service - single entry point for every generation function.

For each call:
1. Resolve the provider assigned to the function (``ProviderNotConfiguredError``)
2. Look up its adapter (``UnsupportedFunctionError`` if missing or incapable)
3. Invoke the adapter behind the provider's circuit breaker, retrying
   transient errors with exponential backoff
4. Return the adapter's response untouched, or raise the normalized error

Status queries for video tasks are NOT retried here; the poller decides
what a failed query means.
"""

import logging
from typing import Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.circuit_breaker import BreakerRegistry, CircuitBreakerOpen
from core.config import RetryConfig
from core.errors import (
    MultiMediaError,
    ServiceUnavailableError,
    UnsupportedFunctionError,
    error_from_exception,
    format_error_message,
    is_retryable,
)

from .adapters import AdapterRegistry, BaseAdapter
from .capabilities import MediaFunction
from .config_manager import ConfigManager
from .models import (
    GenerationResponse,
    ImageAnalysisRequest,
    ImageEditRequest,
    ProviderConfig,
    TextGenerationRequest,
    TextToImageRequest,
    VideoAnalysisRequest,
    VideoGenerationRequest,
    VideoStatusReport,
)

logger = logging.getLogger(__name__)

# Adapter method per function
OPERATIONS = {
    MediaFunction.TEXT_TO_IMAGE: "generate_image",
    MediaFunction.IMAGE_TO_IMAGE: "edit_image",
    MediaFunction.TEXT_GENERATION: "generate_text",
    MediaFunction.IMAGE_ANALYSIS: "analyze_image",
    MediaFunction.VIDEO_GENERATION: "generate_video",
    MediaFunction.VIDEO_ANALYSIS: "analyze_video",
}


def _counts_against_provider(error: BaseException) -> bool:
    """Permanent errors say nothing about provider health."""
    if isinstance(error, MultiMediaError):
        return error.retryable
    return True


class GenerationService:
    """
    Facade over configuration, adapters, retries and circuit breakers.

    Usage:
        service = GenerationService(config_manager)
        response = await service.generate_image(TextToImageRequest(prompt="a red cube"))
        print(response.data.images)
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        registry: Optional[AdapterRegistry] = None,
        retry: Optional[RetryConfig] = None,
        breakers: Optional[BreakerRegistry] = None,
    ):
        self.config_manager = config_manager
        self.registry = registry or AdapterRegistry()
        self.retry = retry or RetryConfig()
        self.breakers = breakers or BreakerRegistry(counts_as_failure=_counts_against_provider)

        # provider id -> (config the adapter was built from, adapter)
        self._adapters: dict[str, tuple[ProviderConfig, BaseAdapter]] = {}

    async def close(self):
        for _, adapter in self._adapters.values():
            await adapter.close()
        self._adapters.clear()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _adapter_for(self, provider_id: str) -> Optional[BaseAdapter]:
        provider_config = await self.config_manager.get_provider_config(provider_id)
        cached = self._adapters.get(provider_id)
        if cached and cached[0] == provider_config:
            return cached[1]

        if cached:
            await cached[1].close()
        adapter = self.registry.create(provider_id, provider_config)
        if adapter is None:
            self._adapters.pop(provider_id, None)
            return None

        self._adapters[provider_id] = (provider_config, adapter)
        return adapter

    async def resolve(self, function: MediaFunction) -> BaseAdapter:
        """Adapter serving ``function``; raises if none is usable."""
        provider_id = await self.config_manager.get_provider_for_function(function)
        adapter = await self._adapter_for(provider_id)
        if adapter is None or not adapter.supports(function):
            raise UnsupportedFunctionError(provider_id, function.value)
        return adapter

    def _max_attempts(self, adapter: BaseAdapter) -> int:
        if adapter.config.retry_count is not None:
            return max(adapter.config.retry_count, 0) + 1
        return max(self.retry.max_attempts, 1)

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def _call_once(self, adapter: BaseAdapter, operation: str, request):
        breaker = self.breakers.get(adapter.provider_id)
        try:
            return await breaker.call(getattr(adapter, operation), request)
        except CircuitBreakerOpen as e:
            raise ServiceUnavailableError(adapter.provider_id, message=str(e))
        except MultiMediaError:
            raise
        except Exception as e:
            raise error_from_exception(e, adapter.provider_id)

    async def _invoke(self, function: MediaFunction, request) -> GenerationResponse:
        adapter = await self.resolve(function)
        operation = OPERATIONS[function]
        logger.info(f"{function.value} -> {adapter.provider_id}.{operation}")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts(adapter)),
            wait=wait_exponential(
                multiplier=self.retry.initial_delay,
                max=self.retry.max_delay,
                exp_base=self.retry.multiplier,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._call_once(adapter, operation, request)
        except MultiMediaError as e:
            logger.error(f"{function.value} via {adapter.provider_id} failed: {format_error_message(e)}")
            raise

    # ------------------------------------------------------------------
    # Public API, one method per function
    # ------------------------------------------------------------------

    async def generate_image(self, request: TextToImageRequest) -> GenerationResponse:
        return await self._invoke(MediaFunction.TEXT_TO_IMAGE, request)

    async def edit_image(self, request: ImageEditRequest) -> GenerationResponse:
        return await self._invoke(MediaFunction.IMAGE_TO_IMAGE, request)

    async def generate_text(self, request: TextGenerationRequest) -> GenerationResponse:
        return await self._invoke(MediaFunction.TEXT_GENERATION, request)

    async def analyze_image(self, request: ImageAnalysisRequest) -> GenerationResponse:
        return await self._invoke(MediaFunction.IMAGE_ANALYSIS, request)

    async def generate_video(self, request: VideoGenerationRequest) -> GenerationResponse:
        return await self._invoke(MediaFunction.VIDEO_GENERATION, request)

    async def analyze_video(self, request: VideoAnalysisRequest) -> GenerationResponse:
        return await self._invoke(MediaFunction.VIDEO_ANALYSIS, request)

    async def get_video_status(self, task_id: str, provider_id: Optional[str] = None) -> VideoStatusReport:
        """Single status query against the provider that owns the task."""
        if provider_id is None:
            adapter = await self.resolve(MediaFunction.VIDEO_GENERATION)
        else:
            adapter = await self._adapter_for(provider_id)
            if adapter is None or not adapter.supports(MediaFunction.VIDEO_GENERATION):
                raise UnsupportedFunctionError(provider_id, MediaFunction.VIDEO_GENERATION.value)

        try:
            return await adapter.get_video_status(task_id)
        except MultiMediaError:
            raise
        except Exception as e:
            raise error_from_exception(e, adapter.provider_id)

    async def is_available(self, provider_id: str) -> bool:
        adapter = await self._adapter_for(provider_id)
        return adapter is not None and await adapter.is_available()

    def get_circuit_breaker_status(self) -> dict[str, dict]:
        return self.breakers.get_all_status()
