"""
Provider adapters and the registry that maps provider ids to them.

Usage:
    registry = AdapterRegistry()
    registry.register("demo", DemoAdapter)     # extra providers
    adapter = registry.create("shenma", provider_config)
"""

import logging
from typing import Callable, Optional

import httpx

from ..capabilities import MediaProvider
from ..models import ProviderConfig
from .base import BaseAdapter, map_size, parse_progress, parse_video_status
from .custom import CustomAdapter, GeminiAdapter
from .dayuyu import DayuyuAdapter
from .openai import OpenAIAdapter, OpenAICompatibleAdapter
from .shenma import ShenmaAdapter
from .zhipu import ZhipuAdapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[..., BaseAdapter]

BUILTIN_ADAPTERS: dict[str, AdapterFactory] = {
    MediaProvider.OPENAI.value: OpenAIAdapter,
    MediaProvider.ZHIPU.value: ZhipuAdapter,
    MediaProvider.SHENMA.value: ShenmaAdapter,
    MediaProvider.DAYUYU.value: DayuyuAdapter,
    MediaProvider.CUSTOM.value: CustomAdapter,
    MediaProvider.GEMINI.value: GeminiAdapter,
}


class AdapterRegistry:
    """Provider id -> adapter factory table."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        default_timeout: Optional[float] = None,
    ):
        self._factories: dict[str, AdapterFactory] = dict(BUILTIN_ADAPTERS)
        self._http_client = http_client
        # Applied to provider configs that leave timeout unset
        self.default_timeout = default_timeout

    def register(self, provider_id: str, factory: AdapterFactory):
        self._factories[provider_id] = factory
        logger.debug(f"Registered adapter for {provider_id}")

    def is_registered(self, provider_id: str) -> bool:
        return provider_id in self._factories

    def registered_providers(self) -> list[str]:
        return sorted(self._factories)

    def create(self, provider_id: str, config: ProviderConfig) -> Optional[BaseAdapter]:
        """Build an adapter, or None when no factory is registered for the id."""
        factory = self._factories.get(provider_id)
        if factory is None:
            return None
        if config.timeout is None and self.default_timeout:
            config = config.model_copy(update={"timeout": self.default_timeout})
        return factory(config, provider_id=provider_id, http_client=self._http_client)


__all__ = [
    "AdapterRegistry",
    "BaseAdapter",
    "BUILTIN_ADAPTERS",
    "CustomAdapter",
    "DayuyuAdapter",
    "GeminiAdapter",
    "OpenAIAdapter",
    "OpenAICompatibleAdapter",
    "ShenmaAdapter",
    "ZhipuAdapter",
    "map_size",
    "parse_progress",
    "parse_video_status",
]
