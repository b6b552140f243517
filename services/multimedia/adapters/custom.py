"""
Custom and Gemini adapters.

Both speak the OpenAI wire format against a caller-chosen (custom) or
Google's OpenAI-compatible (gemini) base URL. A custom provider only
exposes the functions its feature flags enable.
"""

from typing import Optional

import httpx

from core.errors import ConfigurationError

from ..capabilities import MediaProvider, PROVIDER_CAPABILITIES
from ..models import ProviderConfig
from .openai import OpenAICompatibleAdapter


class CustomAdapter(OpenAICompatibleAdapter):
    provider = MediaProvider.CUSTOM.value

    def __init__(
        self,
        config: ProviderConfig,
        provider_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config, provider_id, http_client)
        if not self.base_url:
            raise ConfigurationError(
                f"Provider {self.provider_id} requires a base_url",
                {"provider": self.provider_id},
            )
        self.functions = frozenset(config.enabled_functions())


class GeminiAdapter(OpenAICompatibleAdapter):
    provider = MediaProvider.GEMINI.value
    functions = PROVIDER_CAPABILITIES[MediaProvider.GEMINI]
    ratio_sizes = {
        "1:1": "1024x1024",
        "16:9": "1408x768",
        "9:16": "768x1408",
        "4:3": "1280x896",
        "3:4": "896x1280",
    }
