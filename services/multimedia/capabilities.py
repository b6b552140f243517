"""
Provider capability registry.

Static tables describing what each known provider can do, where it lives
and which model it uses by default. Custom provider ids (anything not in
``MediaProvider``) declare their capabilities purely through the feature
flags of their ``ProviderConfig``.
"""

from enum import Enum
from typing import Optional, Union


class MediaFunction(str, Enum):
    """The six generation operations."""
    TEXT_TO_IMAGE = "textToImage"
    IMAGE_TO_IMAGE = "imageToImage"
    TEXT_GENERATION = "textGeneration"
    IMAGE_ANALYSIS = "imageAnalysis"
    VIDEO_GENERATION = "videoGeneration"
    VIDEO_ANALYSIS = "videoAnalysis"


class MediaProvider(str, Enum):
    """Providers with a built-in adapter."""
    OPENAI = "openai"
    ZHIPU = "zhipu"
    SHENMA = "shenma"
    DAYUYU = "dayuyu"
    CUSTOM = "custom"
    GEMINI = "gemini"


ALL_FUNCTIONS = frozenset(MediaFunction)

PROVIDER_CAPABILITIES: dict[MediaProvider, frozenset] = {
    MediaProvider.OPENAI: frozenset({
        MediaFunction.TEXT_TO_IMAGE,
        MediaFunction.IMAGE_TO_IMAGE,
        MediaFunction.TEXT_GENERATION,
        MediaFunction.IMAGE_ANALYSIS,
    }),
    MediaProvider.ZHIPU: frozenset({
        MediaFunction.TEXT_TO_IMAGE,
        MediaFunction.TEXT_GENERATION,
        MediaFunction.VIDEO_GENERATION,
    }),
    MediaProvider.SHENMA: ALL_FUNCTIONS,
    MediaProvider.DAYUYU: frozenset({MediaFunction.VIDEO_GENERATION}),
    MediaProvider.CUSTOM: ALL_FUNCTIONS,
    MediaProvider.GEMINI: ALL_FUNCTIONS,
}

PROVIDER_ENDPOINTS: dict[MediaProvider, str] = {
    MediaProvider.OPENAI: "https://api.openai.com/v1",
    MediaProvider.ZHIPU: "https://open.bigmodel.cn/api/paas/v4",
    MediaProvider.SHENMA: "https://api.whatai.cc",
    MediaProvider.DAYUYU: "https://api.dyuapi.com",
    MediaProvider.CUSTOM: "",
    MediaProvider.GEMINI: "https://generativelanguage.googleapis.com/v1beta/openai",
}

# Keyed by "text", "image", "vision", "video", "video_analysis"
DEFAULT_MODELS: dict[MediaProvider, dict[str, str]] = {
    MediaProvider.OPENAI: {
        "text": "gpt-4",
        "image": "dall-e-3",
        "vision": "gpt-4-vision",
    },
    MediaProvider.ZHIPU: {
        "text": "glm-4",
        "image": "cogview-3",
        "video": "cogvideox-flash",
    },
    MediaProvider.SHENMA: {
        "text": "gpt-4o",
        "image": "nano-banana",
        "vision": "gpt-4o",
        "video": "sora-2",
        "video_analysis": "gemini-2.5-pro",
    },
    MediaProvider.DAYUYU: {
        "video": "sora-2",
    },
    MediaProvider.CUSTOM: {},
    MediaProvider.GEMINI: {
        "text": "gemini-2.5-flash",
        "image": "imagen-3.0-generate-002",
        "vision": "gemini-2.5-flash",
        "video": "veo-2.0-generate-001",
        "video_analysis": "gemini-2.5-pro",
    },
}

ASPECT_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4", "2:3", "3:2", "4:5", "5:4", "21:9")


def known_provider(provider_id: str) -> Optional[MediaProvider]:
    """Return the built-in provider for an id, or None for custom ids."""
    try:
        return MediaProvider(provider_id)
    except ValueError:
        return None


def parse_function(value: Union[str, MediaFunction]) -> Optional[MediaFunction]:
    try:
        return MediaFunction(value)
    except ValueError:
        return None


def provider_supports(provider_id: str, function: MediaFunction) -> bool:
    """Registry-level capability check. Unknown ids are unrestricted here."""
    provider = known_provider(provider_id)
    if provider is None:
        return True
    return function in PROVIDER_CAPABILITIES[provider]


def default_endpoint(provider_id: str) -> str:
    provider = known_provider(provider_id)
    return PROVIDER_ENDPOINTS[provider] if provider else ""


def default_model(provider_id: str, kind: str, fallback: str = "") -> str:
    provider = known_provider(provider_id)
    if provider is None:
        return fallback
    return DEFAULT_MODELS[provider].get(kind, fallback)
