"""
Multimedia Generation Layer

Routes each generation function to a configured provider:
- capabilities: static provider -> function table, endpoints, default models
- config_manager: persisted, cached, validated provider settings
- adapters: per-provider wire-format normalizers
- service: facade with retry and circuit breaker protection
"""

from .adapters import AdapterRegistry, BaseAdapter
from .capabilities import MediaFunction, MediaProvider, PROVIDER_CAPABILITIES
from .config_manager import ConfigManager
from .models import (
    ChatMessage,
    GenerationData,
    GenerationResponse,
    ImageAnalysisRequest,
    ImageEditRequest,
    MultiMediaConfig,
    ProviderConfig,
    TaskStatus,
    TextGenerationRequest,
    TextToImageRequest,
    ValidationResult,
    VideoAnalysisRequest,
    VideoGenerationRequest,
    VideoStatusReport,
)
from .service import GenerationService
from .storage import InMemoryStore, JsonFileStore, KeyValueStore

__all__ = [
    "AdapterRegistry",
    "BaseAdapter",
    "ChatMessage",
    "ConfigManager",
    "GenerationData",
    "GenerationResponse",
    "GenerationService",
    "ImageAnalysisRequest",
    "ImageEditRequest",
    "InMemoryStore",
    "JsonFileStore",
    "KeyValueStore",
    "MediaFunction",
    "MediaProvider",
    "MultiMediaConfig",
    "PROVIDER_CAPABILITIES",
    "ProviderConfig",
    "TaskStatus",
    "TextGenerationRequest",
    "TextToImageRequest",
    "ValidationResult",
    "VideoAnalysisRequest",
    "VideoGenerationRequest",
    "VideoStatusReport",
]
