"""
Canonical request/response models for the multimedia layer.

Adapters translate these to and from vendor wire formats; nothing
vendor-specific appears here.
"""

import time
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from .capabilities import MediaFunction


# ============================================================
# Configuration
# ============================================================

class ProviderConfig(BaseModel):
    """Settings for one provider."""
    api_key: str
    base_url: Optional[str] = None
    # Per-function path override, e.g. {"textToImage": "/v1/images/generations"}
    endpoints: dict[MediaFunction, str] = Field(default_factory=dict)
    features: dict[MediaFunction, bool] = Field(default_factory=dict)
    default_models: dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = None
    retry_count: Optional[int] = None

    def supports(self, function: MediaFunction) -> bool:
        return bool(self.features.get(function, False))

    def enabled_functions(self) -> list[MediaFunction]:
        return [fn for fn in MediaFunction if self.supports(fn)]


class MultiMediaConfig(BaseModel):
    """Function -> provider assignment plus per-provider settings."""
    providers: dict[MediaFunction, str] = Field(default_factory=dict)
    configs: dict[str, ProviderConfig] = Field(default_factory=dict)

    def assigned_functions(self, provider_id: str) -> list[MediaFunction]:
        return [fn for fn, pid in self.providers.items() if pid == provider_id]


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ProviderStatus(BaseModel):
    provider: str
    available: bool
    features: dict[MediaFunction, bool] = Field(default_factory=dict)
    last_checked: datetime = Field(default_factory=datetime.utcnow)
    error: Optional[str] = None


# ============================================================
# Requests
# ============================================================

class TextToImageRequest(BaseModel):
    prompt: str
    aspect_ratio: Optional[str] = None
    size: Optional[str] = None
    response_format: Literal["url", "b64_json"] = "url"
    n: int = 1
    quality: Optional[str] = None
    model: Optional[str] = None
    style: Optional[str] = None


class ImageEditRequest(BaseModel):
    prompt: str
    images: list[str]
    mask: Optional[str] = None
    aspect_ratio: Optional[str] = None
    size: Optional[str] = None
    response_format: Literal["url", "b64_json"] = "url"
    n: int = 1
    model: Optional[str] = None


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class TextGenerationRequest(BaseModel):
    messages: list[ChatMessage]
    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 2000
    response_format: Optional[dict[str, str]] = None


class ImageAnalysisRequest(BaseModel):
    images: list[str]
    prompt: str
    model: Optional[str] = None
    max_tokens: int = 2000
    detail: Literal["low", "high", "auto"] = "auto"


class VideoGenerationRequest(BaseModel):
    prompt: str
    images: list[str] = Field(default_factory=list)
    duration: int = 10
    aspect_ratio: str = "16:9"
    hd: bool = False
    watermark: bool = True
    model: Optional[str] = None
    style: Optional[str] = None


class VideoAnalysisRequest(BaseModel):
    video_url: str
    prompt: str
    model: Optional[str] = None
    max_tokens: int = 2000


# ============================================================
# Responses
# ============================================================

class GenerationData(BaseModel):
    images: Optional[list[str]] = None
    text: Optional[str] = None
    video_url: Optional[str] = None
    task_id: Optional[str] = None
    status: Optional[str] = None


class ResponseMetadata(BaseModel):
    provider: str
    model: Optional[str] = None
    tokens_used: Optional[int] = None
    timestamp: float = Field(default_factory=time.time)


class GenerationResponse(BaseModel):
    """Uniform envelope returned by every adapter operation."""
    success: bool
    data: Optional[GenerationData] = None
    error: Optional[dict[str, Any]] = None
    metadata: Optional[ResponseMetadata] = None


class TaskStatus(str, Enum):
    """Normalized lifecycle of an asynchronous provider job."""
    NOT_START = "NOT_START"
    SUBMITTED = "SUBMITTED"
    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCESS, TaskStatus.FAILURE)


class VideoStatusReport(BaseModel):
    """One status-query answer, already mapped onto ``TaskStatus``."""
    task_id: str
    status: TaskStatus
    # Only set when the provider reports a clean 0-100 value
    progress: Optional[float] = None
    video_url: Optional[str] = None
    cover_url: Optional[str] = None
    fail_reason: Optional[str] = None
    raw_status: Optional[str] = None
