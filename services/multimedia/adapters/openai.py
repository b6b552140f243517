"""
OpenAI-compatible adapters.

Most providers here speak the OpenAI wire format (``/images/generations``,
``/images/edits``, ``/chat/completions``). ``OpenAICompatibleAdapter``
implements all of it once; provider classes only differ in paths,
models, size tables and which functions they expose.
"""

import logging
from typing import Any

from ..capabilities import MediaFunction, PROVIDER_CAPABILITIES, MediaProvider
from ..models import (
    GenerationData,
    GenerationResponse,
    ImageAnalysisRequest,
    ImageEditRequest,
    ResponseMetadata,
    TextGenerationRequest,
    TextToImageRequest,
    VideoAnalysisRequest,
    VideoGenerationRequest,
    VideoStatusReport,
)
from .base import BaseAdapter, map_size

logger = logging.getLogger(__name__)

OPENAI_RATIO_SIZES = {
    "1:1": "1024x1024",
    "16:9": "1792x1024",
    "9:16": "1024x1792",
    "4:3": "1024x768",
    "3:4": "768x1024",
}


def _images_from(data: Any) -> list[str]:
    items = data.get("data") if isinstance(data, dict) else None
    return [item.get("url") or item.get("b64_json") for item in items or [] if isinstance(item, dict)]


def _chat_text(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices") or [{}]
    return ((choices[0] or {}).get("message") or {}).get("content") or ""


def _tokens(data: Any):
    if isinstance(data, dict):
        return (data.get("usage") or {}).get("total_tokens")
    return None


class OpenAICompatibleAdapter(BaseAdapter):
    """Full OpenAI-style implementation of every function."""

    provider = MediaProvider.CUSTOM.value
    functions = frozenset(MediaFunction)

    paths = {
        MediaFunction.TEXT_TO_IMAGE: "/images/generations",
        MediaFunction.IMAGE_TO_IMAGE: "/images/edits",
        MediaFunction.TEXT_GENERATION: "/chat/completions",
        MediaFunction.IMAGE_ANALYSIS: "/chat/completions",
        MediaFunction.VIDEO_GENERATION: "/videos/generations",
        MediaFunction.VIDEO_ANALYSIS: "/chat/completions",
    }
    status_path = "/videos/generations/{task_id}"
    ratio_sizes = OPENAI_RATIO_SIZES

    def _path(self, function: MediaFunction) -> str:
        return self._endpoint(function, self.paths[function])

    def _response(self, data: GenerationData, model: str, tokens=None) -> GenerationResponse:
        return GenerationResponse(
            success=True,
            data=data,
            metadata=ResponseMetadata(provider=self.provider_id, model=model, tokens_used=tokens),
        )

    async def generate_image(self, request: TextToImageRequest) -> GenerationResponse:
        self._require(MediaFunction.TEXT_TO_IMAGE)
        model = self._model(request.model, "image", "dall-e-3")
        body = {
            "model": model,
            "prompt": request.prompt if not request.style else f"{request.prompt}, {request.style}",
            "n": request.n,
            "size": map_size(request.size, request.aspect_ratio, self.ratio_sizes),
            "response_format": request.response_format,
        }
        if request.quality:
            body["quality"] = request.quality

        data = await self._request("POST", self._path(MediaFunction.TEXT_TO_IMAGE), json=body)
        return self._response(GenerationData(images=_images_from(data)), model)

    async def edit_image(self, request: ImageEditRequest) -> GenerationResponse:
        self._require(MediaFunction.IMAGE_TO_IMAGE)
        model = self._model(request.model, "image", "dall-e-2")
        form = {
            "model": model,
            "prompt": request.prompt,
            "n": str(request.n),
            "size": map_size(request.size, request.aspect_ratio, self.ratio_sizes),
            "response_format": request.response_format,
        }
        files = {}
        if request.images:
            content, mime = await self._image_bytes(request.images[0])
            files["image"] = ("image.png", content, mime)
        if request.mask:
            content, mime = await self._image_bytes(request.mask)
            files["mask"] = ("mask.png", content, mime)

        data = await self._request(
            "POST", self._path(MediaFunction.IMAGE_TO_IMAGE), data=form, files=files or None
        )
        return self._response(GenerationData(images=_images_from(data)), model)

    async def generate_text(self, request: TextGenerationRequest) -> GenerationResponse:
        self._require(MediaFunction.TEXT_GENERATION)
        model = self._model(request.model, "text", "gpt-4o")
        body = {
            "model": model,
            "messages": [m.model_dump() for m in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.response_format:
            body["response_format"] = request.response_format

        data = await self._request("POST", self._path(MediaFunction.TEXT_GENERATION), json=body)
        return self._response(GenerationData(text=_chat_text(data)), model, _tokens(data))

    async def analyze_image(self, request: ImageAnalysisRequest) -> GenerationResponse:
        self._require(MediaFunction.IMAGE_ANALYSIS)
        model = self._model(request.model, "vision", "gpt-4o")
        content: list[dict] = [{"type": "text", "text": request.prompt}]
        for image in request.images:
            content.append({
                "type": "image_url",
                "image_url": {"url": image, "detail": request.detail},
            })
        body = {
            "model": model,
            "messages": [{"role": "user", "content": content}],
            "max_tokens": request.max_tokens,
        }

        data = await self._request("POST", self._path(MediaFunction.IMAGE_ANALYSIS), json=body)
        return self._response(GenerationData(text=_chat_text(data)), model, _tokens(data))

    async def analyze_video(self, request: VideoAnalysisRequest) -> GenerationResponse:
        self._require(MediaFunction.VIDEO_ANALYSIS)
        model = self._model(request.model, "video_analysis", "gemini-2.5-pro")
        body = {
            "model": model,
            "messages": [{
                "role": "user",
                "content": [
                    {"type": "text", "text": request.prompt},
                    {"type": "video_url", "video_url": {"url": request.video_url}},
                ],
            }],
            "max_tokens": request.max_tokens,
        }

        data = await self._request("POST", self._path(MediaFunction.VIDEO_ANALYSIS), json=body)
        return self._response(GenerationData(text=_chat_text(data)), model, _tokens(data))

    def _video_body(self, request: VideoGenerationRequest, model: str) -> dict:
        body = {
            "model": model,
            "prompt": request.prompt if not request.style else f"{request.prompt}, {request.style}",
            "duration": request.duration,
            "aspect_ratio": request.aspect_ratio,
            "hd": request.hd,
            "watermark": request.watermark,
        }
        if request.images:
            body["images"] = request.images
        return body

    async def generate_video(self, request: VideoGenerationRequest) -> GenerationResponse:
        self._require(MediaFunction.VIDEO_GENERATION)
        model = self._model(request.model, "video", "sora-2")
        data = await self._request(
            "POST", self._path(MediaFunction.VIDEO_GENERATION), json=self._video_body(request, model)
        )
        task_id, status = self._submitted(data)
        logger.info(f"[{self.provider_id}] Submitted video task {task_id}")
        return self._response(
            GenerationData(
                task_id=task_id,
                status=status.value,
                video_url=data.get("video_url") if isinstance(data, dict) else None,
            ),
            model,
        )

    async def get_video_status(self, task_id: str) -> VideoStatusReport:
        self._require(MediaFunction.VIDEO_GENERATION)
        return await self._fetch_status(self.status_path.format(task_id=task_id), task_id)


class OpenAIAdapter(OpenAICompatibleAdapter):
    """api.openai.com: images, chat and vision; no video."""

    provider = MediaProvider.OPENAI.value
    functions = PROVIDER_CAPABILITIES[MediaProvider.OPENAI]
