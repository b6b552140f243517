"""
Zhipu (BigModel) adapter.

Images and chat follow the OpenAI shape. Video uses the async-result API:

    POST /videos/generations        -> {"id": ..., "task_status": "PROCESSING"}
    GET  /async-result/{id}         -> {"task_status": "SUCCESS", "video_result": [{"url": ...}]}
"""

import uuid

from ..capabilities import MediaFunction, MediaProvider, PROVIDER_CAPABILITIES
from ..models import TextToImageRequest, GenerationData, GenerationResponse, VideoGenerationRequest
from .base import map_size
from .openai import OpenAICompatibleAdapter, _images_from

ZHIPU_VALID_SIZES = ("256x256", "512x512", "1024x1024", "1024x768", "768x1024")

ZHIPU_RATIO_SIZES = {
    "1:1": "1024x1024",
    "16:9": "1024x576",
    "9:16": "576x1024",
    "4:3": "1024x768",
    "3:4": "768x1024",
}

# Video resolution per aspect ratio
ZHIPU_VIDEO_SIZES = {
    "16:9": "1920x1080",
    "9:16": "1080x1920",
    "1:1": "1024x1024",
}


class ZhipuAdapter(OpenAICompatibleAdapter):
    provider = MediaProvider.ZHIPU.value
    functions = PROVIDER_CAPABILITIES[MediaProvider.ZHIPU]
    status_path = "/async-result/{task_id}"
    ratio_sizes = ZHIPU_RATIO_SIZES

    async def generate_image(self, request: TextToImageRequest) -> GenerationResponse:
        self._require(MediaFunction.TEXT_TO_IMAGE)
        model = self._model(request.model, "image", "cogview-3")
        body = {
            "model": model,
            "prompt": request.prompt,
            "size": map_size(request.size, request.aspect_ratio, ZHIPU_RATIO_SIZES, ZHIPU_VALID_SIZES),
        }
        data = await self._request("POST", self._path(MediaFunction.TEXT_TO_IMAGE), json=body)
        return self._response(GenerationData(images=_images_from(data)), model)

    def _video_body(self, request: VideoGenerationRequest, model: str) -> dict:
        body = {
            "model": model,
            "quality": "quality" if request.hd else "speed",
            "with_audio": False,
            "watermark_enabled": request.watermark,
            "size": ZHIPU_VIDEO_SIZES.get(request.aspect_ratio, "1920x1080"),
            "fps": 30,
            "duration": request.duration,
            "request_id": uuid.uuid4().hex,
        }
        # Image-to-video and text-to-video are mutually exclusive
        if request.images:
            body["image_url"] = request.images[0]
        else:
            body["prompt"] = request.prompt
        return body
