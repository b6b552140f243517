"""Dayuyu: low-cost video generation only."""

from ..capabilities import MediaFunction, MediaProvider, PROVIDER_CAPABILITIES
from ..models import VideoGenerationRequest
from .openai import OpenAICompatibleAdapter


class DayuyuAdapter(OpenAICompatibleAdapter):
    provider = MediaProvider.DAYUYU.value
    functions = PROVIDER_CAPABILITIES[MediaProvider.DAYUYU]
    health_path = "/health"

    paths = {
        **OpenAICompatibleAdapter.paths,
        MediaFunction.VIDEO_GENERATION: "/v2/videos/generations",
    }
    status_path = "/v2/videos/generations/{task_id}"

    def _video_body(self, request: VideoGenerationRequest, model: str) -> dict:
        body = {
            "model": model,
            "prompt": request.prompt,
            "duration": request.duration,
            "aspect_ratio": request.aspect_ratio,
            "hd": request.hd,
        }
        # Single reference frame only
        if request.images:
            body["image_url"] = request.images[0]
        return body
