"""Shenma aggregator: every function, OpenAI paths under ``/v1``, video under ``/v2``."""

from ..capabilities import MediaFunction, MediaProvider, PROVIDER_CAPABILITIES
from .openai import OPENAI_RATIO_SIZES, OpenAICompatibleAdapter


class ShenmaAdapter(OpenAICompatibleAdapter):
    provider = MediaProvider.SHENMA.value
    functions = PROVIDER_CAPABILITIES[MediaProvider.SHENMA]
    health_path = "/v1/models"

    paths = {
        MediaFunction.TEXT_TO_IMAGE: "/v1/images/generations",
        MediaFunction.IMAGE_TO_IMAGE: "/v1/images/edits",
        MediaFunction.TEXT_GENERATION: "/v1/chat/completions",
        MediaFunction.IMAGE_ANALYSIS: "/v1/chat/completions",
        MediaFunction.VIDEO_GENERATION: "/v2/videos/generations",
        MediaFunction.VIDEO_ANALYSIS: "/v1/chat/completions",
    }
    status_path = "/v2/videos/generations/{task_id}"
    ratio_sizes = OPENAI_RATIO_SIZES
