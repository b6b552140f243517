"""
Adapter base class and shared wire helpers.

An adapter turns canonical requests into one provider's HTTP calls and
turns the answer back into a ``GenerationResponse`` (or raises a typed
error from ``core.errors``). No vendor payload escapes an adapter.
"""

import base64
import logging
import re
from abc import ABC
from typing import Any, Optional

import httpx

from core.errors import (
    APIKeyError,
    APITimeoutError,
    MultiMediaError,
    NetworkError,
    UnsupportedFunctionError,
    error_from_http_response,
)

from ..capabilities import MediaFunction, default_endpoint, default_model
from ..models import (
    GenerationResponse,
    ImageAnalysisRequest,
    ImageEditRequest,
    TaskStatus,
    TextGenerationRequest,
    TextToImageRequest,
    VideoAnalysisRequest,
    VideoGenerationRequest,
    VideoStatusReport,
    ProviderConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# Vendor status vocabulary -> normalized task status
STATUS_MAP = {
    "not_start": TaskStatus.NOT_START,
    "not_started": TaskStatus.NOT_START,
    "submitted": TaskStatus.SUBMITTED,
    "pending": TaskStatus.SUBMITTED,
    "queued": TaskStatus.QUEUED,
    "in_queue": TaskStatus.QUEUED,
    "in_progress": TaskStatus.IN_PROGRESS,
    "processing": TaskStatus.IN_PROGRESS,
    "running": TaskStatus.IN_PROGRESS,
    "success": TaskStatus.SUCCESS,
    "succeeded": TaskStatus.SUCCESS,
    "completed": TaskStatus.SUCCESS,
    "failure": TaskStatus.FAILURE,
    "failed": TaskStatus.FAILURE,
    "fail": TaskStatus.FAILURE,
    "error": TaskStatus.FAILURE,
    "cancelled": TaskStatus.FAILURE,
}

_URL_RE = re.compile(r"https?://[^\s)\]\"'<>]+")
_PERCENT_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*%?\s*$")

SQUARE = "1024x1024"


def map_size(
    size: Optional[str],
    aspect_ratio: Optional[str],
    ratio_map: dict[str, str],
    valid_sizes: Optional[tuple] = None,
) -> str:
    """Resolve an explicit size or an aspect ratio into a WxH string."""
    for candidate in (size, aspect_ratio):
        if not candidate:
            continue
        if re.fullmatch(r"\d+K", candidate, re.IGNORECASE):
            return candidate
        if re.fullmatch(r"\d+x\d+", candidate):
            if valid_sizes is None or candidate in valid_sizes:
                return candidate
            continue
        if candidate in ratio_map:
            return ratio_map[candidate]
    return SQUARE


def parse_progress(value: Any) -> Optional[float]:
    """Accept 0-100 numbers or strings like ``"50%"``; anything else is None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _PERCENT_RE.match(str(value))
        if not match:
            return None
        number = float(match.group(1))
    if 0 <= number <= 100:
        return number
    return None


def extract_url(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = _URL_RE.search(text)
    return match.group(0) if match else None


def parse_video_status(task_id: str, data: Any) -> VideoStatusReport:
    """
    Map a status payload onto ``VideoStatusReport``.

    Handles the three shapes seen in the wild:
    - ``{"status": "IN_PROGRESS", "progress": "50%", "video_url": ...}``
    - chat-completion style ``{"choices": [{"finish_reason": ..., "message": ...}]}``
    - ``{"task_status": "PROCESSING" | "SUCCESS" | "FAIL", "video_result": [...]}``
    """
    if not isinstance(data, dict):
        return VideoStatusReport(task_id=task_id, status=TaskStatus.IN_PROGRESS)

    task_id = str(data.get("task_id") or data.get("id") or task_id)
    error = data.get("error") if isinstance(data.get("error"), dict) else {}

    choices = data.get("choices")
    if isinstance(choices, list) and choices:
        choice = choices[0] or {}
        content = (choice.get("message") or {}).get("content") or ""
        if choice.get("finish_reason") == "content_filter":
            return VideoStatusReport(
                task_id=task_id,
                status=TaskStatus.FAILURE,
                fail_reason=content or "Content rejected by provider policy",
                raw_status="content_filter",
            )
        video_url = choice.get("video_url") or extract_url(content)
        if video_url:
            return VideoStatusReport(
                task_id=task_id, status=TaskStatus.SUCCESS, progress=100, video_url=video_url,
                raw_status=choice.get("finish_reason"),
            )
        return VideoStatusReport(task_id=task_id, status=TaskStatus.IN_PROGRESS, raw_status="choices")

    raw = data.get("task_status") or data.get("status") or data.get("state") or ""
    status = STATUS_MAP.get(str(raw).lower(), TaskStatus.IN_PROGRESS)

    video_url = data.get("video_url")
    cover_url = data.get("cover_image_url")
    results = data.get("video_result")
    if not video_url and isinstance(results, list) and results:
        video_url = results[0].get("url")
        cover_url = cover_url or results[0].get("cover_image_url")
    if not video_url and isinstance(data.get("result"), dict):
        video_url = data["result"].get("video_url") or data["result"].get("url")

    fail_reason = None
    if status == TaskStatus.FAILURE:
        fail_reason = (
            data.get("fail_reason")
            or error.get("message")
            or data.get("message")
            or "Video generation failed"
        )

    if status == TaskStatus.SUCCESS and not video_url:
        logger.warning(f"Task {task_id} reported success without a video URL")

    return VideoStatusReport(
        task_id=task_id,
        status=status,
        progress=parse_progress(data.get("progress")),
        video_url=video_url,
        cover_url=cover_url,
        fail_reason=fail_reason,
        raw_status=str(raw) or None,
    )


def task_not_found(task_id: str) -> VideoStatusReport:
    return VideoStatusReport(
        task_id=task_id,
        status=TaskStatus.FAILURE,
        fail_reason="Task not found",
        raw_status="404",
    )


class BaseAdapter(ABC):
    """
    Common HTTP plumbing for provider adapters.

    Subclasses set ``provider`` and ``functions`` and override the
    operations they support. Calling an operation that is not overridden
    raises ``UnsupportedFunctionError``.
    """

    provider: str = "base"
    functions: frozenset = frozenset()
    health_path: str = "/models"

    def __init__(
        self,
        config: ProviderConfig,
        provider_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider_id = provider_id or self.provider
        if not config.api_key:
            raise APIKeyError(self.provider_id, f"API key is required for {self.provider_id}")

        self.config = config
        self.api_key = config.api_key
        self.base_url = (config.base_url or default_endpoint(self.provider)).rstrip("/")
        self.timeout = config.timeout or DEFAULT_TIMEOUT
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def close(self):
        """Close the HTTP client if this adapter created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def supports(self, function: MediaFunction) -> bool:
        return function in self.functions

    def _model(self, requested: Optional[str], kind: str, fallback: str = "") -> str:
        return requested or self.config.default_models.get(kind) or default_model(self.provider, kind, fallback)

    def _endpoint(self, function: MediaFunction, default_path: str) -> str:
        return self.config.endpoints.get(function) or default_path

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self, json_body: bool = True) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _send(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        data: Optional[dict] = None,
        files: Optional[dict] = None,
    ) -> httpx.Response:
        """Issue a request, translating transport failures into typed errors."""
        client = await self._get_client()
        try:
            return await client.request(
                method,
                self._url(path),
                headers=self._headers(json_body=files is None),
                json=json,
                data=data,
                files=files,
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            raise APITimeoutError(self.provider_id, self.timeout)
        except httpx.RequestError as e:
            raise NetworkError(
                f"Network error calling {self.provider_id}: {type(e).__name__}: {e}",
                {"provider": self.provider_id},
            )

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        data: Optional[dict] = None,
        files: Optional[dict] = None,
    ) -> Any:
        """Send a request and return the decoded body, raising on HTTP errors."""
        response = await self._send(method, path, json=json, data=data, files=files)
        body = self._parse_body(response)
        if response.is_error:
            retry_after = response.headers.get("retry-after")
            raise error_from_http_response(
                response.status_code,
                body,
                self.provider_id,
                float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        return body

    async def _fetch_status(self, path: str, task_id: str) -> VideoStatusReport:
        """GET a status endpoint; a 404 means the provider forgot the task."""
        response = await self._send("GET", path)
        body = self._parse_body(response)
        if response.status_code == 404:
            return task_not_found(task_id)
        if response.is_error:
            raise error_from_http_response(response.status_code, body, self.provider_id)
        return parse_video_status(task_id, body)

    @staticmethod
    def _submitted(data: Any) -> tuple[str, TaskStatus]:
        """Pull the task id and initial status out of a submit response."""
        if not isinstance(data, dict):
            data = {}
        task_id = data.get("id") or data.get("task_id")
        if not task_id and isinstance(data.get("data"), dict):
            task_id = data["data"].get("task_id") or data["data"].get("id")
        if not task_id:
            raise MultiMediaError("Provider did not return a task id", details={"response": str(data)[:200]})
        raw = data.get("status") or data.get("task_status") or ""
        status = STATUS_MAP.get(str(raw).lower(), TaskStatus.SUBMITTED)
        return str(task_id), status

    async def _image_bytes(self, image: str) -> tuple[bytes, str]:
        """Load a data URL or remote URL into bytes plus a mime type."""
        if image.startswith("data:"):
            header, _, payload = image.partition(",")
            mime = header[5:].split(";")[0] or "image/png"
            return base64.b64decode(payload), mime
        if image.startswith(("http://", "https://")):
            client = await self._get_client()
            response = await client.get(image, follow_redirects=True)
            response.raise_for_status()
            return response.content, response.headers.get("content-type", "image/png")
        return base64.b64decode(image), "image/png"

    async def is_available(self) -> bool:
        try:
            await self._request("GET", self.health_path)
            return True
        except MultiMediaError as e:
            logger.warning(f"[{self.provider_id}] Provider is not available: {e}")
            return False

    def _unsupported(self, function: MediaFunction):
        return UnsupportedFunctionError(self.provider_id, function.value)

    def _require(self, function: MediaFunction):
        if function not in self.functions:
            raise self._unsupported(function)

    async def generate_image(self, request: TextToImageRequest) -> GenerationResponse:
        raise self._unsupported(MediaFunction.TEXT_TO_IMAGE)

    async def edit_image(self, request: ImageEditRequest) -> GenerationResponse:
        raise self._unsupported(MediaFunction.IMAGE_TO_IMAGE)

    async def generate_text(self, request: TextGenerationRequest) -> GenerationResponse:
        raise self._unsupported(MediaFunction.TEXT_GENERATION)

    async def analyze_image(self, request: ImageAnalysisRequest) -> GenerationResponse:
        raise self._unsupported(MediaFunction.IMAGE_ANALYSIS)

    async def generate_video(self, request: VideoGenerationRequest) -> GenerationResponse:
        raise self._unsupported(MediaFunction.VIDEO_GENERATION)

    async def analyze_video(self, request: VideoAnalysisRequest) -> GenerationResponse:
        raise self._unsupported(MediaFunction.VIDEO_ANALYSIS)

    async def get_video_status(self, task_id: str) -> VideoStatusReport:
        raise self._unsupported(MediaFunction.VIDEO_GENERATION)
