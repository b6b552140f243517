"""
Video Download Manager - persists finished videos locally.

Provider result URLs are usually temporary, so completed batch jobs copy
the file into the output directory as ``video_<scene>_<timestamp>.mp4``.
"""

import logging
import time
from pathlib import Path
from typing import Optional

import aiofiles
import httpx

logger = logging.getLogger(__name__)


def build_filename(scene_id: str, timestamp_ms: Optional[int] = None) -> str:
    timestamp_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    safe_scene = "".join(c if c.isalnum() or c in "-_" else "_" for c in str(scene_id))
    return f"video_{safe_scene}_{timestamp_ms}.mp4"


class VideoDownloadManager:
    """
    Downloads video files over HTTP.

    Usage:
        downloader = VideoDownloadManager(output_dir="output")
        path = await downloader.download(url, scene_id="scene-3")
    """

    def __init__(
        self,
        output_dir: str = "output",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 600.0,
    ):
        self.output_dir = Path(output_dir)
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def close(self):
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def validate_video_url(self, video_url: str) -> bool:
        """HEAD the URL; True when it answers 2xx."""
        if not video_url.startswith(("http://", "https://")):
            return False
        client = await self._get_client()
        try:
            response = await client.head(video_url, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning(f"Video URL check failed for {video_url}: {e}")
            return False
        return response.is_success

    async def download(
        self,
        video_url: str,
        scene_id: str = "video",
        subdir: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> Optional[str]:
        """
        Stream a video to local storage.

        Args:
            video_url: Provider result URL
            scene_id: Used in the generated filename
            subdir: Optional folder under ``output_dir`` (e.g. the batch id)
            filename: Explicit filename, overrides the generated one

        Returns:
            Local path to the downloaded file, or None if the download failed
        """
        base_dir = self.output_dir / subdir if subdir else self.output_dir
        output_path = base_dir / (filename or build_filename(scene_id))
        part_path = output_path.with_name(output_path.name + ".part")

        try:
            base_dir.mkdir(parents=True, exist_ok=True)
            client = await self._get_client()
            size = 0
            async with client.stream("GET", video_url, follow_redirects=True) as response:
                response.raise_for_status()
                async with aiofiles.open(part_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        size += len(chunk)
                        await f.write(chunk)
            part_path.replace(output_path)
        except (httpx.HTTPError, OSError) as e:
            logger.error(f"Failed to download video from {video_url}: {e}")
            part_path.unlink(missing_ok=True)
            return None

        logger.info(f"Video downloaded: {output_path} ({size / 1024 / 1024:.1f} MB)")
        return str(output_path)
