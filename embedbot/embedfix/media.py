"""Video variant probing and size-capped media downloads."""
from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx

from ..exceptions import APIError, MediaTooLargeError, UpstreamTimeout
from ..http_client import SharedHttpClient
from ..utils.logging import get_logger
from .types import EmbedVideo

logger = get_logger(__name__)


@dataclass
class DownloadedMedia:
    data: bytes
    filename: str


def filename_from_url(url: str, default: str = "video.mp4") -> str:
    return posixpath.basename(urlparse(url).path) or default


class MediaFetcher:
    def __init__(
        self,
        http: SharedHttpClient,
        max_video_bytes: int = 25 * 1024 * 1024,
        probe_timeout_s: float = 5.0,
        download_timeout_s: float = 30.0,
    ):
        self.http = http
        self.max_video_bytes = max_video_bytes
        self.probe_timeout_s = probe_timeout_s
        self.download_timeout_s = download_timeout_s

    async def _content_length(self, url: str) -> Optional[int]:
        try:
            response = await self.http.head(url, timeout=self.probe_timeout_s)
        except (UpstreamTimeout, httpx.HTTPError):
            return None
        declared = response.headers.get("content-length")
        if response.status_code >= 400 or not declared or not declared.isdigit():
            return None
        return int(declared)

    async def best_video_url(self, video: EmbedVideo) -> str:
        """Highest-bitrate variant whose advertised size fits, else the primary URL."""
        for variant in video.variants:
            size = await self._content_length(variant.url)
            if size is not None and size <= self.max_video_bytes:
                return variant.url
        return video.url

    async def download_video(self, video: EmbedVideo) -> Optional[DownloadedMedia]:
        """None means the caller should fall back to a URL rewrite."""
        url = await self.best_video_url(video)
        try:
            data = await self.http.download(url, self.max_video_bytes, timeout=self.download_timeout_s)
        except MediaTooLargeError as e:
            logger.info(
                f"📼 Video too large ({e.size} > {e.limit} bytes), using fallback",
                extra={"subsys": "embedfix", "event": "video_too_large", "detail": {"url": url}},
            )
            return None
        except UpstreamTimeout:
            logger.info(
                "⏱️ Video download timed out",
                extra={"subsys": "embedfix", "event": "video_timeout", "detail": {"url": url}},
            )
            return None
        except (APIError, httpx.HTTPError) as e:
            logger.warning(
                f"⚠️ Video download failed: {e}",
                extra={"subsys": "embedfix", "event": "video_error", "detail": {"url": url}},
            )
            return None
        return DownloadedMedia(data=data, filename=filename_from_url(url))

    async def fetch_image(self, url: str, max_bytes: int, timeout: Optional[float] = None) -> bytes:
        """Raises on failure; callers decide whether a missing image is fatal."""
        return await self.http.download(url, max_bytes, timeout=timeout or self.download_timeout_s)
