from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

import httpx

from app.clients.s3_storage import S3StorageClient, StorageUploadError
from app.models.domain import ClipDescriptor
from app.services.captions import build_caption_file
from app.storage.local_storage import LocalDiskStorage

MAX_DOWNLOAD_BACKOFF_SECONDS = 8.0


class ArtifactDownloadError(Exception):
    """Raised when a produced asset cannot be fetched from the provider."""


@dataclass(frozen=True)
class PersistedAssets:
    video_url: str
    caption_url: str
    poster_url: Optional[str]
    location: str


def sanitize_segment(value: str | None, fallback: str = "job") -> str:
    if not value:
        return fallback
    normalized = re.sub(r"[^a-z0-9]+", "-", str(value).lower()).strip("-")
    return normalized or fallback


class ArtifactPersister:
    """Stores the rendered clip, its caption file and poster.

    Uploads go to the bucket when one is configured; a missing bucket or a
    failed upload falls back to local disk, so callers always get a URL.
    """

    def __init__(
        self,
        local: LocalDiskStorage,
        bucket: S3StorageClient | None = None,
        provider: str = "veo",
        download_timeout: float = 45.0,
        download_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.local = local
        self.bucket = bucket
        self.provider = provider
        self.timeout = httpx.Timeout(download_timeout, connect=10.0)
        self.download_retries = max(1, int(download_retries))
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self.log = logger or logging.getLogger(__name__)

    async def persist(
        self,
        clip: ClipDescriptor,
        caption_text: str | None,
        hashtags: Iterable[str] | None,
        destination_key: str,
    ) -> PersistedAssets:
        timestamp_ms = int(self._clock() * 1000)
        base_key = "/".join(
            (
                "videos",
                sanitize_segment(destination_key, "job"),
                f"{sanitize_segment(self.provider, 'video')}-{timestamp_ms}",
            )
        )

        if clip.video_url:
            video = await self._download(clip.video_url)
        else:
            video = clip.inline_video_bytes or b""
        video_url, video_location = await self._store(f"{base_key}.mp4", video, "video/mp4")

        caption = build_caption_file(caption_text, hashtags, clip.duration_seconds)
        caption_url, caption_location = await self._store(
            f"{base_key}.srt", caption.encode("utf-8"), "application/x-subrip"
        )

        poster_url = None
        if clip.poster_url:
            try:
                poster = await self._download(clip.poster_url, retries=1)
                poster_url, _ = await self._store(f"{base_key}.jpg", poster, "image/jpeg")
            except (ArtifactDownloadError, OSError) as exc:
                self.log.warning(
                    "poster download failed, continuing without poster",
                    extra={"poster_url": clip.poster_url, "error": str(exc)},
                )

        location = video_location if video_location == caption_location else "mixed"
        self.log.info(
            "render artifacts persisted",
            extra={"key": base_key, "location": location, "video_bytes": len(video)},
        )
        return PersistedAssets(
            video_url=video_url,
            caption_url=caption_url,
            poster_url=poster_url,
            location=location,
        )

    async def _store(self, key: str, content: bytes, content_type: str) -> tuple[str, str]:
        if self.bucket is not None and self.bucket.is_configured():
            try:
                url = await asyncio.to_thread(self.bucket.upload_bytes, key, content, content_type)
                return url, "bucket"
            except Exception as exc:
                self.log.error(
                    "bucket upload failed, falling back to local disk",
                    extra={"key": key, "bucket": self.bucket.bucket, "error": str(exc)},
                    exc_info=not isinstance(exc, StorageUploadError),
                )
        url = await asyncio.to_thread(self.local.write_bytes, key, content)
        return url, "local"

    async def _download(self, url: str, retries: int | None = None) -> bytes:
        attempts = max(1, retries or self.download_retries)
        for attempt in range(attempts):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout,
                    transport=self._transport,
                    follow_redirects=True,
                ) as client:
                    response = await client.get(url)
                    response.raise_for_status()
                    return response.content
            except httpx.HTTPError as exc:
                if attempt == attempts - 1:
                    raise ArtifactDownloadError(f"download of {url} failed after {attempts} attempts: {exc}") from exc
                delay = min(2.0 * (attempt + 1), MAX_DOWNLOAD_BACKOFF_SECONDS)
                self.log.warning(
                    "retrying asset download",
                    extra={"url": url, "attempt": attempt + 1, "retries": attempts, "error": str(exc)},
                )
                await self._sleep(delay)
        raise ArtifactDownloadError(f"download of {url} failed")
