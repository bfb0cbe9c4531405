from __future__ import annotations

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

ARTIFACT_CACHE_CONTROL = "public, max-age=31536000, immutable"


class StorageUploadError(Exception):
    """Raised when the object store rejects or fails an upload."""


def _clean_key(path: str | None) -> str:
    return "/".join(segment for segment in (path or "").strip().split("/") if segment)


class S3StorageClient:
    """Bucket sink for rendered artifacts on any S3-compatible store.

    Artifact keys embed a timestamp, so objects are written once and served
    with a long-lived cache header.
    """

    def __init__(
        self,
        bucket: str,
        access_key: str | None = None,
        secret_key: str | None = None,
        *,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        public_url: str | None = None,
        timeout: float = 120.0,
        addressing_style: str | None = None,
        client=None,
    ) -> None:
        self.bucket = (bucket or "").strip()
        self.endpoint_url = (endpoint_url or "").rstrip("/") or None
        self.public_base = (public_url or "").rstrip("/")
        credentials = ((access_key or "").strip(), (secret_key or "").strip())
        self._has_credentials = all(credentials)
        self._client = client
        if self._client is None and self.bucket and self._has_credentials:
            self._client = boto3.session.Session(
                aws_access_key_id=credentials[0],
                aws_secret_access_key=credentials[1],
                region_name=(region_name or "").strip() or None,
            ).client(
                "s3",
                endpoint_url=self.endpoint_url,
                config=BotoConfig(
                    s3={"addressing_style": (addressing_style or "virtual").lower()},
                    connect_timeout=10,
                    read_timeout=timeout,
                    retries={"max_attempts": 2, "mode": "standard"},
                ),
            )

    def is_configured(self) -> bool:
        return bool(self.bucket) and self._client is not None

    def upload_bytes(self, path: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        if not self.is_configured():
            raise StorageUploadError("object storage is not configured")
        key = _clean_key(path)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
                CacheControl=ARTIFACT_CACHE_CONTROL,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageUploadError(f"S3 upload of {key} failed: {exc}") from exc
        return self.public_url(key)

    def public_url(self, path: str) -> str:
        key = _clean_key(path)
        if self.public_base:
            return f"{self.public_base}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"
