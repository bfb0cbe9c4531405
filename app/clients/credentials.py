from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import timezone
from typing import Optional, Protocol

import google.auth
from google.auth.exceptions import DefaultCredentialsError, GoogleAuthError
from google.auth.transport.requests import Request

CLOUD_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]
DEFAULT_TOKEN_TTL_MS = 3_600_000


@dataclass(frozen=True)
class AccessToken:
    token: str
    expires_at_ms: int


class CredentialProvider(Protocol):
    def is_configured(self) -> bool: ...

    async def get_access_token(self) -> AccessToken: ...

    async def get_project_id(self) -> Optional[str]: ...


class StaticCredentialProvider:
    """Serves a pre-issued bearer token, e.g. from ``VIDEO_RENDER_VEO_ACCESS_TOKEN``."""

    def __init__(
        self,
        token: str | None,
        project_id: str | None = None,
        ttl_ms: int = DEFAULT_TOKEN_TTL_MS,
    ) -> None:
        self.token = (token or "").strip()
        self.project_id = (project_id or "").strip() or None
        self.ttl_ms = ttl_ms

    def is_configured(self) -> bool:
        return bool(self.token)

    async def get_access_token(self) -> AccessToken:
        return AccessToken(token=self.token, expires_at_ms=int(time.time() * 1000) + self.ttl_ms)

    async def get_project_id(self) -> Optional[str]:
        return self.project_id


class GoogleCredentialProvider:
    """Application Default Credentials through google-auth.

    google-auth is synchronous, so loading and refreshing run in a worker
    thread to keep the event loop free.
    """

    def __init__(self, scopes: list[str] | None = None, logger: Optional[logging.Logger] = None) -> None:
        self.scopes = scopes or CLOUD_SCOPES
        self.log = logger or logging.getLogger(__name__)
        self._credentials = None
        self._project_id: Optional[str] = None
        self._load_error: Exception | None = None
        self._loaded = False
        self._load_lock = threading.Lock()

    def is_configured(self) -> bool:
        """Blocks on first use while ADC is resolved; call it off the event loop."""
        self._ensure_loaded()
        return self._credentials is not None

    async def get_access_token(self) -> AccessToken:
        await asyncio.to_thread(self._ensure_loaded)
        if self._credentials is None:
            raise RuntimeError(f"application default credentials unavailable: {self._load_error}")
        await asyncio.to_thread(self._credentials.refresh, Request())
        token = getattr(self._credentials, "token", None)
        if not token:
            raise RuntimeError("google-auth returned an empty access token")
        expiry = getattr(self._credentials, "expiry", None)
        if expiry is not None:
            # google-auth reports naive UTC datetimes
            expires_at_ms = int(expiry.replace(tzinfo=timezone.utc).timestamp() * 1000)
        else:
            expires_at_ms = int(time.time() * 1000) + DEFAULT_TOKEN_TTL_MS
        return AccessToken(token=token, expires_at_ms=expires_at_ms)

    async def get_project_id(self) -> Optional[str]:
        await asyncio.to_thread(self._ensure_loaded)
        return self._project_id

    def _ensure_loaded(self) -> None:
        with self._load_lock:
            if self._loaded:
                return
            self._loaded = True
            try:
                credentials, project_id = google.auth.default(scopes=self.scopes)
            except (DefaultCredentialsError, GoogleAuthError) as exc:
                self._load_error = exc
                self.log.warning("application default credentials not found", extra={"error": str(exc)})
                return
            self._credentials = credentials
            self._project_id = project_id
