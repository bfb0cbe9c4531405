from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx

from app.clients.credentials import CredentialProvider
from app.clients.veo_extractors import (
    ClipFound,
    OperationHandle,
    Unrecognized,
    extract_status,
    normalize_response,
)
from app.models.domain import ClipDescriptor, PredictRequest
from app.services.dispatch_gate import DispatchGate
from app.services.quota_meter import QuotaMeter
from app.storage.operation_cache import OperationStatusStore

PREDICT_BACKOFF_SECONDS = (10.0, 30.0)
FETCH_BACKOFF_SECONDS = (10.0, 20.0, 30.0)
EXTEND_UNAVAILABLE_REASON = "vertex_preview_no_extend"
_OPERATION_MODEL = re.compile(r"/models/([^/]+)/operations/")


class RenderClientError(Exception):
    """Provider call failure with a stable ``code`` callers can branch on."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.body = body

    @property
    def retryable(self) -> bool:
        return self.code == "rate_limited"


@dataclass(frozen=True)
class PredictDefaults:
    aspect_ratio: str = "9:16"
    resolution: str = "720p"
    duration_seconds: int = 8
    sample_count: int = 1
    person_generation: str = "allow_adult"
    add_watermark: bool = True
    include_rai_reason: bool = True
    generate_audio: bool = True


@dataclass(frozen=True)
class GenerateResult:
    clip: Optional[ClipDescriptor] = None
    operation_name: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.clip is None) == (self.operation_name is None):
            raise ValueError("generate result carries exactly one of clip or operation_name")


@dataclass(frozen=True)
class FetchResult:
    done: bool
    status: Optional[str] = None
    clip: Optional[ClipDescriptor] = None


@dataclass(frozen=True)
class ExtendResult:
    available: bool
    reason: Optional[str] = None


def compute_backoff(
    sequence: Sequence[float],
    attempt_index: int,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retry ``attempt_index`` (0-based): base plus up to half of it as jitter."""
    if not sequence:
        return 0.0
    base = float(sequence[min(max(attempt_index, 0), len(sequence) - 1)])
    return base + rng() * (base / 2)


def clean_text(value: str | None) -> str:
    if not value:
        return ""
    return " ".join(value.split())


def _positive_int(value: Any, fallback: int) -> int:
    try:
        numeric = int(round(float(value)))
    except (TypeError, ValueError):
        return fallback
    return numeric if numeric > 0 else fallback


class VeoClient:
    def __init__(
        self,
        credentials: CredentialProvider,
        quota: QuotaMeter,
        gate: DispatchGate,
        operations: OperationStatusStore | None = None,
        project_id: str | None = None,
        location: str = "us-central1",
        model: str = "veo-3.0-generate-001",
        defaults: PredictDefaults | None = None,
        predict_backoff: Sequence[float] = PREDICT_BACKOFF_SECONDS,
        fetch_backoff: Sequence[float] = FETCH_BACKOFF_SECONDS,
        token_refresh_margin_seconds: float = 30.0,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.credentials = credentials
        self.quota = quota
        self.gate = gate
        self.operations = operations
        self.location = location
        self.model = model
        self.defaults = defaults or PredictDefaults()
        self.predict_backoff = tuple(predict_backoff) or PREDICT_BACKOFF_SECONDS
        self.fetch_backoff = tuple(fetch_backoff) or FETCH_BACKOFF_SECONDS
        self.token_refresh_margin_ms = int(token_refresh_margin_seconds * 1000)
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self.log = logger or logging.getLogger(__name__)
        self._transport = transport
        self._sleep = sleep
        self._rng = rng
        self._clock = clock
        self._project_id = (project_id or "").strip() or None
        self._project_task: asyncio.Task[str] | None = None
        self._configured = True
        self._access_token: str | None = None
        self._access_token_expires_at_ms = 0
        self._token_lock = asyncio.Lock()
        self._request_counter = 0

    def is_configured(self) -> bool:
        return self._configured and self.credentials.is_configured()

    async def ensure_configured(self) -> bool:
        """Async form of :meth:`is_configured`; credential loading may hit the network."""
        if not self._configured:
            return False
        return await asyncio.to_thread(self.credentials.is_configured)

    def build_request(
        self,
        prompt: str,
        aspect_ratio: str | None = None,
        resolution: str | None = None,
        duration_seconds: Any = None,
        sample_count: Any = None,
    ) -> PredictRequest:
        return PredictRequest(
            prompt=clean_text(prompt),
            aspect_ratio=aspect_ratio or self.defaults.aspect_ratio,
            resolution=resolution or self.defaults.resolution,
            duration_seconds=_positive_int(duration_seconds, self.defaults.duration_seconds),
            sample_count=_positive_int(sample_count, self.defaults.sample_count),
        )

    async def generate_video(self, request: PredictRequest, model: str | None = None) -> GenerateResult:
        prompt = clean_text(request.prompt)
        if not prompt:
            raise RenderClientError("missing_prompt", "Prompt is required for Veo generation")
        model_id = model or self.model
        body = self._build_predict_body(prompt, request)
        context = {
            "model": model_id,
            "aspect_ratio": request.aspect_ratio,
            "resolution": request.resolution,
            "duration_seconds": request.duration_seconds,
        }
        async with self.gate.slot():
            payload = await self._call_with_retry(
                "predict",
                lambda project_id: self._predict_url(project_id, model_id),
                body,
                self.predict_backoff,
                context,
            )

        match normalize_response(payload, float(request.duration_seconds)):
            case ClipFound(clip=clip):
                asset_type = "uri" if clip.video_url else "inline"
                self.log.info(
                    "veo predict returned clip",
                    extra={"asset_type": asset_type, "clip_id": clip.clip_id, "model": model_id},
                )
                return GenerateResult(clip=clip)
            case OperationHandle(name=name):
                self.log.info("veo predict accepted operation", extra={"operation_name": name, "model": model_id})
                self._track(name, "predicting")
                return GenerateResult(operation_name=name)
            case Unrecognized(keys=keys):
                self.log.error("veo predict response empty", extra={"keys": list(keys), "model": model_id})
                raise RenderClientError(
                    "empty_response",
                    "Vertex predict returned no video and no operation name",
                )

    async def fetch_operation(self, operation_name: str | None, model: str | None = None) -> FetchResult:
        if not operation_name:
            raise RenderClientError("missing_operation", "operation_name is required to resume a Veo fetch")
        model_id = self._model_from_operation(operation_name) or model or self.model
        async with self.gate.slot():
            payload = await self._call_with_retry(
                "fetch",
                lambda project_id: self._fetch_url(project_id, model_id),
                {"operationName": operation_name},
                self.fetch_backoff,
                {"operation_name": operation_name, "model": model_id},
            )

        status = extract_status(payload) if isinstance(payload, dict) else None
        finished = isinstance(payload, dict) and payload.get("done") is True
        if finished and payload.get("error"):
            error = payload["error"] if isinstance(payload["error"], dict) else {"message": str(payload["error"])}
            self._track(operation_name, "failed")
            raise RenderClientError(
                "operation_failed",
                f"Veo operation failed: {error.get('message') or error}",
                status=error.get("code") if isinstance(error.get("code"), int) else None,
            )

        match normalize_response(payload):
            case ClipFound(clip=clip):
                self.log.info(
                    "veo fetch done",
                    extra={
                        "operation_name": operation_name,
                        "asset_type": "uri" if clip.video_url else "inline",
                    },
                )
                self._track(operation_name, "done")
                return FetchResult(done=True, status=status or "done", clip=clip)
            case OperationHandle() | Unrecognized():
                if finished:
                    self._track(operation_name, "empty")
                    raise RenderClientError(
                        "empty_response",
                        "Veo operation finished without a usable video",
                    )
                pending = status or "pending"
                self.log.info("veo fetch pending", extra={"operation_name": operation_name, "status": pending})
                self._track(operation_name, pending)
                return FetchResult(done=False, status=pending)

    async def extend_video(self, *args: Any, **kwargs: Any) -> ExtendResult:
        self.log.info("veo extend unavailable", extra={"reason": EXTEND_UNAVAILABLE_REASON})
        return ExtendResult(available=False, reason=EXTEND_UNAVAILABLE_REASON)

    async def _call_with_retry(
        self,
        kind: str,
        build_url: Callable[[str], str],
        body: dict[str, Any],
        backoff: Sequence[float],
        context: dict[str, Any],
    ) -> Any:
        max_attempts = len(backoff)
        for attempt in range(1, max_attempts + 1):
            await self.gate.wait_turn()
            request_id = self._next_request_id()
            snapshot = self.quota.note_attempt()
            self.log.info(
                f"veo {kind} start",
                extra={
                    "request_id": request_id,
                    "attempt": attempt,
                    "requests_in_window": snapshot.requests_in_window,
                    "in_flight": snapshot.in_flight,
                    **context,
                },
            )
            if snapshot.is_near_limit:
                self.log.warning(
                    "veo quota near soft limit",
                    extra={"requests_in_window": snapshot.requests_in_window, "soft_limit": snapshot.soft_limit},
                )
            try:
                response = await self._send(build_url, body)
            except RenderClientError:
                self.quota.note_failure()
                raise
            except httpx.HTTPError as exc:
                self.quota.note_failure()
                raise RenderClientError("http_error", f"Vertex {kind} request failed: {exc}") from exc

            if response.status_code == 429:
                snapshot = self.quota.note_rate_limited()
                if attempt >= max_attempts:
                    self.log.warning(
                        f"veo {kind} rate limited, retries exhausted",
                        extra={"request_id": request_id, "attempt": attempt, **context},
                    )
                    raise RenderClientError("rate_limited", f"Vertex Veo {kind} quota exceeded", status=429)
                delay = compute_backoff(backoff, attempt - 1, self._rng)
                self.log.warning(
                    f"veo {kind} rate limited",
                    extra={
                        "request_id": request_id,
                        "attempt": attempt,
                        "backoff_seconds": round(delay, 3),
                        "requests_in_window": snapshot.requests_in_window,
                    },
                )
                await self._sleep(delay)
                continue

            if response.is_error:
                self.quota.note_failure()
                text = response.text
                self.log.error(
                    f"veo {kind} http error",
                    extra={"request_id": request_id, "status": response.status_code, "body": text[:2000]},
                )
                raise RenderClientError(
                    "http_error",
                    f"Vertex {kind} failed ({response.status_code}): {text or response.reason_phrase}",
                    status=response.status_code,
                    body=text,
                )

            try:
                payload = response.json()
            except ValueError as exc:
                self.quota.note_failure()
                raise RenderClientError("invalid_response", f"Vertex {kind} returned invalid JSON payload") from exc
            self.quota.note_success()
            return payload
        raise RenderClientError("rate_limited", f"Vertex Veo {kind} retries exhausted", status=429)

    async def _send(self, build_url: Callable[[str], str], body: dict[str, Any]) -> httpx.Response:
        project_id = await self._get_project_id()
        token = await self._get_access_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(build_url(project_id), json=body, headers=headers)

    async def _get_project_id(self) -> str:
        if self._project_id:
            return self._project_id
        task = self._project_task
        if task is None:
            task = asyncio.create_task(self._discover_project_id())
            self._project_task = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._project_task is task and task.done():
                self._project_task = None

    async def _discover_project_id(self) -> str:
        try:
            project_id = await self.credentials.get_project_id()
        except Exception as exc:
            self._configured = False
            raise RenderClientError("missing_project", f"Unable to resolve Google Cloud project: {exc}") from exc
        if not project_id:
            self._configured = False
            raise RenderClientError("missing_project", "Google Cloud project ID is required for Vertex Veo")
        self._project_id = project_id
        self._configured = True
        return project_id

    async def _get_access_token(self) -> str:
        async with self._token_lock:
            now_ms = int(self._clock() * 1000)
            if self._access_token and now_ms < self._access_token_expires_at_ms - self.token_refresh_margin_ms:
                return self._access_token
            try:
                access = await self.credentials.get_access_token()
            except Exception as exc:
                raise RenderClientError("missing_token", f"Unable to obtain Vertex access token: {exc}") from exc
            if not access or not access.token:
                raise RenderClientError("missing_token", "Unable to obtain Vertex access token")
            self._access_token = access.token
            self._access_token_expires_at_ms = access.expires_at_ms
            return access.token

    def _build_predict_body(self, prompt: str, request: PredictRequest) -> dict[str, Any]:
        return {
            "instances": [{"prompt": prompt}],
            "parameters": {
                "aspectRatio": request.aspect_ratio,
                "sampleCount": request.sample_count,
                "durationSeconds": request.duration_seconds,
                "personGeneration": self.defaults.person_generation,
                "addWatermark": self.defaults.add_watermark,
                "includeRaiReason": self.defaults.include_rai_reason,
                "generateAudio": self.defaults.generate_audio,
                "resolution": request.resolution,
            },
        }

    def _model_base_url(self, project_id: str, model_id: str) -> str:
        return (
            f"https://{self.location}-aiplatform.googleapis.com/v1/projects/{project_id}"
            f"/locations/{self.location}/publishers/google/models/{model_id}"
        )

    def _predict_url(self, project_id: str, model_id: str) -> str:
        return f"{self._model_base_url(project_id, model_id)}:predictLongRunning"

    def _fetch_url(self, project_id: str, model_id: str) -> str:
        return f"{self._model_base_url(project_id, model_id)}:fetchPredictOperation"

    def _model_from_operation(self, operation_name: str) -> str | None:
        match = _OPERATION_MODEL.search(operation_name)
        return match.group(1) if match else None

    def _next_request_id(self) -> int:
        self._request_counter += 1
        return self._request_counter

    def _track(self, operation_name: str, status: str) -> None:
        if self.operations is not None:
            self.operations.record(operation_name, status)
