from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Sequence
from uuid import uuid4

from app.clients.veo import RenderClientError, VeoClient
from app.models.domain import (
    ClipDescriptor,
    DryRunBundle,
    OperationState,
    OperationStatus,
    PredictRequest,
    QaReport,
    RenderAssets,
    RenderError,
    RenderManifest,
    RenderMetrics,
    RenderMode,
    RenderOutcome,
    RenderStatus,
    RenderTask,
)
from app.services.artifact_persister import ArtifactPersister
from app.services.prompting import (
    build_director_prompt,
    build_fallback_thumbnail,
    normalize_resolution,
    storyboard_duration,
)

POLL_INTERVAL_SECONDS = (30.0, 30.0, 30.0)
RATE_LIMIT_POLL_DELAY_SECONDS = 90.0
RATE_LIMIT_QA_NOTE = "vertex-429: backoff recommended"
CONFIGURATION_ERROR_CODES = frozenset({"missing_project", "missing_token"})


@dataclass(frozen=True)
class TierConfig:
    name: str
    model: str
    price_per_second: float


def fingerprint_request(request: PredictRequest) -> str:
    canonical = json.dumps(
        request.model_dump(by_alias=True, mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def resolve_duration_seconds(clip: ClipDescriptor, manifest: RenderManifest) -> float:
    """Provider-reported length, else the planned target, else the storyboard total."""
    for candidate in (clip.duration_seconds, manifest.generator.target_duration_seconds):
        if candidate is not None and candidate > 0:
            return float(candidate)
    return storyboard_duration(manifest.storyboard)


class RenderOrchestrator:
    """Drives one work item through predict, poll and finalize.

    The caller owns :class:`OperationState` and hands back whatever this
    returned last time; one active renderer per item is assumed.
    """

    def __init__(
        self,
        client: VeoClient,
        persister: ArtifactPersister,
        tiers: Mapping[str, TierConfig],
        default_tier: str = "standard",
        poll_intervals: Sequence[float] = POLL_INTERVAL_SECONDS,
        rate_limit_poll_delay: float = RATE_LIMIT_POLL_DELAY_SECONDS,
        default_resolution: str = "720p",
        prompt_builder: Callable[[RenderManifest], str] = build_director_prompt,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if "standard" not in tiers:
            raise ValueError("tiers must define a 'standard' entry")
        self.client = client
        self.persister = persister
        self.tiers = dict(tiers)
        self.default_tier = default_tier
        self.poll_intervals = tuple(poll_intervals) or POLL_INTERVAL_SECONDS
        self.rate_limit_poll_delay = rate_limit_poll_delay
        self.default_resolution = default_resolution
        self.prompt_builder = prompt_builder
        self._clock = clock
        self.log = logger or logging.getLogger(__name__)

    async def render(
        self,
        manifest: RenderManifest,
        tier: str | None = None,
        prior_state: OperationState | None = None,
        prior_task: RenderTask | None = None,
        item_id: str | None = None,
    ) -> RenderOutcome:
        requested_at = self._now()
        state = prior_state.model_copy(deep=True) if prior_state else OperationState()
        qa = QaReport()

        if not await self.client.ensure_configured():
            self.log.warning("veo credentials missing, falling back to storyboard render")
            return self._dry_run(
                manifest,
                state,
                requested_at,
                renderer="veo-missing-creds",
                reason="missing_credentials",
                message="Vertex credentials are required for Veo rendering",
            )

        tier_config = self._resolve_tier(tier)
        target = manifest.generator.target_duration_seconds
        request = self.client.build_request(
            prompt=self.prompt_builder(manifest),
            aspect_ratio=manifest.spec.aspect_ratio,
            resolution=normalize_resolution(manifest.spec.resolution, self.default_resolution),
            duration_seconds=target if target and target > 0 else None,
        )
        fingerprint = fingerprint_request(request)

        cached = self._reuse_cached(state, prior_task, fingerprint)
        if cached is not None:
            self.log.info("veo render served from cache", extra={"manifest_id": manifest.manifest_id})
            return cached

        if state.status == OperationStatus.FAILED:
            return self._failed(
                manifest,
                state,
                requested_at,
                qa,
                reason="operation_failed",
                message="Previous render failed; discard the operation state to retry",
            )

        try:
            remaining = self._wait_remaining(state)
            if state.status == OperationStatus.RATE_LIMITED and remaining > 0:
                return self._pending(manifest, state, poll_delay_seconds=remaining)
            if state.operation_name:
                if state.request_fingerprint and state.request_fingerprint != fingerprint:
                    self.log.warning(
                        "veo request changed while operation pending, restarting prediction",
                        extra={"operation_name": state.operation_name, "manifest_id": manifest.manifest_id},
                    )
                    return await self._start(manifest, request, fingerprint, tier_config, qa, requested_at, item_id)
                started_on = self.tiers.get(state.tier or "", tier_config)
                return await self._resume(manifest, state, request, fingerprint, started_on, qa, requested_at, item_id)
            return await self._start(manifest, request, fingerprint, tier_config, qa, requested_at, item_id)
        except RenderClientError as exc:
            return self._handle_client_error(exc, manifest, state, requested_at, qa)
        except Exception as exc:
            self.log.exception("veo renderer failed", extra={"manifest_id": manifest.manifest_id})
            return self._failed(
                manifest,
                state,
                requested_at,
                qa,
                reason=getattr(exc, "code", None) or "veo_renderer_failed",
                message=str(exc) or "Veo renderer failed",
            )

    async def _start(
        self,
        manifest: RenderManifest,
        request: PredictRequest,
        fingerprint: str,
        tier: TierConfig,
        qa: QaReport,
        requested_at: datetime,
        item_id: str | None,
    ) -> RenderOutcome:
        result = await self.client.generate_video(request, model=tier.model)
        if result.clip is not None:
            return await self._finalize(manifest, result.clip, request, fingerprint, tier, qa, requested_at, item_id)
        state = OperationState(
            operation_name=result.operation_name,
            status=OperationStatus.PREDICTING,
            attempts=0,
            last_fetch_at=self._now(),
            request_fingerprint=fingerprint,
            tier=tier.name,
        )
        return self._pending(manifest, state)

    async def _resume(
        self,
        manifest: RenderManifest,
        state: OperationState,
        request: PredictRequest,
        fingerprint: str,
        tier: TierConfig,
        qa: QaReport,
        requested_at: datetime,
        item_id: str | None,
    ) -> RenderOutcome:
        if self._wait_remaining(state) > 0:
            return self._pending(manifest, state.model_copy(update={"status": OperationStatus.FETCHING}))

        fetched = await self.client.fetch_operation(state.operation_name, model=tier.model)
        if not fetched.done or fetched.clip is None:
            next_state = state.model_copy(
                update={
                    "status": OperationStatus.FETCHING,
                    "attempts": state.attempts + 1,
                    "last_fetch_at": self._now(),
                }
            )
            return self._pending(manifest, next_state)
        return await self._finalize(manifest, fetched.clip, request, fingerprint, tier, qa, requested_at, item_id)

    async def _finalize(
        self,
        manifest: RenderManifest,
        clip: ClipDescriptor,
        request: PredictRequest,
        fingerprint: str,
        tier: TierConfig,
        qa: QaReport,
        requested_at: datetime,
        item_id: str | None,
    ) -> RenderOutcome:
        seconds = resolve_duration_seconds(clip, manifest)
        provider_seconds = self.client.defaults.duration_seconds
        if request.duration_seconds > provider_seconds:
            qa.notes.append(f"vertex-preview: generated {provider_seconds}s; planned {request.duration_seconds}s")

        planned_extends = max(0, manifest.generator.planned_extends or 0)
        if planned_extends > 0:
            extension = await self.client.extend_video()
            if not extension.available and "extend-unavailable" not in qa.flags:
                qa.flags.append("extend-unavailable")

        assets = await self.persister.persist(
            clip.model_copy(update={"duration_seconds": seconds}),
            manifest.caption.text,
            manifest.caption.hashtags,
            destination_key=item_id or manifest.manifest_id,
        )
        completed_at = self._now()
        task = RenderTask(
            id=uuid4().hex,
            manifest_version=manifest.version,
            mode=RenderMode.FILE,
            status=RenderStatus.COMPLETED,
            renderer="veo",
            requested_at=requested_at,
            completed_at=completed_at,
            metrics=RenderMetrics(
                seconds_generated=seconds,
                cost_estimate_usd=round(seconds * tier.price_per_second, 2),
                tier=tier.name,
                model=tier.model,
                extends_requested=planned_extends,
                extends_completed=0,
            ),
            result=RenderAssets(
                video_url=assets.video_url,
                caption_url=assets.caption_url,
                poster_url=assets.poster_url,
                clip_id=clip.clip_id,
                qa=qa,
            ),
        )
        state = OperationState(
            operation_name=None,
            status=OperationStatus.READY,
            attempts=0,
            last_fetch_at=completed_at,
            request_fingerprint=fingerprint,
            tier=tier.name,
        )
        self.log.info(
            "veo render completed",
            extra={
                "manifest_id": manifest.manifest_id,
                "seconds_generated": seconds,
                "tier": tier.name,
                "location": assets.location,
            },
        )
        return RenderOutcome(render_task=task, operation_state=state, http_status=200)

    def _handle_client_error(
        self,
        exc: RenderClientError,
        manifest: RenderManifest,
        state: OperationState,
        requested_at: datetime,
        qa: QaReport,
    ) -> RenderOutcome:
        if exc.code == "rate_limited":
            self.log.warning(
                "veo rate limited, deferring render",
                extra={"manifest_id": manifest.manifest_id, "operation_name": state.operation_name},
            )
            next_state = state.model_copy(
                update={"status": OperationStatus.RATE_LIMITED, "last_fetch_at": self._now()}
            )
            return self._pending(
                manifest,
                next_state,
                poll_delay_seconds=self.rate_limit_poll_delay,
                error=RenderError(reason=exc.code, message=f"{exc.message} ({RATE_LIMIT_QA_NOTE})"),
            )
        if exc.code in CONFIGURATION_ERROR_CODES:
            self.log.warning(
                "veo credentials unusable, falling back to storyboard render",
                extra={"manifest_id": manifest.manifest_id, "code": exc.code},
            )
            return self._dry_run(
                manifest,
                state,
                requested_at,
                renderer="veo-missing-creds",
                reason=exc.code,
                message=exc.message,
            )
        self.log.error(
            "veo renderer failed",
            extra={"manifest_id": manifest.manifest_id, "code": exc.code, "status": exc.status},
        )
        return self._failed(manifest, state, requested_at, qa, reason=exc.code, message=exc.message)

    def _reuse_cached(
        self,
        state: OperationState,
        prior_task: RenderTask | None,
        fingerprint: str,
    ) -> RenderOutcome | None:
        if state.status != OperationStatus.READY or state.request_fingerprint != fingerprint:
            return None
        if prior_task is None or prior_task.status != RenderStatus.COMPLETED:
            return None
        if prior_task.result is None or not prior_task.result.video_url:
            return None
        return RenderOutcome(render_task=prior_task, operation_state=state, http_status=200)

    def _pending(
        self,
        manifest: RenderManifest,
        state: OperationState,
        poll_delay_seconds: float | None = None,
        error: RenderError | None = None,
    ) -> RenderOutcome:
        task = RenderTask(
            id=uuid4().hex,
            manifest_version=manifest.version,
            mode=RenderMode.DRY_RUN,
            status=RenderStatus.RENDERING,
            renderer="veo",
            requested_at=self._now(),
            result=None,
            error=error,
        )
        poll_delay_ms = int(round(poll_delay_seconds * 1000)) if poll_delay_seconds else None
        return RenderOutcome(render_task=task, operation_state=state, http_status=202, poll_delay_ms=poll_delay_ms)

    def _dry_run(
        self,
        manifest: RenderManifest,
        state: OperationState,
        requested_at: datetime,
        renderer: str,
        reason: str,
        message: str,
    ) -> RenderOutcome:
        task = self._bundle_task(manifest, requested_at, RenderStatus.COMPLETED, renderer, QaReport(), reason, message)
        return RenderOutcome(render_task=task, operation_state=state, http_status=200)

    def _failed(
        self,
        manifest: RenderManifest,
        state: OperationState,
        requested_at: datetime,
        qa: QaReport,
        reason: str,
        message: str,
    ) -> RenderOutcome:
        task = self._bundle_task(manifest, requested_at, RenderStatus.FAILED, "veo", qa, reason, message)
        next_state = state.model_copy(update={"status": OperationStatus.FAILED})
        return RenderOutcome(render_task=task, operation_state=next_state, http_status=500)

    def _bundle_task(
        self,
        manifest: RenderManifest,
        requested_at: datetime,
        status: RenderStatus,
        renderer: str,
        qa: QaReport,
        reason: str,
        message: str,
    ) -> RenderTask:
        bundle = DryRunBundle(
            storyboard=manifest.storyboard,
            caption=manifest.caption,
            thumbnail=manifest.thumbnail or build_fallback_thumbnail(manifest),
            checklist=manifest.compliance.qa_checklist,
        )
        return RenderTask(
            id=uuid4().hex,
            manifest_version=manifest.version,
            mode=RenderMode.DRY_RUN,
            status=status,
            renderer=renderer,
            requested_at=requested_at,
            completed_at=self._now(),
            result=RenderAssets(qa=qa, dry_run_bundle=bundle),
            error=RenderError(reason=reason, message=message),
        )

    def _resolve_tier(self, tier: str | None) -> TierConfig:
        name = (tier or self.default_tier or "standard").strip().lower()
        config = self.tiers.get(name)
        if config is None:
            self.log.warning("unknown render tier, using standard", extra={"tier": name})
            config = self.tiers["standard"]
        return config

    def _wait_remaining(self, state: OperationState) -> float:
        if state.last_fetch_at is None:
            return 0.0
        if state.status == OperationStatus.RATE_LIMITED:
            required = self.rate_limit_poll_delay
        else:
            required = self.poll_intervals[min(state.attempts, len(self.poll_intervals) - 1)]
        last = state.last_fetch_at
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        elapsed = self._clock() - last.timestamp()
        return max(0.0, required - elapsed)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)
