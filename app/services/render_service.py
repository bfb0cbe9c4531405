from __future__ import annotations

import logging
from typing import Any, Optional

from app.clients.credentials import CredentialProvider, GoogleCredentialProvider, StaticCredentialProvider
from app.clients.s3_storage import S3StorageClient
from app.clients.veo import PredictDefaults, VeoClient
from app.config import Settings
from app.models.domain import QuotaSnapshot, RenderItem, RenderManifest, RenderOutcome
from app.services.artifact_persister import ArtifactPersister
from app.services.dispatch_gate import DispatchGate
from app.services.quota_meter import QuotaMeter
from app.services.render_orchestrator import RenderOrchestrator, TierConfig
from app.storage.local_storage import LocalDiskStorage
from app.storage.operation_cache import OperationCache
from app.storage.repository import RenderItemRepository


class RenderService:
    def __init__(
        self,
        repo: RenderItemRepository,
        settings: Settings,
        credentials: CredentialProvider | None = None,
        client: VeoClient | None = None,
        persister: ArtifactPersister | None = None,
        orchestrator: RenderOrchestrator | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.repo = repo
        self.settings = settings
        self.log = logger or logging.getLogger(__name__)
        self.quota = client.quota if client else QuotaMeter(
            window_seconds=settings.quota_window_seconds,
            soft_limit=settings.quota_soft_limit,
        )
        self.operations = (client.operations if client else None) or OperationCache(
            capacity=settings.operation_cache_size
        )
        self.client = client or VeoClient(
            credentials=credentials or self._build_credentials(settings),
            quota=self.quota,
            gate=DispatchGate(
                max_parallel=settings.max_parallel,
                min_spacing_seconds=settings.min_spacing_seconds,
                release_delay_seconds=settings.release_delay_seconds,
                logger=self.log,
            ),
            operations=self.operations,
            project_id=settings.gcp_project_id,
            location=settings.vertex_location,
            model=settings.veo_standard_model,
            defaults=PredictDefaults(
                aspect_ratio=settings.default_aspect_ratio,
                resolution=settings.default_resolution,
                duration_seconds=settings.default_duration_seconds,
                sample_count=settings.default_sample_count,
                person_generation=settings.person_generation,
                add_watermark=settings.add_watermark,
                include_rai_reason=settings.include_rai_reason,
                generate_audio=settings.generate_audio,
            ),
            predict_backoff=settings.predict_backoff_seconds,
            fetch_backoff=settings.fetch_backoff_seconds,
            token_refresh_margin_seconds=settings.token_refresh_margin_seconds,
            timeout=settings.request_timeout_seconds,
            logger=self.log,
        )
        self.persister = persister or ArtifactPersister(
            local=LocalDiskStorage(settings.output_dir, settings.local_base_url),
            bucket=S3StorageClient(
                bucket=settings.s3_bucket,
                access_key=settings.s3_access_key,
                secret_key=settings.s3_secret_key,
                endpoint_url=settings.s3_endpoint_url,
                region_name=settings.s3_region,
                public_url=settings.s3_public_url,
                timeout=settings.download_timeout_seconds,
                addressing_style=settings.s3_addressing_style,
            ),
            download_timeout=settings.download_timeout_seconds,
            download_retries=settings.download_retries,
            logger=self.log,
        )
        self.orchestrator = orchestrator or RenderOrchestrator(
            client=self.client,
            persister=self.persister,
            tiers={
                "fast": TierConfig("fast", settings.veo_fast_model, settings.fast_price_per_second),
                "standard": TierConfig("standard", settings.veo_standard_model, settings.standard_price_per_second),
            },
            default_tier="fast" if settings.use_fast_for_drafts else "standard",
            poll_intervals=settings.poll_interval_seconds,
            rate_limit_poll_delay=settings.rate_limit_poll_delay_seconds,
            default_resolution=settings.default_resolution,
            logger=self.log,
        )

    async def render_item(self, item_id: str, manifest: RenderManifest, tier: str | None = None) -> RenderOutcome:
        item = self.repo.get(item_id) or RenderItem(id=item_id)
        outcome = await self.orchestrator.render(
            manifest,
            tier=tier,
            prior_state=item.operation_state,
            prior_task=item.render_task,
            item_id=item_id,
        )
        item.operation_state = outcome.operation_state
        item.render_task = outcome.render_task
        self.repo.save(item)
        self.log.info(
            "render item updated",
            extra={
                "item_id": item_id,
                "status": outcome.operation_state.status.value,
                "http_status": outcome.http_status,
            },
        )
        return outcome

    def get_item(self, item_id: str) -> RenderItem:
        item = self.repo.get(item_id)
        if not item:
            raise ValueError("Render item not found")
        return item

    def reset_item(self, item_id: str) -> None:
        if not self.repo.delete(item_id):
            raise ValueError("Render item not found")

    def quota_snapshot(self) -> QuotaSnapshot:
        return self.quota.get_snapshot()

    def operations_snapshot(self) -> list[dict[str, Any]]:
        return self.operations.snapshot()

    def _build_credentials(self, settings: Settings) -> CredentialProvider:
        if settings.veo_access_token:
            return StaticCredentialProvider(settings.veo_access_token, project_id=settings.gcp_project_id)
        return GoogleCredentialProvider(logger=self.log)
