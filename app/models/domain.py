from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class OperationStatus(str, Enum):
    NONE = "none"
    PREDICTING = "predicting"
    FETCHING = "fetching"
    RATE_LIMITED = "rate_limited"
    READY = "ready"
    FAILED = "failed"


class RenderMode(str, Enum):
    FILE = "file"
    DRY_RUN = "dry_run"


class RenderStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    RENDERING = "rendering"


class QuotaSnapshot(CamelModel):
    requests_in_window: int
    in_flight: int
    last_rate_limit_at: Optional[float] = None
    last_success_at: Optional[float] = None
    soft_limit: int
    is_near_limit: bool


class PredictRequest(CamelModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, frozen=True)

    prompt: str
    aspect_ratio: str
    resolution: str
    duration_seconds: int
    sample_count: int


class OperationState(CamelModel):
    operation_name: Optional[str] = None
    status: OperationStatus = OperationStatus.NONE
    attempts: int = Field(default=0, ge=0)
    last_fetch_at: Optional[datetime] = None
    request_fingerprint: Optional[str] = None
    tier: Optional[str] = None


class ClipDescriptor(CamelModel):
    clip_id: Optional[str] = None
    video_url: Optional[str] = None
    inline_video_bytes: Optional[bytes] = Field(default=None, exclude=True, repr=False)
    duration_seconds: Optional[float] = None
    poster_url: Optional[str] = None
    asset_token: Optional[str] = None
    status: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "ClipDescriptor":
        has_url = bool(self.video_url)
        has_bytes = bool(self.inline_video_bytes)
        if has_url == has_bytes:
            raise ValueError("clip requires exactly one of video_url or inline_video_bytes")
        return self


class StoryboardShot(CamelModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="allow")

    phase: Optional[str] = None
    visual: Optional[str] = None
    on_screen_text: Optional[str] = None
    voice_over: Optional[str] = None
    b_roll: Optional[str] = None
    duration_seconds: Optional[float] = None


class Caption(CamelModel):
    text: Optional[str] = None
    hashtags: List[str] = Field(default_factory=list)


class VideoSpec(CamelModel):
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    duration_seconds: Optional[float] = None
    placement_name: Optional[str] = None


class JobSnapshot(CamelModel):
    title: Optional[str] = None
    geo: Optional[str] = None
    pay_range: Optional[str] = None
    company: Optional[str] = None
    benefits: List[str] = Field(default_factory=list)


class GeneratorPlan(CamelModel):
    target_duration_seconds: Optional[float] = None
    planned_extends: int = 0


class Thumbnail(CamelModel):
    description: Optional[str] = None
    overlay_text: Optional[str] = None


class Compliance(CamelModel):
    qa_checklist: List[Any] = Field(default_factory=list)


class RenderManifest(CamelModel):
    manifest_id: str
    version: int = 1
    channel_name: Optional[str] = None
    storyboard: List[StoryboardShot] = Field(default_factory=list)
    caption: Caption = Field(default_factory=Caption)
    spec: VideoSpec = Field(default_factory=VideoSpec)
    job: JobSnapshot = Field(default_factory=JobSnapshot)
    generator: GeneratorPlan = Field(default_factory=GeneratorPlan)
    thumbnail: Optional[Thumbnail] = None
    compliance: Compliance = Field(default_factory=Compliance)


class QaReport(CamelModel):
    notes: List[str] = Field(default_factory=list)
    flags: List[str] = Field(default_factory=list)


class DryRunBundle(CamelModel):
    storyboard: List[StoryboardShot]
    caption: Caption
    thumbnail: Thumbnail
    checklist: List[Any] = Field(default_factory=list)


class RenderMetrics(CamelModel):
    seconds_generated: float
    cost_estimate_usd: float
    tier: str
    model: str
    extends_requested: int = 0
    extends_completed: int = 0


class RenderAssets(CamelModel):
    video_url: Optional[str] = None
    caption_url: Optional[str] = None
    poster_url: Optional[str] = None
    clip_id: Optional[str] = None
    qa: QaReport = Field(default_factory=QaReport)
    dry_run_bundle: Optional[DryRunBundle] = None


class RenderError(CamelModel):
    reason: str
    message: str


class RenderTask(CamelModel):
    id: str
    manifest_version: int
    mode: RenderMode
    status: RenderStatus
    renderer: str = "veo"
    requested_at: datetime
    completed_at: Optional[datetime] = None
    metrics: Optional[RenderMetrics] = None
    result: Optional[RenderAssets] = None
    error: Optional[RenderError] = None


class RenderOutcome(CamelModel):
    render_task: RenderTask
    operation_state: OperationState
    http_status: int
    poll_delay_ms: Optional[int] = None


class RenderItem(CamelModel):
    id: str
    operation_state: OperationState = Field(default_factory=OperationState)
    render_task: Optional[RenderTask] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)
