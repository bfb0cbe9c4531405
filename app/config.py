from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="VIDEO_RENDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    app_name: str = "veo-render-service"
    host: str = "0.0.0.0"
    port: int = 4000

    # Vertex AI / Veo provider
    gcp_project_id: str = Field(
        default="",
        validation_alias=AliasChoices(
            "VIDEO_RENDER_GCP_PROJECT_ID",
            "GOOGLE_CLOUD_PROJECT",
            "GCLOUD_PROJECT",
            "GOOGLE_PROJECT_ID",
            "GCP_PROJECT",
        ),
    )
    vertex_location: str = "us-central1"
    veo_standard_model: str = "veo-3.0-generate-001"
    veo_fast_model: str = "veo-3.0-fast-generate-001"
    veo_access_token: str = ""
    default_aspect_ratio: str = "9:16"
    default_resolution: str = "720p"
    default_duration_seconds: int = 8
    default_sample_count: int = 1
    person_generation: str = "allow_adult"
    add_watermark: bool = True
    include_rai_reason: bool = True
    generate_audio: bool = True

    # Pricing tiers (USD per generated second)
    fast_price_per_second: float = 0.15
    standard_price_per_second: float = 0.40
    use_fast_for_drafts: bool = True

    # Load shaping
    max_parallel: int = 2
    min_spacing_seconds: float = 1.0
    release_delay_seconds: float = 2.0
    quota_window_seconds: float = 60.0
    quota_soft_limit: int = 10
    token_refresh_margin_seconds: float = 30.0
    predict_backoff_seconds: list[float] = Field(default_factory=lambda: [10.0, 30.0])
    fetch_backoff_seconds: list[float] = Field(default_factory=lambda: [10.0, 20.0, 30.0])
    poll_interval_seconds: list[float] = Field(default_factory=lambda: [30.0, 30.0, 30.0])
    rate_limit_poll_delay_seconds: float = 90.0
    operation_cache_size: int = 100

    # Timeouts
    request_timeout_seconds: float = 60.0
    download_timeout_seconds: float = 45.0
    download_retries: int = 3

    # Object storage configuration
    s3_endpoint_url: str = ""
    s3_region: str | None = None
    s3_public_url: str = ""
    s3_bucket: str = ""
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_addressing_style: str | None = None

    # Local disk fallback
    output_dir: str = "./tmp/video-renders"
    local_base_url: str = "http://localhost:4000/video-assets"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
