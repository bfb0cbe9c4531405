from __future__ import annotations

from typing import Any, List, Optional

from pydantic import Field, field_validator

from .domain import CamelModel, QuotaSnapshot, RenderItem, RenderManifest, RenderOutcome

KNOWN_TIERS = ("fast", "standard")


class RenderRequest(CamelModel):
    manifest: RenderManifest
    tier: Optional[str] = Field(default=None, description="Quality/cost preset: fast or standard")

    @field_validator("tier")
    @classmethod
    def validate_tier(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        normalized = value.strip().lower()
        if normalized not in KNOWN_TIERS:
            raise ValueError(f"tier must be one of {', '.join(KNOWN_TIERS)}")
        return normalized


class RenderResponse(RenderOutcome):
    item_id: str


class RenderItemResponse(CamelModel):
    item: RenderItem


class QuotaResponse(CamelModel):
    quota: QuotaSnapshot


class OperationsResponse(CamelModel):
    operations: List[dict[str, Any]]
