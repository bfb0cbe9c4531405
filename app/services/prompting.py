from __future__ import annotations

import re
from typing import Iterable, Optional

from app.models.domain import RenderManifest, StoryboardShot, Thumbnail

_RESOLUTION_ALIASES = {
    "1080x1920": "1080p",
    "1920x1080": "1080p",
    "1080p": "1080p",
    "720x1280": "720p",
    "1280x720": "720p",
    "720p": "720p",
}


def normalize_resolution(value: Optional[str], default: str = "720p") -> str:
    if not isinstance(value, str):
        return default
    return _RESOLUTION_ALIASES.get(value.strip().lower(), default)


def storyboard_duration(shots: Iterable[StoryboardShot]) -> float:
    total = 0.0
    for shot in shots:
        try:
            total += float(shot.duration_seconds or 0)
        except (TypeError, ValueError):
            continue
    return total


def build_director_prompt(manifest: RenderManifest) -> str:
    job = manifest.job
    beats = "\n".join(
        f"- {shot.phase}: {shot.visual}. On-screen text: {shot.on_screen_text}. VO: {shot.voice_over}"
        for shot in manifest.storyboard
    )
    target = manifest.generator.target_duration_seconds or "~30"
    return (
        f"Create a single cohesive recruiting clip for {job.title or 'the role'} in {job.geo or 'the target city'}.\n"
        "Tone: energetic, inclusive, people-first.\n"
        f"Channel: {manifest.channel_name or 'social'}. Aspect {manifest.spec.aspect_ratio or '9:16'}. "
        f"Duration target {target} seconds.\n"
        f"Beats:\n{beats}\n"
        f"Include pay {job.pay_range or 'as provided'} and CTA {manifest.caption.text or 'Apply now'}."
    )


def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def build_fallback_thumbnail(manifest: RenderManifest) -> Thumbnail:
    title = manifest.job.title or "Now hiring"
    overlay = f"{title} · {_slugify(manifest.job.geo or 'global')}".replace("-", " ")
    return Thumbnail(
        description="High-contrast frame showing teammate smiling with overlay text",
        overlay_text=overlay,
    )
