from __future__ import annotations

from typing import Iterable, Optional

DEFAULT_CAPTION_TEXT = "Apply now to join the team."
DEFAULT_CAPTION_SECONDS = 30
MIN_CAPTION_SECONDS = 2


def format_srt_timestamp(seconds: float) -> str:
    total_ms = int(round(max(0.0, seconds) * 1000))
    hours = total_ms // 3_600_000
    minutes = (total_ms % 3_600_000) // 60_000
    secs = (total_ms % 60_000) // 1000
    millis = total_ms % 1000
    return f"{hours:02}:{minutes:02}:{secs:02},{millis:03}"


def format_hashtags(hashtags: Iterable[str] | None) -> str:
    tags = []
    for tag in hashtags or []:
        cleaned = str(tag).strip().lstrip("#")
        if cleaned:
            tags.append(f"#{cleaned}")
    return " ".join(tags)


def build_caption_file(
    text: Optional[str],
    hashtags: Iterable[str] | None,
    duration_seconds: Optional[float],
) -> str:
    """Single SRT cue covering the whole clip."""
    body = (text or "").strip() or DEFAULT_CAPTION_TEXT
    hashtag_line = format_hashtags(hashtags)
    if hashtag_line:
        body = f"{body}\n{hashtag_line}"
    try:
        seconds = float(duration_seconds or 0)
    except (TypeError, ValueError):
        seconds = 0.0
    safe_seconds = max(MIN_CAPTION_SECONDS, round(seconds) if seconds > 0 else DEFAULT_CAPTION_SECONDS)
    return f"1\n00:00:00,000 --> {format_srt_timestamp(safe_seconds)}\n{body}\n"
