"""Provider-adapter contract for Veo responses.

Veo answers in several shapes depending on endpoint and model version: a
playable URI on the first prediction, base64 video bytes in ``videos`` or
``predictions``, or a long-running operation handle. Each shape is read by
one pure extractor; :data:`EXTRACTORS` lists them in priority order and
:func:`normalize_response` returns the first match as a closed variant.
Supporting another shape means adding an extractor, not another branch.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Union

from app.models.domain import ClipDescriptor

URI_KEYS = ("uri", "videoUri", "videoUrl", "outputUri")
CLIP_ID_KEYS = ("clipId", "videoId", "id")
INLINE_ENTRY_KEYS = ("videoBase64", "bytesBase64Encoded")
INLINE_PREDICTION_KEYS = ("bytesBase64Encoded", "videoBytesBase64")
OPERATION_KEYS = ("name", "operationName")
DATA_URI_PREFIX = "data:video/mp4;base64,"


@dataclass(frozen=True)
class ClipFound:
    clip: ClipDescriptor


@dataclass(frozen=True)
class OperationHandle:
    name: str


@dataclass(frozen=True)
class Unrecognized:
    keys: tuple[str, ...]


ProviderResponse = Union[ClipFound, OperationHandle, Unrecognized]
Extractor = Callable[[dict[str, Any], Optional[float]], Optional[ProviderResponse]]


def is_http_url(value: Any) -> bool:
    return isinstance(value, str) and value.lower().startswith(("http://", "https://"))


def asset_token(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()[:16]


def extract_status(payload: dict[str, Any]) -> Optional[str]:
    metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
    for value in (payload.get("status"), payload.get("state"), metadata.get("status"), metadata.get("state")):
        if isinstance(value, str) and value:
            return value
    return None


def _container(payload: dict[str, Any]) -> dict[str, Any]:
    response = payload.get("response")
    return response if isinstance(response, dict) else payload


def _predictions(payload: dict[str, Any]) -> list[Any]:
    for source in (payload, _container(payload)):
        predictions = source.get("predictions")
        if isinstance(predictions, list):
            return predictions
    return []


def _first_prediction(payload: dict[str, Any]) -> dict[str, Any]:
    predictions = _predictions(payload)
    if predictions and isinstance(predictions[0], dict):
        return predictions[0]
    return {}


def _first_string(source: dict[str, Any], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = source.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _clip_id(payload: dict[str, Any]) -> Optional[str]:
    return (
        _first_string(_first_prediction(payload), CLIP_ID_KEYS)
        or _first_string(_container(payload), ("id", "name"))
        or _first_string(payload, ("id", "name"))
    )


def _duration(payload: dict[str, Any], fallback: Optional[float]) -> Optional[float]:
    for source in (_first_prediction(payload), _container(payload)):
        value = source.get("durationSeconds")
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            continue
        if seconds > 0:
            return seconds
    return fallback


def _inline_candidates(payload: dict[str, Any]) -> list[str]:
    found: list[str] = []
    for source in (payload, _container(payload)):
        videos = source.get("videos")
        if not isinstance(videos, list):
            continue
        for entry in videos:
            if isinstance(entry, str):
                found.append(entry)
            elif isinstance(entry, dict):
                value = _first_string(entry, INLINE_ENTRY_KEYS)
                if value:
                    found.append(value)
        if found:
            break
    for prediction in _predictions(payload):
        if isinstance(prediction, dict):
            value = _first_string(prediction, INLINE_PREDICTION_KEYS)
            if value:
                found.append(value)
    return [value for value in found if value.strip()]


def _decode_inline(value: str) -> Optional[bytes]:
    raw = value.strip()
    if raw.startswith(DATA_URI_PREFIX):
        raw = raw[len(DATA_URI_PREFIX):]
    elif raw.startswith("data:") and "," in raw:
        raw = raw.split(",", 1)[1]
    try:
        data = base64.b64decode(raw, validate=False)
    except (binascii.Error, ValueError):
        return None
    return data or None


def _uri_candidates(payload: dict[str, Any]) -> list[str]:
    found: list[str] = []
    prediction_uri = _first_string(_first_prediction(payload), URI_KEYS)
    if prediction_uri:
        found.append(prediction_uri)
    videos = _container(payload).get("videos")
    if isinstance(videos, list):
        for entry in videos:
            if isinstance(entry, dict):
                value = _first_string(entry, ("uri", "gcsUri"))
                if value:
                    found.append(value)
    return found


def extract_playable_uri(payload: dict[str, Any], fallback_duration: Optional[float]) -> Optional[ProviderResponse]:
    uri = next((candidate for candidate in _uri_candidates(payload) if is_http_url(candidate)), None)
    if uri is None:
        return None
    clip = ClipDescriptor(
        clip_id=_clip_id(payload),
        video_url=uri,
        duration_seconds=_duration(payload, fallback_duration),
        status=extract_status(payload),
    )
    return ClipFound(clip=clip)


def extract_inline_video(payload: dict[str, Any], fallback_duration: Optional[float]) -> Optional[ProviderResponse]:
    for candidate in _inline_candidates(payload):
        data = _decode_inline(candidate)
        if data is None:
            continue
        token = asset_token(data)
        clip = ClipDescriptor(
            clip_id=_clip_id(payload) or token,
            inline_video_bytes=data,
            duration_seconds=_duration(payload, fallback_duration),
            asset_token=token,
            status=extract_status(payload),
        )
        return ClipFound(clip=clip)
    return None


def extract_operation_handle(payload: dict[str, Any], fallback_duration: Optional[float]) -> Optional[ProviderResponse]:
    name = _first_string(payload, OPERATION_KEYS)
    if name is None and isinstance(payload.get("operation"), dict):
        name = _first_string(payload["operation"], ("name",))
    return OperationHandle(name=name) if name else None


EXTRACTORS: tuple[Extractor, ...] = (
    extract_playable_uri,
    extract_inline_video,
    extract_operation_handle,
)


def normalize_response(
    payload: Any,
    fallback_duration: Optional[float] = None,
    extractors: Sequence[Extractor] = EXTRACTORS,
) -> ProviderResponse:
    if not isinstance(payload, dict):
        return Unrecognized(keys=())
    for extractor in extractors:
        result = extractor(payload, fallback_duration)
        if result is not None:
            return result
    return Unrecognized(keys=tuple(sorted(payload.keys())))
