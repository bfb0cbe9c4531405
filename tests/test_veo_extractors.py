import base64

from app.clients.veo_extractors import (
    ClipFound,
    OperationHandle,
    Unrecognized,
    asset_token,
    extract_status,
    normalize_response,
)


def test_playable_uri_wins_over_operation_name():
    payload = {
        "name": "projects/p/locations/us-central1/publishers/google/models/veo/operations/123",
        "predictions": [{"videoUri": "https://cdn.example.com/clip.mp4", "durationSeconds": 8}],
    }
    result = normalize_response(payload)
    assert isinstance(result, ClipFound)
    assert result.clip.video_url == "https://cdn.example.com/clip.mp4"
    assert result.clip.duration_seconds == 8


def test_gcs_uri_is_not_playable():
    payload = {"response": {"videos": [{"gcsUri": "gs://bucket/clip.mp4"}]}, "name": "operations/9"}
    result = normalize_response(payload)
    assert result == OperationHandle(name="operations/9")


def test_inline_video_uses_token_as_clip_id():
    raw = b"\x00\x00\x00\x18ftypmp42"
    payload = {
        "done": True,
        "response": {"videos": [{"bytesBase64Encoded": base64.b64encode(raw).decode("ascii")}]},
    }
    result = normalize_response(payload, fallback_duration=28.0)
    assert isinstance(result, ClipFound)
    assert result.clip.inline_video_bytes == raw
    assert result.clip.video_url is None
    assert result.clip.asset_token == asset_token(raw)
    assert result.clip.clip_id == asset_token(raw)
    assert result.clip.duration_seconds == 28.0


def test_inline_data_uri_prefix_is_stripped():
    raw = b"mp4-bytes"
    encoded = "data:video/mp4;base64," + base64.b64encode(raw).decode("ascii")
    result = normalize_response({"predictions": [{"bytesBase64Encoded": encoded}]})
    assert isinstance(result, ClipFound)
    assert result.clip.inline_video_bytes == raw


def test_nested_operation_name():
    result = normalize_response({"operation": {"name": "operations/abc"}})
    assert result == OperationHandle(name="operations/abc")


def test_unrecognized_reports_keys():
    assert normalize_response({"metadata": {}, "done": False}) == Unrecognized(keys=("done", "metadata"))
    assert normalize_response(["not", "a", "dict"]) == Unrecognized(keys=())


def test_extract_status_reads_metadata():
    assert extract_status({"metadata": {"state": "RUNNING"}}) == "RUNNING"
    assert extract_status({"status": "SUCCEEDED", "metadata": {"state": "RUNNING"}}) == "SUCCEEDED"
    assert extract_status({}) is None
