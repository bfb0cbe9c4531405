import asyncio

import httpx
import pytest
from botocore.exceptions import ClientError

from app.clients.s3_storage import S3StorageClient
from app.models.domain import ClipDescriptor
from app.services.artifact_persister import ArtifactDownloadError, ArtifactPersister, sanitize_segment
from app.services.captions import build_caption_file
from app.storage.local_storage import LocalDiskStorage


class RecordingS3:
    def __init__(self, fail=False, error=None):
        self.fail = fail
        self.error = error
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType, **kwargs):
        if self.error is not None:
            raise self.error
        if self.fail:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        self.objects[Key] = (Body, ContentType)


def make_persister(tmp_path, clock, handler=None, bucket=None):
    return ArtifactPersister(
        local=LocalDiskStorage(str(tmp_path), "http://localhost:4000/video-assets"),
        bucket=bucket,
        transport=httpx.MockTransport(handler or (lambda request: httpx.Response(404))),
        sleep=clock.sleep,
        clock=clock,
    )


def test_downloads_clip_and_writes_caption_locally(tmp_path, clock):
    def handler(request):
        if request.url.path.endswith(".mp4"):
            return httpx.Response(200, content=b"video-bytes")
        return httpx.Response(200, content=b"poster-bytes")

    persister = make_persister(tmp_path, clock, handler)
    clip = ClipDescriptor(
        video_url="https://cdn.example.com/clip.mp4",
        poster_url="https://cdn.example.com/poster.jpg",
        duration_seconds=28,
    )
    assets = asyncio.run(persister.persist(clip, "Join us", ["hiring"], destination_key="Item 42/Austin"))

    ts = int(clock.now * 1000)
    assert assets.video_url == f"http://localhost:4000/video-assets/videos/item-42-austin/veo-{ts}.mp4"
    assert assets.caption_url.endswith(f"/videos/item-42-austin/veo-{ts}.srt")
    assert assets.poster_url.endswith(f"/videos/item-42-austin/veo-{ts}.jpg")
    assert assets.location == "local"
    base = tmp_path / "videos" / "item-42-austin"
    assert (base / f"veo-{ts}.mp4").read_bytes() == b"video-bytes"
    assert (base / f"veo-{ts}.srt").read_text() == "1\n00:00:00,000 --> 00:00:28,000\nJoin us\n#hiring\n"


def test_inline_clip_goes_to_bucket(tmp_path, clock):
    s3 = RecordingS3()
    bucket = S3StorageClient(
        bucket="renders",
        access_key=None,
        secret_key=None,
        public_url="https://cdn.example.com",
        client=s3,
    )
    persister = make_persister(tmp_path, clock, bucket=bucket)
    clip = ClipDescriptor(inline_video_bytes=b"inline-video", duration_seconds=8)
    assets = asyncio.run(persister.persist(clip, None, [], destination_key="mf-1"))

    ts = int(clock.now * 1000)
    assert assets.location == "bucket"
    assert assets.video_url == f"https://cdn.example.com/videos/mf-1/veo-{ts}.mp4"
    assert s3.objects[f"videos/mf-1/veo-{ts}.mp4"] == (b"inline-video", "video/mp4")
    caption, content_type = s3.objects[f"videos/mf-1/veo-{ts}.srt"]
    assert content_type == "application/x-subrip"
    assert b"Apply now to join the team." in caption
    assert assets.poster_url is None


def test_bucket_failure_falls_back_to_local_disk(tmp_path, clock):
    bucket = S3StorageClient(bucket="renders", access_key=None, secret_key=None, client=RecordingS3(fail=True))
    persister = make_persister(tmp_path, clock, bucket=bucket)
    clip = ClipDescriptor(inline_video_bytes=b"inline-video")
    assets = asyncio.run(persister.persist(clip, "Hi", [], destination_key="mf-1"))

    assert assets.location == "local"
    assert assets.video_url.startswith("http://localhost:4000/video-assets/videos/mf-1/")
    assert list((tmp_path / "videos" / "mf-1").glob("*.mp4"))


def test_unexpected_bucket_error_falls_back_to_local_disk(tmp_path, clock):
    s3 = RecordingS3(error=OSError("connection reset by peer"))
    bucket = S3StorageClient(bucket="renders", client=s3)
    persister = make_persister(tmp_path, clock, bucket=bucket)
    assets = asyncio.run(persister.persist(ClipDescriptor(inline_video_bytes=b"v"), "Hi", [], destination_key="mf-2"))

    assert assets.location == "local"
    assert assets.caption_url.startswith("http://localhost:4000/video-assets/videos/mf-2/")
    assert list((tmp_path / "videos" / "mf-2").glob("*.srt"))


def test_poster_failure_is_not_fatal(tmp_path, clock):
    def handler(request):
        if request.url.path.endswith(".jpg"):
            return httpx.Response(500)
        return httpx.Response(200, content=b"video")

    persister = make_persister(tmp_path, clock, handler)
    clip = ClipDescriptor(
        video_url="https://cdn.example.com/clip.mp4",
        poster_url="https://cdn.example.com/poster.jpg",
    )
    assets = asyncio.run(persister.persist(clip, "Hi", [], destination_key="mf-1"))
    assert assets.poster_url is None
    assert assets.video_url.endswith(".mp4")


def test_video_download_retries_then_fails(tmp_path, clock):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    persister = make_persister(tmp_path, clock, handler)
    clip = ClipDescriptor(video_url="https://cdn.example.com/clip.mp4")
    with pytest.raises(ArtifactDownloadError):
        asyncio.run(persister.persist(clip, "Hi", [], destination_key="mf-1"))
    assert len(calls) == 3
    assert clock.sleeps == [2.0, 4.0]


def test_sanitize_segment():
    assert sanitize_segment("Job #42 / Austin") == "job-42-austin"
    assert sanitize_segment("!!!", "job") == "job"
    assert sanitize_segment(None, "video") == "video"


def test_caption_duration_floor_and_default():
    assert build_caption_file("Hi", None, 0.4).startswith("1\n00:00:00,000 --> 00:00:02,000\n")
    assert build_caption_file("", ["#a", "b"], None) == (
        "1\n00:00:00,000 --> 00:00:30,000\nApply now to join the team.\n#a #b\n"
    )
