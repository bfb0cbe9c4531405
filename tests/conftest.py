import pytest

from app.models.domain import RenderManifest


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manifest_payload():
    return {
        "manifestId": "mf-42",
        "version": 3,
        "channelName": "TikTok",
        "storyboard": [
            {
                "phase": "hook",
                "visual": "Barista hands a latte across the counter",
                "onScreenText": "Now hiring baristas",
                "voiceOver": "Love coffee? Join us.",
                "durationSeconds": 6,
            },
            {
                "phase": "proof",
                "visual": "Team laughing during shift change",
                "onScreenText": "$18-22/hr + tips",
                "voiceOver": "Great pay and flexible shifts.",
                "durationSeconds": 10,
            },
            {
                "phase": "cta",
                "visual": "Close-up of the apply QR code",
                "onScreenText": "Apply today",
                "voiceOver": "Apply in two minutes.",
                "durationSeconds": 12,
            },
        ],
        "caption": {"text": "Brew your future with us.", "hashtags": ["hiring", "#barista"]},
        "spec": {"aspectRatio": "9:16", "resolution": "1080x1920"},
        "job": {"title": "Barista", "geo": "Austin, TX", "payRange": "$18-22/hr"},
        "generator": {"targetDurationSeconds": 28, "plannedExtends": 0},
        "compliance": {"qaChecklist": ["pay range visible", "EEO line present"]},
    }


@pytest.fixture
def manifest(manifest_payload):
    return RenderManifest.model_validate(manifest_payload)
