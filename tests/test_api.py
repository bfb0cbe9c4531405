import pytest
from fastapi.testclient import TestClient

from app.clients.credentials import StaticCredentialProvider
from app.config import Settings
from app.main import app, get_render_service
from app.services.render_service import RenderService
from app.storage.repository import RenderItemRepository


@pytest.fixture
def client(tmp_path):
    service = RenderService(
        repo=RenderItemRepository(),
        settings=Settings(output_dir=str(tmp_path), s3_bucket="", veo_access_token=""),
        credentials=StaticCredentialProvider(None),
    )
    app.dependency_overrides[get_render_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_render_without_credentials_returns_storyboard(client, manifest_payload):
    resp = client.post("/renders/item-1", json={"manifest": manifest_payload, "tier": "Fast"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["itemId"] == "item-1"
    assert body["httpStatus"] == 200
    task = body["renderTask"]
    assert task["mode"] == "dry_run"
    assert task["renderer"] == "veo-missing-creds"
    assert task["error"]["reason"] == "missing_credentials"
    bundle = task["result"]["dryRunBundle"]
    assert [shot["phase"] for shot in bundle["storyboard"]] == ["hook", "proof", "cta"]
    assert bundle["caption"]["text"] == "Brew your future with us."

    item_resp = client.get("/renders/item-1")
    assert item_resp.status_code == 200
    assert item_resp.json()["item"]["renderTask"]["id"] == task["id"]


def test_rejects_unknown_tier(client, manifest_payload):
    resp = client.post("/renders/item-1", json={"manifest": manifest_payload, "tier": "ultra"})
    assert resp.status_code == 422


def test_reset_and_missing_item(client, manifest_payload):
    assert client.get("/renders/nope").status_code == 404
    assert client.delete("/renders/nope").status_code == 404

    client.post("/renders/item-2", json={"manifest": manifest_payload})
    assert client.delete("/renders/item-2").status_code == 204
    assert client.get("/renders/item-2").status_code == 404


def test_debug_endpoints(client):
    quota_resp = client.get("/debug/veo/quota")
    assert quota_resp.status_code == 200
    quota = quota_resp.json()["quota"]
    assert quota["requestsInWindow"] == 0
    assert quota["softLimit"] == 10
    assert quota["isNearLimit"] is False

    ops_resp = client.get("/debug/veo/operations")
    assert ops_resp.status_code == 200
    assert ops_resp.json() == {"operations": []}
