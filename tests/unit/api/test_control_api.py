from __future__ import annotations

import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from photobatch.config import AppConfig, ProviderSettings
from photobatch.dependencies import build_services
from photobatch.main import create_app
from photobatch.providers.dispatcher import ProviderDispatcher, builtin_providers
from tests.mocks.images import make_jpeg
from tests.mocks.providers import DriverBook

TEMPLATE = "ecommerce-white-bg"


@pytest.fixture
def client(tmp_path: Path):
    config = AppConfig(data_root=tmp_path / "data", database_url="sqlite:///:memory:")
    dispatcher = ProviderDispatcher(
        builtin_providers(ProviderSettings(doubao_api_key="doubao-key")),
        driver_factory=DriverBook(),
    )
    services = build_services(config, dispatcher=dispatcher)
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


def upload(client: TestClient, name: str = "photo.jpg") -> str:
    response = client.post("/api/images", files={"file": (name, make_jpeg(), "image/jpeg")})
    assert response.status_code == 201
    return response.json()["image_id"]


def wait_for_status(client: TestClient, job_id: str, status: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/jobs/{job_id}").json()
        if body["status"] == status:
            return body
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} never reached {status}")


def test_upload_submit_and_complete(client: TestClient) -> None:
    image_id = upload(client)

    response = client.post("/api/jobs", json={"image_id": image_id, "template_id": TEMPLATE, "priority": 8})
    assert response.status_code == 201
    job = response.json()
    assert job["status"] in {"pending", "processing"}
    assert job["priority"] == 8

    done = wait_for_status(client, job["id"], "completed")
    assert done["progress"] == 100
    assert done["cost"] == 0.01
    assert done["result"]["provider_id"] == "doubao"
    assert Path(done["result"]["processed_path"]).exists()

    stats = client.get("/api/jobs/stats").json()
    assert stats["completed"] == 1
    assert stats["total_cost"] == 0.01
    listed = client.get("/api/jobs", params={"status": "completed"}).json()
    assert [item["id"] for item in listed] == [job["id"]]
    assert client.get("/api/cache/stats").json()["entries"] == 1

    retry = client.post(f"/api/jobs/{job['id']}/retry")
    assert retry.status_code == 409
    assert retry.json()["error"]["code"] == "invalid_state"

    assert client.post("/api/jobs/clear-finished").json() == {"count": 1}
    assert client.delete("/api/cache").json() == {"count": 1}


def test_errors_are_mapped_to_status_codes(client: TestClient) -> None:
    missing = client.get("/api/jobs/nope")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"

    unknown_template = client.post("/api/jobs", json={"image_id": "img_x", "template_id": "nope"})
    assert unknown_template.status_code == 422
    assert unknown_template.json()["error"]["code"] == "validation_error"

    assert client.post("/api/jobs/nope/cancel").json() == {"ok": False}
    assert client.post("/api/jobs/nope/pause").json() == {"ok": False}


def test_queue_controls(client: TestClient) -> None:
    assert client.get("/api/queue").json() == {"paused": False, "max_concurrency": 3}
    assert client.post("/api/queue/toggle-pause").json()["paused"] is True
    assert client.post("/api/queue/toggle-pause").json()["paused"] is False
    assert client.put("/api/queue/concurrency", json={"max_concurrency": 50}).json()["max_concurrency"] == 10


def test_provider_routes(client: TestClient) -> None:
    status = client.get("/api/providers").json()
    assert status["doubao"]["available"] is True
    assert status["gemini"]["available"] is False
    assert client.get("/api/providers/current").json() == {"provider_id": "doubao"}

    refused = client.put("/api/providers/current", json={"provider_id": "gemini"})
    assert refused.status_code == 409

    created = client.post(
        "/api/providers",
        json={"name": "Local", "endpoint": "http://localhost:9000", "api_key": "k"},
    )
    assert created.status_code == 201
    provider_id = created.json()["id"]

    patched = client.patch(f"/api/providers/{provider_id}", json={"rate_limit": 9})
    assert patched.json()["rate_limit"] == 9
    assert client.post(f"/api/providers/{provider_id}/test").json() == {"provider_id": provider_id, "success": True}
    assert client.put("/api/providers/current", json={"provider_id": provider_id}).status_code == 200

    assert client.delete(f"/api/providers/{provider_id}").json() == {"ok": True}
    assert client.get("/api/providers/current").json() == {"provider_id": "doubao"}
    assert client.delete("/api/providers/doubao").status_code == 422


def test_template_routes(client: TestClient) -> None:
    listed = client.get("/api/templates").json()
    assert TEMPLATE in {template["id"] for template in listed}
    assert client.get(f"/api/templates/{TEMPLATE}").json()["is_builtin"] is True

    payload = {
        "id": "sepia",
        "name": "Sepia",
        "category": "artistic",
        "prompt": "sepia tone",
        "params": {"strength": 0.5, "resolution": "512x512", "quality": "fast"},
    }
    created = client.post("/api/templates", json=payload)
    assert created.status_code == 201
    assert created.json()["is_builtin"] is False

    bad = client.post("/api/templates", json={**payload, "id": "other", "category": "nonsense"})
    assert bad.status_code == 422
    assert client.delete(f"/api/templates/{TEMPLATE}").status_code == 422
    assert client.delete("/api/templates/sepia").json() == {"ok": True}


def test_hot_folder_routes(client: TestClient, tmp_path: Path) -> None:
    batch_dir = tmp_path / "batch"
    batch_dir.mkdir()
    (batch_dir / "one.jpg").write_bytes(make_jpeg())

    status = client.get("/api/hot-folder").json()
    assert status["running"] is False

    assert client.post("/api/hot-folder/batch", json={"directory": str(batch_dir)}).json() == {"count": 1}
    missing = client.post("/api/hot-folder/batch", json={"directory": str(tmp_path / "nope")})
    assert missing.status_code == 400

    inbox = tmp_path / "inbox"
    config = client.put("/api/hot-folder/config", json={"input_path": str(inbox)}).json()
    assert config["input_path"] == str(inbox)
    assert client.post("/api/hot-folder/start").json() == {"ok": True}
    assert client.get("/api/hot-folder").json()["running"] is True
    assert client.post("/api/hot-folder/clear-claimed").json() == {"ok": True}
    assert client.post("/api/hot-folder/stop").json() == {"ok": True}
