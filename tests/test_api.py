"""HTTP tests for the FastAPI surface."""

import json

import pytest
from fastapi.testclient import TestClient

from roomstage.auth.supabase_auth import get_current_user_id
from roomstage.main import create_app

from fakes import async_provider, sync_provider


@pytest.fixture
def client(service):
    app = create_app(service)
    app.dependency_overrides[get_current_user_id] = lambda: "user-1"
    return TestClient(app)


def post_staging(client, png_bytes, styles=("modern", "scandinavian"), **data):
    form = {"room_type": "living-room", "styles": list(styles), **data}
    return client.post(
        "/api/v1/staging",
        data=form,
        files={"image": ("room.png", png_bytes, "image/png")},
    )


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_submit_and_poll(client, png_bytes):
    response = post_staging(client, png_bytes)

    assert response.status_code == 200
    body = response.json()
    assert body["provider"] == "gemini"
    assert len(body["jobs"]) == 2

    job_id = body["jobs"][0]["job_id"]
    status = client.get(f"/api/v1/staging/{job_id}")
    assert status.status_code == 200
    assert status.json()["status"] == "completed"
    assert status.json()["staged_image_url"].startswith("https://storage.test/user-1/")


def test_invalid_room_type_is_400(client, png_bytes):
    response = post_staging(client, png_bytes, room_type="garage")

    assert response.status_code == 400
    assert "Invalid room type" in response.json()["detail"]


def test_routing_failure_is_503(make_service, png_bytes):
    service = make_service([sync_provider(available=False), async_provider(available=False)])
    app = create_app(service)
    app.dependency_overrides[get_current_user_id] = lambda: "user-1"

    response = post_staging(TestClient(app), png_bytes)

    assert response.status_code == 503
    assert "No staging provider available" in response.json()["detail"]


def test_unknown_job_is_404(client):
    assert client.get("/api/v1/staging/does-not-exist").status_code == 404


def test_missing_token_is_401(service):
    response = TestClient(create_app(service)).get("/api/v1/staging/anything")

    assert response.status_code == 401


def test_remix_versions_and_primary(client, png_bytes):
    job_id = post_staging(client, png_bytes, styles=("modern",)).json()["jobs"][0]["job_id"]

    remix = client.post(
        f"/api/v1/staging/{job_id}/remix",
        json={"room_type": "home-office", "furniture_style": "industrial"},
    )
    assert remix.status_code == 200
    remix_id = remix.json()["job_id"]

    versions = client.get(f"/api/v1/staging/{job_id}/versions").json()
    assert versions["total"] == 2
    assert [v["id"] for v in versions["versions"]] == [job_id, remix_id]

    assert client.put(f"/api/v1/staging/{remix_id}/primary").status_code == 200
    versions = client.get(f"/api/v1/staging/{remix_id}/versions").json()
    primary = {v["id"]: v["is_primary_version"] for v in versions["versions"]}
    assert primary == {job_id: False, remix_id: True}


def test_webhook_completes_async_job(make_service, png_bytes):
    service = make_service([async_provider()], default_provider="stable-diffusion", enable_fallback=False)
    app = create_app(service)
    app.dependency_overrides[get_current_user_id] = lambda: "user-1"
    client = TestClient(app)
    job_id = post_staging(client, png_bytes, styles=("modern",)).json()["jobs"][0]["job_id"]
    body = json.dumps({"id": "pred-123", "status": "succeeded", "output": "https://cdn/x.png"})

    first = client.post("/api/v1/webhooks/stable-diffusion", content=body)
    second = client.post("/api/v1/webhooks/stable-diffusion", content=body)

    assert first.status_code == 200
    assert first.json()["applied"] is True
    assert second.json()["applied"] is False
    assert client.get(f"/api/v1/staging/{job_id}").json()["status"] == "completed"


def test_webhook_errors(client):
    assert client.post("/api/v1/webhooks/unknown", content=b"{}").status_code == 404
    assert client.post("/api/v1/webhooks/stable-diffusion", content=b"garbage").status_code == 400


def test_webhook_bad_signature_is_401(make_service):
    replicate = async_provider()
    replicate.signature_valid = False
    client = TestClient(create_app(make_service([replicate])))

    response = client.post("/api/v1/webhooks/stable-diffusion", content=b"{}")

    assert response.status_code == 401


def test_providers_health_endpoint(client):
    response = client.get("/api/v1/providers/health")

    assert response.status_code == 200
    body = response.json()
    assert body["default_provider"] == "gemini"
    assert body["fallback_provider"] == "stable-diffusion"
    assert {p["provider"] for p in body["providers"]} == {"gemini", "stable-diffusion"}
