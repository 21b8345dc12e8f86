"""
Tests for the HTTP API.

Runs the app with the in-memory content store and the demo animals
seeded at startup.
"""

import pytest
from fastapi.testclient import TestClient

from vetchain.main import app
from vetchain.runtime import DEMO_ANIMALS, DEMO_OWNER, SERVICE_ACCOUNT

LUNA, MICHI = (asset_id for asset_id, _ in DEMO_ANIMALS)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("VETCHAIN_CONTENT_STORE", "memory")
    monkeypatch.setenv("VETCHAIN_LEDGER", "memory")
    monkeypatch.setenv("VETCHAIN_ENABLE_AUTO_SEED", "1")
    with TestClient(app) as client:
        yield client


@pytest.fixture
def bare_client(monkeypatch):
    monkeypatch.setenv("VETCHAIN_CONTENT_STORE", "memory")
    monkeypatch.setenv("VETCHAIN_LEDGER", "memory")
    monkeypatch.delenv("VETCHAIN_ENABLE_AUTO_SEED", raising=False)
    with TestClient(app) as client:
        yield client


class TestSystem:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["session"]["state"] == "connected"
        assert body["checks"]["session"]["chain_id"] == 11155111

    def test_request_id_header(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc12345"})
        assert response.headers["X-Request-ID"] == "abc12345"

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        body = response.json()
        assert body["transactions_confirmed"] >= 4
        assert "fetch_latency_p95_ms" in body

    def test_api_info(self, client):
        body = client.get("/api").json()
        assert body["chain_id"] == 11155111
        assert body["storage_backend"] == "InMemoryContentStore"


class TestAssets:

    def test_owner_assets(self, client):
        response = client.get(f"/api/owners/{DEMO_OWNER}/assets")

        assert response.status_code == 200
        assets = response.json()
        assert [a["asset_id"] for a in assets] == [LUNA, MICHI]
        assert assets[0]["name"] == "Luna"
        assert assets[0]["health_state"] == 1
        assert assets[1]["health_state"] == 0
        assert assets[0]["content_uri"].startswith("ipfs://")
        assert assets[0]["image_url"].startswith("https://ipfs.io/ipfs/")

    def test_owner_without_assets(self, client):
        response = client.get(f"/api/owners/{'0x' + '99' * 20}/assets")
        assert response.status_code == 200
        assert response.json() == []

    def test_malformed_owner(self, client):
        response = client.get("/api/owners/0x123/assets")
        assert response.status_code == 422
        assert response.json()["kind"] == "validation_error"

    def test_history(self, client):
        response = client.get(f"/api/assets/{LUNA}/history")

        assert response.status_code == 200
        records = response.json()
        assert [r["position"] for r in records] == [0, 1]
        assert records[1]["diagnostico"] == "Otitis externa"
        assert records[1]["medicamentos"] == ["Otomax", "Meloxicam"]
        assert records[1]["veterinario"] == SERVICE_ACCOUNT

    def test_history_of_unknown_asset(self, client):
        response = client.get("/api/assets/12345/history")
        assert response.status_code == 200
        assert response.json() == []

    def test_history_rejects_non_positive_id(self, client):
        assert client.get("/api/assets/0/history").status_code == 422

    def test_veterinarians(self, client):
        response = client.get(f"/api/owners/{DEMO_OWNER}/veterinarians")
        assert response.status_code == 200
        assert response.json() == [{"address": SERVICE_ACCOUNT, "has_valid_credential": True}]

    def test_empty_ledger(self, bare_client):
        response = bare_client.get(f"/api/owners/{DEMO_OWNER}/assets")
        assert response.json() == []


class TestAuthorizationLink:

    def test_link(self, client):
        response = client.get(f"/api/veterinarians/{SERVICE_ACCOUNT}/authorization-link")

        assert response.status_code == 200
        body = response.json()
        assert body["uri"].endswith(f"/authorizeVeterinarian?param-0={SERVICE_ACCOUNT}")
        assert body["chain_id"] == 11155111
        assert body["function"] == "authorizeVeterinarian"

    def test_qr(self, client):
        response = client.get(f"/api/veterinarians/{SERVICE_ACCOUNT}/authorization-qr.png")

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")

    def test_malformed_vet(self, client):
        response = client.get("/api/veterinarians/nope/authorization-link")
        assert response.status_code == 422


class TestContentStoreProxy:

    def test_upload_file(self, bare_client):
        response = bare_client.post(
            "/api/ipfs/upload",
            files={"file": ("luna.png", b"\x89PNG-bytes", "image/png")},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["uri"] == f"ipfs://{body['cid']}"

    def test_upload_without_file(self, bare_client):
        response = bare_client.post("/api/ipfs/upload")
        assert response.status_code == 400

    def test_upload_json(self, bare_client):
        response = bare_client.post("/api/ipfs/json", json={"name": "Luna", "chipId": 7})

        assert response.status_code == 200
        cid = response.json()["cid"]
        store = bare_client.app.state.runtime.store
        assert cid in store

    def test_same_document_same_cid(self, bare_client):
        first = bare_client.post("/api/ipfs/json", json={"a": 1, "b": 2}).json()["cid"]
        second = bare_client.post("/api/ipfs/json", json={"b": 2, "a": 1}).json()["cid"]
        assert first == second
