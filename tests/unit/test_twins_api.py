"""HTTP API tests over the FastAPI app with an in-memory service."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from twinsync.api.dependencies import ingestor_dependency, service_dependency
from twinsync.core.twin.ingest import TelemetryIngestor
from twinsync.core.twin.middleware import LoggingMiddleware, MetricsMiddleware
from twinsync.main import app

ALICE = {"Authorization": "Bearer alice-token"}
BOB = {"Authorization": "Bearer bob-token"}


@pytest.fixture
def client(service):
    svc = MetricsMiddleware(LoggingMiddleware(service))
    app.dependency_overrides[service_dependency] = lambda: svc
    app.dependency_overrides[ingestor_dependency] = lambda: TelemetryIngestor(svc)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _create(client, **body) -> dict:
    resp = client.post("/api/v1/twins", json=body, headers=ALICE)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_and_view_twin(client):
    resp = client.post(
        "/api/v1/twins",
        json={
            "name": "pump",
            "thing_id": "thing-1",
            "metadata": {"site": "a"},
            "definition": {"attributes": {"temp": {"channel": "ch-1", "subtopic": "temp", "persist_state": True}}},
        },
        headers=ALICE,
    )

    assert resp.status_code == 201
    assert resp.headers["Location"] == "/twins/twin-1"
    body = resp.json()
    assert body["owner"] == "alice"
    assert body["revision"] == 0
    assert body["definitions"][0]["attributes"]["temp"]["persist_state"] is True

    resp = client.get("/api/v1/twins/twin-1", headers=ALICE)
    assert resp.status_code == 200
    assert resp.json()["name"] == "pump"

    resp = client.get("/api/v1/twins/things/thing-1", headers=ALICE)
    assert resp.status_code == 200
    assert resp.json()["id"] == "twin-1"


def test_missing_or_unknown_token_is_401(client):
    resp = client.post("/api/v1/twins", json={"name": "pump"})
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "UNAUTHORIZED"

    resp = client.get("/api/v1/twins", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


def test_bare_token_is_accepted(client):
    resp = client.get("/api/v1/twins", headers={"Authorization": "alice-token"})

    assert resp.status_code == 200


def test_view_missing_twin_is_404(client):
    resp = client.get("/api/v1/twins/unknown", headers=ALICE)

    assert resp.status_code == 404
    assert resp.json()["detail"] == {"code": "NOT_FOUND", "message": "twin unknown not found"}


def test_update_twin_appends_definition(client):
    _create(client, name="pump")

    resp = client.put(
        "/api/v1/twins/twin-1",
        json={"name": "pump-2", "definition": {"attributes": {"rpm": {"channel": "ch-1", "subtopic": "rpm"}}}},
        headers=ALICE,
    )
    assert resp.status_code == 200
    assert resp.json() == {"id": "twin-1", "status": "updated"}

    body = client.get("/api/v1/twins/twin-1", headers=ALICE).json()
    assert body["name"] == "pump-2"
    assert body["revision"] == 1
    assert [d["id"] for d in body["definitions"]] == [0, 1]

    resp = client.put("/api/v1/twins/unknown", json={"name": "x"}, headers=ALICE)
    assert resp.status_code == 404


def test_list_twins_paging_and_filters(client):
    _create(client, name="pump", metadata={"site": "a"})
    _create(client, name="valve", metadata={"site": "b"})
    _create(client, name="pump", metadata={"site": "b"})

    body = client.get("/api/v1/twins", headers=ALICE).json()
    assert (body["total"], body["offset"], body["limit"]) == (3, 0, 10)

    body = client.get("/api/v1/twins", params={"offset": 1, "limit": 1}, headers=ALICE).json()
    assert [t["id"] for t in body["twins"]] == ["twin-2"]

    body = client.get("/api/v1/twins", params={"name": "pump"}, headers=ALICE).json()
    assert [t["id"] for t in body["twins"]] == ["twin-1", "twin-3"]

    body = client.get("/api/v1/twins", params={"metadata": '{"site": "b"}'}, headers=ALICE).json()
    assert [t["id"] for t in body["twins"]] == ["twin-2", "twin-3"]

    assert client.get("/api/v1/twins", headers=BOB).json()["total"] == 0


@pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 101}, {"offset": -1}])
def test_list_twins_rejects_bad_paging(client, params):
    resp = client.get("/api/v1/twins", params=params, headers=ALICE)

    assert resp.status_code == 422


@pytest.mark.parametrize("metadata", ["{oops", "[1, 2]"])
def test_list_twins_rejects_malformed_metadata_filter(client, metadata):
    resp = client.get("/api/v1/twins", params={"metadata": metadata}, headers=ALICE)

    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "MALFORMED_ENTITY"


def test_remove_twin(client):
    _create(client, name="pump")

    resp = client.delete("/api/v1/twins/twin-1", headers=ALICE)
    assert resp.status_code == 204
    assert client.get("/api/v1/twins/twin-1", headers=ALICE).status_code == 404


def test_telemetry_over_http_creates_states(client):
    _create(
        client,
        name="pump",
        thing_id="thing-1",
        definition={"attributes": {"temp": {"channel": "ch-1", "subtopic": "temp", "persist_state": True}}},
    )

    resp = client.post(
        "/api/v1/telemetry",
        json={"publisher": "thing-1", "channel": "ch-1", "subtopic": "temp", "payload": [{"n": "temp", "v": 21.5}]},
        headers=ALICE,
    )
    assert resp.status_code == 202
    assert resp.json()["ingest"]["status"] == "processed"

    resp = client.post(
        "/api/v1/telemetry",
        json={"publisher": "thing-1", "channel": "ch-1", "subtopic": "temp", "payload": '[{"v": 22}]'},
        headers=ALICE,
    )
    assert resp.json()["ingest"]["status"] == "processed"

    body = client.get("/api/v1/states/twin-1", headers=ALICE).json()
    assert body["total"] == 2
    assert [s["id"] for s in body["states"]] == [1, 2]
    assert body["states"][1]["payload"] == {"temp": 22.0}


def test_telemetry_failures_are_reported_in_body(client):
    resp = client.post(
        "/api/v1/telemetry",
        json={"publisher": "ghost", "channel": "ch-1", "payload": [{"v": 1}]},
        headers=ALICE,
    )

    assert resp.status_code == 202
    assert resp.json()["ingest"]["status"] == "failed"
    assert resp.json()["ingest"]["error"]["code"] == "NOT_FOUND"


def test_telemetry_requires_valid_token(client):
    resp = client.post(
        "/api/v1/telemetry",
        json={"publisher": "thing-1", "channel": "ch-1", "payload": []},
        headers={"Authorization": "Bearer nope"},
    )

    assert resp.status_code == 401


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert resp.json()["services"]["store"] == "memory"
