from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import PNG_BYTES, make_client, provider_reply, sample_payload
from ecomap.api.routes import offer_latest
from ecomap.api.serializers import sse_event
from ecomap.extraction.vision_extractor import VisionExtractor
from ecomap.main import create_app
from ecomap.session.controller import SessionState
from ecomap.store.map_store import MapStore


@pytest.fixture
def client(make_store):
    extractor = VisionExtractor(make_client(lambda request: provider_reply(sample_payload(name="Imported"))))
    app = create_app(store=make_store(), extractor=extractor)
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["store_available"] is True


def test_map_lifecycle(client):
    assert client.get("/maps").json() == []
    assert client.get("/maps/current").status_code == 404

    created = client.post("/maps", json={"name": "Main"})
    assert created.status_code == 201
    map_id = created.json()["id"]
    assert created.json()["nodes"] == []
    assert created.json()["section"] == "general"

    assert client.get("/maps/current").json()["id"] == map_id

    renamed = client.post(f"/maps/{map_id}/rename", json={"name": "Renamed"})
    assert renamed.json()["name"] == "Renamed"
    assert renamed.json()["updatedAt"] > created.json()["updatedAt"]
    assert renamed.json()["createdAt"] == created.json()["createdAt"]

    assert client.delete(f"/maps/{map_id}").status_code == 204
    assert client.delete(f"/maps/{map_id}").status_code == 204
    assert client.get(f"/maps/{map_id}").status_code == 404

    missing = client.post(f"/maps/{map_id}/rename", json={"name": "Y"})
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"


def test_put_and_patch(client):
    put = client.put("/maps/m1", json=sample_payload())
    assert put.status_code == 200
    assert put.json()["id"] == "m1"

    bad = client.patch("/maps/m1", json={"edges": [{"id": "e1", "source": "cga", "target": "ghost"}]})
    assert bad.status_code == 422
    assert bad.json()["issues"][0]["code"] == "MISSING_EDGE_TARGET"

    ok = client.patch("/maps/m1", json={"edges": []})
    assert ok.json()["edges"] == []
    assert len(ok.json()["nodes"]) == 3


def test_node_and_edge_routes(client):
    client.put("/maps/m1", json=sample_payload())

    added = client.post("/maps/m1/nodes", json={"label": "ACPR", "type": "authority"})
    assert added.json()["nodes"][-1]["id"] == "n4"

    edge = client.post("/maps/m1/edges", json={"source": "n4", "target": "bank"})
    assert edge.json()["edges"][-1]["id"] == "e3"

    moved = client.patch("/maps/m1/nodes/n4", json={"position": {"x": 1.0, "y": 2.0}})
    assert moved.json()["nodes"][-1]["position"] == {"x": 1.0, "y": 2.0}

    relabeled = client.patch("/maps/m1/edges/e3", json={"label": "Contrôle"})
    assert relabeled.json()["edges"][-1]["label"] == "Contrôle"

    removed = client.delete("/maps/m1/nodes/bank")
    assert [e["id"] for e in removed.json()["edges"]] == ["e2"]

    assert client.delete("/maps/m1/edges/e2").json()["edges"] == []
    assert client.delete("/maps/nope/edges/e2").status_code == 404


def test_select(client):
    client.put("/maps/a", json=sample_payload())
    client.put("/maps/b", json=sample_payload())
    assert client.get("/maps/current").json()["id"] == "a"

    assert client.post("/maps/b/select").status_code == 200
    assert client.get("/maps/current").json()["id"] == "b"
    assert client.post("/maps/zzz/select").status_code == 404


def test_import_draft_and_save(client):
    files = {"file": ("ecosystem.png", PNG_BYTES, "image/png")}

    draft = client.post("/maps/import", files=files)
    assert draft.json()["status"] == "draft"
    assert draft.json()["map"]["name"] == "Imported"
    assert "id" not in draft.json()["map"]
    assert client.get("/maps").json() == []

    saved = client.post("/maps/import?save=true", files=files)
    assert saved.json()["status"] == "saved"
    assert saved.json()["map"]["id"]
    assert len(client.get("/maps").json()) == 1


def test_import_errors(make_store, monkeypatch):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    files = {"file": ("ecosystem.png", PNG_BYTES, "image/png")}

    with TestClient(create_app(store=make_store(), extractor=VisionExtractor())) as client:
        response = client.post("/maps/import", files=files)
        assert response.status_code == 503
        assert response.json()["code"] == "configuration_missing"

    failing = VisionExtractor(make_client(lambda request: httpx.Response(500, text="down")))
    with TestClient(create_app(store=make_store(), extractor=failing)) as client:
        response = client.post("/maps/import", files=files)
        assert response.status_code == 502
        assert response.json()["code"] == "extraction_failed"


def test_degraded_store_does_not_crash():
    with TestClient(create_app(store=MapStore(database_url=""))) as client:
        assert client.get("/maps").json() == []
        assert client.get("/health").json()["store_available"] is False
        assert client.post("/maps", json={"name": "Main"}).status_code == 503
        assert client.delete("/maps/m1").status_code == 204


def test_sse_frame():
    assert sse_event({"maps": []}) == 'data: {"maps": []}\n\n'


def test_stream_queue_keeps_only_latest_state():
    queue = asyncio.Queue(maxsize=1)
    first = SessionState(selected_id="a", loaded=True)
    latest = SessionState(selected_id="b", loaded=True)

    offer_latest(queue, first)
    offer_latest(queue, latest)

    assert queue.qsize() == 1
    assert queue.get_nowait() is latest
