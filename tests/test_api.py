"""Tests for the FastAPI service in sequencer/main.py"""
from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from conftest import MODEL_ID, FakeRenderBackend
from sequencer.core.generator import SequenceGenerator
from sequencer_shared.files import GLB_MIME_TYPE
from sequencer.main import create_app


@pytest.fixture
def client(settings, config):
    app = create_app(settings, generator=SequenceGenerator(config, FakeRenderBackend()))
    with TestClient(app) as c:
        yield c


def _wait_for(client: TestClient, job_id: str, timeout: float = 30.0) -> dict:
    deadline = time.time() + timeout
    while time.time() < deadline:
        body = client.get(f"/jobs/{job_id}").json()
        if body["status"] in {"succeeded", "failed", "cancelled"}:
            return body
        time.sleep(0.05)
    raise AssertionError(f"job {job_id} did not finish")


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["backend"] == "fake"
    assert body["models_dir_exists"] is True


def test_materials_in_render_order(client):
    names = [m["name"] for m in client.get("/materials").json()["materials"]]
    assert names == ["platinum", "white-gold", "yellow-gold", "rose-gold"]


def test_models_listed(client):
    models = client.get("/models").json()["models"]
    assert [m["id"] for m in models] == [MODEL_ID]
    assert models[0]["has_sequences"] is False


def test_unknown_model_rejected(client):
    r = client.post("/jobs", json={"model_ids": ["ghost-ring"]})
    assert r.status_code == 400
    assert "ghost-ring" in r.json()["detail"]


def test_empty_model_list_rejected(client):
    assert client.post("/jobs", json={"model_ids": []}).status_code == 422


def test_job_lifecycle(client):
    r = client.post("/jobs", json={"model_ids": [MODEL_ID], "materials": ["white-gold"]})
    assert r.status_code == 200
    accepted = r.json()
    assert accepted["status_url"] == f"/jobs/{accepted['job_id']}"

    status = _wait_for(client, accepted["job_id"])
    assert status["status"] == "succeeded"
    assert status["progress"] == 100

    result = client.get(accepted["result_url"]).json()
    assert result["status"] == "succeeded"
    [seq] = result["result"]["sequences"]
    assert seq["sequence"] == f"{MODEL_ID}-white-gold"
    assert seq["rendered"] == 36

    sequences = client.get("/sequences").json()["sequences"]
    assert [s["name"] for s in sequences] == [f"{MODEL_ID}-white-gold"]
    assert sequences[0]["issues"] == []


def test_unknown_job(client):
    assert client.get("/jobs/nope").status_code == 404
    assert client.get("/jobs/nope/result").status_code == 404
    assert client.delete("/jobs/nope").status_code == 404


def test_api_key_enforced(settings, config):
    keyed = settings.model_copy(update={"api_key": "s3cret"})
    app = create_app(keyed, generator=SequenceGenerator(config, FakeRenderBackend()))
    with TestClient(app) as c:
        assert c.post("/jobs", json={"model_ids": [MODEL_ID]}).status_code == 401
        r = c.post(
            "/jobs",
            json={"model_ids": [MODEL_ID], "materials": ["platinum"]},
            headers={"X-API-Key": "s3cret"},
        )
        assert r.status_code == 200


def test_upload_model(client):
    r = client.post("/models", files={"file": ("band-classic-002.glb", b"glTF-binary", GLB_MIME_TYPE)})
    assert r.status_code == 200
    assert r.json()["model"]["id"] == "band-classic-002"

    ids = [m["id"] for m in client.get("/models").json()["models"]]
    assert ids == ["band-classic-002", MODEL_ID]

    dup = client.post("/models", files={"file": ("band-classic-002.glb", b"glTF", GLB_MIME_TYPE)})
    assert dup.status_code == 409


def test_upload_rejects_wrong_type_and_size(settings, config):
    small = settings.model_copy(update={"max_model_upload_bytes": 8})
    app = create_app(small, generator=SequenceGenerator(config, FakeRenderBackend()))
    with TestClient(app) as c:
        r = c.post("/models", files={"file": ("ring.obj", b"v 0 0 0", "text/plain")})
        assert r.status_code == 400
        r = c.post("/models", files={"file": ("big.glb", b"x" * 64, GLB_MIME_TYPE)})
        assert r.status_code == 400
        assert "at most" in r.json()["detail"]
        assert c.post("/models").status_code == 422

    assert not (config.models_dir / "big.glb").exists()


def test_delete_model(client, config):
    r = client.post("/jobs", json={"model_ids": [MODEL_ID], "materials": ["platinum"]})
    assert _wait_for(client, r.json()["job_id"])["status"] == "succeeded"

    r = client.delete(f"/models/{MODEL_ID}")
    assert r.status_code == 200
    assert r.json()["removed_sequences"] == [f"{MODEL_ID}-platinum"]
    assert client.get("/models").json()["models"] == []
    assert client.get("/sequences").json()["sequences"] == []

    assert client.delete(f"/models/{MODEL_ID}").status_code == 404
    assert client.delete("/models/..hidden").status_code == 400


def test_list_jobs_with_metrics(client):
    assert client.get("/jobs").json() == {
        "jobs": [],
        "metrics": {
            "total_jobs": 0,
            "active_jobs": 0,
            "queue_size": 0,
            "completed_jobs": 0,
            "failed_jobs": 0,
        },
    }

    r = client.post("/jobs", json={"model_ids": [MODEL_ID], "materials": ["yellow-gold"]})
    job_id = r.json()["job_id"]
    _wait_for(client, job_id)

    body = client.get("/jobs").json()
    assert [j["id"] for j in body["jobs"]] == [job_id]
    assert body["metrics"]["total_jobs"] == 1
    assert body["metrics"]["completed_jobs"] == 1
    assert body["metrics"]["active_jobs"] == 0
