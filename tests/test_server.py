"""HTTP surface tests through FastAPI's TestClient."""

import json

import pytest
from fastapi.testclient import TestClient

import server
from artifactflow.errors import GenerationError
from conftest import type_id


@pytest.fixture
def client(backend):
    server.app.dependency_overrides[server.get_orchestrator] = lambda: backend.orchestrator
    with TestClient(server.app) as client:
        yield client
    server.app.dependency_overrides.clear()


@pytest.fixture
def project_id(client) -> str:
    return client.post("/projects", json={"name": "Todo App"}).json()["project_id"]


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_project_endpoints(client, project_id) -> None:
    client.post("/projects", json={"name": "Mine"}, headers={"X-User-Id": "7"})

    assert [p["name"] for p in client.get("/projects").json()] == ["Todo App", "Mine"]
    assert [p["name"] for p in client.get("/projects", headers={"X-User-Id": "7"}).json()] == ["Mine"]

    view = client.get(f"/projects/{project_id}").json()
    assert list(view["artifacts"]) == ["Requirements", "Design"]


def test_unknown_project_is_404(client) -> None:
    response = client.get("/projects/9999")
    assert response.status_code == 404
    assert "not found" in response.json()["detail"]


def test_artifact_lifecycle(client, project_id, type_cache) -> None:
    created = client.post(f"/projects/{project_id}/artifacts", json={"artifact_type_name": "Vision Document"})
    assert created.status_code == 200
    artifact_id = created.json()["artifact"]["artifact_id"]

    interacted = client.post(
        f"/artifacts/{artifact_id}/interact",
        json={"messages": [{"role": "user", "content": "It is for teams"}]},
    )
    assert interacted.json()["artifact"]["artifact_version_content"] == "# Draft"

    edited = client.put(f"/artifacts/{artifact_id}", json={"content": "# Edited"})
    assert edited.json()["artifact"]["artifact_version_number"] == "2"

    approved = type_cache.get_artifact_state_id_by_name("Approved")
    moved = client.put(f"/artifacts/{artifact_id}/state/{approved}")
    assert moved.json()["artifact"]["state_name"] == "Approved"

    viewed = client.get(f"/artifacts/{artifact_id}").json()
    assert [m["role"] for m in viewed["chat_completion"]["messages"]] == ["assistant", "user", "assistant"]


def test_error_mapping(client, project_id, backend) -> None:
    bad_type = client.post(f"/projects/{project_id}/artifacts", json={"artifact_type_name": "Horoscope"})
    assert bad_type.status_code == 400

    missing_dep = client.post(
        f"/projects/{project_id}/artifacts", json={"artifact_type_name": "Functional Requirements"}
    )
    assert missing_dep.status_code == 409
    assert missing_dep.json()["dependency_type_name"] == "Vision Document"

    assert client.get("/artifacts/9999").status_code == 404

    empty = client.post("/artifacts/1/interact", json={"messages": [{"content": "  "}]})
    assert empty.status_code == 400


def test_stream_interact(client, project_id, backend) -> None:
    artifact = backend.artifact_repository.create(
        int(project_id), type_id(backend.type_cache, "Vision Document"), "Vision"
    )

    response = client.post(
        f"/artifacts/{artifact.id}/interact/stream",
        json={"messages": [{"content": "go"}]},
    )

    events = _sse_events(response)
    assert [e["chunk"] for e in events[:-1]] == ["# Dr", "aft"]
    assert events[-1]["done"] is True
    assert events[-1]["artifact_content"] == "# Draft"


def _sse_events(response) -> list:
    return [
        json.loads(line[len("data: "):])
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]


class TestStreamErrors:

    def test_unknown_artifact_is_404(self, client) -> None:
        response = client.post("/artifacts/9999/interact/stream", json={"messages": [{"content": "go"}]})

        assert response.status_code == 404
        assert "not found" in response.json()["detail"]

    def test_missing_dependency_is_409(self, client, project_id, backend) -> None:
        requirements = backend.artifact_repository.create(
            int(project_id), type_id(backend.type_cache, "Functional Requirements"), "FR"
        )

        response = client.post(
            f"/artifacts/{requirements.id}/interact/stream", json={"messages": [{"content": "go"}]}
        )

        assert response.status_code == 409
        assert response.json()["dependency_type_name"] == "Vision Document"

    def test_failure_after_chunks_ends_the_stream(self, client, project_id, backend, fake_generator) -> None:
        fake_generator.stream_error = GenerationError("reply had no artifact content")
        artifact = backend.artifact_repository.create(
            int(project_id), type_id(backend.type_cache, "Vision Document"), "Vision"
        )

        response = client.post(
            f"/artifacts/{artifact.id}/interact/stream", json={"messages": [{"content": "go"}]}
        )

        assert response.status_code == 200
        events = _sse_events(response)
        assert [e["chunk"] for e in events[:-1]] == ["# Dr", "aft"]
        assert events[-1]["done"] is True
        assert events[-1]["error"] == "GenerationError"
        assert events[-1]["status"] == 502


def test_project_rename_and_delete(client) -> None:
    project_id = client.post("/projects", json={"name": "Draft"}, headers={"X-User-Id": "7"}).json()["project_id"]

    forbidden = client.put(f"/projects/{project_id}", json={"name": "Hijacked"}, headers={"X-User-Id": "8"})
    assert forbidden.status_code == 403

    renamed = client.put(f"/projects/{project_id}", json={"name": "Final"}, headers={"X-User-Id": "7"})
    assert renamed.json()["name"] == "Final"

    assert client.delete(f"/projects/{project_id}", headers={"X-User-Id": "8"}).status_code == 403
    assert client.delete(f"/projects/{project_id}", headers={"X-User-Id": "7"}).status_code == 204
    assert client.get(f"/projects/{project_id}").status_code == 404
    assert client.delete(f"/projects/{project_id}").status_code == 404


def test_artifact_versions(client, project_id) -> None:
    created = client.post(f"/projects/{project_id}/artifacts", json={"artifact_type_name": "Vision Document"})
    artifact_id = created.json()["artifact"]["artifact_id"]
    client.put(f"/artifacts/{artifact_id}", json={"content": "# One"})
    client.put(f"/artifacts/{artifact_id}", json={"content": "# Two"})

    versions = client.get(f"/artifacts/{artifact_id}/versions").json()

    assert [v["content"] for v in versions] == ["# One", "# Two"]
    assert client.get("/artifacts/9999/versions").status_code == 404
