import time
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.testclient import TestClient

from buildpilot.api.app import create_app
from buildpilot.api.deps import (
    get_build_trigger,
    get_event_relay,
    get_project_manager,
    get_registry,
    get_store,
    get_update_hub,
)
from buildpilot.core.build_trigger import BuildTrigger
from buildpilot.core.cancellation import CancellationRegistry
from buildpilot.core.event_relay import EventRelay
from buildpilot.core.project_manager import ProjectManager
from buildpilot.core.sequencer import PhaseSequencer
from buildpilot.core.update_hub import ProjectUpdateHub
from buildpilot.db.store import SQLiteStore
from buildpilot.models.project import PhaseDraft
from tests.support.build_fakes import (
    BlockingGeneration,
    FakePlanner,
    ScriptedGenerationService,
    failure_events,
    no_sleep,
    success_events,
)

COMPLEX_PROMPT = "Build a social platform where people share recipes and follow each other"


def _app(
    tmp_path: Path,
    generation: ScriptedGenerationService,
    planner: FakePlanner | None = None,
) -> FastAPI:
    store = SQLiteStore(tmp_path / "buildpilot.db")
    relay = EventRelay(store)
    registry = CancellationRegistry()
    hub = ProjectUpdateHub()
    trigger = BuildTrigger(
        store=store,
        registry=registry,
        sequencer=PhaseSequencer(
            store=store,
            relay=relay,
            generation=generation,
            sleeper=no_sleep,
        ),
        relay=relay,
        planner=planner,
        on_change=hub.publish,
    )

    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_event_relay] = lambda: relay
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_update_hub] = lambda: hub
    app.dependency_overrides[get_project_manager] = lambda: ProjectManager(store, relay)
    app.dependency_overrides[get_build_trigger] = lambda: trigger
    return app


def _create_project(client: TestClient) -> str:
    response = client.post("/api/v1/projects", json={"owner_id": "u1", "name": "demo"})
    assert response.status_code == 201
    return str(response.json()["id"])


def _wait_for_state(client: TestClient, project_id: str, *, active: bool) -> dict[str, Any]:
    for _ in range(250):
        body = client.get(f"/api/v1/projects/{project_id}/builds/state").json()
        if body["active"] is active and (active or body["status"] == "idle"):
            return dict(body)
        time.sleep(0.02)
    msg = f"build for {project_id} never reached active={active}"
    raise AssertionError(msg)


def _wait_for_event(client: TestClient, project_id: str, event_type: str) -> list[dict[str, Any]]:
    for _ in range(250):
        response = client.get(
            f"/api/v1/projects/{project_id}/events",
            params={"event_type": event_type},
        )
        items = list(response.json()["items"])
        if items:
            return items
        time.sleep(0.02)
    msg = f"{event_type} never recorded for {project_id}"
    raise AssertionError(msg)


def _wait_for_logs(client: TestClient, project_id: str, level: str) -> list[dict[str, Any]]:
    for _ in range(250):
        response = client.get(f"/api/v1/projects/{project_id}/logs", params={"level": level})
        items = list(response.json()["items"])
        if items:
            return items
        time.sleep(0.02)
    msg = f"no {level} logs recorded for {project_id}"
    raise AssertionError(msg)


def test_flat_build_lifecycle(tmp_path: Path) -> None:
    app = _app(tmp_path, ScriptedGenerationService(success_events()))
    with TestClient(app) as client:
        project_id = _create_project(client)

        accepted = client.post(
            f"/api/v1/projects/{project_id}/builds",
            json={"prompt": "change the header to blue"},
        )
        assert accepted.status_code == 202
        assert accepted.json() == {"project_id": project_id, "status": "generating", "phased": False}

        state = _wait_for_state(client, project_id, active=False)
        assert state["build_state"]["error"] is None

        project = client.get(f"/api/v1/projects/{project_id}").json()["project"]
        assert project["code"]["html"] == "<main>done</main>"
        assert project["messages"][-1]["type"] == "job_summary"
        assert project["messages"][-1]["job_summary"]["status"] == "completed"

        _wait_for_event(client, project_id, "build.completed")
        assert _wait_for_event(client, project_id, "build.started")


def test_phased_build_lifecycle(tmp_path: Path) -> None:
    planner = FakePlanner([PhaseDraft(title="Accounts"), PhaseDraft(title="Feed")])
    app = _app(tmp_path, ScriptedGenerationService(success_events()), planner)
    with TestClient(app) as client:
        project_id = _create_project(client)

        accepted = client.post(f"/api/v1/projects/{project_id}/builds", json={"prompt": COMPLEX_PROMPT})
        assert accepted.status_code == 202
        assert accepted.json()["phased"] is True

        state = _wait_for_state(client, project_id, active=False)
        phases = state["build_state"]["phases"]
        assert [phase["status"] for phase in phases] == ["completed", "completed"]

        started = _wait_for_event(client, project_id, "build.phase_started")
        assert started


def test_stop_build(tmp_path: Path) -> None:
    app = _app(tmp_path, ScriptedGenerationService(BlockingGeneration()))
    with TestClient(app) as client:
        project_id = _create_project(client)
        client.post(f"/api/v1/projects/{project_id}/builds", json={"prompt": "fix the logo"})
        _wait_for_state(client, project_id, active=True)

        stopped = client.delete(f"/api/v1/projects/{project_id}/builds")
        assert stopped.json() == {"stopped": True}

        state = _wait_for_state(client, project_id, active=False)
        assert state["status"] == "idle"
        assert client.delete(f"/api/v1/projects/{project_id}/builds").json() == {"stopped": False}


def test_failed_build_is_retried_and_logged(tmp_path: Path) -> None:
    app = _app(tmp_path, ScriptedGenerationService(failure_events("model crashed"), success_events()))
    with TestClient(app) as client:
        project_id = _create_project(client)
        client.post(f"/api/v1/projects/{project_id}/builds", json={"prompt": "fix the logo"})
        state = _wait_for_state(client, project_id, active=False)
        assert state["build_state"]["error"] == "model crashed"

        logs = _wait_for_logs(client, project_id, "error")
        assert [entry["message"] for entry in logs] == ["model crashed"]

        retried = client.post(f"/api/v1/projects/{project_id}/builds/retry")
        assert retried.status_code == 202
        state = _wait_for_state(client, project_id, active=False)
        assert state["build_state"]["error"] is None

        assert client.get(f"/api/v1/projects/{project_id}/logs", params={"level": "loud"}).status_code == 400


def test_resume_and_clear_state(tmp_path: Path) -> None:
    app = _app(tmp_path, ScriptedGenerationService(success_events()))
    with TestClient(app) as client:
        project_id = _create_project(client)

        assert client.post(f"/api/v1/projects/{project_id}/builds/resume").status_code == 409
        assert client.post(f"/api/v1/projects/{project_id}/builds/retry").status_code == 409

        client.post(f"/api/v1/projects/{project_id}/builds", json={"prompt": "fix the logo"})
        _wait_for_state(client, project_id, active=False)

        cleared = client.delete(f"/api/v1/projects/{project_id}/builds/state")
        assert cleared.status_code == 204
        assert client.get(f"/api/v1/projects/{project_id}/builds/state").json()["build_state"] is None


def test_build_routes_validate_input(tmp_path: Path) -> None:
    app = _app(tmp_path, ScriptedGenerationService(success_events()))
    with TestClient(app) as client:
        assert client.post("/api/v1/projects/missing/builds", json={"prompt": "x"}).status_code == 404
        assert client.post("/api/v1/projects/missing/builds/resume").status_code == 404
        assert client.get("/api/v1/projects/missing/builds/state").status_code == 404

        project_id = _create_project(client)
        assert client.post(f"/api/v1/projects/{project_id}/builds", json={"prompt": ""}).status_code == 422
        bad_filter = client.get(f"/api/v1/projects/{project_id}/events", params={"event_type": "nope"})
        assert bad_filter.status_code == 400


def test_websocket_streams_project_snapshots(tmp_path: Path) -> None:
    app = _app(tmp_path, ScriptedGenerationService(success_events()))
    with TestClient(app) as client:
        project_id = _create_project(client)
        with client.websocket_connect(f"/api/v1/projects/{project_id}/ws") as websocket:
            client.post(f"/api/v1/projects/{project_id}/builds", json={"prompt": "fix the logo"})
            snapshot = websocket.receive_json()
            assert snapshot["id"] == project_id
            assert snapshot["status"] in {"generating", "idle"}
        _wait_for_state(client, project_id, active=False)
