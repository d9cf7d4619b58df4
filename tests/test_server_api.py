"""Test the session API endpoints.

Requirements:
- httpx (for FastAPI TestClient)
"""

from __future__ import annotations

import time
from typing import Any

import pytest
from fastapi.testclient import TestClient

from todo_autopilot.config import EngineSettings
from todo_autopilot.orchestrator import TodoOrchestrator
from todo_autopilot.server import create_app
from todo_autopilot.session import Session
from todo_autopilot.surface import ScriptedSurface

SCENARIO = "TODO: create database schema, then create API endpoint, then add red button"


@pytest.fixture
def scripted_client():
    """Client whose sessions answer from a scripted surface."""

    def _factory(session: Session) -> ScriptedSurface:
        return ScriptedSurface(session.signals)

    orchestrator = TodoOrchestrator(
        settings=EngineSettings(confirmation_timeout_seconds=5),
        surface_factory=_factory,
    )
    with TestClient(create_app(orchestrator)) as client:
        yield client


@pytest.fixture
def outbox_client():
    """Client whose sessions queue commands for a polling collaborator."""
    orchestrator = TodoOrchestrator(settings=EngineSettings(confirmation_timeout_seconds=10))
    with TestClient(create_app(orchestrator)) as client:
        yield client


def _poll(client: TestClient, url: str, predicate, timeout: float = 5.0) -> Any:
    deadline = time.monotonic() + timeout
    body = client.get(url).json()
    while not predicate(body) and time.monotonic() < deadline:
        time.sleep(0.02)
        body = client.get(url).json()
    return body


def test_health(scripted_client: TestClient) -> None:
    assert scripted_client.get("/api/health").json() == {"status": "ok"}


def test_create_session_returns_plan(scripted_client: TestClient) -> None:
    resp = scripted_client.post("/api/sessions", json={"rawText": SCENARIO})

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "prepared"
    assert [p["task_ids"] for p in body["plan"]["phases"]] == [["task-1"], ["task-2"], ["task-3"]]
    assert [t["category"] for t in body["tasks"]] == ["database", "backend", "ui"]

    listing = scripted_client.get("/api/sessions").json()
    assert listing["sessions"] == [body["session_id"]]


def test_create_session_validates_body(scripted_client: TestClient) -> None:
    resp = scripted_client.post("/api/sessions", json={"raw_text": "- a", "max_parallel": 0})

    assert resp.status_code == 422


def test_run_and_report(scripted_client: TestClient) -> None:
    session_id = scripted_client.post("/api/sessions", json={"raw_text": SCENARIO}).json()["session_id"]

    resp = scripted_client.post(f"/api/sessions/{session_id}/run", params={"wait": True})

    assert resp.status_code == 200
    report = resp.json()["report"]
    assert report["success"] is True
    assert report["completed"] == ["task-1", "task-2", "task-3"]

    again = scripted_client.post(f"/api/sessions/{session_id}/run", params={"wait": True})
    assert again.status_code == 409

    events = scripted_client.get(f"/api/sessions/{session_id}/events").json()
    assert events["total"] == len(events["events"]) > 0
    assert scripted_client.get(f"/api/sessions/{session_id}/report").json()["status"] == "finished"
    assert scripted_client.get(f"/api/sessions/{session_id}/commands").status_code == 404


def test_unknown_session_is_404(scripted_client: TestClient) -> None:
    assert scripted_client.get("/api/sessions/session-nope/plan").status_code == 404
    assert scripted_client.post("/api/sessions/session-nope/cancel").status_code == 404
    resp = scripted_client.post("/api/sessions/session-nope/signals", json={"taskId": "task-1", "text": "done"})
    assert resp.status_code == 404


def test_remote_collaborator_drives_a_task(outbox_client: TestClient) -> None:
    session_id = outbox_client.post("/api/sessions", json={"rawText": "- add red button"}).json()["session_id"]
    base = f"/api/sessions/{session_id}"

    assert outbox_client.post(f"{base}/run").json() == {"session_id": session_id, "started": True}

    commands = _poll(outbox_client, f"{base}/commands", lambda b: b["total"] >= 1)
    assert commands["commands"][0]["kind"] == "instruction"
    assert commands["commands"][0]["text"] == "add red button"

    ack = outbox_client.post(f"{base}/signals", json={"taskId": "task-1", "text": "working on it"})
    assert ack.json() == {"accepted": True, "task_id": "task-1"}

    probes = _poll(outbox_client, f"{base}/commands?since=1", lambda b: b["total"] >= 1)
    assert probes["commands"][0]["kind"] == "probe"
    assert probes["commands"][0]["text"] == "are you done?"

    outbox_client.post(f"{base}/signals", json={"taskId": "task-1", "text": "yes, all done"})
    report = _poll(outbox_client, f"{base}/report", lambda b: b["status"] == "finished")
    assert report["completed"] == ["task-1"]


def test_cancel_session(outbox_client: TestClient) -> None:
    session_id = outbox_client.post("/api/sessions", json={"rawText": SCENARIO}).json()["session_id"]

    report = outbox_client.post(f"/api/sessions/{session_id}/cancel").json()

    assert report["status"] == "cancelled"
    assert [c["id"] for c in report["cancelled"]] == ["task-1", "task-2", "task-3"]
    signal = outbox_client.post(
        f"/api/sessions/{session_id}/signals", json={"taskId": "task-1", "text": "done"}
    ).json()
    assert signal["accepted"] is False


def test_stats_and_cleanup(scripted_client: TestClient) -> None:
    finished = scripted_client.post("/api/sessions", json={"rawText": "- add red button"}).json()["session_id"]
    scripted_client.post(f"/api/sessions/{finished}/run", params={"wait": True})
    scripted_client.post("/api/sessions", json={"rawText": SCENARIO})

    stats = scripted_client.get("/api/sessions/stats").json()
    assert stats["total"] == 2
    assert stats["finished"] == 1
    assert stats["prepared"] == 1
    assert stats["failed"] == 0

    cleanup = scripted_client.post("/api/sessions/cleanup").json()
    assert cleanup == {"removed": [], "total": 0}
    assert finished in scripted_client.get("/api/sessions").json()["sessions"]
