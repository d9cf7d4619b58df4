"""Test orchestration sessions end to end against scripted surfaces."""

from __future__ import annotations

import time
from typing import Any, Callable

import pytest

from todo_autopilot.config import EngineSettings
from todo_autopilot.errors import ExecutionSurfaceUnavailable, SessionNotFound, SessionStateError
from todo_autopilot.models import FailureReason, SessionStatus, TaskState, WarningKind
from todo_autopilot.orchestrator import TodoOrchestrator
from todo_autopilot.session import Session
from todo_autopilot.surface import ScriptedSurface

SCENARIO = "TODO: create database schema, then create API endpoint, then add red button"


def _orchestrator(
    *,
    timeout: float = 5.0,
    max_attempts: int = 3,
    ttl: float = 3600.0,
    **surface_kwargs: Any,
) -> tuple[TodoOrchestrator, dict[str, ScriptedSurface]]:
    surfaces: dict[str, ScriptedSurface] = {}

    def _factory(session: Session) -> ScriptedSurface:
        surface = ScriptedSurface(session.signals, **surface_kwargs)
        surfaces[session.id] = surface
        return surface

    settings = EngineSettings(confirmation_timeout_seconds=timeout, max_attempts=max_attempts, session_ttl_seconds=ttl)
    return TodoOrchestrator(settings=settings, surface_factory=_factory), surfaces


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _states(session: Session) -> dict[str, TaskState]:
    return {tid: task.state for tid, task in session.tasks.items()}


# ---------------------------------------------------------------------------
# 1. Planning through the orchestrator
# ---------------------------------------------------------------------------


def test_prepare_builds_three_phase_plan() -> None:
    orchestrator, _ = _orchestrator()

    session = orchestrator.prepare(SCENARIO)

    assert session.status == SessionStatus.PREPARED
    assert [p.task_ids for p in session.plan.phases] == [("task-1",), ("task-2",), ("task-3",)]
    assert set(_states(session).values()) == {TaskState.VALIDATED}
    assert session.graph.frozen
    assert orchestrator.get_session(session.id) is session


def test_prepare_records_rejections_and_empty_input() -> None:
    orchestrator, _ = _orchestrator()

    rejected = orchestrator.prepare("- add red button\n- create users api", "surfaces: [backend]")
    empty = orchestrator.prepare("just some prose")

    assert rejected.tasks["task-1"].state == TaskState.REJECTED
    assert rejected.plan.task_ids == ["task-2"]
    assert [w.kind for w in rejected.warnings] == [WarningKind.VALIDATION_REJECTED]
    assert empty.tasks == {}
    assert [w.kind for w in empty.warnings] == [WarningKind.EXTRACTION_EMPTY]
    assert empty.plan.phases == ()


def test_unknown_session_raises() -> None:
    orchestrator, _ = _orchestrator()

    with pytest.raises(SessionNotFound):
        orchestrator.get_session("session-missing")


# ---------------------------------------------------------------------------
# 2. Confirmation loop outcomes
# ---------------------------------------------------------------------------


def test_all_tasks_complete_after_one_probe() -> None:
    orchestrator, surfaces = _orchestrator()
    session = orchestrator.prepare(SCENARIO)

    report = orchestrator.execute(session)

    assert report.success
    assert report.status == SessionStatus.FINISHED
    assert report.completed == ["task-1", "task-2", "task-3"]
    surface = surfaces[session.id]
    for tid in ("task-1", "task-2", "task-3"):
        assert surface.count(tid, "instruction") == 1
        assert surface.count(tid, "probe") == 1
    assert [p["completed"] for p in report.phases] == [["task-1"], ["task-2"], ["task-3"]]


def test_status_events_follow_the_state_machine() -> None:
    orchestrator, _ = _orchestrator()
    session = orchestrator.prepare("- add red button")
    orchestrator.execute(session)

    moves = [
        (e.from_state, e.to_state)
        for e in session.bus.history(session.id)
        if e.kind == "transition" and e.task_id == "task-1"
    ]

    assert moves == [
        ("pending", "refining"),
        ("refining", "validated"),
        ("validated", "executing"),
        ("executing", "awaiting_confirmation"),
        ("awaiting_confirmation", "executing"),
        ("executing", "awaiting_confirmation"),
        ("awaiting_confirmation", "completed"),
    ]
    kinds = [e.kind for e in session.bus.history(session.id) if e.kind != "transition"]
    assert kinds == ["session_start", "phase_start", "phase_complete", "session_complete"]


def test_parallel_phase_runs_independent_tasks() -> None:
    orchestrator, _ = _orchestrator()
    session = orchestrator.prepare("- add red button\n- style the login form")

    report = orchestrator.execute(session)

    assert report.success
    assert len(report.phases) == 1
    assert sorted(report.phases[0]["completed"]) == ["task-1", "task-2"]


def test_incomplete_replies_exhaust_attempts() -> None:
    orchestrator, surfaces = _orchestrator(on_probe="not finished yet, still updating form")
    session = orchestrator.prepare("- add red button")

    report = orchestrator.execute(session)

    task = session.tasks["task-1"]
    assert task.state == TaskState.FAILED
    assert task.failure_reason == FailureReason.MAX_ATTEMPTS_EXCEEDED
    assert surfaces[session.id].count("task-1", "probe") == 3
    assert not report.success
    assert report.failed[0]["reason"] == "max_attempts_exceeded"


def test_request_for_input_fails_with_needs_input() -> None:
    orchestrator, surfaces = _orchestrator(scripts={"task-1": ["Which option do you prefer, A or B?"]})
    session = orchestrator.prepare("- add red button")

    orchestrator.execute(session)

    task = session.tasks["task-1"]
    assert task.state == TaskState.FAILED
    assert task.failure_reason == FailureReason.FALLBACK_NEEDS_INPUT
    assert task.detail == "needs-input"
    assert surfaces[session.id].count("task-1", "probe") == 0


def test_silence_times_out_and_cancels_dependents() -> None:
    orchestrator, _ = _orchestrator(timeout=0.2, scripts={"task-1": [None]})
    session = orchestrator.prepare(SCENARIO)

    report = orchestrator.execute(session)

    assert session.tasks["task-1"].failure_reason == FailureReason.CONFIRMATION_TIMEOUT
    for tid in ("task-2", "task-3"):
        assert session.tasks[tid].state == TaskState.CANCELLED
        assert session.tasks[tid].failure_reason == FailureReason.DEPENDENCY_FAILED
    assert report.status == SessionStatus.FINISHED
    assert not report.success


def test_priorities_are_frozen_once_running() -> None:
    orchestrator, _ = _orchestrator()
    session = orchestrator.prepare("- add red button")
    orchestrator.execute(session)

    assert session.tasks["task-1"].priority_frozen
    with pytest.raises(ValueError):
        session.tasks["task-1"].priority_score = 1.0


def test_process_plans_and_runs_in_one_call() -> None:
    orchestrator, _ = _orchestrator()

    report = orchestrator.process("- add red button", "name: acme-web")

    assert report.success
    assert report.completed == ["task-1"]
    assert orchestrator.list_sessions() == [report.session_id]


# ---------------------------------------------------------------------------
# 3. Cancellation and surface failures
# ---------------------------------------------------------------------------


def test_cancel_releases_waiting_task_and_cancels_the_rest() -> None:
    orchestrator, _ = _orchestrator(timeout=30.0, on_instruction=None)
    session = orchestrator.prepare(SCENARIO)
    orchestrator.start(session.id)

    assert _wait_for(lambda: session.tasks["task-1"].state == TaskState.AWAITING_CONFIRMATION)
    report = orchestrator.cancel(session.id)
    assert orchestrator.wait(session.id, timeout=5)

    assert session.status == SessionStatus.CANCELLED
    assert set(_states(session).values()) == {TaskState.CANCELLED}
    assert report.status == SessionStatus.CANCELLED
    assert session.open_confirmations() == []
    assert session.signals.closed
    assert not orchestrator.submit_signal(session.id, "task-1", "yes, done")


def test_surface_unavailable_aborts_with_report() -> None:
    orchestrator, _ = _orchestrator(offline_for={"task-1"})
    session = orchestrator.prepare(SCENARIO)

    with pytest.raises(ExecutionSurfaceUnavailable) as exc_info:
        orchestrator.execute(session)

    report = exc_info.value.report
    assert report is not None
    assert report.status == SessionStatus.ABORTED
    assert [c["id"] for c in report.cancelled] == ["task-1", "task-2", "task-3"]
    assert session.tasks["task-1"].failure_reason == FailureReason.SURFACE_UNAVAILABLE


def test_session_runs_only_once() -> None:
    orchestrator, _ = _orchestrator()
    session = orchestrator.prepare("- add red button")
    orchestrator.execute(session)

    with pytest.raises(SessionStateError):
        orchestrator.execute(session)
    with pytest.raises(SessionStateError):
        orchestrator.start(session.id)


def test_signals_for_unknown_tasks_raise() -> None:
    orchestrator, _ = _orchestrator()
    session = orchestrator.prepare("- add red button")

    with pytest.raises(KeyError):
        orchestrator.submit_signal(session.id, "task-9", "done")


def test_snapshot_is_a_copy() -> None:
    orchestrator, _ = _orchestrator()
    session = orchestrator.prepare(SCENARIO)

    snapshot = orchestrator.get_plan(session.id)
    snapshot["tasks"][0]["state"] = "completed"

    assert set(snapshot) == {
        "session_id",
        "status",
        "created_at",
        "plan",
        "tasks",
        "confirmations",
        "warnings",
    }
    assert session.tasks["task-1"].state == TaskState.VALIDATED


# ---------------------------------------------------------------------------
# 4. Session housekeeping
# ---------------------------------------------------------------------------


def test_cleanup_evicts_closed_sessions_past_ttl() -> None:
    orchestrator, _ = _orchestrator(ttl=60.0)
    finished = [orchestrator.process("- add red button").session_id for _ in range(5)]
    pending = orchestrator.prepare("- add red button")

    assert orchestrator.cleanup_expired() == []
    assert len(orchestrator.list_sessions()) == 6

    removed = orchestrator.cleanup_expired(now=time.monotonic() + 61.0)

    assert sorted(removed) == sorted(finished)
    assert orchestrator.list_sessions() == [pending.id]
    with pytest.raises(SessionNotFound):
        orchestrator.surface_for(finished[0])


def test_prepare_reclaims_expired_sessions() -> None:
    orchestrator, _ = _orchestrator(ttl=0.05)
    for _ in range(3):
        orchestrator.process("- add red button")
    time.sleep(0.1)

    report = orchestrator.process("- add red button")

    assert orchestrator.list_sessions() == [report.session_id]


def test_cleanup_keeps_running_sessions() -> None:
    orchestrator, _ = _orchestrator(ttl=0.05, timeout=30.0, on_instruction=None)
    session = orchestrator.prepare("- add red button")
    orchestrator.start(session.id)
    assert _wait_for(lambda: session.tasks["task-1"].state == TaskState.AWAITING_CONFIRMATION)

    assert orchestrator.cleanup_expired(now=time.monotonic() + 10.0) == []

    orchestrator.cancel(session.id)
    assert orchestrator.wait(session.id, timeout=5)


def test_stats_count_sessions_by_status() -> None:
    orchestrator, _ = _orchestrator(scripts={"task-2": ["Which option do you prefer, A or B?"]})
    orchestrator.process("- add red button")
    orchestrator.process("- add red button\n- style the login form")
    orchestrator.prepare("- add red button")
    orchestrator.cancel(orchestrator.prepare("- add red button").id)

    assert orchestrator.stats() == {
        "total": 4,
        "prepared": 1,
        "running": 0,
        "finished": 2,
        "cancelled": 1,
        "aborted": 0,
        "failed": 1,
        "session_ttl_seconds": 3600.0,
    }
