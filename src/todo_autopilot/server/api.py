"""Session API endpoints.

The router is mounted under ``/api/sessions`` by :func:`create_app`. A remote
execution surface polls ``/commands`` and reports back through ``/signals``.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from ..contracts import (
    CleanupResponse,
    CommandListResponse,
    EventListResponse,
    PlanSnapshot,
    SessionReportModel,
    SessionStatsResponse,
    SignalRequest,
    SignalResponse,
    StatusEventModel,
    TaskListRequest,
)
from ..errors import ExecutionSurfaceUnavailable, SessionNotFound, SessionStateError
from ..orchestrator import TodoOrchestrator
from ..session import Session
from ..surface import OutboxSurface


def create_session_router(get_orchestrator: Callable[[], TodoOrchestrator]) -> APIRouter:
    """Create the session router.

    Parameters
    ----------
    get_orchestrator:
        Zero-argument callable returning the orchestrator that owns the sessions.
    """
    router = APIRouter(prefix="/api/sessions", tags=["sessions"])

    def _session(session_id: str) -> Session:
        try:
            return get_orchestrator().get_session(session_id)
        except SessionNotFound:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

    @router.post("", response_model=PlanSnapshot, status_code=201)
    async def create_session(body: TaskListRequest) -> PlanSnapshot:
        session = get_orchestrator().prepare(body, max_parallel=body.max_parallel)
        return PlanSnapshot(**session.snapshot())

    @router.get("")
    async def list_sessions() -> dict[str, Any]:
        ids = get_orchestrator().list_sessions()
        return {"sessions": ids, "total": len(ids)}

    @router.get("/stats", response_model=SessionStatsResponse)
    async def get_stats() -> SessionStatsResponse:
        return SessionStatsResponse(**get_orchestrator().stats())

    @router.post("/cleanup", response_model=CleanupResponse)
    async def cleanup_sessions() -> CleanupResponse:
        removed = get_orchestrator().cleanup_expired()
        return CleanupResponse(removed=removed, total=len(removed))

    @router.get("/{session_id}/plan", response_model=PlanSnapshot)
    async def get_plan(session_id: str) -> PlanSnapshot:
        return PlanSnapshot(**_session(session_id).snapshot())

    @router.post("/{session_id}/run")
    def run_session(session_id: str, wait: bool = Query(False)) -> dict[str, Any]:
        orchestrator = get_orchestrator()
        session = _session(session_id)
        if not wait:
            try:
                orchestrator.start(session_id)
            except SessionStateError as exc:
                raise HTTPException(status_code=409, detail=str(exc))
            return {"session_id": session_id, "started": True}
        try:
            report = orchestrator.execute(session)
        except SessionStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except ExecutionSurfaceUnavailable as exc:
            logger.error("Run of {} aborted: {}", session_id, exc)
            detail: Any = exc.report.to_dict() if exc.report is not None else str(exc)
            raise HTTPException(status_code=503, detail=detail)
        return {"session_id": session_id, "started": True, "report": report.to_dict()}

    @router.post("/{session_id}/signals", response_model=SignalResponse)
    async def post_signal(session_id: str, body: SignalRequest) -> SignalResponse:
        _session(session_id)
        try:
            accepted = get_orchestrator().submit_signal(session_id, body.task_id, body.text, body.timestamp)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Task {body.task_id} not found")
        return SignalResponse(accepted=accepted, task_id=body.task_id)

    @router.get("/{session_id}/commands", response_model=CommandListResponse)
    async def get_commands(session_id: str, since: int = Query(0, ge=0)) -> CommandListResponse:
        _session(session_id)
        surface = get_orchestrator().surface_for(session_id)
        if not isinstance(surface, OutboxSurface):
            raise HTTPException(status_code=404, detail="Session surface does not queue commands")
        commands = [c.to_dict() for c in surface.commands(since)]
        return CommandListResponse(commands=commands, total=len(commands))

    @router.get("/{session_id}/events", response_model=EventListResponse)
    async def get_events(session_id: str) -> EventListResponse:
        session = _session(session_id)
        events = [StatusEventModel(**e.to_dict()) for e in session.bus.history(session_id)]
        return EventListResponse(events=events, total=len(events))

    @router.post("/{session_id}/cancel", response_model=SessionReportModel)
    async def cancel_session(session_id: str) -> SessionReportModel:
        _session(session_id)
        report = get_orchestrator().cancel(session_id)
        return SessionReportModel(**report.to_dict())

    @router.get("/{session_id}/report", response_model=SessionReportModel)
    async def get_report(session_id: str) -> SessionReportModel:
        return SessionReportModel(**_session(session_id).report().to_dict())

    return router


def create_app(orchestrator: Optional[TodoOrchestrator] = None, enable_cors: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        orchestrator: Orchestrator owning the sessions; a default one is created when omitted.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="todo-autopilot",
        description="Plan free-text task lists and drive them through an execution surface",
        version="0.1.0",
    )
    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.state.orchestrator = orchestrator or TodoOrchestrator()

    def _get_orchestrator() -> TodoOrchestrator:
        return app.state.orchestrator

    app.include_router(create_session_router(_get_orchestrator))

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
