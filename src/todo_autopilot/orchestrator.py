"""Orchestrator facade: text in, planned session out, then execution.

``prepare`` runs the planning pipeline (extract, refine, categorize,
validate, map dependencies, prioritize, plan) and registers the session;
``execute`` drives it through an execution surface. Sessions live in an
explicit registry on the orchestrator instance; closed sessions are evicted
once they are older than ``session_ttl_seconds``.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional, Union

from loguru import logger

from .categorizer import Categorizer
from .classifier import InputRequestDetector, SignalClassifier
from .config import EngineSettings, RuleSet
from .context import FrameworkRules, ProjectContext
from .contracts import TaskListRequest
from .dependencies import DependencyMapper
from .engine import OrchestrationEngine
from .errors import ExecutionSurfaceUnavailable, SessionNotFound, SessionStateError
from .extraction import TaskExtractor
from .models import PlanWarning, SessionReport, SessionStatus, SurfaceSignal, TaskState, WarningKind
from .planner import ExecutionPlanner
from .prioritizer import Prioritizer
from .session import Session
from .status_bus import StatusBus
from .surface import ExecutionSurface, OutboxSurface
from .validation import TaskRefiner, TaskValidator

SurfaceFactory = Callable[[Session], ExecutionSurface]


class TodoOrchestrator:
    def __init__(
        self,
        rules: Optional[RuleSet] = None,
        settings: Optional[EngineSettings] = None,
        *,
        bus: Optional[StatusBus] = None,
        surface_factory: Optional[SurfaceFactory] = None,
        classifier: Optional[SignalClassifier] = None,
        detector: Optional[InputRequestDetector] = None,
    ) -> None:
        self.rules = rules or RuleSet()
        self.settings = settings or EngineSettings()
        self.bus = bus or StatusBus(self.settings.status_buffer_size, self.settings.status_history_size)
        self.surface_factory = surface_factory or (lambda session: OutboxSurface())
        self.classifier = classifier
        self.detector = detector
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._surfaces: dict[str, ExecutionSurface] = {}
        self._threads: dict[str, threading.Thread] = {}

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def prepare(
        self,
        request: Union[TaskListRequest, dict[str, Any], str],
        framework_context: Optional[str] = None,
        *,
        max_parallel: Optional[int] = None,
    ) -> Session:
        """Build and register a planned session from a task-list request."""
        self.cleanup_expired()
        if isinstance(request, str):
            request = TaskListRequest(raw_text=request, framework_context=framework_context)
        elif isinstance(request, dict):
            request = TaskListRequest.model_validate(request)

        framework = FrameworkRules.from_context(request.framework_context)
        context = ProjectContext.from_rules(framework, self.rules)
        session = Session(
            bus=self.bus,
            settings=self.settings,
            rules=self.rules,
            framework=framework,
            context=context,
        )

        tasks = TaskExtractor().extract(request.raw_text, framework)
        session.add_tasks(tasks)
        if not tasks:
            session.add_warning(PlanWarning(WarningKind.EXTRACTION_EMPTY, "no tasks recognized in the input"))

        refiner = TaskRefiner()
        categorizer = Categorizer(self.rules)
        validator = TaskValidator(self.rules)
        for task in tasks:
            session.transition(task.id, TaskState.REFINING, "refining")
            refiner.refine(task, framework)
            task.category = categorizer.categorize(task, context)
            result = validator.validate(task, context, session.transition)
            if not result.accepted:
                session.add_warning(
                    PlanWarning(WarningKind.VALIDATION_REJECTED, result.reason or "rejected", task_ids=[task.id])
                )

        accepted = [t for t in tasks if t.state == TaskState.VALIDATED]
        mapping = DependencyMapper(self.rules).map_dependencies(accepted, context)
        for warning in mapping.warnings:
            session.add_warning(warning)
        Prioritizer(self.rules).prioritize(mapping.graph, accepted)
        parallel = max_parallel or request.max_parallel or self.settings.max_parallel
        plan = ExecutionPlanner().plan(accepted, mapping.graph, parallel)
        session.attach_plan(mapping.graph, plan)

        with self._lock:
            self._sessions[session.id] = session
        logger.info(
            "Prepared {}: {} task(s), {} planned, {} warning(s)",
            session.id,
            len(tasks),
            len(accepted),
            len(session.warnings),
        )
        return session

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def list_sessions(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def surface_for(self, session_id: str) -> ExecutionSurface:
        session = self.get_session(session_id)
        with self._lock:
            surface = self._surfaces.get(session_id)
            if surface is None:
                surface = self.surface_factory(session)
                self._surfaces[session_id] = surface
        return surface

    def execute(self, session: Union[Session, str]) -> SessionReport:
        """Run a prepared session to completion (blocking).

        Raises:
            ExecutionSurfaceUnavailable: Propagated from the engine with the report attached.
        """
        if isinstance(session, str):
            session = self.get_session(session)
        engine = OrchestrationEngine(self.surface_for(session.id), classifier=self.classifier, detector=self.detector)
        return engine.run(session)

    def start(self, session_id: str) -> threading.Thread:
        """Run a session on a background thread."""
        session = self.get_session(session_id)
        if session.status != SessionStatus.PREPARED:
            raise SessionStateError(f"Session {session_id} is {session.status.value}, not prepared")

        def _target() -> None:
            try:
                self.execute(session)
            except ExecutionSurfaceUnavailable as exc:
                logger.error("Background run of {} aborted: {}", session_id, exc)

        thread = threading.Thread(target=_target, name=f"run-{session_id}", daemon=True)
        with self._lock:
            self._threads[session_id] = thread
        thread.start()
        return thread

    def process(self, raw_text: str, framework_context: Optional[str] = None) -> SessionReport:
        """Prepare and execute in one call."""
        return self.execute(self.prepare(raw_text, framework_context))

    # ------------------------------------------------------------------
    # Collaborator boundary
    # ------------------------------------------------------------------

    def submit_signal(self, session_id: str, task_id: str, text: str, timestamp: Optional[str] = None) -> bool:
        session = self.get_session(session_id)
        if task_id not in session.tasks:
            raise KeyError(task_id)
        signal = SurfaceSignal(task_id=task_id, text=text)
        if timestamp:
            signal.timestamp = timestamp
        return session.signals.publish(signal)

    def get_plan(self, session_id: str) -> dict[str, Any]:
        return self.get_session(session_id).snapshot()

    def cancel(self, session_id: str, detail: str = "session cancelled") -> SessionReport:
        session = self.get_session(session_id)
        session.cancel(detail)
        return session.report()

    def wait(self, session_id: str, timeout: Optional[float] = None) -> bool:
        with self._lock:
            thread = self._threads.get(session_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cleanup_expired(self, now: Optional[float] = None) -> list[str]:
        """Evict closed sessions whose end is older than ``session_ttl_seconds``.

        The session's surface and worker thread are released with it. Sessions
        still prepared or running are never evicted.

        Returns:
            The evicted session ids.
        """
        now = time.monotonic() if now is None else now
        ttl = self.settings.session_ttl_seconds
        removed: list[str] = []
        with self._lock:
            for session_id, session in list(self._sessions.items()):
                if not session.is_closed or session.ended_at is None:
                    continue
                if now - session.ended_at <= ttl:
                    continue
                thread = self._threads.get(session_id)
                if thread is not None and thread.is_alive():
                    continue
                del self._sessions[session_id]
                self._surfaces.pop(session_id, None)
                self._threads.pop(session_id, None)
                removed.append(session_id)
        for session_id in removed:
            logger.info("Cleaned up expired session {}", session_id)
        return removed

    def stats(self) -> dict[str, Any]:
        """Counts of registered sessions by status.

        ``failed`` counts closed sessions with at least one failed task.
        """
        with self._lock:
            sessions = list(self._sessions.values())
        counts = {status.value: 0 for status in SessionStatus}
        failed = 0
        for session in sessions:
            counts[session.status.value] += 1
            if session.is_closed and any(t.state == TaskState.FAILED for t in session.tasks.values()):
                failed += 1
        return {
            "total": len(sessions),
            **counts,
            "failed": failed,
            "session_ttl_seconds": self.settings.session_ttl_seconds,
        }
