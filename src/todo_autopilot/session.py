"""Session aggregate: the single owner of one task list's state.

A session holds the tasks, the frozen graph and plan, warnings, open
confirmation sessions and the signal channel. Components receive the session
explicitly; nothing is kept in module globals.
"""

from __future__ import annotations

import copy
import threading
import time
import uuid
from typing import Any, Optional

from loguru import logger

from .config import EngineSettings, RuleSet
from .context import FrameworkRules, ProjectContext
from .fsm import ACTIVE_STATES, can_transition, is_terminal
from .graph import TaskGraph
from .models import (
    ConfirmationSession,
    ExecutionPlan,
    FailureReason,
    PhaseResult,
    PlanWarning,
    SessionReport,
    SessionStatus,
    StatusEvent,
    Task,
    TaskState,
)
from .status_bus import StatusBus
from .surface import SignalChannel
from .utils import _now_iso, sort_ids


def _new_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:8]}"


class Session:
    def __init__(
        self,
        *,
        session_id: Optional[str] = None,
        bus: Optional[StatusBus] = None,
        settings: Optional[EngineSettings] = None,
        rules: Optional[RuleSet] = None,
        framework: Optional[FrameworkRules] = None,
        context: Optional[ProjectContext] = None,
    ) -> None:
        self.id = session_id or _new_session_id()
        self.bus = bus or StatusBus()
        self.settings = settings or EngineSettings()
        self.rules = rules or RuleSet()
        self.framework = framework or FrameworkRules()
        self.context = context or ProjectContext()
        self.created_at = _now_iso()
        self.status = SessionStatus.PREPARED
        self.ended_at: Optional[float] = None
        self.tasks: dict[str, Task] = {}
        self.graph: Optional[TaskGraph] = None
        self.plan: Optional[ExecutionPlan] = None
        self.warnings: list[PlanWarning] = []
        self.phase_results: list[PhaseResult] = []
        self.confirmations: dict[str, ConfirmationSession] = {}
        self.signals = SignalChannel()
        self._lock = threading.RLock()
        self._cancel = threading.Event()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def add_tasks(self, tasks: list[Task]) -> None:
        with self._lock:
            for task in tasks:
                self.tasks[task.id] = task

    def add_warning(self, warning: PlanWarning) -> None:
        with self._lock:
            self.warnings.append(warning)

    def attach_plan(self, graph: TaskGraph, plan: ExecutionPlan) -> None:
        """Store the graph and plan; both are read-only from here on."""
        graph.freeze()
        with self._lock:
            self.graph = graph
            self.plan = plan

    def freeze_priorities(self) -> None:
        with self._lock:
            for task in self.tasks.values():
                task.freeze_priority()

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        task_id: str,
        target: TaskState,
        detail: Optional[str] = None,
        *,
        reason: Optional[FailureReason] = None,
    ) -> bool:
        """Move a task to ``target`` and publish a status event.

        Returns False (and changes nothing) when the task is already terminal,
        which is how a worker learns the session cancelled it.

        Raises:
            ValueError: For a transition the state machine does not allow.
        """
        with self._lock:
            task = self.tasks[task_id]
            source = task.state
            if is_terminal(source):
                return False
            if not can_transition(source, target):
                raise ValueError(f"Cannot transition {task_id} from {source.value} to {target.value}")
            task.state = target
            if reason is not None:
                task.failure_reason = reason
            if detail is not None and (is_terminal(target) or reason is not None):
                task.detail = detail
            if is_terminal(target):
                self._close_confirmation_locked(task_id)
        logger.debug("{} {}: {} -> {}{}", self.id, task_id, source.value, target.value, f" ({detail})" if detail else "")
        self.bus.publish(
            StatusEvent(
                session_id=self.id,
                task_id=task_id,
                from_state=source.value,
                to_state=target.value,
                detail=detail,
            )
        )
        return True

    def publish_progress(self, kind: str, detail: str) -> None:
        self.bus.publish(StatusEvent(session_id=self.id, task_id=None, from_state=None, to_state=None, detail=detail, kind=kind))

    # ------------------------------------------------------------------
    # Confirmation sessions
    # ------------------------------------------------------------------

    def open_confirmation(self, task_id: str) -> ConfirmationSession:
        conf = ConfirmationSession.open(
            task_id,
            max_attempts=self.settings.max_attempts,
            timeout=self.settings.confirmation_timeout_seconds,
        )
        with self._lock:
            self.confirmations[task_id] = conf
        return conf

    def _close_confirmation_locked(self, task_id: str) -> None:
        conf = self.confirmations.get(task_id)
        if conf is not None:
            conf.closed = True
            conf.probe_pending = False

    def close_confirmation(self, task_id: str) -> None:
        with self._lock:
            self._close_confirmation_locked(task_id)

    def open_confirmations(self) -> list[str]:
        with self._lock:
            return sort_ids(tid for tid, conf in self.confirmations.items() if not conf.closed)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self, detail: str = "session cancelled", *, reason: FailureReason = FailureReason.SESSION_CANCELLED) -> None:
        """Cancel every non-terminal task and release all pending waits.

        Tasks owned by a running worker are cancelled by that worker as soon as
        its wait returns; all others are cancelled here.
        """
        if self._cancel.is_set():
            return
        self._cancel.set()
        self.signals.close()
        with self._lock:
            idle = [tid for tid, t in self.tasks.items() if not is_terminal(t.state) and t.state not in ACTIVE_STATES]
            if self.status in (SessionStatus.PREPARED, SessionStatus.RUNNING):
                self.status = SessionStatus.CANCELLED
                self.ended_at = time.monotonic()
        for tid in idle:
            self.transition(tid, TaskState.CANCELLED, detail, reason=reason)
        logger.info("Session {} cancelled: {}", self.id, detail)

    def mark_finished(self) -> None:
        with self._lock:
            self.status = SessionStatus.FINISHED
            self.ended_at = time.monotonic()

    def mark_aborted(self) -> None:
        with self._lock:
            self.status = SessionStatus.ABORTED
            self.ended_at = time.monotonic()

    @property
    def is_closed(self) -> bool:
        return self.status in (SessionStatus.FINISHED, SessionStatus.CANCELLED, SessionStatus.ABORTED)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Deep-copied view of the plan and per-task state for progress displays."""
        with self._lock:
            data = {
                "session_id": self.id,
                "status": self.status.value,
                "created_at": self.created_at,
                "plan": self.plan.to_dict() if self.plan else None,
                "tasks": [t.to_dict() for t in self.tasks.values()],
                "confirmations": {tid: c.to_dict() for tid, c in self.confirmations.items()},
                "warnings": [w.to_dict() for w in self.warnings],
            }
        return copy.deepcopy(data)

    def report(self) -> SessionReport:
        with self._lock:
            tasks = list(self.tasks.values())

            def _entry(task: Task) -> dict[str, Any]:
                return {
                    "id": task.id,
                    "raw_text": task.raw_text,
                    "reason": task.failure_reason.value if task.failure_reason else None,
                    "detail": task.detail,
                }

            return SessionReport(
                session_id=self.id,
                status=self.status,
                tasks=[t.to_dict() for t in tasks],
                plan=self.plan.to_dict() if self.plan else None,
                completed=[t.id for t in tasks if t.state == TaskState.COMPLETED],
                failed=[_entry(t) for t in tasks if t.state == TaskState.FAILED],
                rejected=[_entry(t) for t in tasks if t.state == TaskState.REJECTED],
                cancelled=[_entry(t) for t in tasks if t.state == TaskState.CANCELLED],
                warnings=[w.to_dict() for w in self.warnings],
                phases=[p.to_dict() for p in self.phase_results],
            )
