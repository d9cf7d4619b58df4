"""Data model for orchestration sessions.

Tasks, plans, confirmation sessions and status events are plain dataclasses
that serialize to JSON-friendly dicts via ``to_dict()``.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from .constants import DEFAULT_MAX_ATTEMPTS
from .utils import _now_iso, sort_ids


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskState(str, Enum):
    """Per-task lifecycle state."""

    PENDING = "pending"
    REFINING = "refining"
    VALIDATED = "validated"
    REJECTED = "rejected"
    EXECUTING = "executing"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Category(str, Enum):
    """Work category assigned by the categorizer."""

    UI = "ui"
    BACKEND = "backend"
    DATABASE = "database"
    TESTING = "testing"
    DEPLOYMENT = "deployment"
    DOCUMENTATION = "documentation"
    GENERAL = "general"


class FailureReason(str, Enum):
    """Why a task ended in ``failed`` or ``cancelled``."""

    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"
    FALLBACK_NEEDS_INPUT = "fallback_needs_input"
    DEPENDENCY_FAILED = "dependency_failed"
    SESSION_CANCELLED = "session_cancelled"
    SURFACE_UNAVAILABLE = "surface_unavailable"


class WarningKind(str, Enum):
    """Non-fatal conditions recorded on the session report."""

    EXTRACTION_EMPTY = "extraction_empty"
    VALIDATION_REJECTED = "validation_rejected"
    CYCLE_BROKEN = "cycle_broken"


class Verdict(str, Enum):
    """Orchestration decision derived from one surface signal."""

    COMPLETED = "completed"
    CONTINUE = "continue"
    FAILED = "failed"
    NEEDS_INPUT = "needs_input"


class SessionStatus(str, Enum):
    PREPARED = "prepared"
    RUNNING = "running"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """An atomic unit of work extracted from free text.

    ``priority_score`` is written by the prioritizer and locked by
    ``freeze_priority()`` once execution begins.
    """

    id: str
    raw_text: str
    refined_text: str = ""
    category: Category = Category.GENERAL
    priority_score: float = 0.0
    estimated_duration: float = 0.0
    dependencies: set[str] = field(default_factory=set)
    state: TaskState = TaskState.PENDING
    line_number: int = 0
    hints: dict[str, Any] = field(default_factory=dict)
    score_factors: dict[str, float] = field(default_factory=dict)
    failure_reason: Optional[FailureReason] = None
    detail: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.refined_text:
            self.refined_text = self.raw_text

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "priority_score" and self.__dict__.get("_priority_frozen"):
            raise ValueError(f"priority of {self.id} is frozen once execution has started")
        super().__setattr__(name, value)

    def freeze_priority(self) -> None:
        self.__dict__["_priority_frozen"] = True

    @property
    def priority_frozen(self) -> bool:
        return bool(self.__dict__.get("_priority_frozen"))

    @property
    def text(self) -> str:
        return self.refined_text or self.raw_text

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict."""
        data: dict[str, Any] = {}
        for k, v in asdict(self).items():
            if isinstance(v, Enum):
                data[k] = v.value
            elif isinstance(v, set):
                data[k] = sort_ids(v)
            else:
                data[k] = v
        return data


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Phase:
    """A batch of mutually independent tasks executed concurrently."""

    index: int
    task_ids: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "task_ids": list(self.task_ids)}


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered phases; read-only once built."""

    phases: tuple[Phase, ...]
    max_parallel: int

    @property
    def task_ids(self) -> list[str]:
        return [tid for phase in self.phases for tid in phase.task_ids]

    def phase_of(self, task_id: str) -> Optional[int]:
        for phase in self.phases:
            if task_id in phase.task_ids:
                return phase.index
        return None

    def validate(self, dependencies: dict[str, set[str]]) -> list[str]:
        """Return invariant violations (an empty list means the plan is sound).

        Args:
            dependencies: Mapping of task id to the ids it must follow.
        """
        problems: list[str] = []
        seen: dict[str, int] = {}
        for phase in self.phases:
            if len(phase.task_ids) > self.max_parallel:
                problems.append(f"phase {phase.index} holds {len(phase.task_ids)} tasks (max {self.max_parallel})")
            for tid in phase.task_ids:
                if tid in seen:
                    problems.append(f"{tid} scheduled in phases {seen[tid]} and {phase.index}")
                seen[tid] = phase.index
        for tid, idx in seen.items():
            for dep in dependencies.get(tid, set()):
                if dep not in seen:
                    continue
                if seen[dep] >= idx:
                    problems.append(f"{tid} (phase {idx}) depends on {dep} (phase {seen[dep]})")
        return problems

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_parallel": self.max_parallel,
            "phases": [p.to_dict() for p in self.phases],
        }


@dataclass
class PlanWarning:
    """A non-fatal condition surfaced in the session report."""

    kind: WarningKind
    message: str
    task_ids: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "task_ids": list(self.task_ids),
            "data": dict(self.data),
        }


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

@dataclass
class ConfirmationSession:
    """Probe/response bookkeeping for one task execution.

    ``deadline`` is measured on ``time.monotonic()``.
    """

    task_id: str
    max_attempts: int
    deadline: float
    started_at: float = field(default_factory=time.monotonic)
    attempt_count: int = 0
    last_signal: Optional[str] = None
    probe_pending: bool = False
    closed: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def open(cls, task_id: str, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS, timeout: float) -> "ConfirmationSession":
        if timeout <= 0:
            raise ValueError("confirmation timeout must be positive")
        now = time.monotonic()
        return cls(task_id=task_id, max_attempts=max_attempts, deadline=now + timeout, started_at=now)

    def remaining(self, now: Optional[float] = None) -> float:
        now = time.monotonic() if now is None else now
        return max(0.0, self.deadline - now)

    def expired(self, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        return now >= self.deadline

    @property
    def attempts_exhausted(self) -> bool:
        return self.attempt_count >= self.max_attempts

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "attempt_count": self.attempt_count,
            "max_attempts": self.max_attempts,
            "last_signal": self.last_signal,
            "probe_pending": self.probe_pending,
            "remaining_seconds": round(self.remaining(), 3),
            "closed": self.closed,
        }


@dataclass
class SurfaceSignal:
    """Free text reported by the execution surface for one task."""

    task_id: str
    text: str
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StatusEvent:
    """Published on every task transition and on phase boundaries.

    ``kind`` is ``transition`` for task state changes; phase and session
    progress events carry no task id.
    """

    session_id: str
    task_id: Optional[str]
    from_state: Optional[str]
    to_state: Optional[str]
    detail: Optional[str] = None
    kind: str = "transition"
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PhaseResult:
    """Outcome of one executed phase."""

    index: int
    task_ids: list[str]
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not self.failed and not self.cancelled

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["success"] = self.success
        return data


@dataclass
class SessionReport:
    """Final (or in-flight) summary returned to the caller."""

    session_id: str
    status: SessionStatus
    tasks: list[dict[str, Any]]
    plan: Optional[dict[str, Any]]
    completed: list[str] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)
    rejected: list[dict[str, Any]] = field(default_factory=list)
    cancelled: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    phases: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == SessionStatus.FINISHED and not self.failed and not self.cancelled

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["success"] = self.success
        return data
