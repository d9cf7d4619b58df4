"""todo-autopilot: plan free-text TODO lists and drive them to completion."""

from .categorizer import Categorizer
from .classifier import ConfirmationClassifier, FallbackDetector
from .config import EngineSettings, RuleSet, load_config
from .context import FrameworkRules, ProjectContext
from .dependencies import DependencyMapper, MappingResult
from .engine import OrchestrationEngine
from .errors import AutopilotError, ExecutionSurfaceUnavailable, RuleConfigError, SessionNotFound
from .extraction import TaskExtractor, render_tasks
from .graph import TaskGraph
from .models import (
    Category,
    ConfirmationSession,
    ExecutionPlan,
    FailureReason,
    Phase,
    SessionReport,
    StatusEvent,
    SurfaceSignal,
    Task,
    TaskState,
    Verdict,
)
from .orchestrator import TodoOrchestrator
from .planner import ExecutionPlanner
from .prioritizer import Prioritizer
from .session import Session
from .status_bus import StatusBus
from .surface import OutboxSurface, ScriptedSurface, SignalChannel

__all__ = [
    "AutopilotError",
    "Categorizer",
    "Category",
    "ConfirmationClassifier",
    "ConfirmationSession",
    "DependencyMapper",
    "EngineSettings",
    "ExecutionPlan",
    "ExecutionPlanner",
    "ExecutionSurfaceUnavailable",
    "FailureReason",
    "FallbackDetector",
    "FrameworkRules",
    "MappingResult",
    "OrchestrationEngine",
    "OutboxSurface",
    "Phase",
    "Prioritizer",
    "ProjectContext",
    "RuleConfigError",
    "RuleSet",
    "ScriptedSurface",
    "Session",
    "SessionNotFound",
    "SessionReport",
    "SignalChannel",
    "StatusBus",
    "StatusEvent",
    "SurfaceSignal",
    "Task",
    "TaskExtractor",
    "TaskGraph",
    "TaskState",
    "TodoOrchestrator",
    "Verdict",
    "load_config",
    "render_tasks",
]
