"""Exception types raised by todo-autopilot.

Operational outcomes (timeouts, rejected tasks, broken cycles) are recorded on
tasks and in the session report instead of being raised. Only conditions the
caller must handle are exceptions.
"""

from __future__ import annotations

from typing import Any, Optional


class AutopilotError(Exception):
    """Base class for todo-autopilot errors."""


class RuleConfigError(AutopilotError):
    """Raised when a rule table or engine setting is invalid."""


class SessionNotFound(AutopilotError, KeyError):
    """Raised when a session id is not registered with the orchestrator."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session not found: {self.session_id}"


class SessionStateError(AutopilotError):
    """Raised when a session operation is not allowed in its current status."""


class ExecutionSurfaceUnavailable(AutopilotError):
    """The execution surface cannot accept commands.

    Fatal to the owning session. When raised out of the engine, ``report``
    carries the session report built after every open task was cancelled.
    """

    def __init__(self, message: str, *, task_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.report: Optional[Any] = None
