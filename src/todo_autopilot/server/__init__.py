"""HTTP boundary for todo-autopilot."""

from .api import create_app, create_session_router

__all__ = ["create_app", "create_session_router"]
