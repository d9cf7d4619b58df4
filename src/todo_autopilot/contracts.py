"""Pydantic models for the collaborator-facing contracts."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskListRequest(BaseModel):
    """Raw task text plus optional framework context (``None`` means default rules)."""

    model_config = ConfigDict(populate_by_name=True)

    raw_text: str = Field(default="", alias="rawText")
    framework_context: Optional[str] = Field(default=None, alias="frameworkContext")
    max_parallel: Optional[int] = Field(default=None, ge=1, alias="maxParallel")


class SignalRequest(BaseModel):
    """Free text reported by the execution surface for one task."""

    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId")
    text: str
    timestamp: Optional[str] = None


class SignalResponse(BaseModel):
    accepted: bool
    task_id: str


class StatusEventModel(BaseModel):
    session_id: str
    task_id: Optional[str] = None
    from_state: Optional[str] = None
    to_state: Optional[str] = None
    detail: Optional[str] = None
    kind: str = "transition"
    timestamp: str


class PlanSnapshot(BaseModel):
    """Read-only view of a session's plan and per-task state."""

    session_id: str
    status: str
    created_at: str
    plan: Optional[dict[str, Any]] = None
    tasks: list[dict[str, Any]] = Field(default_factory=list)
    confirmations: dict[str, dict[str, Any]] = Field(default_factory=dict)
    warnings: list[dict[str, Any]] = Field(default_factory=list)


class SessionReportModel(BaseModel):
    session_id: str
    status: str
    success: bool
    tasks: list[dict[str, Any]] = Field(default_factory=list)
    plan: Optional[dict[str, Any]] = None
    completed: list[str] = Field(default_factory=list)
    failed: list[dict[str, Any]] = Field(default_factory=list)
    rejected: list[dict[str, Any]] = Field(default_factory=list)
    cancelled: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[dict[str, Any]] = Field(default_factory=list)
    phases: list[dict[str, Any]] = Field(default_factory=list)


class CommandListResponse(BaseModel):
    commands: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0


class EventListResponse(BaseModel):
    events: list[StatusEventModel] = Field(default_factory=list)
    total: int = 0


class SessionStatsResponse(BaseModel):
    total: int
    prepared: int
    running: int
    finished: int
    cancelled: int
    aborted: int
    failed: int
    session_ttl_seconds: float


class CleanupResponse(BaseModel):
    removed: list[str] = Field(default_factory=list)
    total: int = 0
