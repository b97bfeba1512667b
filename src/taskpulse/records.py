"""Typed snapshots handed to the pipeline by the host application."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class TaskRecord(RecordModel):
    """Task as stored by the host; subtasks and microtasks use the same shape."""

    id: str
    title: str
    description: str = ""
    status: str = "pending"
    priority: str = "medium"
    project_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


class WorkSession(RecordModel):
    """Tracked work session against a task."""

    task_id: Optional[str] = None
    started_at: datetime
    duration_minutes: float = 0.0
    productivity_score: Optional[float] = None


class ProjectRecord(RecordModel):
    id: str
    name: str
    status: str = "active"
    progress: float = 0.0


class ActivityLogEntry(RecordModel):
    """Single entry in a task's activity log."""

    id: str
    task_id: str
    log_type: str = "note"
    description: str = ""
    created_at: datetime


class SubjectRecord(RecordModel):
    """Everything the Subject Data Provider knows about one task."""

    task: TaskRecord
    subtasks: List[TaskRecord] = Field(default_factory=list)
    microtasks: List[TaskRecord] = Field(default_factory=list)
    activity: List[ActivityLogEntry] = Field(default_factory=list)
    blocking_count: int = 0
    dependent_count: int = 0
    project: Optional[ProjectRecord] = None


class ActivitySnapshot(RecordModel):
    """Input for one collection cycle."""

    tasks: List[TaskRecord] = Field(default_factory=list)
    sessions: List[WorkSession] = Field(default_factory=list)
    projects: List[ProjectRecord] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "ActivityLogEntry",
    "ActivitySnapshot",
    "ProjectRecord",
    "RecordModel",
    "SubjectRecord",
    "TaskRecord",
    "WorkSession",
]
