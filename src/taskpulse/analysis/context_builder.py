"""Assemble immutable analysis contexts from subject records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from ..clock import ensure_aware
from ..memory.schema import Trend
from ..records import SubjectRecord, TaskRecord
from .prompts import render_system_prompt, render_user_prompt
from .schema import (
    AnalysisContext,
    CompletionStatus,
    DependencyCounts,
    ProjectSummary,
    SubjectSnapshot,
)

__all__ = ["ContextPackage", "build_analysis_context", "completion_status", "package_context"]


@dataclass(slots=True)
class ContextPackage:
    """Rendered prompts ready for the text-generation client."""

    context: AnalysisContext
    system_prompt: str
    user_prompt: str


def _completed(tasks: Sequence[TaskRecord]) -> int:
    return sum(1 for task in tasks if task.is_completed)


def completion_status(record: SubjectRecord) -> CompletionStatus:
    """Progress from subtasks, else microtasks, else zero."""
    subtasks_done = _completed(record.subtasks)
    microtasks_done = _completed(record.microtasks)
    if record.subtasks:
        progress = subtasks_done / len(record.subtasks) * 100
    elif record.microtasks:
        progress = microtasks_done / len(record.microtasks) * 100
    else:
        progress = 0.0
    return CompletionStatus(
        subtasks_total=len(record.subtasks),
        subtasks_completed=subtasks_done,
        microtasks_total=len(record.microtasks),
        microtasks_completed=microtasks_done,
        overall_progress=round(progress, 2),
    )


def build_analysis_context(
    record: SubjectRecord,
    *,
    built_at: datetime,
    max_activity_entries: int = 8,
    trends: Optional[Sequence[Trend]] = None,
) -> AnalysisContext:
    task = record.task
    activity = sorted(record.activity, key=lambda entry: ensure_aware(entry.created_at), reverse=True)
    project = None
    if record.project is not None:
        project = ProjectSummary(
            id=record.project.id,
            name=record.project.name,
            status=record.project.status,
            progress=record.project.progress,
        )
    return AnalysisContext(
        subject=SubjectSnapshot(
            id=task.id,
            title=task.title,
            description=task.description,
            status=task.status,
            priority=task.priority,
            due_date=task.due_date,
            created_at=task.created_at,
        ),
        completion=completion_status(record),
        recent_activity=activity[:max_activity_entries],
        dependencies=DependencyCounts(blocking=record.blocking_count, dependent=record.dependent_count),
        project=project,
        trends=list(trends or []),
        built_at=built_at,
    )


def package_context(context: AnalysisContext) -> ContextPackage:
    return ContextPackage(
        context=context,
        system_prompt=render_system_prompt(),
        user_prompt=render_user_prompt(context),
    )
