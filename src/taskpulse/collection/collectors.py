"""Pure collectors turning an activity snapshot into contextual points."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Sequence

from ..clock import ensure_aware
from ..memory.schema import CollectionMethod, ContextualDataPoint, DataCategory, DataKind, PointMetadata
from ..records import ActivitySnapshot, ProjectRecord, TaskRecord, WorkSession

Collector = Callable[[ActivitySnapshot, datetime], List[ContextualDataPoint]]

RECENT_WINDOW = timedelta(hours=24)
DUE_SOON_HOURS = 48
PEAK_FACTOR = 1.2
UNASSIGNED_PROJECT = "unassigned"


def _stamp(timestamp: datetime) -> int:
    return int(timestamp.timestamp() * 1000)


def _point(
    point_id: str,
    kind: DataKind,
    category: DataCategory,
    payload: Dict[str, Any],
    timestamp: datetime,
    relevance: float,
    source: str,
    confidence: float,
    data_sources: Sequence[str],
) -> ContextualDataPoint:
    return ContextualDataPoint(
        id=f"{point_id}-{_stamp(timestamp)}",
        kind=kind,
        category=category,
        payload=payload,
        timestamp=timestamp,
        relevance_score=relevance,
        source=source,
        metadata=PointMetadata(
            collection_method=CollectionMethod.AUTOMATIC,
            confidence=confidence,
            data_sources=list(data_sources),
        ),
    )


def _within(moment: datetime | None, now: datetime, window: timedelta) -> bool:
    if moment is None:
        return False
    delta = now - ensure_aware(moment)
    return timedelta(0) <= delta <= window


def collect_user_behavior(snapshot: ActivitySnapshot, timestamp: datetime) -> List[ContextualDataPoint]:
    """Task creation and work-session activity over the last 24 hours."""
    points: List[ContextualDataPoint] = []

    recent_tasks = [task for task in snapshot.tasks if _within(task.created_at, timestamp, RECENT_WINDOW)]
    if recent_tasks:
        points.append(
            _point(
                "user-behavior-tasks",
                DataKind.USER_BEHAVIOR,
                DataCategory.REAL_TIME,
                {
                    "tasks_created_last_24h": len(recent_tasks),
                    "avg_tasks_per_hour": len(recent_tasks) / 24,
                    "status_distribution": dict(Counter(task.status for task in recent_tasks)),
                    "priority_distribution": dict(Counter(task.priority for task in recent_tasks)),
                },
                timestamp,
                min(len(recent_tasks) / 10, 1.0),
                "task_creation_patterns",
                0.8,
                ["tasks"],
            )
        )

    recent_sessions = [
        session for session in snapshot.sessions if _within(session.started_at, timestamp, RECENT_WINDOW)
    ]
    if recent_sessions:
        count = len(recent_sessions)
        points.append(
            _point(
                "user-behavior-sessions",
                DataKind.USER_BEHAVIOR,
                DataCategory.REAL_TIME,
                {
                    "sessions_last_24h": count,
                    "avg_session_duration": sum(s.duration_minutes for s in recent_sessions) / count,
                    "avg_productivity_score": sum(s.productivity_score or 0 for s in recent_sessions) / count,
                },
                timestamp,
                min(count / 5, 1.0),
                "work_session_patterns",
                0.9,
                ["task_sessions"],
            )
        )
    return points


def _project_distribution(tasks: Sequence[TaskRecord], projects: Sequence[ProjectRecord]) -> Dict[str, int]:
    distribution = {
        project.name: sum(1 for task in tasks if task.project_id == project.id) for project in projects
    }
    unassigned = sum(1 for task in tasks if not task.project_id)
    if unassigned:
        distribution[UNASSIGNED_PROJECT] = unassigned
    return distribution


def _deadline_patterns(tasks: Sequence[TaskRecord], now: datetime) -> Dict[str, Any]:
    deadlines = [ensure_aware(task.due_date) for task in tasks if task.due_date is not None]
    if not deadlines:
        return {"tasks_with_deadlines": 0}

    overdue = [due for due in deadlines if due < now]
    due_soon = [due for due in deadlines if 0 < (due - now).total_seconds() / 3600 <= DUE_SOON_HOURS]
    days_left = [max(0.0, (due - now).total_seconds() / 86400) for due in deadlines]
    return {
        "tasks_with_deadlines": len(deadlines),
        "overdue_tasks": len(overdue),
        "due_soon_tasks": len(due_soon),
        "overdue_percentage": len(overdue) / len(deadlines) * 100,
        "avg_days_to_deadline": sum(days_left) / len(days_left),
    }


def collect_task_patterns(snapshot: ActivitySnapshot, timestamp: datetime) -> List[ContextualDataPoint]:
    """Project distribution and deadline pressure."""
    projects = snapshot.projects
    deadlines = _deadline_patterns(snapshot.tasks, timestamp)
    return [
        _point(
            "task-patterns-projects",
            DataKind.TASK_PATTERNS,
            DataCategory.HISTORICAL,
            {
                "project_distribution": _project_distribution(snapshot.tasks, projects),
                "total_projects": len(projects),
                "active_projects": sum(1 for project in projects if project.status == "active"),
            },
            timestamp,
            0.8 if projects else 0.3,
            "project_task_analysis",
            0.85,
            ["tasks", "projects"],
        ),
        _point(
            "task-patterns-deadlines",
            DataKind.TASK_PATTERNS,
            DataCategory.PREDICTIVE,
            deadlines,
            timestamp,
            0.9 if deadlines["tasks_with_deadlines"] else 0.2,
            "deadline_pattern_analysis",
            0.7,
            ["tasks"],
        ),
    ]


def hourly_productivity(sessions: Sequence[WorkSession]) -> Dict[int, float]:
    scores: Dict[int, List[float]] = {hour: [] for hour in range(24)}
    for session in sessions:
        if session.productivity_score is None:
            continue
        scores[ensure_aware(session.started_at).hour].append(session.productivity_score)
    return {hour: (sum(values) / len(values) if values else 0.0) for hour, values in scores.items()}


def peak_hours(hourly: Dict[int, float]) -> List[int]:
    average = sum(hourly.values()) / len(hourly)
    peaks = [hour for hour, score in hourly.items() if score > average * PEAK_FACTOR]
    return sorted(peaks, key=lambda hour: hourly[hour], reverse=True)


def collect_productivity(snapshot: ActivitySnapshot, timestamp: datetime) -> List[ContextualDataPoint]:
    if not snapshot.sessions:
        return []
    hourly = hourly_productivity(snapshot.sessions)
    return [
        _point(
            "productivity-hourly",
            DataKind.PRODUCTIVITY_METRICS,
            DataCategory.HISTORICAL,
            {
                "hourly_productivity": {str(hour): score for hour, score in hourly.items()},
                "peak_hours": peak_hours(hourly),
                "average_productivity": sum(hourly.values()) / 24,
            },
            timestamp,
            0.9,
            "productivity_analysis",
            0.85,
            ["task_sessions"],
        )
    ]


def collect_environmental(snapshot: ActivitySnapshot, timestamp: datetime) -> List[ContextualDataPoint]:
    if not snapshot.context:
        return []
    return [
        _point(
            "environmental-context",
            DataKind.ENVIRONMENTAL,
            DataCategory.REAL_TIME,
            dict(snapshot.context),
            timestamp,
            0.5,
            "host_context",
            0.6,
            ["host"],
        )
    ]


def time_of_day(hour: int) -> str:
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    return "night"


def collect_temporal(snapshot: ActivitySnapshot, timestamp: datetime) -> List[ContextualDataPoint]:
    weekday = timestamp.weekday()
    return [
        _point(
            "temporal-clock",
            DataKind.TEMPORAL,
            DataCategory.REAL_TIME,
            {
                "hour_of_day": timestamp.hour,
                "day_of_week": weekday,
                "is_weekend": weekday >= 5,
                "time_of_day": time_of_day(timestamp.hour),
            },
            timestamp,
            0.4,
            "clock",
            1.0,
            ["clock"],
        )
    ]


COLLECTORS: Dict[DataKind, Collector] = {
    DataKind.USER_BEHAVIOR: collect_user_behavior,
    DataKind.TASK_PATTERNS: collect_task_patterns,
    DataKind.PRODUCTIVITY_METRICS: collect_productivity,
    DataKind.ENVIRONMENTAL: collect_environmental,
    DataKind.TEMPORAL: collect_temporal,
}


__all__ = [
    "COLLECTORS",
    "Collector",
    "collect_environmental",
    "collect_productivity",
    "collect_task_patterns",
    "collect_temporal",
    "collect_user_behavior",
    "hourly_productivity",
    "peak_hours",
    "time_of_day",
]
