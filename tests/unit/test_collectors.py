from __future__ import annotations

from datetime import datetime, timedelta, timezone

from taskpulse.collection.collectors import (
    collect_environmental,
    collect_productivity,
    collect_task_patterns,
    collect_temporal,
    collect_user_behavior,
    hourly_productivity,
    peak_hours,
    time_of_day,
)
from taskpulse.memory.schema import DataKind
from taskpulse.records import ActivitySnapshot, ProjectRecord, TaskRecord, WorkSession

NOW = datetime(2024, 5, 4, 15, 30, tzinfo=timezone.utc)  # Saturday afternoon


def test_user_behavior_counts_recent_tasks_and_sessions() -> None:
    snapshot = ActivitySnapshot(
        tasks=[
            TaskRecord(id="a", title="A", priority="high", created_at=NOW - timedelta(hours=1)),
            TaskRecord(id="b", title="B", priority="high", created_at=NOW - timedelta(hours=5)),
            TaskRecord(id="c", title="C", created_at=NOW - timedelta(days=3)),
        ],
        sessions=[
            WorkSession(started_at=NOW - timedelta(hours=2), duration_minutes=30, productivity_score=3),
            WorkSession(started_at=NOW - timedelta(hours=4), duration_minutes=90, productivity_score=5),
        ],
    )

    tasks_point, sessions_point = collect_user_behavior(snapshot, NOW)

    assert tasks_point.kind is DataKind.USER_BEHAVIOR
    assert tasks_point.payload["tasks_created_last_24h"] == 2
    assert tasks_point.payload["priority_distribution"] == {"high": 2}
    assert tasks_point.relevance_score == 0.2
    assert sessions_point.payload["avg_session_duration"] == 60
    assert sessions_point.payload["avg_productivity_score"] == 4
    assert tasks_point.id.endswith(str(int(NOW.timestamp() * 1000)))


def test_user_behavior_is_empty_without_recent_activity() -> None:
    assert collect_user_behavior(ActivitySnapshot(), NOW) == []


def test_task_patterns_report_projects_and_deadlines() -> None:
    snapshot = ActivitySnapshot(
        tasks=[
            TaskRecord(id="a", title="A", project_id="P1", due_date=NOW - timedelta(days=1)),
            TaskRecord(id="b", title="B", project_id="P1", due_date=NOW + timedelta(hours=12)),
            TaskRecord(id="c", title="C", due_date=NOW + timedelta(days=10)),
        ],
        projects=[ProjectRecord(id="P1", name="Launch"), ProjectRecord(id="P2", name="Ops", status="paused")],
    )

    projects_point, deadlines_point = collect_task_patterns(snapshot, NOW)

    assert projects_point.payload["project_distribution"] == {"Launch": 2, "Ops": 0, "unassigned": 1}
    assert projects_point.payload["active_projects"] == 1
    assert deadlines_point.payload["tasks_with_deadlines"] == 3
    assert deadlines_point.payload["overdue_tasks"] == 1
    assert deadlines_point.payload["due_soon_tasks"] == 1
    assert round(deadlines_point.payload["overdue_percentage"], 2) == 33.33


def test_productivity_peaks_exceed_average() -> None:
    sessions = [
        WorkSession(started_at=NOW.replace(hour=9), productivity_score=5),
        WorkSession(started_at=NOW.replace(hour=9, minute=45), productivity_score=4),
        WorkSession(started_at=NOW.replace(hour=14), productivity_score=2),
    ]

    hourly = hourly_productivity(sessions)

    assert hourly[9] == 4.5
    assert hourly[14] == 2
    assert peak_hours(hourly) == [9, 14]
    point = collect_productivity(ActivitySnapshot(sessions=sessions), NOW)[0]
    assert point.payload["peak_hours"] == [9, 14]


def test_productivity_needs_sessions() -> None:
    assert collect_productivity(ActivitySnapshot(), NOW) == []


def test_environmental_only_with_context() -> None:
    assert collect_environmental(ActivitySnapshot(), NOW) == []
    point = collect_environmental(ActivitySnapshot(context={"device": "laptop"}), NOW)[0]
    assert point.payload == {"device": "laptop"}


def test_temporal_describes_the_clock() -> None:
    point = collect_temporal(ActivitySnapshot(), NOW)[0]

    assert point.payload == {
        "hour_of_day": 15,
        "day_of_week": 5,
        "is_weekend": True,
        "time_of_day": "afternoon",
    }
    assert [time_of_day(hour) for hour in (7, 13, 19, 23)] == ["morning", "afternoon", "evening", "night"]
