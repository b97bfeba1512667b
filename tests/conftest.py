from __future__ import annotations

import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from taskpulse.memory.schema import ContextualDataPoint, DataKind  # noqa: E402
from taskpulse.models.llm_client import TextGenerationClient  # noqa: E402
from taskpulse.records import ActivityLogEntry, SubjectRecord, TaskRecord  # noqa: E402

EPOCH = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)


@dataclass(slots=True)
class FakeClock:
    """Manually advanced clock for TTL and expiry tests."""

    current: datetime = EPOCH

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


class ScriptedClient(TextGenerationClient):
    """Text-generation client returning canned replies and counting calls.

    When ``gate`` is set, each call blocks until the event is released so
    tests can observe requests while they are in flight.
    """

    def __init__(
        self,
        reply: str | Callable[[int], str] = "{}",
        *,
        error: Optional[Exception] = None,
        gate: Optional[threading.Event] = None,
        model: str = "scripted-model",
    ) -> None:
        super().__init__(model=model)
        self._reply = reply
        self._error = error
        self.gate = gate
        self.started = threading.Event()
        self.calls = 0
        self.payloads: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        with self._lock:
            self.calls += 1
            call_number = self.calls
            self.payloads.append(payload)
        self.started.set()
        if self.gate is not None:
            assert self.gate.wait(5), "scripted client gate was never released"
        if self._error is not None:
            raise self._error
        if callable(self._reply):
            return self._reply(call_number)
        return self._reply


@dataclass(slots=True)
class PointFactory:
    clock: FakeClock
    counter: int = field(default=0)

    def __call__(
        self,
        kind: DataKind = DataKind.PRODUCTIVITY_METRICS,
        *,
        payload: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
        relevance: float = 0.5,
        expires_at: Optional[datetime] = None,
        point_id: Optional[str] = None,
        **extra: Any,
    ) -> ContextualDataPoint:
        self.counter += 1
        return ContextualDataPoint(
            id=point_id or f"point-{self.counter}",
            kind=kind,
            payload=dict(payload or {}),
            timestamp=timestamp or self.clock.now(),
            relevance_score=relevance,
            expires_at=expires_at,
            source="tests",
            **extra,
        )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_point(clock: FakeClock) -> PointFactory:
    return PointFactory(clock=clock)


@pytest.fixture()
def subject_record() -> SubjectRecord:
    """Task with four subtasks (one done), a project and some activity."""
    task = TaskRecord(
        id="T1",
        title="Ship quarterly report",
        description="Compile figures and send to finance",
        status="in_progress",
        priority="high",
        project_id="P1",
        due_date=EPOCH + timedelta(days=2),
    )
    subtasks = [
        TaskRecord(id=f"T1-{index}", title=f"Part {index}", status="completed" if index == 0 else "pending")
        for index in range(4)
    ]
    activity = [
        ActivityLogEntry(
            id=f"log-{index}",
            task_id="T1",
            log_type="note",
            description=f"Update {index}",
            created_at=EPOCH - timedelta(hours=index),
        )
        for index in range(10)
    ]
    return SubjectRecord(
        task=task,
        subtasks=subtasks,
        activity=activity,
        blocking_count=1,
        dependent_count=2,
        project={"id": "P1", "name": "Finance", "status": "active", "progress": 40.0},
    )
