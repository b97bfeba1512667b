"""Append behavioural events to the contextual store as typed points."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from ..clock import Clock, SystemClock, ensure_aware
from ..config import PipelineConfig
from .schema import CollectionMethod, ContextualDataPoint, DataCategory, DataKind, PointMetadata
from .store import ContextualDataStore

DEFAULT_PATTERN_CONFIDENCE = 0.5
PATTERN_SOURCE = "pattern_recorder"
LOGGER = logging.getLogger(__name__)


class PatternEvent(str, Enum):
    TASK_COMPLETION = "task_completion"
    WORK_SESSION = "work_session"
    TASK_CREATION = "task_creation"
    FOCUS_SESSION = "focus_session"


_EVENT_KINDS: Dict[PatternEvent, DataKind] = {
    PatternEvent.TASK_COMPLETION: DataKind.TASK_PATTERNS,
    PatternEvent.TASK_CREATION: DataKind.TASK_PATTERNS,
    PatternEvent.WORK_SESSION: DataKind.USER_BEHAVIOR,
    PatternEvent.FOCUS_SESSION: DataKind.USER_BEHAVIOR,
}


def _session_quality(productivity: float) -> str:
    if productivity >= 4:
        return "high"
    if productivity >= 3:
        return "medium"
    return "low"


def _focus_quality(distractions: int) -> str:
    if distractions == 0:
        return "excellent"
    if distractions <= 2:
        return "good"
    return "poor"


class PatternRecorder:
    """Append-only producer of ``task_patterns``/``user_behavior`` points."""

    def __init__(
        self,
        store: ContextualDataStore,
        *,
        clock: Optional[Clock] = None,
        retention_hours: Optional[float] = None,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._retention_hours = retention_hours

    @classmethod
    def from_config(
        cls, store: ContextualDataStore, config: PipelineConfig, *, clock: Optional[Clock] = None
    ) -> "PatternRecorder":
        return cls(store, clock=clock, retention_hours=config.store.retention_hours)

    def record(
        self,
        event: PatternEvent | str,
        payload: Dict[str, Any],
        *,
        confidence: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> ContextualDataPoint:
        """Store one event and return the point that was appended."""
        event = PatternEvent(event)
        moment = ensure_aware(timestamp) if timestamp is not None else self._clock.now()
        score = DEFAULT_PATTERN_CONFIDENCE if confidence is None else confidence
        expires_at = None
        if self._retention_hours is not None:
            expires_at = moment + timedelta(hours=self._retention_hours)

        point = ContextualDataPoint(
            id=f"pattern-{event.value}-{uuid.uuid4().hex}",
            kind=_EVENT_KINDS[event],
            category=DataCategory.REAL_TIME,
            payload={"event": event.value, **payload},
            timestamp=moment,
            relevance_score=score,
            expires_at=expires_at,
            source=PATTERN_SOURCE,
            metadata=PointMetadata(
                collection_method=CollectionMethod.AUTOMATIC,
                confidence=score,
                data_sources=[event.value],
            ),
        )
        self._store.insert([point])
        LOGGER.debug("Recorded %s pattern %s", event.value, point.id)
        return point

    def record_task_completion(
        self,
        task_id: str,
        duration_minutes: float,
        *,
        title: Optional[str] = None,
        priority: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> ContextualDataPoint:
        now = self._clock.now()
        return self.record(
            PatternEvent.TASK_COMPLETION,
            {
                "task_id": task_id,
                "task_title": title,
                "task_priority": priority,
                "duration_minutes": duration_minutes,
                "day_of_week": now.weekday(),
                "hour_of_day": now.hour,
            },
            confidence=confidence,
            timestamp=now,
        )

    def record_work_session(
        self,
        started_at: datetime,
        ended_at: datetime,
        productivity: float,
        *,
        task_id: Optional[str] = None,
        location: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> ContextualDataPoint:
        started_at = ensure_aware(started_at)
        ended_at = ensure_aware(ended_at)
        duration = max(0.0, (ended_at - started_at).total_seconds() / 60.0)
        return self.record(
            PatternEvent.WORK_SESSION,
            {
                "task_id": task_id,
                "duration_minutes": int(duration),
                "productivity_score": productivity,
                "location": location,
                "day_of_week": started_at.weekday(),
                "hour_of_day": started_at.hour,
                "session_quality": _session_quality(productivity),
            },
            confidence=confidence,
            timestamp=ended_at,
        )

    def record_task_creation(
        self,
        priority: str,
        *,
        estimated_duration: Optional[float] = None,
        project_id: Optional[str] = None,
        category: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> ContextualDataPoint:
        now = self._clock.now()
        return self.record(
            PatternEvent.TASK_CREATION,
            {
                "task_priority": priority,
                "estimated_duration": estimated_duration,
                "project_id": project_id,
                "task_category": category,
                "day_of_week": now.weekday(),
                "hour_of_day": now.hour,
            },
            confidence=confidence,
            timestamp=now,
        )

    def record_focus_session(
        self,
        focus_minutes: float,
        distractions: int,
        *,
        task_type: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> ContextualDataPoint:
        now = self._clock.now()
        return self.record(
            PatternEvent.FOCUS_SESSION,
            {
                "focus_duration": focus_minutes,
                "distraction_count": distractions,
                "task_type": task_type,
                "focus_quality": _focus_quality(distractions),
                "day_of_week": now.weekday(),
                "hour_of_day": now.hour,
            },
            confidence=confidence,
            timestamp=now,
        )


__all__ = ["DEFAULT_PATTERN_CONFIDENCE", "PatternEvent", "PatternRecorder"]
