"""Typed records tracked by the contextual data store."""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..clock import ensure_aware


def clamp_unit(value: Any) -> float:
    """Clamp ``value`` into ``[0, 1]``; NaN and non-numeric input become 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return min(1.0, max(0.0, number))


class DataKind(str, Enum):
    """Observation families collected about user and task activity."""

    USER_BEHAVIOR = "user_behavior"
    TASK_PATTERNS = "task_patterns"
    PRODUCTIVITY_METRICS = "productivity_metrics"
    ENVIRONMENTAL = "environmental"
    TEMPORAL = "temporal"


class DataCategory(str, Enum):
    REAL_TIME = "real_time"
    HISTORICAL = "historical"
    PREDICTIVE = "predictive"


class CollectionMethod(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    INFERRED = "inferred"


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class SortKey(str, Enum):
    TIMESTAMP = "timestamp"
    RELEVANCE = "relevance"


class PointModel(BaseModel):
    """Immutable base for store-owned records."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class PointMetadata(PointModel):
    collection_method: CollectionMethod = CollectionMethod.AUTOMATIC
    confidence: float = 0.5
    data_sources: List[str] = Field(default_factory=list)
    processing_time_ms: Optional[float] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp_unit(value)


class ContextualDataPoint(PointModel):
    """Single bounded observation; ``id`` is the deduplication key."""

    id: str
    kind: DataKind
    category: DataCategory = DataCategory.REAL_TIME
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    relevance_score: float = 0.5
    expires_at: Optional[datetime] = None
    source: str = "unknown"
    metadata: PointMetadata = Field(default_factory=PointMetadata)

    @field_validator("relevance_score", mode="before")
    @classmethod
    def _clamp_relevance(cls, value: Any) -> float:
        return clamp_unit(value)

    @field_validator("timestamp", "expires_at")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return ensure_aware(value)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= ensure_aware(now)


class TimeRange(PointModel):
    """Closed interval ``[start, end]``."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @model_validator(mode="after")
    def _ordered(self) -> "TimeRange":
        if self.end < self.start:
            raise ValueError("time range end precedes start")
        return self

    @classmethod
    def trailing(cls, end: datetime, hours: float) -> "TimeRange":
        end = ensure_aware(end)
        return cls(start=end - timedelta(hours=hours), end=end)

    @property
    def midpoint(self) -> datetime:
        return self.start + (self.end - self.start) / 2

    @property
    def hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600.0

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= ensure_aware(timestamp) <= self.end


class DataQuery(PointModel):
    """Filter and ordering applied by :meth:`ContextualDataStore.query`.

    ``min_relevance`` left as ``None`` falls back to the store's configured
    minimum relevance score.
    """

    kinds: Optional[FrozenSet[DataKind]] = None
    categories: Optional[FrozenSet[DataCategory]] = None
    time_range: Optional[TimeRange] = None
    min_relevance: Optional[float] = None
    sort_by: SortKey = SortKey.TIMESTAMP
    limit: Optional[int] = Field(default=None, ge=0)


class NumericSummary(PointModel):
    mean: float
    minimum: float
    maximum: float
    count: int


AggregatedValue = Union[NumericSummary, Dict[str, int], Any]


class Trend(PointModel):
    """Directional change of a metric between the two halves of a window."""

    metric: str
    direction: TrendDirection
    magnitude: float
    confidence: float
    timespan_hours: float


class AggregationResult(PointModel):
    kind: DataKind
    aggregated_data: Dict[str, AggregatedValue] = Field(default_factory=dict)
    data_point_count: int = 0
    time_range: TimeRange
    confidence: float = 0.0
    trends: List[Trend] = Field(default_factory=list)


__all__ = [
    "AggregatedValue",
    "AggregationResult",
    "CollectionMethod",
    "ContextualDataPoint",
    "DataCategory",
    "DataKind",
    "DataQuery",
    "NumericSummary",
    "PointMetadata",
    "SortKey",
    "TimeRange",
    "Trend",
    "TrendDirection",
    "clamp_unit",
]
