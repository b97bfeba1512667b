"""Contextual observation storage, aggregation and pattern recording."""

from .aggregation import AggregationEngine
from .patterns import PatternEvent, PatternRecorder
from .schema import (
    AggregationResult,
    CollectionMethod,
    ContextualDataPoint,
    DataCategory,
    DataKind,
    DataQuery,
    NumericSummary,
    PointMetadata,
    SortKey,
    TimeRange,
    Trend,
    TrendDirection,
)
from .store import ContextualDataStore

__all__ = [
    "AggregationEngine",
    "AggregationResult",
    "CollectionMethod",
    "ContextualDataPoint",
    "ContextualDataStore",
    "DataCategory",
    "DataKind",
    "DataQuery",
    "NumericSummary",
    "PatternEvent",
    "PatternRecorder",
    "PointMetadata",
    "SortKey",
    "TimeRange",
    "Trend",
    "TrendDirection",
]
