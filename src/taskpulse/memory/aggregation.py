"""Summary statistics and half-window trends over stored observations."""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Sequence

from .schema import (
    AggregatedValue,
    AggregationResult,
    ContextualDataPoint,
    DataKind,
    DataQuery,
    NumericSummary,
    SortKey,
    TimeRange,
    Trend,
    TrendDirection,
)
from .store import ContextualDataStore

LOGGER = logging.getLogger(__name__)

STABLE_THRESHOLD_PERCENT = 5.0
FULL_CONFIDENCE_POINTS = 3


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def summarise_payloads(points: Sequence[ContextualDataPoint]) -> Dict[str, AggregatedValue]:
    """Aggregate payload fields across ``points`` (oldest first).

    Numeric fields become :class:`NumericSummary`, mappings keep the most
    recent value and everything else is counted by its string form.
    """
    values_by_key: Dict[str, List[Any]] = {}
    for point in points:
        for key, value in point.payload.items():
            if value is None:
                continue
            values_by_key.setdefault(key, []).append(value)

    aggregated: Dict[str, AggregatedValue] = {}
    for key in sorted(values_by_key):
        values = values_by_key[key]
        numbers = [float(value) for value in values if _is_number(value)]
        if numbers and len(numbers) == len(values):
            aggregated[key] = NumericSummary(
                mean=_mean(numbers),
                minimum=min(numbers),
                maximum=max(numbers),
                count=len(numbers),
            )
        elif isinstance(values[-1], Mapping):
            aggregated[key] = dict(values[-1])
        else:
            frequency = Counter(str(value) for value in values if not isinstance(value, (Mapping, list)))
            aggregated[key] = dict(sorted(frequency.items()))
    return aggregated


def compute_magnitude(first_mean: float, second_mean: float) -> float:
    """Percentage change from the first half to the second half."""
    if first_mean == 0:
        return 100.0 if second_mean > 0 else 0.0
    return (second_mean - first_mean) / first_mean * 100.0


def classify_direction(magnitude: float) -> TrendDirection:
    if abs(magnitude) < STABLE_THRESHOLD_PERCENT:
        return TrendDirection.STABLE
    return TrendDirection.INCREASING if magnitude > 0 else TrendDirection.DECREASING


def compute_trends(points: Sequence[ContextualDataPoint], window: TimeRange) -> List[Trend]:
    """Compare each numeric metric's mean across the two halves of ``window``.

    The first half is ``[start, midpoint)`` and the second ``[midpoint, end]``.
    Metrics without samples in both halves produce no trend.
    """
    midpoint = window.midpoint
    halves: Dict[str, tuple[List[float], List[float]]] = {}
    for point in points:
        for key, value in point.payload.items():
            if not _is_number(value):
                continue
            first, second = halves.setdefault(key, ([], []))
            (first if point.timestamp < midpoint else second).append(float(value))

    trends: List[Trend] = []
    for metric in sorted(halves):
        first, second = halves[metric]
        if not first or not second:
            continue
        magnitude = compute_magnitude(_mean(first), _mean(second))
        trends.append(
            Trend(
                metric=metric,
                direction=classify_direction(magnitude),
                magnitude=magnitude,
                confidence=min(1.0, min(len(first), len(second)) / FULL_CONFIDENCE_POINTS),
                timespan_hours=window.hours,
            )
        )
    return trends


class AggregationEngine:
    """Read-only view over a :class:`ContextualDataStore` producing summaries."""

    def __init__(self, store: ContextualDataStore) -> None:
        self._store = store

    @property
    def store(self) -> ContextualDataStore:
        return self._store

    def aggregate(self, kind: DataKind | str, window: TimeRange) -> AggregationResult:
        kind = DataKind(kind)
        matched = self._store.query(
            DataQuery(kinds=frozenset({kind}), time_range=window, min_relevance=0.0, sort_by=SortKey.TIMESTAMP)
        )
        if not matched:
            return AggregationResult(kind=kind, time_range=window)

        chronological = list(reversed(matched))
        trends = compute_trends(chronological, window)
        confidence = _mean([trend.confidence for trend in trends]) if trends else 0.0
        LOGGER.debug(
            "Aggregated %d %s point(s) into %d trend(s)", len(chronological), kind.value, len(trends)
        )
        return AggregationResult(
            kind=kind,
            aggregated_data=summarise_payloads(chronological),
            data_point_count=len(chronological),
            time_range=window,
            confidence=confidence,
            trends=trends,
        )

    def aggregate_many(
        self, kinds: Sequence[DataKind], window: TimeRange
    ) -> Dict[DataKind, AggregationResult]:
        return {kind: self.aggregate(kind, window) for kind in kinds}

    def trends_for(self, kinds: Sequence[DataKind], window: TimeRange, *, limit: Optional[int] = None) -> List[Trend]:
        """Collect trends for several kinds, most confident first."""
        collected: List[Trend] = []
        for kind in kinds:
            collected.extend(self.aggregate(kind, window).trends)
        collected.sort(key=lambda trend: trend.confidence, reverse=True)
        if limit is not None:
            collected = collected[:limit]
        return collected


__all__ = [
    "AggregationEngine",
    "FULL_CONFIDENCE_POINTS",
    "STABLE_THRESHOLD_PERCENT",
    "classify_direction",
    "compute_magnitude",
    "compute_trends",
    "summarise_payloads",
]
