"""Bounded in-memory storage for contextual observation points."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..clock import ensure_aware
from ..config import PipelineConfig
from .schema import ContextualDataPoint, DataKind, DataQuery, SortKey

DEFAULT_MAX_DATA_POINTS = 500
DEFAULT_MIN_RELEVANCE = 0.1
LOGGER = logging.getLogger(__name__)


class ContextualDataStore:
    """Thread-safe container that owns every :class:`ContextualDataPoint`.

    The store never holds more than ``max_data_points`` entries. When an
    insert pushes it over the cap, points are ranked by timestamp (newest
    first) and the oldest are dropped. Points with equal timestamps keep
    their insertion order, which is also the secondary order for queries.
    """

    def __init__(
        self,
        *,
        max_data_points: int = DEFAULT_MAX_DATA_POINTS,
        min_relevance_score: float = DEFAULT_MIN_RELEVANCE,
    ) -> None:
        if max_data_points < 1:
            raise ValueError("max_data_points must be positive")
        self.max_data_points = max_data_points
        self.min_relevance_score = min_relevance_score
        self._points: List[ContextualDataPoint] = []
        self._ids: set[str] = set()
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "ContextualDataStore":
        return cls(
            max_data_points=config.store.max_data_points,
            min_relevance_score=config.store.min_relevance_score,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._points)

    def __contains__(self, point_id: object) -> bool:
        with self._lock:
            return point_id in self._ids

    def insert(self, points: Iterable[ContextualDataPoint]) -> int:
        """Append unseen points and enforce the cap; return how many were added."""
        with self._lock:
            added = 0
            for point in points:
                if point.id in self._ids:
                    continue
                self._points.append(point)
                self._ids.add(point.id)
                added += 1

            overflow = len(self._points) - self.max_data_points
            if overflow > 0:
                ranked = sorted(self._points, key=lambda item: item.timestamp, reverse=True)
                kept = ranked[: self.max_data_points]
                kept_ids = {point.id for point in kept}
                # Preserve insertion order among survivors.
                self._points = [point for point in self._points if point.id in kept_ids]
                self._ids = kept_ids
                LOGGER.debug("Evicted %d contextual point(s) over cap %d", overflow, self.max_data_points)
            return added

    def query(self, query: Optional[DataQuery] = None) -> List[ContextualDataPoint]:
        """Return matching points as a new list, newest or most relevant first."""
        query = query or DataQuery()
        min_relevance = query.min_relevance
        if min_relevance is None:
            min_relevance = self.min_relevance_score

        with self._lock:
            snapshot = list(self._points)

        matches = [
            point
            for point in snapshot
            if (query.kinds is None or point.kind in query.kinds)
            and (query.categories is None or point.category in query.categories)
            and (query.time_range is None or query.time_range.contains(point.timestamp))
            and point.relevance_score >= min_relevance
        ]

        if query.sort_by == SortKey.RELEVANCE:
            matches.sort(key=lambda item: item.relevance_score, reverse=True)
        else:
            matches.sort(key=lambda item: item.timestamp, reverse=True)

        if query.limit is not None:
            matches = matches[: query.limit]
        return matches

    def sweep_expired(self, now: datetime) -> int:
        """Remove points whose ``expires_at`` is at or before ``now``."""
        now = ensure_aware(now)
        with self._lock:
            survivors = [point for point in self._points if not point.is_expired(now)]
            removed = len(self._points) - len(survivors)
            if removed:
                self._points = survivors
                self._ids = {point.id for point in survivors}
                LOGGER.debug("Swept %d expired contextual point(s)", removed)
            return removed

    def summary(self) -> Dict[str, int]:
        """Count stored points per kind."""
        with self._lock:
            counts = Counter(point.kind.value for point in self._points)
        return {kind.value: counts.get(kind.value, 0) for kind in DataKind}

    def clear(self) -> None:
        with self._lock:
            self._points = []
            self._ids = set()


__all__ = ["ContextualDataStore", "DEFAULT_MAX_DATA_POINTS", "DEFAULT_MIN_RELEVANCE"]
